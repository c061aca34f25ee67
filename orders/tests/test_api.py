from decimal import Decimal

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from assignment.models import Assignment
from assignment.services.capacity_ledger import reserve_slot
from orders.models import MinimumFreightRate, Order, Proposal
from workflow.core.statuses import Action, OrderStatus, PricingMode, ProposalStatus


def as_actor(role, actor_id=None):
    headers = {'HTTP_X_ACTOR_ROLE': role}
    if actor_id is not None:
        headers['HTTP_X_ACTOR_ID'] = actor_id
    return headers


class OrderAPITests(APITestCase):
    def setUp(self):
        self.order = Order.objects.create(
            requester_id='req-1',
            required_slots=3,
            cargo_type='grain',
            origin='Sorriso',
            destination='Paranaguá',
            pricing_mode=PricingMode.PER_DISTANCE,
            unit_rate=Decimal('4.00'),
            distance_km=Decimal('500'),
        )

    def test_requester_posts_freight(self):
        payload = {
            'cargo_type': 'live_cattle',
            'origin': 'Barretos',
            'destination': 'Campo Grande',
            'required_slots': 2,
            'pricing_mode': 'FIXED',
            'fixed_amount': '3200.00',
        }
        response = self.client.post(reverse('order-list'), payload, format='json', **as_actor('REQUESTER', 'req-9'))

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], OrderStatus.OPEN)
        self.assertEqual(response.data['requester_id'], 'req-9')
        self.assertEqual(response.data['available_slots'], 2)
        self.assertEqual(response.data['price']['total'], '6400.00')
        self.assertNotIn('fixed_amount', response.data)
        self.assertEqual(
            {note['document'] for note in response.data['compliance']},
            {'animal_transit_permit', 'invoice'},
        )

    def test_only_requesters_post_freight(self):
        payload = {'pricing_mode': 'FIXED', 'fixed_amount': '100'}
        response = self.client.post(reverse('order-list'), payload, format='json', **as_actor('FULFILLER', 'f1'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(reverse('order-list'), payload, format='json', **as_actor('REQUESTER'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'actor_required')

    def test_incomplete_pricing_is_rejected(self):
        payload = {'pricing_mode': 'PER_WEIGHT', 'unit_rate': '150'}
        response = self.client.post(reverse('order-list'), payload, format='json', **as_actor('REQUESTER', 'req-1'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('pricing_mode', response.data)

    def test_zero_trucks_is_rejected(self):
        payload = {'required_slots': 0, 'pricing_mode': 'FIXED', 'fixed_amount': '100'}
        response = self.client.post(reverse('order-list'), payload, format='json', **as_actor('REQUESTER', 'req-1'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_orders_are_not_edited_in_place(self):
        url = reverse('order-detail', args=[self.order.pk])
        response = self.client.patch(url, {'status': 'COMPLETED'}, format='json', **as_actor('REQUESTER', 'req-1'))
        self.assertEqual(response.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)

    def test_list_filters_by_status(self):
        Order.objects.create(requester_id='req-2', status=OrderStatus.CANCELLED)
        response = self.client.get(reverse('order-list'), {'status': 'OPEN'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['id'] for row in response.data['results']], [self.order.pk])

    def test_fulfiller_never_sees_the_total(self):
        url = reverse('order-detail', args=[self.order.pk])
        response = self.client.get(url, **as_actor('FULFILLER', 'f1'))

        price = response.data['price']
        self.assertEqual(price['viewer'], 'fulfiller')
        self.assertEqual(price['per_slot_price'], '2000.00')
        self.assertIsNone(price['total'])
        self.assertEqual(price['breakdown'], [])
        self.assertNotIn('6000', price['display_label'])

    def test_price_endpoint_per_viewer(self):
        url = reverse('order-price', args=[self.order.pk])

        requester = self.client.get(url, **as_actor('REQUESTER', 'req-1'))
        self.assertEqual(requester.data['total'], '6000.00')
        self.assertTrue(requester.data['actionable'])

        impostor = self.client.get(url, **as_actor('REQUESTER', 'req-2'))
        self.assertIsNone(impostor.data['total'])

        admin = self.client.get(url, **as_actor('ADMIN', 'ops'))
        self.assertEqual(admin.data['total'], '6000.00')
        self.assertFalse(admin.data['actionable'])

    def test_own_agreed_price_after_acceptance(self):
        reserve_slot(self.order.pk, 'f1', agreed_price=Decimal('1850.00'))
        reserve_slot(self.order.pk, 'f2')

        response = self.client.get(reverse('order-price', args=[self.order.pk]), **as_actor('FULFILLER', 'f1'))
        self.assertEqual(response.data['per_slot_price'], '1850.00')

        response = self.client.get(reverse('order-price', args=[self.order.pk]), **as_actor('FULFILLER', 'f3'))
        self.assertEqual(response.data['per_slot_price'], '2000.00')

    def test_minimum_price_warning(self):
        MinimumFreightRate.objects.create(cargo_type='grain', min_rate_per_km=Decimal('5.00'))
        response = self.client.get(reverse('order-price', args=[self.order.pk]), **as_actor('FULFILLER', 'f1'))
        self.assertEqual(response.data['warnings'], ['below_minimum_price'])

    def test_actions_for_fulfiller(self):
        response = self.client.get(reverse('order-actions', args=[self.order.pk]), **as_actor('FULFILLER', 'f1'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['safe_mode'])
        self.assertEqual(response.data['status_label'], 'Open')
        self.assertEqual(response.data['actions'][0]['action'], Action.ACCEPT)
        self.assertEqual(response.data['actions'][0]['label'], 'Accept freight')

    def test_actions_for_slot_holder(self):
        reserve_slot(self.order.pk, 'f1')
        response = self.client.get(reverse('order-actions', args=[self.order.pk]), **as_actor('FULFILLER', 'f1'))
        actions = [row['action'] for row in response.data['actions']]
        self.assertNotIn(Action.ACCEPT, actions)
        self.assertIn(Action.RELEASE_SLOT, actions)

    def test_accept_until_full(self):
        url = reverse('order-accept', args=[self.order.pk])
        for fulfiller_id in ('f1', 'f2', 'f3'):
            response = self.client.post(url, {}, format='json', **as_actor('FULFILLER', fulfiller_id))
            self.assertEqual(response.status_code, status.HTTP_201_CREATED)
            self.assertEqual(response.data['fulfiller_id'], fulfiller_id)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.ACCEPTED)
        self.assertEqual(self.order.accepted_slots, 3)

        response = self.client.post(url, {}, format='json', **as_actor('FULFILLER', 'f4'))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'slot_unavailable')
        self.assertEqual(response.data['reason'], 'order_not_reservable')
        self.assertEqual(Assignment.objects.filter(order=self.order).count(), 3)

    def test_accept_twice_conflicts(self):
        url = reverse('order-accept', args=[self.order.pk])
        self.client.post(url, {}, format='json', **as_actor('FULFILLER', 'f1'))
        response = self.client.post(url, {}, format='json', **as_actor('FULFILLER', 'f1'))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['reason'], 'already_assigned')
        self.order.refresh_from_db()
        self.assertEqual(self.order.accepted_slots, 1)

    def test_accept_with_windows(self):
        response = self.client.post(
            reverse('order-accept', args=[self.order.pk]),
            {'pickup_window_start': '2026-11-02T06:00:00Z', 'pickup_window_end': '2026-11-02T10:00:00Z'},
            format='json',
            **as_actor('FULFILLER', 'f1'),
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNotNone(Assignment.objects.get().pickup_window_start)

    def test_admin_cannot_accept(self):
        response = self.client.post(
            reverse('order-accept', args=[self.order.pk]), {}, format='json', **as_actor('ADMIN', 'ops'),
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_requester_cannot_take_a_slot(self):
        url = reverse('order-accept', args=[self.order.pk])
        for requester_id in ('req-1', 'someone-else'):
            response = self.client.post(url, {}, format='json', **as_actor('REQUESTER', requester_id))
            self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
            self.assertEqual(response.data['code'], 'forbidden_for_role')

        self.assertFalse(Assignment.objects.filter(order=self.order).exists())
        self.order.refresh_from_db()
        self.assertEqual(self.order.accepted_slots, 0)

    def test_accept_unknown_order(self):
        response = self.client.post(
            reverse('order-accept', args=[999999]), {}, format='json', **as_actor('FULFILLER', 'f1'),
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_transition_cancel(self):
        url = reverse('order-transition', args=[self.order.pk])

        response = self.client.post(url, {'status': 'CANCELLED'}, format='json', **as_actor('FULFILLER', 'f1'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(url, {'status': 'CANCELLED'}, format='json', **as_actor('REQUESTER', 'req-1'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], OrderStatus.CANCELLED)
        self.assertEqual(response.data['status_label'], 'Cancelled')

    def test_illegal_transition_uses_labels(self):
        url = reverse('order-transition', args=[self.order.pk])
        response = self.client.post(url, {'status': 'COMPLETED'}, format='json', **as_actor('REQUESTER', 'req-1'))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'illegal_transition')
        self.assertNotIn('COMPLETED', response.data['error'])
        self.assertNotIn('OPEN', response.data['error'])

    def test_dispatch(self):
        url = reverse('order-dispatch', args=[self.order.pk])
        response = self.client.post(url, {'action': 'ACCEPT'}, format='json', **as_actor('FULFILLER', 'f1'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['accepted_slots'], 1)

        response = self.client.post(
            url, {'action': 'PROPOSE', 'payload': {'proposed_price': '1900'}}, format='json',
            **as_actor('FULFILLER', 'f2'),
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], OrderStatus.IN_NEGOTIATION)

    def test_dispatch_errors(self):
        url = reverse('order-dispatch', args=[self.order.pk])

        response = self.client.post(url, {'action': 'PROPOSE'}, format='json', **as_actor('FULFILLER', 'f1'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_request')

        response = self.client.post(url, {'action': 'CHAT'}, format='json', **as_actor('FULFILLER', 'f1'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'illegal_transition')

        response = self.client.post(
            reverse('order-dispatch', args=[999999]), {'action': 'CANCEL'}, format='json',
            **as_actor('REQUESTER', 'req-1'),
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_compliance(self):
        response = self.client.get(reverse('order-compliance', args=[self.order.pk]))
        self.assertEqual(response.data['missing_documents'], ['invoice'])

        Order.objects.filter(pk=self.order.pk).update(fiscal_documents={'invoice': True})
        response = self.client.get(reverse('order-compliance', args=[self.order.pk]))
        self.assertEqual(response.data['missing_documents'], [])
        self.assertEqual(response.data['notes'], [])


class ProposalAPITests(APITestCase):
    def setUp(self):
        self.order = Order.objects.create(
            requester_id='req-1',
            required_slots=1,
            pricing_mode=PricingMode.FIXED,
            fixed_amount=Decimal('2500.00'),
        )

    def propose(self, fulfiller_id, price):
        return self.client.post(
            reverse('proposal-list'),
            {'order': self.order.pk, 'proposed_price': price, 'message': 'Available Monday'},
            format='json',
            **as_actor('FULFILLER', fulfiller_id),
        )

    def test_submit_and_accept(self):
        response = self.propose('f1', '2300.00')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], ProposalStatus.PENDING)
        proposal_id = response.data['id']

        response = self.client.post(
            reverse('proposal-accept', args=[proposal_id]), format='json', **as_actor('REQUESTER', 'req-1'),
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], ProposalStatus.ACCEPTED)
        self.assertIsNotNone(response.data['assignment'])

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.ACCEPTED)
        self.assertEqual(Assignment.objects.get().agreed_price, Decimal('2300.00'))

    def test_counter_and_revise(self):
        proposal_id = self.propose('f1', '2300.00').data['id']

        response = self.client.post(
            reverse('proposal-counter', args=[proposal_id]), {'price': '2100.00'}, format='json',
            **as_actor('REQUESTER', 'req-1'),
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['current_price'], '2100.00')

        response = self.client.post(
            reverse('proposal-revise', args=[proposal_id]), {'price': '2200.00', 'message': 'Final offer'},
            format='json', **as_actor('FULFILLER', 'f1'),
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], ProposalStatus.PENDING)
        self.assertEqual(response.data['current_price'], '2200.00')

    def test_requester_cannot_submit(self):
        response = self.client.post(
            reverse('proposal-list'), {'order': self.order.pk, 'proposed_price': '2000'}, format='json',
            **as_actor('REQUESTER', 'req-1'),
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_submit_validation(self):
        response = self.client.post(
            reverse('proposal-list'), {'proposed_price': '2000'}, format='json', **as_actor('FULFILLER', 'f1'),
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.propose('f1', '-5')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_request')

    def test_visibility(self):
        self.propose('f1', '2300.00')
        self.propose('f2', '2400.00')

        own = self.client.get(reverse('proposal-list'), **as_actor('FULFILLER', 'f1'))
        self.assertEqual([row['fulfiller_id'] for row in own.data['results']], ['f1'])

        requester = self.client.get(reverse('proposal-list'), **as_actor('REQUESTER', 'req-1'))
        self.assertEqual(requester.data['count'], 2)

        stranger = self.client.get(reverse('proposal-list'), **as_actor('REQUESTER', 'req-2'))
        self.assertEqual(stranger.data['count'], 0)

        anonymous = self.client.get(reverse('proposal-list'))
        self.assertEqual(anonymous.data['count'], 0)

        per_order = self.client.get(reverse('order-proposals', args=[self.order.pk]), **as_actor('FULFILLER', 'f2'))
        self.assertEqual([row['fulfiller_id'] for row in per_order.data], ['f2'])

    def test_reject(self):
        proposal_id = self.propose('f1', '2300.00').data['id']
        response = self.client.post(
            reverse('proposal-reject', args=[proposal_id]), format='json', **as_actor('REQUESTER', 'req-1'),
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Proposal.objects.get().status, ProposalStatus.REJECTED)
