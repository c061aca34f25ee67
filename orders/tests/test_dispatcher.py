from decimal import Decimal

from django.test import TestCase

from assignment.models import Assignment, TripProgress
from orders.models import Order, Proposal
from orders.services.dispatcher import dispatch_action
from workflow.core.statuses import Action, LegStatus, OrderStatus, PricingMode, ProposalStatus, Role
from workflow.exceptions import ForbiddenForRole, IllegalTransition


class DispatchActionTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(
            requester_id='req-1',
            required_slots=1,
            pricing_mode=PricingMode.PER_WEIGHT,
            unit_rate=Decimal('120'),
            weight_kg=Decimal('20000'),
        )

    def accept(self, fulfiller_id='f1'):
        return dispatch_action(self.order.pk, Action.ACCEPT, actor_role=Role.FULFILLER, actor_id=fulfiller_id)

    def test_accept_reserves_a_slot(self):
        order = self.accept()
        self.assertEqual(order.status, OrderStatus.ACCEPTED)
        self.assertEqual(order.accepted_slots, 1)
        assignment = Assignment.objects.get(order=self.order)
        self.assertEqual(assignment.agreed_price, Decimal('2400.00'))

    def test_requester_accept_is_forbidden(self):
        with self.assertRaises(ForbiddenForRole):
            dispatch_action(self.order.pk, Action.ACCEPT, actor_role=Role.REQUESTER, actor_id='req-1')
        self.assertFalse(Assignment.objects.filter(order=self.order).exists())

    def test_propose(self):
        order = dispatch_action(
            self.order.pk, 'propose', actor_role='fulfiller', actor_id='f1',
            payload={'proposed_price': '2300', 'message': 'Can load tomorrow'},
        )
        self.assertEqual(order.status, OrderStatus.IN_NEGOTIATION)
        self.assertEqual(Proposal.objects.get().message, 'Can load tomorrow')

    def test_propose_requires_price(self):
        with self.assertRaises(ValueError):
            dispatch_action(self.order.pk, Action.PROPOSE, actor_role=Role.FULFILLER, actor_id='f1')

    def test_cancel(self):
        order = dispatch_action(self.order.pk, Action.CANCEL, actor_role=Role.REQUESTER, actor_id='req-1')
        self.assertEqual(order.status, OrderStatus.CANCELLED)

    def test_advance_walks_the_leg(self):
        self.accept()
        order = dispatch_action(self.order.pk, Action.ADVANCE, actor_role=Role.FULFILLER, actor_id='f1')
        self.assertEqual(order.status, OrderStatus.LOADING)

        dispatch_action(self.order.pk, Action.ADVANCE, actor_role=Role.FULFILLER, actor_id='f1')
        order = dispatch_action(self.order.pk, Action.ADVANCE, actor_role=Role.FULFILLER, actor_id='f1')
        self.assertEqual(order.status, OrderStatus.IN_TRANSIT)

        # Arrival is reported, not advanced
        with self.assertRaises(IllegalTransition):
            dispatch_action(self.order.pk, Action.ADVANCE, actor_role=Role.FULFILLER, actor_id='f1')

        order = dispatch_action(self.order.pk, Action.REPORT_DELIVERY, actor_role=Role.FULFILLER, actor_id='f1')
        self.assertEqual(order.status, OrderStatus.DELIVERED_PENDING_CONFIRMATION)
        progress = TripProgress.objects.get(order=self.order, fulfiller_id='f1')
        self.assertEqual(progress.current_status, LegStatus.DELIVERED)

        order = dispatch_action(self.order.pk, Action.CONFIRM_DELIVERY, actor_role=Role.REQUESTER, actor_id='req-1')
        self.assertEqual(order.status, OrderStatus.COMPLETED)

    def test_advance_without_a_leg(self):
        self.accept()
        with self.assertRaises(IllegalTransition):
            dispatch_action(self.order.pk, Action.ADVANCE, actor_role=Role.FULFILLER, actor_id='f2')

    def test_release_own_slot(self):
        self.accept()
        order = dispatch_action(self.order.pk, Action.RELEASE_SLOT, actor_role=Role.FULFILLER, actor_id='f1')
        self.assertEqual(order.status, OrderStatus.OPEN)
        self.assertEqual(order.accepted_slots, 0)
        self.assertEqual(Assignment.objects.get().status, LegStatus.CANCELLED)

    def test_requester_release_needs_assignment(self):
        self.accept()
        with self.assertRaises(ValueError):
            dispatch_action(self.order.pk, Action.RELEASE_SLOT, actor_role=Role.REQUESTER, actor_id='req-1')

        assignment = Assignment.objects.get()
        order = dispatch_action(
            self.order.pk, Action.RELEASE_SLOT, actor_role=Role.REQUESTER, actor_id='req-1',
            payload={'assignment_id': assignment.pk, 'reason': 'rejected'},
        )
        self.assertEqual(order.status, OrderStatus.OPEN)
        assignment.refresh_from_db()
        self.assertEqual(assignment.status, LegStatus.REJECTED)

    def test_proposal_actions(self):
        proposal = Proposal.objects.create(order=self.order, fulfiller_id='f1', proposed_price=Decimal('2300'))
        Order.objects.filter(pk=self.order.pk).update(status=OrderStatus.IN_NEGOTIATION)

        dispatch_action(
            self.order.pk, Action.COUNTER_PROPOSE, actor_role=Role.REQUESTER, actor_id='req-1',
            payload={'proposal_id': proposal.pk, 'counter_price': '2200'},
        )
        proposal.refresh_from_db()
        self.assertEqual(proposal.status, ProposalStatus.COUNTER_PROPOSED)

        order = dispatch_action(
            self.order.pk, Action.ACCEPT_PROPOSAL, actor_role=Role.FULFILLER, actor_id='f1',
            payload={'proposal_id': proposal.pk},
        )
        self.assertEqual(order.status, OrderStatus.ACCEPTED)
        self.assertEqual(Assignment.objects.get().agreed_price, Decimal('2200.00'))

    def test_role_is_still_checked(self):
        with self.assertRaises(ForbiddenForRole):
            dispatch_action(self.order.pk, Action.CANCEL, actor_role=Role.FULFILLER, actor_id='f1')

    def test_informational_actions_are_not_dispatched(self):
        with self.assertRaises(IllegalTransition) as ctx:
            dispatch_action(self.order.pk, Action.VIEW_DETAILS, actor_role=Role.REQUESTER, actor_id='req-1')
        self.assertEqual(ctx.exception.action, Action.VIEW_DETAILS)

    def test_unknown_action(self):
        with self.assertRaises(IllegalTransition) as ctx:
            dispatch_action(self.order.pk, 'teleport', actor_role=Role.REQUESTER, actor_id='req-1')
        self.assertIsNone(ctx.exception.action)

    def test_unknown_order(self):
        with self.assertRaises(Order.DoesNotExist):
            dispatch_action(999999, Action.CANCEL, actor_role=Role.REQUESTER, actor_id='req-1')
