from django.test import SimpleTestCase

from workflow.core.actions import check_state_consistency, query_action_matrix
from workflow.core.statuses import Action, LegStatus, OrderStatus, Role, Scope


class ConsistencyCheckTests(SimpleTestCase):
    def test_consistent_defaults(self):
        self.assertTrue(check_state_consistency(OrderStatus.OPEN).is_consistent)

    def test_over_accepted_slots(self):
        check = check_state_consistency(OrderStatus.ACCEPTED, required_slots=2, accepted_slots=3)
        self.assertFalse(check.is_consistent)
        self.assertEqual(check.code, 'state_inconsistent')

    def test_progress_ahead_of_assignment_is_normal(self):
        check = check_state_consistency(
            OrderStatus.IN_TRANSIT,
            assignment_status=LegStatus.ACCEPTED,
            progress_status=LegStatus.IN_TRANSIT,
        )
        self.assertTrue(check.is_consistent)

    def test_assignment_far_ahead_of_progress(self):
        check = check_state_consistency(
            OrderStatus.LOADED,
            assignment_status=LegStatus.LOADED,
            progress_status=LegStatus.ACCEPTED,
        )
        self.assertFalse(check.is_consistent)

    def test_completed_order_with_moving_leg(self):
        check = check_state_consistency(OrderStatus.COMPLETED, assignment_status=LegStatus.IN_TRANSIT)
        self.assertFalse(check.is_consistent)


class ActionMatrixTests(SimpleTestCase):
    def test_fulfiller_on_open_order(self):
        matrix = query_action_matrix(OrderStatus.OPEN, Role.FULFILLER)
        self.assertFalse(matrix.safe_mode)
        self.assertEqual(matrix.action_ids[0], Action.ACCEPT)
        self.assertIn(Action.PROPOSE, matrix.action_ids)
        self.assertIn(Action.VIEW_DETAILS, matrix.action_ids)

    def test_fulfiller_holding_slot_cannot_accept_again(self):
        matrix = query_action_matrix(OrderStatus.OPEN, Role.FULFILLER, leg_status=LegStatus.ACCEPTED)
        self.assertNotIn(Action.ACCEPT, matrix.action_ids)
        self.assertNotIn(Action.PROPOSE, matrix.action_ids)
        self.assertIn(Action.ADVANCE, matrix.action_ids)

    def test_fulfiller_moves_own_leg(self):
        matrix = query_action_matrix(OrderStatus.ACCEPTED, Role.FULFILLER, leg_status=LegStatus.ACCEPTED)
        self.assertEqual(matrix.action_ids[0], Action.ADVANCE)
        self.assertEqual(matrix.action_ids[-1], Action.RELEASE_SLOT)
        advance = matrix.actions[0]
        self.assertEqual(advance.scope, Scope.LEG)
        self.assertEqual(advance.target_status, LegStatus.LOADING)
        self.assertTrue(advance.primary)
        self.assertTrue(matrix.actions[-1].destructive)

    def test_fulfiller_in_transit_reports_delivery(self):
        matrix = query_action_matrix(OrderStatus.IN_TRANSIT, Role.FULFILLER, leg_status=LegStatus.IN_TRANSIT)
        self.assertIn(Action.REPORT_DELIVERY, matrix.action_ids)
        self.assertIn(Action.TRACK_LOCATION, matrix.action_ids)
        self.assertNotIn(Action.RELEASE_SLOT, matrix.action_ids)

    def test_fulfiller_without_leg_gets_no_order_movements(self):
        matrix = query_action_matrix(OrderStatus.LOADING, Role.FULFILLER)
        self.assertNotIn(Action.ADVANCE, matrix.action_ids)

    def test_requester_never_accepts_directly(self):
        matrix = query_action_matrix(OrderStatus.OPEN, Role.REQUESTER)
        self.assertNotIn(Action.ACCEPT, matrix.action_ids)
        self.assertEqual(matrix.action_ids[-1], Action.CANCEL)

    def test_requester_confirms_reported_delivery(self):
        matrix = query_action_matrix(OrderStatus.DELIVERED_PENDING_CONFIRMATION, Role.REQUESTER)
        self.assertEqual(matrix.action_ids[0], Action.CONFIRM_DELIVERY)
        self.assertIn(Action.DISPUTE, matrix.action_ids)
        self.assertNotIn(Action.AUTO_CONFIRM, matrix.action_ids)

    def test_labels_are_approved_text(self):
        matrix = query_action_matrix(OrderStatus.OPEN, Role.FULFILLER)
        labels = {definition.action: definition.label for definition in matrix.actions}
        self.assertEqual(labels[Action.ACCEPT], 'Accept freight')

    def test_safe_mode_offers_read_only_actions(self):
        matrix = query_action_matrix(
            OrderStatus.ACCEPTED, Role.REQUESTER, required_slots=2, accepted_slots=3,
        )
        self.assertTrue(matrix.safe_mode)
        self.assertEqual(matrix.action_ids, [Action.VIEW_DETAILS])
        self.assertEqual(matrix.notice, 'This freight is being synchronised. Refresh and try again.')

    def test_guest(self):
        self.assertEqual(query_action_matrix(OrderStatus.OPEN, Role.GUEST).action_ids, [Action.VIEW_DETAILS])
        self.assertEqual(query_action_matrix(OrderStatus.ACCEPTED, Role.GUEST).action_ids, [])
