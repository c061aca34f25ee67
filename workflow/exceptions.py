"""
Domain errors for the freight workflow.

Capacity and transition errors gate state with financial and legal weight:
services raise them and never swallow them. An unknown leg status is a value
(see ``assignment.services.status_resolver``), not an error.
"""


class WorkflowError(Exception):
    """Base class for every error raised by the freight workflow."""
    code = 'workflow_error'

    def __init__(self, message, current_status=None, target_status=None, action=None, role=None):
        super().__init__(message)
        self.message = message
        self.current_status = current_status
        self.target_status = target_status
        self.action = action
        self.role = role

    @property
    def user_message(self):
        """Translated, label-only text safe to show to end users."""
        from workflow.core.labels import blocked_action_message
        return blocked_action_message(
            self.current_status,
            action=self.action,
            target_status=self.target_status,
        )

    def as_dict(self):
        return {'error': str(self.user_message), 'code': self.code}


class SlotUnavailable(WorkflowError):
    """
    No truck slot could be reserved.

    Recoverable: the caller should refresh availability. It is the expected
    outcome of losing a race for the last slot, not a defect.
    """
    code = 'slot_unavailable'

    CAPACITY_EXHAUSTED = 'capacity_exhausted'
    ORDER_NOT_RESERVABLE = 'order_not_reservable'
    ALREADY_ASSIGNED = 'already_assigned'
    CONCURRENT_UPDATE = 'concurrent_update'
    NOT_RELEASABLE = 'not_releasable'

    def __init__(self, order_id, reason, current_status=None):
        super().__init__(
            f"No slot available on order {order_id}: {reason}",
            current_status=current_status,
        )
        self.order_id = order_id
        self.reason = reason

    @property
    def user_message(self):
        from workflow.core.labels import slot_unavailable_message
        return slot_unavailable_message(self.reason)

    def as_dict(self):
        data = super().as_dict()
        data['reason'] = self.reason
        return data


class IllegalTransition(WorkflowError):
    """No edge from the current status to the target exists for any role."""
    code = 'illegal_transition'


class ForbiddenForRole(WorkflowError):
    """The edge exists, but not for the acting role (or not for this actor)."""
    code = 'forbidden_for_role'
