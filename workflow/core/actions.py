"""
Action matrix for the presentation layer.

Turns the transition tables into an ordered list of controls for one viewer.
For a fulfiller the movement controls come from their own leg, not from the
order, since only the leg roll-up advances a multi-truck order.

When order, assignment and progress data disagree, the matrix goes into safe
mode: only read-only actions are offered until the data settles.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from workflow.core.labels import action_label, notice_label
from workflow.core.statuses import (
    LEG_INACTIVE_STATUSES,
    Action,
    LegStatus,
    OrderStatus,
    Role,
    Scope,
    leg_rank,
    normalize,
)
from workflow.core.transitions import (
    DRIVER_ORDER,
    get_allowed_actions,
    get_allowed_transitions,
)

logger = logging.getLogger(__name__)

DESTRUCTIVE_ACTIONS = frozenset({
    Action.CANCEL,
    Action.REJECT,
    Action.REJECT_PROPOSAL,
    Action.RELEASE_SLOT,
    Action.DISPUTE,
})
PRIMARY_ACTIONS = frozenset({
    Action.ACCEPT,
    Action.ACCEPT_PROPOSAL,
    Action.ADVANCE,
    Action.REPORT_DELIVERY,
    Action.CONFIRM_DELIVERY,
    Action.COMPLETE,
})
READ_ONLY_ACTIONS = frozenset({Action.VIEW_DETAILS})

# Order-scope actions a fulfiller only ever takes through their own leg
LEG_DRIVEN_ACTIONS = frozenset({Action.ADVANCE, Action.REPORT_DELIVERY, Action.RELEASE_SLOT})

_ACTION_POSITION = {value: index for index, value in enumerate(Action.values)}


@dataclass(frozen=True)
class ActionDefinition:
    action: str
    label: str
    scope: str = Scope.ORDER
    target_status: Optional[str] = None
    primary: bool = False
    destructive: bool = False


@dataclass(frozen=True)
class ConsistencyCheck:
    is_consistent: bool
    code: Optional[str] = None
    details: str = ''


@dataclass
class ActionMatrix:
    actions: List[ActionDefinition] = field(default_factory=list)
    safe_mode: bool = False
    notice: Optional[str] = None

    @property
    def action_ids(self):
        return [definition.action for definition in self.actions]


def check_state_consistency(order_status, assignment_status=None, progress_status=None,
                            required_slots=1, accepted_slots=0) -> ConsistencyCheck:
    """Detect data combinations that should never be acted upon."""
    order_status = normalize(order_status)
    assignment_status = normalize(assignment_status)
    progress_status = normalize(progress_status)

    if accepted_slots > required_slots:
        return ConsistencyCheck(
            False, 'state_inconsistent',
            f"accepted_slots({accepted_slots}) > required_slots({required_slots})",
        )

    if assignment_status and progress_status and assignment_status != progress_status:
        progress_index = leg_rank(progress_status)
        assignment_index = leg_rank(assignment_status)
        # Progress runs ahead of the assignment record; the reverse means lost writes
        if progress_index != -1 and assignment_index != -1 and assignment_index - progress_index > 1:
            return ConsistencyCheck(
                False, 'state_inconsistent',
                f"progress={progress_status} vs assignment={assignment_status}",
            )

    if order_status == OrderStatus.COMPLETED and assignment_status and assignment_status not in (
        LegStatus.COMPLETED, LegStatus.DELIVERED,
    ):
        return ConsistencyCheck(
            False, 'state_inconsistent',
            f"order=COMPLETED but assignment={assignment_status}",
        )

    return ConsistencyCheck(True)


def _target_for(action, status, role, scope):
    for edge in get_allowed_transitions(status, role, scope):
        if edge.action == action:
            return edge.target
    return None


def _definition(action, status, role, scope):
    return ActionDefinition(
        action=action,
        label=str(action_label(action)),
        scope=scope,
        target_status=_target_for(action, status, role, scope),
        primary=action in PRIMARY_ACTIONS,
        destructive=action in DESTRUCTIVE_ACTIONS,
    )


def _sort_key(definition):
    return (definition.destructive, not definition.primary, _ACTION_POSITION.get(definition.action, 99))


def _leg_actions(leg_status):
    """Actions the fulfiller may take on their own leg."""
    if not leg_status:
        return []
    actions = []
    for edge in get_allowed_transitions(leg_status, Role.FULFILLER, Scope.LEG):
        if edge.driver == DRIVER_ORDER:
            continue
        actions.append(_definition(edge.action, leg_status, Role.FULFILLER, Scope.LEG))
    return actions


def query_action_matrix(order_status, role, leg_status=None, assignment_status=None,
                        progress_status=None, required_slots=1, accepted_slots=0) -> ActionMatrix:
    """
    Ordered action definitions for ``role`` on an order in ``order_status``.

    ``leg_status`` is the viewer's resolved leg status (fulfillers only).
    ``assignment_status`` and ``progress_status`` feed the consistency check.
    """
    order_status = normalize(order_status)
    role = normalize(role)

    check = check_state_consistency(
        order_status,
        assignment_status=assignment_status,
        progress_status=progress_status,
        required_slots=required_slots,
        accepted_slots=accepted_slots,
    )
    if not check.is_consistent:
        logger.warning(f"Action matrix in safe mode for status {order_status}: {check.details}")
        allowed = get_allowed_actions(order_status, role) & READ_ONLY_ACTIONS
        return ActionMatrix(
            actions=[_definition(action, order_status, role, Scope.ORDER) for action in allowed],
            safe_mode=True,
            notice=str(notice_label(check.code)),
        )

    leg_status = normalize(leg_status)
    holds_slot = bool(leg_status) and leg_status not in LEG_INACTIVE_STATUSES
    definitions = {}
    for action in get_allowed_actions(order_status, role):
        if role == Role.FULFILLER and action in LEG_DRIVEN_ACTIONS:
            continue
        if role == Role.FULFILLER and holds_slot and action in (Action.ACCEPT, Action.PROPOSE):
            # Already holds a slot on this order
            continue
        if role == Role.REQUESTER and action == Action.ACCEPT:
            # Requesters accept through a proposal, never the order itself
            continue
        definitions[action] = _definition(action, order_status, role, Scope.ORDER)

    if role == Role.FULFILLER:
        for definition in _leg_actions(leg_status):
            definitions[definition.action] = definition

    return ActionMatrix(actions=sorted(definitions.values(), key=_sort_key))

