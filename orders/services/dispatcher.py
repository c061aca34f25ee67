"""
Maps an action identifier from the action matrix to the service that
performs it. Offered actions are advisory: every handler goes back through
the transition guard, so dispatching a stale action fails cleanly.
"""
import logging

from assignment.models import Assignment
from assignment.services.capacity_ledger import release_slot, reserve_slot
from assignment.services.progress_tracker import record_progress
from assignment.services.status_resolver import resolve_status
from orders.models import Order
from orders.services import proposals
from orders.services.transitions import transition_order
from workflow.core.statuses import Action, Role, normalize
from workflow.core.transitions import LEG_TRANSITIONS, ORDER_TRANSITIONS
from workflow.exceptions import IllegalTransition

logger = logging.getLogger(__name__)

# Order actions taken through transition_order; the target comes from the table
ORDER_EDGE_ACTIONS = frozenset({
    Action.CANCEL,
    Action.REJECT,
    Action.REOPEN,
    Action.CONFIRM_DELIVERY,
    Action.COMPLETE,
    Action.DISPUTE,
})
LEG_EDGE_ACTIONS = frozenset({Action.ADVANCE, Action.REPORT_DELIVERY})


def _target_for(table, status, action):
    for (source, target), edge in table.items():
        if source == status and edge.action == action:
            return target
    raise IllegalTransition(
        f"Action {action} is not available in {status}",
        current_status=status,
        action=action,
    )


def _require(payload, key):
    value = payload.get(key)
    if value in (None, ''):
        raise ValueError(f"'{key}' is required for this action")
    return value


def _dispatch_order_edge(order, action, actor_role, actor_id, payload):
    target = _target_for(ORDER_TRANSITIONS, order.status, action)
    return transition_order(order.pk, target, actor_role=actor_role, actor_id=actor_id)


def _dispatch_leg_edge(order, action, actor_role, actor_id, payload):
    fulfiller_id = payload.get('fulfiller_id') or actor_id
    current = resolve_status(order.pk, fulfiller_id)
    if not current.is_known:
        raise IllegalTransition(
            f"No leg for {fulfiller_id} on order {order.pk}",
            current_status=order.status,
            action=action,
            role=actor_role,
        )
    target = _target_for(LEG_TRANSITIONS, current.status, action)
    record_progress(order.pk, fulfiller_id, target, actor_role=actor_role, actor_id=actor_id,
                    notes=payload.get('notes', ''))


def _dispatch_accept(order, action, actor_role, actor_id, payload):
    reserve_slot(order.pk, actor_id, actor_role=actor_role)


def _dispatch_propose(order, action, actor_role, actor_id, payload):
    proposals.submit_proposal(
        order.pk, actor_id, _require(payload, 'proposed_price'),
        actor_role=actor_role, message=payload.get('message', ''),
    )


def _dispatch_release(order, action, actor_role, actor_id, payload):
    assignment_id = payload.get('assignment_id')
    if assignment_id is None:
        if normalize(actor_role) != Role.FULFILLER:
            raise ValueError("'assignment_id' is required for this action")
        assignment = Assignment.objects.active().filter(order=order, fulfiller_id=actor_id).first()
        if assignment is None:
            raise IllegalTransition(
                f"{actor_id} holds no slot on order {order.pk}",
                current_status=order.status,
                action=action,
                role=actor_role,
            )
        assignment_id = assignment.pk
    release_slot(assignment_id, payload.get('reason', 'cancelled'), actor_role=actor_role, actor_id=actor_id)


def _dispatch_proposal(order, action, actor_role, actor_id, payload):
    proposal_id = _require(payload, 'proposal_id')
    if action == Action.ACCEPT_PROPOSAL:
        proposals.accept_proposal(proposal_id, actor_role=actor_role, actor_id=actor_id)
    elif action == Action.REJECT_PROPOSAL:
        proposals.reject_proposal(proposal_id, actor_role=actor_role, actor_id=actor_id)
    else:
        proposals.counter_proposal(
            proposal_id, _require(payload, 'counter_price'), actor_role=actor_role, actor_id=actor_id,
        )


HANDLERS = {
    Action.ACCEPT: _dispatch_accept,
    Action.PROPOSE: _dispatch_propose,
    Action.RELEASE_SLOT: _dispatch_release,
    Action.ACCEPT_PROPOSAL: _dispatch_proposal,
    Action.REJECT_PROPOSAL: _dispatch_proposal,
    Action.COUNTER_PROPOSE: _dispatch_proposal,
}
HANDLERS.update({action: _dispatch_order_edge for action in ORDER_EDGE_ACTIONS})
HANDLERS.update({action: _dispatch_leg_edge for action in LEG_EDGE_ACTIONS})


def dispatch_action(order_id, action, *, actor_role, actor_id=None, payload=None) -> Order:
    """
    Run ``action`` on ``order_id`` for the actor and return the refreshed order.

    Informational actions (details, chat, tracking, rating) are served by
    other collaborators and are rejected here.
    """
    action = normalize(action)
    actor_role = normalize(actor_role)
    payload = payload or {}

    order = Order.objects.get(pk=order_id)
    handler = HANDLERS.get(action)
    if handler is None:
        raise IllegalTransition(
            f"Action {action or '<none>'} cannot be dispatched",
            current_status=order.status,
            action=action if action in Action.values else None,
            role=actor_role,
        )

    logger.info(f"Dispatching {action} on order {order.pk} for {actor_role} {actor_id}")
    handler(order, action, actor_role, actor_id, payload)
    order.refresh_from_db()
    return order
