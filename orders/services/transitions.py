"""
Generic order-level transitions.

Used by actor requests (cancel, confirm delivery, complete, moderation) and
by the delivery confirmation sweep. Edges owned by the capacity ledger or by
the leg roll-up are refused here, so accepted_slots and leg progress can
never be bypassed.
"""
import logging
from typing import List

from django.db import transaction
from django.utils import timezone

from assignment.models import Assignment, TripProgress
from assignment.services.status_resolver import resolve_status
from orders.models import Order, Proposal
from workflow.core.statuses import LegStatus, OrderStatus, ProposalStatus, Role, Scope, normalize
from workflow.core.transitions import DRIVER_ACTOR, assert_valid_transition
from workflow.exceptions import ForbiddenForRole, IllegalTransition, WorkflowError

logger = logging.getLogger(__name__)

# Leg status each active leg moves to when the order takes the edge (from, to)
LEG_CASCADES = {
    OrderStatus.CANCELLED: LegStatus.CANCELLED,
    OrderStatus.REJECTED: LegStatus.REJECTED,
    OrderStatus.COMPLETED: LegStatus.COMPLETED,
}
CLOSES_PROPOSALS = frozenset({
    OrderStatus.CANCELLED,
    OrderStatus.REJECTED,
})


def _assert_order_owner(order, actor_role, actor_id):
    if actor_role == Role.REQUESTER and str(actor_id) != order.requester_id:
        raise ForbiddenForRole(
            f"Requester {actor_id} does not own order {order.pk}",
            current_status=order.status,
            role=actor_role,
        )


def _move_leg(order, assignment, target, role, now):
    current = resolve_status(order.pk, assignment.fulfiller_id).status or assignment.status
    if current == target:
        return
    assert_valid_transition(current, target, role, Scope.LEG)
    assignment.status = target
    assignment.save(update_fields=['status', 'updated_at'])

    progress = TripProgress.objects.filter(order=order, fulfiller_id=assignment.fulfiller_id).first()
    if progress is not None:
        progress.current_status = target
        stamped = progress.stamp(target, now)
        progress.save(update_fields=['current_status', 'updated_at'] + ([stamped] if stamped else []))


def _cascade_to_legs(order, from_status, to_status, role):
    """Carry an order transition down to its active legs."""
    if from_status == OrderStatus.IN_TRANSIT and to_status == OrderStatus.DELIVERED:
        # Requester confirmed before every truck reported delivery
        leg_target = LegStatus.DELIVERED
    else:
        leg_target = LEG_CASCADES.get(to_status)
    if leg_target is None:
        return

    now = timezone.now()
    legs = Assignment.objects.active().select_for_update().filter(order=order)
    for assignment in legs:
        _move_leg(order, assignment, leg_target, role, now)


def _close_outstanding_proposals(order):
    closed = Proposal.objects.filter(
        order=order,
        status__in=[ProposalStatus.PENDING, ProposalStatus.COUNTER_PROPOSED],
    ).update(status=ProposalStatus.REJECTED, updated_at=timezone.now())
    if closed:
        logger.info(f"Closed {closed} outstanding proposal(s) on order {order.pk}")


def transition_order(order_id, to_status, *, actor_role, actor_id=None) -> Order:
    """
    Move an order to ``to_status`` on behalf of ``actor_role``.

    Raises:
        IllegalTransition: no such edge, or the edge belongs to the capacity
            ledger or the leg roll-up.
        ForbiddenForRole: wrong role, or a requester acting on another
            requester's order.
    """
    to_status = normalize(to_status)
    actor_role = normalize(actor_role)

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)
        _assert_order_owner(order, actor_role, actor_id)

        from_status = order.status
        edge = assert_valid_transition(from_status, to_status, actor_role)
        if edge.driver != DRIVER_ACTOR:
            logger.warning(f"Order {order.pk} {from_status} -> {to_status} must go through the {edge.driver} path")
            raise IllegalTransition(
                f"Order transition {from_status} -> {to_status} is driven by {edge.driver}",
                current_status=from_status,
                target_status=to_status,
                action=edge.action,
                role=actor_role,
            )

        _cascade_to_legs(order, from_status, to_status, actor_role)
        if to_status in CLOSES_PROPOSALS or (from_status, to_status) == (OrderStatus.IN_NEGOTIATION, OrderStatus.OPEN):
            _close_outstanding_proposals(order)

        order.status = to_status
        order.save(update_fields=['status', 'updated_at'])

    logger.info(f"Order {order.pk} moved {from_status} -> {to_status} by {actor_role}")
    return order


def sweep_pending_confirmations(now=None) -> List[int]:
    """
    Auto-confirm reported deliveries whose confirmation window has passed.

    Runs through ``transition_order`` with the sweep role, which is legal
    only on DELIVERED_PENDING_CONFIRMATION -> DELIVERED. Returns the ids of
    the confirmed orders.
    """
    now = now or timezone.now()
    confirmed = []
    candidates = Order.objects.filter(status=OrderStatus.DELIVERED_PENDING_CONFIRMATION).order_by('pk')
    for order in candidates:
        deadline = order.confirmation_deadline()
        if deadline is None or deadline > now:
            continue
        try:
            transition_order(order.pk, OrderStatus.DELIVERED, actor_role=Role.SYSTEM_SWEEP)
        except WorkflowError as e:
            # The requester confirmed or disputed between the read and the lock
            logger.info(f"Sweep skipped order {order.pk}: {e}")
            continue
        confirmed.append(order.pk)

    if confirmed:
        logger.info(f"Delivery confirmation sweep confirmed {len(confirmed)} order(s): {confirmed}")
    return confirmed
