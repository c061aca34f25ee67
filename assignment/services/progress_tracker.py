"""
Leg progress: the write path for a fulfiller moving their own truck.

Every movement is checked against the leg transition table, written to the
trip progress record (created lazily on the first movement) and then rolled
up into the order status. The order follows its slowest active leg, so a
multi-truck freight is only "In transit" once every truck is.
"""
import logging

from django.db import transaction
from django.utils import timezone

from assignment.models import Assignment, TripProgress
from assignment.services.status_resolver import resolve_active_legs, resolve_status
from orders.models import Order
from workflow.core.statuses import (
    LEG_INACTIVE_STATUSES,
    LEG_WORKFLOW,
    Action,
    LegStatus,
    OrderStatus,
    Role,
    Scope,
    leg_rank,
    normalize,
    order_rank,
)
from workflow.core.transitions import DRIVER_ACTOR, DRIVER_LEGS, assert_valid_transition, next_step
from workflow.exceptions import ForbiddenForRole, IllegalTransition

logger = logging.getLogger(__name__)

# Order status implied by the slowest active leg
ROLLUP_TARGETS = {
    LegStatus.LOADING: OrderStatus.LOADING,
    LegStatus.LOADED: OrderStatus.LOADED,
    LegStatus.IN_TRANSIT: OrderStatus.IN_TRANSIT,
    LegStatus.DELIVERED: OrderStatus.DELIVERED_PENDING_CONFIRMATION,
    LegStatus.COMPLETED: OrderStatus.DELIVERED_PENDING_CONFIRMATION,
}
ROLLUP_ORDER_STATUSES = frozenset({
    OrderStatus.ACCEPTED,
    OrderStatus.LOADING,
    OrderStatus.LOADED,
    OrderStatus.IN_TRANSIT,
})


def _assert_leg_actor(order, fulfiller_id, actor_role, actor_id):
    if actor_role == Role.FULFILLER and str(actor_id) != str(fulfiller_id):
        raise ForbiddenForRole(
            f"Fulfiller {actor_id} may not move the leg of {fulfiller_id}",
            action=Action.ADVANCE,
            role=actor_role,
        )
    if actor_role == Role.REQUESTER and str(actor_id) != str(order.requester_id):
        raise ForbiddenForRole(
            f"Requester {actor_id} does not own order {order.pk}",
            role=actor_role,
        )


def roll_up_order(order):
    """
    Advance ``order`` to match its slowest active leg.

    Must run inside the transaction that locked the order row. Walks one
    guarded edge at a time and never moves the order backwards.
    """
    if order.status not in ROLLUP_ORDER_STATUSES:
        return order

    legs = resolve_active_legs(order.pk)
    ranks = [leg_rank(leg.status) for leg in legs.values() if leg_rank(leg.status) != -1]
    if not ranks:
        return order

    slowest = LEG_WORKFLOW[min(ranks)]
    target = ROLLUP_TARGETS.get(slowest)
    if target is None or order_rank(order.status) >= order_rank(target):
        return order

    previous = order.status
    update_fields = ['status', 'updated_at']
    while order_rank(order.status) < order_rank(target):
        step = next_step(order.status, Scope.ORDER, driver=DRIVER_LEGS)
        if step is None:
            break
        assert_valid_transition(order.status, step, Role.FULFILLER)
        order.status = step
        if step == OrderStatus.DELIVERED_PENDING_CONFIRMATION:
            order.delivery_reported_at = timezone.now()
            update_fields.append('delivery_reported_at')

    order.save(update_fields=update_fields)
    logger.info(f"Order {order.pk} rolled up from {previous} to {order.status} (slowest leg {slowest})")
    return order


def record_progress(order_id, fulfiller_id, to_status, *, actor_role=Role.FULFILLER, actor_id=None, notes=''):
    """
    Move one fulfiller's leg to ``to_status``.

    Reposting the current status is a no-op. ``Role.ADMIN`` may set any leg
    status (corrections); every other role is held to the leg table and to
    actor-driven edges only. Slot releases go through the capacity ledger.

    Returns:
        The TripProgress record, or None for a no-op on a leg without one.
    """
    fulfiller_id = str(fulfiller_id)
    to_status = normalize(to_status)
    actor_role = normalize(actor_role)

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)
        assignment = (
            Assignment.objects.active()
            .select_for_update()
            .filter(order=order, fulfiller_id=fulfiller_id)
            .first()
        )
        if assignment is None:
            raise IllegalTransition(
                f"Fulfiller {fulfiller_id} holds no slot on order {order.pk}",
                target_status=to_status,
                role=actor_role,
            )

        current = resolve_status(order.pk, fulfiller_id)
        progress = TripProgress.objects.select_for_update().filter(order=order, fulfiller_id=fulfiller_id).first()

        if current.status == to_status:
            logger.info(f"Progress repost ignored for {fulfiller_id} on order {order.pk}: already {to_status}")
            return progress

        if actor_role == Role.ADMIN:
            # Slot releases must keep accepted_slots in step, so they never go through here
            if to_status not in LegStatus.values or to_status in LEG_INACTIVE_STATUSES:
                raise IllegalTransition(
                    f"Unknown leg status {to_status}",
                    current_status=current.status,
                    target_status=to_status,
                    role=actor_role,
                )
            logger.warning(
                f"Admin {actor_id} overrode leg of {fulfiller_id} on order {order.pk}: {current.status} -> {to_status}"
            )
        else:
            _assert_leg_actor(order, fulfiller_id, actor_role, actor_id)
            edge = assert_valid_transition(current.status, to_status, actor_role, Scope.LEG)
            if edge.driver != DRIVER_ACTOR:
                raise IllegalTransition(
                    f"Leg {current.status} -> {to_status} is not a progress movement",
                    current_status=current.status,
                    target_status=to_status,
                    action=edge.action,
                    role=actor_role,
                )

        now = timezone.now()
        if progress is None:
            progress = TripProgress(order=order, fulfiller_id=fulfiller_id, current_status=to_status)
            progress.stamp(LegStatus.ACCEPTED, assignment.created_at)
        progress.current_status = to_status
        progress.stamp(to_status, now)
        if notes:
            progress.notes = f"{progress.notes}\n{notes}".strip()
        progress.save()

        logger.info(f"Leg of {fulfiller_id} on order {order.pk} moved {current.status} -> {to_status}")
        roll_up_order(order)

    return progress
