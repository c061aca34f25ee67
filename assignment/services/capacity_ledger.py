"""
Capacity ledger: reserves and releases truck slots on an order.

This is the only write-contention point in the workflow. A reservation locks
the order row, then increments ``accepted_slots`` with a conditional UPDATE
that only matches the counter and status it read (compare-and-swap), and
creates the assignment, all in one transaction. Two requests racing for the
last slot therefore always produce exactly one assignment and one
``SlotUnavailable``, even on backends without row locks.
"""
import logging

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from assignment.models import Assignment, TripProgress
from assignment.services.progress_tracker import roll_up_order
from assignment.services.status_resolver import resolve_active_legs, resolve_status
from orders.models import Order, Proposal
from orders.signals import capacity_changed
from workflow.core.pricing import PricingInputError, order_per_slot_price
from workflow.core.statuses import (
    PRE_PICKUP_LEG_STATUSES,
    RESERVABLE_ORDER_STATUSES,
    Action,
    LegStatus,
    OrderStatus,
    ProposalStatus,
    Role,
    Scope,
    normalize,
)
from workflow.core.transitions import DRIVER_RESERVATION, assert_valid_transition
from workflow.exceptions import ForbiddenForRole, SlotUnavailable

logger = logging.getLogger(__name__)

RELEASE_REASONS = {
    'cancelled': LegStatus.CANCELLED,
    'rejected': LegStatus.REJECTED,
}


def _notify_capacity_changed(order, reason):
    order_id = order.pk
    accepted_slots = order.accepted_slots
    required_slots = order.required_slots
    status = order.status
    transaction.on_commit(lambda: capacity_changed.send(
        sender=Order,
        order_id=order_id,
        accepted_slots=accepted_slots,
        required_slots=required_slots,
        status=status,
        reason=reason,
    ))


def _default_agreed_price(order):
    try:
        return order_per_slot_price(order)
    except PricingInputError as e:
        logger.warning(f"Order {order.pk} has incomplete pricing, slot reserved without agreed price: {e}")
        return None


def _reject_outstanding_proposals(order, keep=None):
    outstanding = Proposal.objects.select_for_update().filter(
        order=order,
        status__in=[ProposalStatus.PENDING, ProposalStatus.COUNTER_PROPOSED],
    )
    if keep is not None:
        outstanding = outstanding.exclude(pk=keep.pk)
    rejected = 0
    for proposal in outstanding:
        assert_valid_transition(proposal.status, ProposalStatus.REJECTED, Role.REQUESTER, Scope.PROPOSAL)
        proposal.status = ProposalStatus.REJECTED
        proposal.save(update_fields=['status', 'updated_at'])
        rejected += 1
    if rejected:
        logger.info(f"Rejected {rejected} outstanding proposal(s) on order {order.pk}")
    return rejected


def reserve_slot(order_id, fulfiller_id, *, actor_role=Role.FULFILLER, agreed_price=None,
                 pickup_window_start=None, pickup_window_end=None,
                 delivery_window_start=None, delivery_window_end=None,
                 proposal=None) -> Assignment:
    """
    Reserve one truck slot on ``order_id`` for ``fulfiller_id``.

    All or nothing: either the counter is incremented and an ACCEPTED
    assignment created, or ``SlotUnavailable`` is raised and nothing changes.
    Filling the last slot moves the order into ACCEPTED and rejects every
    other outstanding proposal.

    Raises:
        SlotUnavailable: the order is full, not taking trucks, already holds
            this fulfiller, or another reservation won the race.
        ForbiddenForRole: ``actor_role`` may not accept on this order. Only
            fulfillers reserve directly; a requester needs ``proposal``.
        Order.DoesNotExist: unknown order.
    """
    fulfiller_id = str(fulfiller_id)
    actor_role = normalize(actor_role)

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)
        observed_slots = order.accepted_slots
        observed_status = order.status

        if observed_status not in RESERVABLE_ORDER_STATUSES:
            logger.info(f"Reservation on order {order.pk} refused: status {observed_status}")
            raise SlotUnavailable(order.pk, SlotUnavailable.ORDER_NOT_RESERVABLE, current_status=observed_status)

        # Accepting is the same permission whether or not this fills the order
        assert_valid_transition(observed_status, OrderStatus.ACCEPTED, actor_role)
        # Requesters fill slots only by accepting a fulfiller's proposal
        if proposal is None and actor_role != Role.FULFILLER:
            raise ForbiddenForRole(
                f"Role {actor_role} may not take a truck slot on order {order.pk}",
                current_status=observed_status,
                action=Action.ACCEPT,
                role=actor_role,
            )

        if observed_slots >= order.required_slots:
            logger.info(f"Reservation on order {order.pk} refused: {observed_slots}/{order.required_slots} taken")
            raise SlotUnavailable(order.pk, SlotUnavailable.CAPACITY_EXHAUSTED, current_status=observed_status)

        if Assignment.objects.active().filter(order=order, fulfiller_id=fulfiller_id).exists():
            raise SlotUnavailable(order.pk, SlotUnavailable.ALREADY_ASSIGNED, current_status=observed_status)

        new_slots = observed_slots + 1
        new_status = OrderStatus.ACCEPTED if new_slots == order.required_slots else observed_status

        updated = Order.objects.filter(
            pk=order.pk,
            accepted_slots=observed_slots,
            status=observed_status,
            accepted_slots__lt=F('required_slots'),
        ).update(accepted_slots=new_slots, status=new_status, updated_at=timezone.now())
        if updated != 1:
            logger.info(f"Reservation on order {order.pk} lost a concurrent update")
            raise SlotUnavailable(order.pk, SlotUnavailable.CONCURRENT_UPDATE, current_status=observed_status)

        if agreed_price is None:
            agreed_price = _default_agreed_price(order)

        try:
            with transaction.atomic():
                assignment = Assignment.objects.create(
                    order=order,
                    fulfiller_id=fulfiller_id,
                    status=LegStatus.ACCEPTED,
                    agreed_price=agreed_price,
                    pickup_window_start=pickup_window_start,
                    pickup_window_end=pickup_window_end,
                    delivery_window_start=delivery_window_start,
                    delivery_window_end=delivery_window_end,
                )
        except IntegrityError:
            raise SlotUnavailable(order.pk, SlotUnavailable.ALREADY_ASSIGNED, current_status=observed_status)

        # A fulfiller coming back after releasing a slot starts a fresh leg
        stale = TripProgress.objects.select_for_update().filter(order=order, fulfiller_id=fulfiller_id).first()
        if stale is not None:
            for field in TripProgress.TIMESTAMP_FIELDS.values():
                setattr(stale, field, None)
            stale.current_status = LegStatus.ACCEPTED
            stale.stamp(LegStatus.ACCEPTED, assignment.created_at)
            stale.save()
            logger.warning(f"Progress of {fulfiller_id} on order {order.pk} reset for a new reservation")

        order.accepted_slots = new_slots
        order.status = new_status

        if new_status == OrderStatus.ACCEPTED:
            _reject_outstanding_proposals(order, keep=proposal)

        _notify_capacity_changed(order, 'reserved')

    logger.info(
        f"Slot reserved on order {order.pk} by {fulfiller_id}: "
        f"{new_slots}/{order.required_slots}, status {new_status}"
    )
    return assignment


def _assert_release_actor(order, assignment, actor_role, actor_id):
    if actor_role == Role.FULFILLER and str(actor_id) != assignment.fulfiller_id:
        raise ForbiddenForRole(
            f"Fulfiller {actor_id} may not release the slot of {assignment.fulfiller_id}",
            current_status=assignment.status,
            action=Action.RELEASE_SLOT,
            role=actor_role,
        )
    if actor_role == Role.REQUESTER and str(actor_id) != order.requester_id:
        raise ForbiddenForRole(
            f"Requester {actor_id} does not own order {order.pk}",
            current_status=order.status,
            action=Action.RELEASE_SLOT,
            role=actor_role,
        )


def release_slot(assignment_id, reason, *, actor_role, actor_id=None, note='') -> Assignment:
    """
    Release one truck slot: ``reason`` is ``cancelled`` or ``rejected``.

    The order reopens (ACCEPTED -> OPEN) only while no remaining leg has
    moved past ACCEPTED. Releasing the last active leg after pickup started
    cancels the order. A delivered leg is never released here: it raises
    ``SlotUnavailable`` with ``not_releasable``.
    """
    target = RELEASE_REASONS.get(str(reason or '').strip().lower())
    if target is None:
        raise ValueError(f"Unknown release reason: {reason!r}")
    actor_role = normalize(actor_role)

    with transaction.atomic():
        assignment = Assignment.objects.select_for_update().get(pk=assignment_id)
        order = Order.objects.select_for_update().get(pk=assignment.order_id)
        _assert_release_actor(order, assignment, actor_role, actor_id)

        if assignment.is_active:
            resolved = resolve_status(order.pk, assignment.fulfiller_id)
            leg_status = resolved.status or assignment.status
        else:
            leg_status = assignment.status
        edge = assert_valid_transition(leg_status, target, actor_role, Scope.LEG)
        # Delivered legs only leave through an order-level dispute or completion
        if edge.driver != DRIVER_RESERVATION:
            logger.info(f"Release of {assignment.fulfiller_id} on order {order.pk} refused: leg {leg_status}")
            raise SlotUnavailable(order.pk, SlotUnavailable.NOT_RELEASABLE, current_status=order.status)

        now = timezone.now()
        assignment.status = target
        assignment.release_reason = note or str(reason)
        assignment.released_at = now
        assignment.save(update_fields=['status', 'release_reason', 'released_at', 'updated_at'])

        TripProgress.objects.filter(order=order, fulfiller_id=assignment.fulfiller_id).update(
            current_status=target, updated_at=now,
        )

        remaining = resolve_active_legs(order.pk)
        observed_slots = order.accepted_slots
        observed_status = order.status
        new_slots = max(observed_slots - 1, 0)
        new_status = observed_status

        if observed_status == OrderStatus.ACCEPTED:
            if all(leg.status in PRE_PICKUP_LEG_STATUSES for leg in remaining.values()):
                assert_valid_transition(observed_status, OrderStatus.OPEN, actor_role)
                new_status = OrderStatus.OPEN
        if not remaining and observed_status in (OrderStatus.LOADING, OrderStatus.LOADED):
            assert_valid_transition(observed_status, OrderStatus.CANCELLED, actor_role)
            new_status = OrderStatus.CANCELLED

        updated = Order.objects.filter(
            pk=order.pk, accepted_slots=observed_slots, status=observed_status,
        ).update(accepted_slots=new_slots, status=new_status, updated_at=now)
        if updated != 1:
            raise SlotUnavailable(order.pk, SlotUnavailable.CONCURRENT_UPDATE, current_status=observed_status)

        order.accepted_slots = new_slots
        order.status = new_status

        # The released leg may have been the one holding the order back
        roll_up_order(order)
        _notify_capacity_changed(order, 'released')

    logger.warning(
        f"Slot on order {order.pk} released by {actor_role} ({target}): "
        f"{order.accepted_slots}/{order.required_slots}, status {order.status}"
    )
    return assignment
