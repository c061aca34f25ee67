"""
Proposal lifecycle: a fulfiller offers a per-truck price, the requester may
counter, and acceptance by either side reserves the slot through the
capacity ledger in the same transaction.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction

from assignment.models import Assignment
from assignment.services.capacity_ledger import reserve_slot
from orders.models import Order, Proposal
from orders.services.transitions import transition_order
from workflow.core.statuses import Action, OrderStatus, ProposalStatus, Role, Scope, normalize
from workflow.core.transitions import assert_valid_transition
from workflow.exceptions import ForbiddenForRole, IllegalTransition, SlotUnavailable

logger = logging.getLogger(__name__)


def _price(value, name):
    try:
        price = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"{name} must be a number")
    if not price.is_finite() or price <= 0:
        raise ValueError(f"{name} must be positive")
    return price


def _assert_party(proposal, actor_role, actor_id):
    if actor_role == Role.REQUESTER and str(actor_id) != proposal.order.requester_id:
        raise ForbiddenForRole(
            f"Requester {actor_id} does not own order {proposal.order_id}",
            current_status=proposal.status,
            role=actor_role,
        )
    if actor_role == Role.FULFILLER and str(actor_id) != proposal.fulfiller_id:
        raise ForbiddenForRole(
            f"Fulfiller {actor_id} did not make proposal {proposal.pk}",
            current_status=proposal.status,
            role=actor_role,
        )


def _locked_proposal(proposal_id):
    return Proposal.objects.select_for_update().select_related('order').get(pk=proposal_id)


def submit_proposal(order_id, fulfiller_id, proposed_price, *, actor_role=Role.FULFILLER, message='') -> Proposal:
    """
    Offer a per-truck price on an open order.

    The first proposal moves the order OPEN -> IN_NEGOTIATION. A fulfiller's
    earlier outstanding proposal on the same order is superseded.
    """
    fulfiller_id = str(fulfiller_id)
    actor_role = normalize(actor_role)
    proposed_price = _price(proposed_price, 'proposed_price')

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)

        if Assignment.objects.active().filter(order=order, fulfiller_id=fulfiller_id).exists():
            raise SlotUnavailable(order.pk, SlotUnavailable.ALREADY_ASSIGNED, current_status=order.status)

        if order.status == OrderStatus.OPEN:
            transition_order(order.pk, OrderStatus.IN_NEGOTIATION, actor_role=actor_role, actor_id=fulfiller_id)
        elif order.status != OrderStatus.IN_NEGOTIATION or actor_role != Role.FULFILLER:
            raise IllegalTransition(
                f"Order {order.pk} does not take proposals from {actor_role} in {order.status}",
                current_status=order.status,
                action=Action.PROPOSE,
                role=actor_role,
            )

        earlier = Proposal.objects.select_for_update().filter(
            order=order,
            fulfiller_id=fulfiller_id,
            status__in=[ProposalStatus.PENDING, ProposalStatus.COUNTER_PROPOSED],
        )
        for previous in earlier:
            assert_valid_transition(previous.status, ProposalStatus.REJECTED, actor_role, Scope.PROPOSAL)
            previous.status = ProposalStatus.REJECTED
            previous.save(update_fields=['status', 'updated_at'])
            logger.info(f"Proposal {previous.pk} superseded by a new offer from {fulfiller_id}")

        proposal = Proposal.objects.create(
            order=order,
            fulfiller_id=fulfiller_id,
            proposed_price=proposed_price,
            message=message or '',
        )

    logger.info(f"Proposal {proposal.pk} submitted on order {order_id} by {fulfiller_id}")
    return proposal


def counter_proposal(proposal_id, counter_price, *, actor_role, actor_id=None) -> Proposal:
    actor_role = normalize(actor_role)
    counter_price = _price(counter_price, 'counter_price')
    with transaction.atomic():
        proposal = _locked_proposal(proposal_id)
        _assert_party(proposal, actor_role, actor_id)
        assert_valid_transition(proposal.status, ProposalStatus.COUNTER_PROPOSED, actor_role, Scope.PROPOSAL)
        proposal.counter_price = counter_price
        proposal.status = ProposalStatus.COUNTER_PROPOSED
        proposal.save(update_fields=['counter_price', 'status', 'updated_at'])
    logger.info(f"Counter-proposal on proposal {proposal.pk}")
    return proposal


def revise_proposal(proposal_id, proposed_price, *, actor_role, actor_id=None, message='') -> Proposal:
    """The fulfiller answers a counter-proposal with a new price of their own."""
    actor_role = normalize(actor_role)
    proposed_price = _price(proposed_price, 'proposed_price')
    with transaction.atomic():
        proposal = _locked_proposal(proposal_id)
        _assert_party(proposal, actor_role, actor_id)
        assert_valid_transition(proposal.status, ProposalStatus.PENDING, actor_role, Scope.PROPOSAL)
        proposal.proposed_price = proposed_price
        proposal.counter_price = None
        proposal.status = ProposalStatus.PENDING
        if message:
            proposal.message = message
        proposal.save(update_fields=['proposed_price', 'counter_price', 'status', 'message', 'updated_at'])
    logger.info(f"Proposal {proposal.pk} revised by {proposal.fulfiller_id}")
    return proposal


def accept_proposal(proposal_id, *, actor_role, actor_id=None) -> Proposal:
    """
    Accept the price on the table and reserve the fulfiller's slot.

    The requester accepts a PENDING proposal; the fulfiller accepts a
    counter-proposal. ``SlotUnavailable`` leaves the proposal untouched.
    """
    actor_role = normalize(actor_role)
    with transaction.atomic():
        proposal = _locked_proposal(proposal_id)
        _assert_party(proposal, actor_role, actor_id)
        assert_valid_transition(proposal.status, ProposalStatus.ACCEPTED, actor_role, Scope.PROPOSAL)

        assignment = reserve_slot(
            proposal.order_id,
            proposal.fulfiller_id,
            actor_role=actor_role,
            agreed_price=proposal.current_price,
            proposal=proposal,
        )
        proposal.status = ProposalStatus.ACCEPTED
        proposal.assignment = assignment
        proposal.save(update_fields=['status', 'assignment', 'updated_at'])

    logger.info(f"Proposal {proposal.pk} accepted, assignment {assignment.pk} created")
    return proposal


def reject_proposal(proposal_id, *, actor_role, actor_id=None) -> Proposal:
    actor_role = normalize(actor_role)
    with transaction.atomic():
        proposal = _locked_proposal(proposal_id)
        _assert_party(proposal, actor_role, actor_id)
        assert_valid_transition(proposal.status, ProposalStatus.REJECTED, actor_role, Scope.PROPOSAL)
        proposal.status = ProposalStatus.REJECTED
        proposal.save(update_fields=['status', 'updated_at'])
    logger.info(f"Proposal {proposal.pk} rejected by {actor_role}")
    return proposal
