"""
Status vocabularies for orders, legs (assignment/progress) and proposals.

The choice labels double as the pre-approved user-facing label set used by
the status label guard.
"""
from django.db import models
from django.utils.translation import gettext_lazy as _


class OrderStatus(models.TextChoices):
    OPEN = 'OPEN', _('Open')
    IN_NEGOTIATION = 'IN_NEGOTIATION', _('In negotiation')
    ACCEPTED = 'ACCEPTED', _('Accepted')
    LOADING = 'LOADING', _('On the way to pickup')
    LOADED = 'LOADED', _('Loaded')
    IN_TRANSIT = 'IN_TRANSIT', _('In transit')
    DELIVERED_PENDING_CONFIRMATION = 'DELIVERED_PENDING_CONFIRMATION', _('Delivery reported')
    DELIVERED = 'DELIVERED', _('Delivered')
    COMPLETED = 'COMPLETED', _('Completed')
    CANCELLED = 'CANCELLED', _('Cancelled')
    REJECTED = 'REJECTED', _('Rejected')


class LegStatus(models.TextChoices):
    PENDING = 'PENDING', _('Pending')
    ACCEPTED = 'ACCEPTED', _('Accepted')
    LOADING = 'LOADING', _('On the way to pickup')
    LOADED = 'LOADED', _('Loaded')
    IN_TRANSIT = 'IN_TRANSIT', _('In transit')
    DELIVERED = 'DELIVERED', _('Delivered')
    COMPLETED = 'COMPLETED', _('Completed')
    CANCELLED = 'CANCELLED', _('Cancelled')
    REJECTED = 'REJECTED', _('Rejected')


class ProposalStatus(models.TextChoices):
    PENDING = 'PENDING', _('Pending')
    COUNTER_PROPOSED = 'COUNTER_PROPOSED', _('Counter-proposal sent')
    ACCEPTED = 'ACCEPTED', _('Accepted')
    REJECTED = 'REJECTED', _('Rejected')


class PricingMode(models.TextChoices):
    FIXED = 'FIXED', _('Fixed price per truck')
    PER_DISTANCE = 'PER_DISTANCE', _('Price per km')
    PER_WEIGHT = 'PER_WEIGHT', _('Price per tonne')


class Role(models.TextChoices):
    REQUESTER = 'REQUESTER', _('Requester')
    FULFILLER = 'FULFILLER', _('Fulfiller')
    ADMIN = 'ADMIN', _('Administrator')
    GUEST = 'GUEST', _('Guest')
    # Synthetic actor used only by the delivery confirmation sweep
    SYSTEM_SWEEP = 'SYSTEM_SWEEP', _('Automatic confirmation')


class Action(models.TextChoices):
    PROPOSE = 'PROPOSE', _('Send proposal')
    ACCEPT = 'ACCEPT', _('Accept freight')
    COUNTER_PROPOSE = 'COUNTER_PROPOSE', _('Send counter-proposal')
    ACCEPT_PROPOSAL = 'ACCEPT_PROPOSAL', _('Accept proposal')
    REJECT_PROPOSAL = 'REJECT_PROPOSAL', _('Reject proposal')
    REOPEN = 'REOPEN', _('Reopen for trucks')
    RELEASE_SLOT = 'RELEASE_SLOT', _('Release truck slot')
    ADVANCE = 'ADVANCE', _('Advance status')
    REPORT_DELIVERY = 'REPORT_DELIVERY', _('Report delivery')
    CONFIRM_DELIVERY = 'CONFIRM_DELIVERY', _('Confirm delivery')
    AUTO_CONFIRM = 'AUTO_CONFIRM', _('Automatic confirmation')
    DISPUTE = 'DISPUTE', _('Dispute delivery')
    COMPLETE = 'COMPLETE', _('Complete freight')
    CANCEL = 'CANCEL', _('Cancel')
    REJECT = 'REJECT', _('Reject freight')
    VIEW_DETAILS = 'VIEW_DETAILS', _('View details')
    CHAT = 'CHAT', _('Chat')
    TRACK_LOCATION = 'TRACK_LOCATION', _('Track truck')
    RATE = 'RATE', _('Rate')


class Scope(models.TextChoices):
    ORDER = 'order', _('Order')
    LEG = 'leg', _('Truck leg')
    PROPOSAL = 'proposal', _('Proposal')


# Forward path of an order; cancellation and rejection sit outside it
ORDER_WORKFLOW = (
    OrderStatus.OPEN,
    OrderStatus.IN_NEGOTIATION,
    OrderStatus.ACCEPTED,
    OrderStatus.LOADING,
    OrderStatus.LOADED,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED_PENDING_CONFIRMATION,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
)

LEG_WORKFLOW = (
    LegStatus.PENDING,
    LegStatus.ACCEPTED,
    LegStatus.LOADING,
    LegStatus.LOADED,
    LegStatus.IN_TRANSIT,
    LegStatus.DELIVERED,
    LegStatus.COMPLETED,
)

ORDER_TERMINAL_STATUSES = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
    OrderStatus.REJECTED,
})

LEG_TERMINAL_STATUSES = frozenset({
    LegStatus.COMPLETED,
    LegStatus.CANCELLED,
    LegStatus.REJECTED,
})

# Legs in these states no longer hold a slot
LEG_INACTIVE_STATUSES = frozenset({LegStatus.CANCELLED, LegStatus.REJECTED})

# Orders may take new slot reservations only here
RESERVABLE_ORDER_STATUSES = frozenset({OrderStatus.OPEN, OrderStatus.IN_NEGOTIATION})

# "Accepted family": every status that requires at least one accepted slot
ACCEPTED_FAMILY = frozenset({
    OrderStatus.ACCEPTED,
    OrderStatus.LOADING,
    OrderStatus.LOADED,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED_PENDING_CONFIRMATION,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
})

# Leg statuses that still count as "before pickup"
PRE_PICKUP_LEG_STATUSES = frozenset({LegStatus.PENDING, LegStatus.ACCEPTED})


def leg_rank(status):
    """Position of a leg status on the forward path, -1 when off-path."""
    try:
        return LEG_WORKFLOW.index(status)
    except ValueError:
        return -1


def order_rank(status):
    try:
        return ORDER_WORKFLOW.index(status)
    except ValueError:
        return -1


def normalize(code):
    """Normalize a raw status/role code coming from storage or a client."""
    if code is None:
        return ''
    return str(code).strip().upper()
