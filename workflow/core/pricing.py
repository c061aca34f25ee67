"""
Price visibility guard.

Every price that reaches a user goes through ``format_price_for_user``. The
requester sees the aggregate for all trucks; a fulfiller on a multi-truck
order only ever sees the per-truck figure. Both views come from the same pure
pricing function, so the requester total is always an exact multiple of the
fulfiller price.
"""
import logging
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings

from workflow.core.statuses import LEG_INACTIVE_STATUSES, PricingMode, Role, normalize

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
DEFAULT_WEIGHT_DIVISOR = Decimal('1000')

VIEWER_REQUESTER = 'requester'
VIEWER_FULFILLER = 'fulfiller'
VIEWER_OBSERVER = 'observer'

WARNING_BELOW_MINIMUM = 'below_minimum_price'
WARNING_INCOMPLETE_PRICING = 'pricing_inputs_incomplete'

UNIT_SUFFIXES = {
    PricingMode.FIXED: '',
    PricingMode.PER_DISTANCE: '/km',
    PricingMode.PER_WEIGHT: '/t',
}


class PricingInputError(ValueError):
    """Pricing inputs are missing or inconsistent with the pricing mode."""


def _decimal(value, name):
    if value is None or value == '':
        raise PricingInputError(f"{name} is required")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise PricingInputError(f"{name} is not a number: {value!r}")
    if not result.is_finite() or result < 0:
        raise PricingInputError(f"{name} must be a non-negative number")
    return result


def per_slot_price(pricing_mode, fixed_amount=None, unit_rate=None, distance_km=None,
                   weight_kg=None, weight_divisor=DEFAULT_WEIGHT_DIVISOR) -> Decimal:
    """
    Price of one truck slot.

    FIXED: the fixed amount. PER_DISTANCE: rate x distance.
    PER_WEIGHT: rate x (weight / divisor), i.e. rate per tonne for kg weights.
    """
    mode = normalize(pricing_mode)
    if mode == PricingMode.FIXED:
        amount = _decimal(fixed_amount, 'fixed_amount')
    elif mode == PricingMode.PER_DISTANCE:
        amount = _decimal(unit_rate, 'unit_rate') * _decimal(distance_km, 'distance_km')
    elif mode == PricingMode.PER_WEIGHT:
        divisor = _decimal(weight_divisor, 'weight_divisor')
        if divisor == 0:
            raise PricingInputError("weight_divisor must be positive")
        amount = _decimal(unit_rate, 'unit_rate') * (_decimal(weight_kg, 'weight_kg') / divisor)
    else:
        raise PricingInputError(f"Unknown pricing mode: {pricing_mode!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def total_price(slot_price: Decimal, required_slots: int) -> Decimal:
    slots = int(required_slots)
    if slots < 1:
        raise PricingInputError("required_slots must be at least 1")
    return slot_price * slots


def order_per_slot_price(order, weight_divisor=None) -> Decimal:
    """Shared per-slot price for an order-like object (model instance or DTO)."""
    if weight_divisor is None:
        weight_divisor = getattr(settings, 'PRICE_WEIGHT_DIVISOR', DEFAULT_WEIGHT_DIVISOR)
    return per_slot_price(
        getattr(order, 'pricing_mode', None),
        fixed_amount=getattr(order, 'fixed_amount', None),
        unit_rate=getattr(order, 'unit_rate', None),
        distance_km=getattr(order, 'distance_km', None),
        weight_kg=getattr(order, 'weight_kg', None),
        weight_divisor=weight_divisor,
    )


def format_amount(amount, currency=None):
    if amount is None:
        return '—'
    currency = currency or getattr(settings, 'PRICE_CURRENCY', 'BRL')
    return f"{currency} {amount:,.2f}"


@dataclass
class PriceView:
    """What one viewer may see of an order's price."""
    viewer: str
    pricing_mode: str
    required_slots: int
    per_slot_price: Optional[Decimal] = None
    total: Optional[Decimal] = None
    unit_rate: Optional[Decimal] = None
    unit_suffix: str = ''
    breakdown: List[Dict[str, Any]] = field(default_factory=list)
    actionable: bool = True
    warnings: List[str] = field(default_factory=list)
    display_label: str = ''

    @property
    def is_available(self):
        return self.per_slot_price is not None

    def as_dict(self):
        data = asdict(self)
        for key in ('per_slot_price', 'total', 'unit_rate'):
            if data[key] is not None:
                data[key] = str(data[key])
        for line in data['breakdown']:
            for key, value in line.items():
                if isinstance(value, Decimal):
                    line[key] = str(value)
        return data


def _resolve_viewer(order, viewer_role, viewer_id):
    role = normalize(viewer_role)
    requester_id = getattr(order, 'requester_id', None)
    if role == Role.REQUESTER:
        if viewer_id is not None and requester_id is not None and str(viewer_id) == str(requester_id):
            return VIEWER_REQUESTER
        # Claimed requester without matching identity: most restrictive view
        return VIEWER_FULFILLER
    if role in (Role.ADMIN, Role.GUEST):
        return VIEWER_OBSERVER
    return VIEWER_FULFILLER


def _own_agreed_price(assignment, viewer_id):
    if assignment is None or viewer_id is None:
        return None
    if str(getattr(assignment, 'fulfiller_id', '')) != str(viewer_id):
        return None
    if normalize(getattr(assignment, 'status', '')) in LEG_INACTIVE_STATUSES:
        return None
    agreed = getattr(assignment, 'agreed_price', None)
    if agreed is None:
        return None
    return _decimal(agreed, 'agreed_price').quantize(CENTS, rounding=ROUND_HALF_UP)


def _unit_rate(order):
    if normalize(getattr(order, 'pricing_mode', '')) == PricingMode.FIXED:
        return None
    rate = getattr(order, 'unit_rate', None)
    return Decimal(str(rate)) if rate is not None else None


def _leg_lines(assignments):
    lines = []
    for leg in assignments or ():
        if normalize(getattr(leg, 'status', '')) in LEG_INACTIVE_STATUSES:
            continue
        agreed = getattr(leg, 'agreed_price', None)
        lines.append({
            'kind': 'leg',
            'fulfiller_id': str(getattr(leg, 'fulfiller_id', '')),
            'amount': Decimal(str(agreed)) if agreed is not None else None,
        })
    return lines


def _build_view(order, assignment, viewer_role, viewer_id, minimum_price, assignments):
    viewer = _resolve_viewer(order, viewer_role, viewer_id)
    mode = normalize(getattr(order, 'pricing_mode', ''))
    slots = max(int(getattr(order, 'required_slots', 1) or 1), 1)
    slot_price = order_per_slot_price(order)

    view = PriceView(
        viewer=viewer,
        pricing_mode=mode,
        required_slots=slots,
        unit_rate=_unit_rate(order),
        unit_suffix=UNIT_SUFFIXES.get(mode, ''),
    )

    if viewer == VIEWER_FULFILLER:
        own = _own_agreed_price(assignment, viewer_id)
        view.per_slot_price = own if own is not None else slot_price
        if slots == 1:
            view.total = view.per_slot_price
            view.display_label = format_amount(view.per_slot_price)
        else:
            view.display_label = f"{format_amount(view.per_slot_price)}/truck"
    else:
        view.per_slot_price = slot_price
        view.total = total_price(slot_price, slots)
        view.breakdown = [{
            'kind': 'per_slot',
            'unit_price': slot_price,
            'quantity': slots,
            'amount': view.total,
        }]
        if viewer == VIEWER_REQUESTER:
            view.breakdown.extend(_leg_lines(assignments))
        else:
            view.actionable = False
        if slots == 1:
            view.display_label = format_amount(view.total)
        else:
            view.display_label = f"{format_amount(view.total)} ({slots} x {format_amount(slot_price)})"

    if minimum_price is not None:
        floor = _decimal(minimum_price, 'minimum_price')
        if view.per_slot_price < floor:
            view.warnings.append(WARNING_BELOW_MINIMUM)

    return view


def format_price_for_user(order, assignment=None, viewer_role=None, viewer_id=None,
                          minimum_price=None, assignments: Optional[Iterable] = None) -> PriceView:
    """
    Compute the price view of ``order`` for one viewer.

    Rules, first match wins:
      1. The order's requester sees the total plus the per-slot breakdown.
      2. A fulfiller on a single-truck order sees the single price.
      3. A fulfiller on a multi-truck order sees only their own agreed price,
         or the declared per-slot price before agreement. Never the total.
      4. Admins and guests see the total, marked non-actionable.
    An unknown role, or a requester role without the matching identity, falls
    back to the fulfiller rules. The minimum price only adds a warning.

    Never raises: incomplete pricing yields an unavailable view.
    """
    try:
        return _build_view(order, assignment, viewer_role, viewer_id, minimum_price, assignments)
    except (PricingInputError, InvalidOperation, TypeError, ValueError) as e:
        logger.warning(f"Price unavailable for order {getattr(order, 'pk', None)}: {e}")
        slots = getattr(order, 'required_slots', 1)
        return PriceView(
            viewer=_resolve_viewer(order, viewer_role, viewer_id),
            pricing_mode=normalize(getattr(order, 'pricing_mode', '')),
            required_slots=slots if isinstance(slots, int) and slots > 0 else 1,
            actionable=False,
            warnings=[WARNING_INCOMPLETE_PRICING],
            display_label='—',
        )
