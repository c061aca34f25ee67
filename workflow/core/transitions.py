"""
Transition guard.

Single authority on whether a status change is legal for an actor role. The
legal edges of every scope (order, truck leg, proposal) are data: one lookup
matrix per scope keyed by (source, target). Adding a role or a status is an
edit to the tables below, never to call sites.

``get_allowed_actions`` only drives which controls are offered.
``assert_valid_transition`` is the actual gate and must be called right
before every mutation.
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from workflow.core.statuses import (
    Action,
    LegStatus,
    OrderStatus,
    ProposalStatus,
    Role,
    Scope,
    normalize,
)
from workflow.exceptions import ForbiddenForRole, IllegalTransition

logger = logging.getLogger(__name__)

# Who is allowed to drive an edge through the generic mutation paths
DRIVER_ACTOR = 'actor'              # an actor request or the sweep
DRIVER_RESERVATION = 'reservation'  # only the capacity ledger
DRIVER_LEGS = 'legs'                # only the roll-up of leg progress
DRIVER_ORDER = 'order'              # only as a side effect of an order transition

REQ = Role.REQUESTER
FUL = Role.FULFILLER
ADM = Role.ADMIN
SWEEP = Role.SYSTEM_SWEEP


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    roles: FrozenSet[str]
    action: str
    driver: str = DRIVER_ACTOR


def _table(*rows) -> Dict[Tuple[str, str], Edge]:
    table = {}
    for source, target, roles, action, *driver in rows:
        edge = Edge(
            source=source,
            target=target,
            roles=frozenset(roles),
            action=action,
            driver=driver[0] if driver else DRIVER_ACTOR,
        )
        table[(source, target)] = edge
    return table


O = OrderStatus
ORDER_TRANSITIONS = _table(
    (O.OPEN, O.IN_NEGOTIATION, {FUL}, Action.PROPOSE),
    (O.OPEN, O.ACCEPTED, {FUL, REQ}, Action.ACCEPT, DRIVER_RESERVATION),
    (O.OPEN, O.CANCELLED, {REQ}, Action.CANCEL),
    (O.OPEN, O.REJECTED, {ADM}, Action.REJECT),
    (O.IN_NEGOTIATION, O.ACCEPTED, {FUL, REQ}, Action.ACCEPT, DRIVER_RESERVATION),
    (O.IN_NEGOTIATION, O.OPEN, {REQ}, Action.REOPEN),
    (O.IN_NEGOTIATION, O.CANCELLED, {REQ}, Action.CANCEL),
    (O.ACCEPTED, O.OPEN, {REQ, FUL, ADM}, Action.RELEASE_SLOT, DRIVER_RESERVATION),
    (O.ACCEPTED, O.LOADING, {FUL}, Action.ADVANCE, DRIVER_LEGS),
    (O.ACCEPTED, O.CANCELLED, {REQ}, Action.CANCEL),
    (O.LOADING, O.LOADED, {FUL}, Action.ADVANCE, DRIVER_LEGS),
    (O.LOADING, O.CANCELLED, {REQ}, Action.CANCEL),
    (O.LOADED, O.IN_TRANSIT, {FUL}, Action.ADVANCE, DRIVER_LEGS),
    (O.LOADED, O.CANCELLED, {REQ}, Action.CANCEL),
    (O.IN_TRANSIT, O.DELIVERED_PENDING_CONFIRMATION, {FUL}, Action.REPORT_DELIVERY, DRIVER_LEGS),
    (O.IN_TRANSIT, O.DELIVERED, {REQ}, Action.CONFIRM_DELIVERY),
    (O.DELIVERED_PENDING_CONFIRMATION, O.COMPLETED, {REQ}, Action.CONFIRM_DELIVERY),
    (O.DELIVERED_PENDING_CONFIRMATION, O.DELIVERED, {SWEEP}, Action.AUTO_CONFIRM),
    (O.DELIVERED_PENDING_CONFIRMATION, O.CANCELLED, {REQ}, Action.DISPUTE),
    (O.DELIVERED, O.COMPLETED, {REQ}, Action.COMPLETE),
)

L = LegStatus
LEG_TRANSITIONS = _table(
    (L.PENDING, L.ACCEPTED, {REQ}, Action.ACCEPT, DRIVER_RESERVATION),
    (L.PENDING, L.REJECTED, {REQ, ADM}, Action.RELEASE_SLOT, DRIVER_RESERVATION),
    (L.PENDING, L.CANCELLED, {REQ, FUL}, Action.RELEASE_SLOT, DRIVER_RESERVATION),
    (L.ACCEPTED, L.LOADING, {FUL}, Action.ADVANCE),
    (L.ACCEPTED, L.CANCELLED, {REQ, FUL}, Action.RELEASE_SLOT, DRIVER_RESERVATION),
    (L.ACCEPTED, L.REJECTED, {REQ, ADM}, Action.RELEASE_SLOT, DRIVER_RESERVATION),
    (L.LOADING, L.LOADED, {FUL}, Action.ADVANCE),
    (L.LOADING, L.CANCELLED, {REQ}, Action.RELEASE_SLOT, DRIVER_RESERVATION),
    (L.LOADED, L.IN_TRANSIT, {FUL}, Action.ADVANCE),
    (L.LOADED, L.CANCELLED, {REQ}, Action.RELEASE_SLOT, DRIVER_RESERVATION),
    (L.IN_TRANSIT, L.DELIVERED, {FUL, REQ}, Action.REPORT_DELIVERY),
    (L.DELIVERED, L.COMPLETED, {REQ}, Action.COMPLETE, DRIVER_ORDER),
    (L.DELIVERED, L.CANCELLED, {REQ}, Action.DISPUTE, DRIVER_ORDER),
)

P = ProposalStatus
PROPOSAL_TRANSITIONS = _table(
    (P.PENDING, P.COUNTER_PROPOSED, {REQ}, Action.COUNTER_PROPOSE),
    (P.PENDING, P.ACCEPTED, {REQ}, Action.ACCEPT_PROPOSAL),
    (P.PENDING, P.REJECTED, {REQ, FUL}, Action.REJECT_PROPOSAL),
    (P.COUNTER_PROPOSED, P.PENDING, {FUL}, Action.PROPOSE),
    (P.COUNTER_PROPOSED, P.ACCEPTED, {FUL}, Action.ACCEPT_PROPOSAL),
    (P.COUNTER_PROPOSED, P.REJECTED, {REQ, FUL}, Action.REJECT_PROPOSAL),
)

TRANSITIONS = {
    Scope.ORDER: ORDER_TRANSITIONS,
    Scope.LEG: LEG_TRANSITIONS,
    Scope.PROPOSAL: PROPOSAL_TRANSITIONS,
}

# Actions that leave the order status unchanged: (roles, statuses where offered)
_ALL_ORDER_STATUSES = frozenset(OrderStatus.values)
_ACTIVE_ORDER_STATUSES = _ALL_ORDER_STATUSES - {O.COMPLETED, O.CANCELLED, O.REJECTED}
INFORMATIONAL_ACTIONS = {
    # Further proposals on an order already under negotiation
    Action.PROPOSE: (frozenset({FUL}), frozenset({O.IN_NEGOTIATION})),
    Action.VIEW_DETAILS: (frozenset({REQ, FUL, ADM}), _ALL_ORDER_STATUSES),
    Action.CHAT: (frozenset({REQ, FUL}), _ACTIVE_ORDER_STATUSES),
    Action.TRACK_LOCATION: (frozenset({REQ, FUL}), frozenset({O.LOADING, O.LOADED, O.IN_TRANSIT})),
    Action.RATE: (frozenset({REQ, FUL}), frozenset({O.COMPLETED})),
}
GUEST_ACTIONS = {O.OPEN: frozenset({Action.VIEW_DETAILS})}


def _table_for(scope):
    try:
        return TRANSITIONS[scope]
    except KeyError:
        raise ValueError(f"Unknown transition scope: {scope!r}")


def get_edge(from_status, to_status, scope=Scope.ORDER) -> Optional[Edge]:
    return _table_for(scope).get((normalize(from_status), normalize(to_status)))


def get_allowed_transitions(status, role, scope=Scope.ORDER):
    """Edges leaving ``status`` that ``role`` may take."""
    status = normalize(status)
    role = normalize(role)
    return [
        edge for (source, _target), edge in _table_for(scope).items()
        if source == status and role in edge.roles
    ]


def get_allowed_actions(status, role, scope=Scope.ORDER) -> FrozenSet[str]:
    """
    Action identifiers ``role`` may be offered while in ``status``.

    Pure and advisory: the result decides which controls are shown, it is
    never trusted as the gate for a mutation.
    """
    status = normalize(status)
    role = normalize(role)
    actions = {edge.action for edge in get_allowed_transitions(status, role, scope)}

    if scope == Scope.ORDER:
        for action, (roles, statuses) in INFORMATIONAL_ACTIONS.items():
            if role in roles and status in statuses:
                actions.add(action)
        if role == Role.GUEST:
            actions |= GUEST_ACTIONS.get(status, frozenset())

    return frozenset(actions)


def can_transition(from_status, to_status, role, scope=Scope.ORDER) -> bool:
    edge = get_edge(from_status, to_status, scope)
    return edge is not None and normalize(role) in edge.roles


def assert_valid_transition(from_status, to_status, role, scope=Scope.ORDER) -> Edge:
    """
    Validate one status change for ``role``.

    Raises:
        IllegalTransition: no such edge exists for any role.
        ForbiddenForRole: the edge exists, but not for this role.

    Returns:
        The matching edge.
    """
    from_status = normalize(from_status)
    to_status = normalize(to_status)
    role = normalize(role)

    edge = get_edge(from_status, to_status, scope)
    if edge is None:
        logger.warning(
            f"Illegal {scope} transition {from_status or '<none>'} -> {to_status} attempted by {role or '<none>'}"
        )
        raise IllegalTransition(
            f"No {scope} transition from {from_status} to {to_status}",
            current_status=from_status,
            target_status=to_status,
            role=role,
        )

    if role not in edge.roles:
        logger.warning(
            f"Role {role or '<none>'} refused on {scope} transition {from_status} -> {to_status}"
        )
        raise ForbiddenForRole(
            f"Role {role} may not move {scope} from {from_status} to {to_status}",
            current_status=from_status,
            target_status=to_status,
            action=edge.action,
            role=role,
        )

    return edge


def next_step(status, scope=Scope.ORDER, driver=None) -> Optional[str]:
    """The single forward target of ``status`` on the given driver's edges, if unique."""
    status = normalize(status)
    targets = [
        edge.target for (source, _target), edge in _table_for(scope).items()
        if source == status and (driver is None or edge.driver == driver)
    ]
    return targets[0] if len(targets) == 1 else None
