"""
Resolves the effective status of one fulfiller's leg.

Two records can describe the same leg: the assignment row created at
reservation time and the finer-grained trip progress row. Progress wins
whenever it exists; the assignment status is only a fallback for legs that
have not moved since acceptance. Nothing here writes.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from assignment.models import Assignment, TripProgress

SOURCE_PROGRESS = 'progress'
SOURCE_ASSIGNMENT = 'assignment'
SOURCE_UNKNOWN = 'unknown'


@dataclass(frozen=True)
class ResolvedStatus:
    status: Optional[str]
    source: str

    @property
    def is_known(self):
        return self.source != SOURCE_UNKNOWN


UNKNOWN = ResolvedStatus(status=None, source=SOURCE_UNKNOWN)


def resolve_status(order_id, fulfiller_id) -> ResolvedStatus:
    """
    Effective leg status for (order, fulfiller).

    Returns ``source='unknown'`` when neither a progress record nor an active
    assignment exists. That means "not yet actionable", not an error.
    """
    fulfiller_id = str(fulfiller_id)
    progress_status = (
        TripProgress.objects
        .filter(order_id=order_id, fulfiller_id=fulfiller_id)
        .values_list('current_status', flat=True)
        .first()
    )
    if progress_status:
        return ResolvedStatus(status=progress_status, source=SOURCE_PROGRESS)

    assignment_status = (
        Assignment.objects.active()
        .filter(order_id=order_id, fulfiller_id=fulfiller_id)
        .order_by('-created_at', '-id')
        .values_list('status', flat=True)
        .first()
    )
    if assignment_status:
        return ResolvedStatus(status=assignment_status, source=SOURCE_ASSIGNMENT)

    return UNKNOWN


def resolve_active_legs(order_id) -> Dict[str, ResolvedStatus]:
    """Resolved status of every active leg on an order, keyed by fulfiller id."""
    progress = dict(
        TripProgress.objects
        .filter(order_id=order_id)
        .values_list('fulfiller_id', 'current_status')
    )
    legs = {}
    for fulfiller_id, status in Assignment.objects.active().filter(order_id=order_id).values_list('fulfiller_id', 'status'):
        if fulfiller_id in progress:
            legs[fulfiller_id] = ResolvedStatus(status=progress[fulfiller_id], source=SOURCE_PROGRESS)
        else:
            legs[fulfiller_id] = ResolvedStatus(status=status, source=SOURCE_ASSIGNMENT)
    return legs
