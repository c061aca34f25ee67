from assignment.models.assignment import Assignment
from assignment.models.progress import TripProgress

__all__ = ['Assignment', 'TripProgress']
