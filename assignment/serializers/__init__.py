from .assignment import AssignmentSerializer, ReleaseRequestSerializer
from .progress import ProgressRequestSerializer, TripProgressSerializer
