"""Database models for the assessment queue."""
from .candidate import Candidate, SourceType
from .assessment import Assessment
from .queue import AssessmentQueueItem, QueueStatus, ELIGIBLE_STATUSES

__all__ = [
    "Candidate",
    "SourceType",
    "Assessment",
    "AssessmentQueueItem",
    "QueueStatus",
    "ELIGIBLE_STATUSES",
]
