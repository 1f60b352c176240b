"""Detached views of queue state shared by the worker, monitor and API."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class QueueItemView(BaseModel):
    """Snapshot of a queue item, safe to hand across threads."""
    id: int
    candidate_id: int
    status: str
    priority: int
    retry_count: int
    max_retries: int
    attempt: int = 0
    error_message: Optional[str] = None
    batch_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    is_permanently_failed: bool = False

    class Config:
        from_attributes = True


class CandidateView(BaseModel):
    """The parts of a candidate the processor needs."""
    id: int
    name: str
    email: str
    audio_source: str
    snapshot_url: Optional[str] = None
    question_id: Optional[str] = None

    class Config:
        from_attributes = True


class QueueCounts(BaseModel):
    """Item counts by status."""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    permanently_failed: int = 0

    @property
    def active_total(self) -> int:
        """Items not yet completed: pending, processing and failed."""
        return self.pending + self.processing + self.failed
