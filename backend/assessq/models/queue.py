"""Assessment queue model for managing background assessment jobs."""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from ..database import Base


class QueueStatus(str, Enum):
    """Status of a queue item."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Statuses the dispatcher may pick up
ELIGIBLE_STATUSES = (QueueStatus.PENDING.value, QueueStatus.FAILED.value)


class AssessmentQueueItem(Base):
    """A queued assessment job."""

    __tablename__ = "assessment_queue"
    __table_args__ = (
        Index("idx_queue_dispatch", "status", "priority", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    candidate_id = Column(Integer, ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False, index=True)

    # Status tracking
    status = Column(String(20), default=QueueStatus.PENDING.value, nullable=False, index=True)

    # Priority (higher = dispatched first)
    priority = Column(Integer, default=0, nullable=False, index=True)

    # Retry bookkeeping; the item is terminal once retry_count reaches max_retries
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=5, nullable=False)

    # Bumped by every claim; later writes must carry the claim they belong to
    attempt = Column(Integer, default=0, nullable=False)

    batch_id = Column(String(64), nullable=True)

    # Last failure, shown on the dashboard
    error_message = Column(Text, nullable=True)

    # Timestamps; updated_at drives stuck-item detection
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationship
    candidate = relationship("Candidate", back_populates="queue_items")

    @property
    def is_permanently_failed(self) -> bool:
        return self.status == QueueStatus.FAILED.value and self.retry_count >= self.max_retries

    def __repr__(self):
        return f"<QueueItem id={self.id} candidate_id={self.candidate_id} status={self.status}>"
