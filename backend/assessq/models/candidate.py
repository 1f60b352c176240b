"""Candidate model: the subject a queue item scores."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.orm import relationship
import enum

from ..database import Base


class SourceType(str, enum.Enum):
    """How the recording reached the system."""
    AUTO = "auto"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class Candidate(Base):
    """A candidate and the recording submitted for assessment."""

    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(200), nullable=False)
    email = Column(String(320), nullable=False, unique=True, index=True)

    # Fetchable audio reference (uploaded file URL or share link)
    audio_source = Column(Text, nullable=False)
    source_type = Column(String(20), default=SourceType.MANUAL, nullable=False)

    # Webcam snapshot uploaded alongside the recording
    snapshot_url = Column(Text, nullable=True)

    question_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    assessments = relationship("Assessment", back_populates="candidate", cascade="all, delete-orphan")
    queue_items = relationship("AssessmentQueueItem", back_populates="candidate", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Candidate id={self.id} email={self.email}>"
