"""Assessment model for scored recordings."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class Assessment(Base):
    """CEFR proficiency assessment produced for a completed queue item."""

    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, index=True)
    candidate_id = Column(Integer, ForeignKey("candidates.id"), nullable=False, index=True)
    queue_item_id = Column(Integer, ForeignKey("assessment_queue.id"), nullable=True, index=True)

    # CEFR level (A1..C2) and the traffic-light grade derived from it
    overall_cefr_level = Column(String(2), nullable=False, index=True)
    overall_grade = Column(String(5), nullable=False, index=True)

    detailed_analysis = Column(Text, nullable=False)
    specific_strengths = Column(Text, nullable=False)
    areas_for_improvement = Column(Text, nullable=False)
    score_justification = Column(Text, nullable=False)
    ai_feedback = Column(Text, nullable=True)

    # Another voice was heard on the recording
    dual_audio_detected = Column(Boolean, default=False, nullable=False, index=True)

    assessed_by = Column(String(100), nullable=False, default="Candidate Submission")
    processing_status = Column(String(20), nullable=False, default="completed")
    question_id = Column(String(64), nullable=True)

    assessment_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Model used for assessment
    model_version = Column(String(50), nullable=True)

    # Relationship
    candidate = relationship("Candidate", back_populates="assessments")

    def __repr__(self):
        return f"<Assessment candidate_id={self.candidate_id} level={self.overall_cefr_level} grade={self.overall_grade}>"
