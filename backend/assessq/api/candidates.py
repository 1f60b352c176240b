"""Candidates API endpoints."""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from datetime import datetime

from ..database import get_db
from ..enqueue import submit_candidate
from ..errors import DuplicateCandidateError, QueueStoreError
from ..models import Assessment, Candidate, SourceType
from ..queue_store import QueueStore
from ..queue_worker import QueueDispatcher, get_dispatcher, get_queue_store
from ..schemas import CandidateView, QueueItemView

router = APIRouter()


class CandidateSubmission(BaseModel):
    """A recording submitted for assessment."""
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    audio_source: str = Field(..., min_length=1)
    snapshot_url: Optional[str] = None
    question_id: Optional[str] = None
    source_type: SourceType = SourceType.MANUAL
    priority: int = Field(0, ge=-100, le=100)


class SubmissionResponse(BaseModel):
    """Created candidate and its queue item."""
    candidate: CandidateView
    queue_item: QueueItemView


class CandidateResponse(BaseModel):
    """Candidate response schema."""
    id: int
    name: str
    email: str
    audio_source: str
    source_type: str
    snapshot_url: Optional[str]
    question_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AssessmentResponse(BaseModel):
    """Assessment response schema."""
    id: int
    candidate_id: int
    queue_item_id: Optional[int]
    overall_cefr_level: str
    overall_grade: str
    detailed_analysis: str
    specific_strengths: str
    areas_for_improvement: str
    score_justification: str
    dual_audio_detected: bool
    assessment_date: datetime
    model_version: Optional[str]

    class Config:
        from_attributes = True


@router.post("/", response_model=SubmissionResponse, status_code=201)
def submit(
    submission: CandidateSubmission,
    store: QueueStore = Depends(get_queue_store),
    dispatcher: QueueDispatcher = Depends(get_dispatcher),
):
    """Create a candidate from a submitted recording and queue it for assessment."""
    try:
        candidate, item = submit_candidate(
            name=submission.name,
            email=submission.email,
            audio_source=submission.audio_source,
            snapshot_url=submission.snapshot_url,
            question_id=submission.question_id,
            source_type=submission.source_type,
            priority=submission.priority,
            store=store,
            dispatcher=dispatcher,
        )
    except DuplicateCandidateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except QueueStoreError:
        raise HTTPException(status_code=503, detail="Queue store unavailable")

    return SubmissionResponse(candidate=candidate, queue_item=item)


@router.get("/{candidate_id}", response_model=CandidateResponse)
def get_candidate(candidate_id: int, db: Session = Depends(get_db)):
    """Get a single candidate by ID."""
    candidate = db.query(Candidate).filter(Candidate.id == candidate_id).first()
    if not candidate:
        raise HTTPException(status_code=404, detail="Candidate not found")
    return candidate


@router.get("/{candidate_id}/assessments", response_model=List[AssessmentResponse])
def get_candidate_assessments(candidate_id: int, db: Session = Depends(get_db)):
    """Get all assessments for a candidate, newest first."""
    candidate = db.query(Candidate).filter(Candidate.id == candidate_id).first()
    if not candidate:
        raise HTTPException(status_code=404, detail="Candidate not found")

    return db.query(Assessment).filter(
        Assessment.candidate_id == candidate_id
    ).order_by(Assessment.assessment_date.desc()).all()
