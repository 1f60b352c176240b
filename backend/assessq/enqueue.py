"""Entry points that put recordings on the assessment queue."""
import logging
from typing import Optional, Tuple

from .errors import DuplicateCandidateError
from .events import queue_events
from .models import Candidate, SourceType
from .queue_store import QueueStore
from .queue_worker import QueueDispatcher, get_dispatcher, get_queue_store
from .schemas import CandidateView, QueueItemView

logger = logging.getLogger(__name__)


def enqueue(
    candidate_id: int,
    priority: int = 0,
    store: Optional[QueueStore] = None,
    dispatcher: Optional[QueueDispatcher] = None,
) -> QueueItemView:
    """
    Queue a candidate's recording for scoring and make sure the dispatcher runs.

    No deduplication is done; callers must not enqueue the same candidate twice.

    Raises:
        SubjectNotFoundError: the candidate does not exist
        QueueStoreError: the queue could not be written
    """
    store = store or get_queue_store()
    dispatcher = dispatcher or get_dispatcher()

    item = store.enqueue(candidate_id, priority=priority)
    logger.info(f"Queued candidate {candidate_id} as item {item.id} (priority {priority})")

    queue_events.broadcast({
        "type": "queue_updated",
        "item_id": item.id,
        "candidate_id": candidate_id,
        "added": 1,
    })

    dispatcher.start()
    return item


def submit_candidate(
    name: str,
    email: str,
    audio_source: str,
    snapshot_url: Optional[str] = None,
    question_id: Optional[str] = None,
    source_type: SourceType = SourceType.MANUAL,
    priority: int = 0,
    store: Optional[QueueStore] = None,
    dispatcher: Optional[QueueDispatcher] = None,
) -> Tuple[CandidateView, QueueItemView]:
    """
    Create a candidate from a submitted recording and queue it.

    Raises:
        DuplicateCandidateError: a candidate with this email already exists
        QueueStoreError: the candidate or queue item could not be written
    """
    store = store or get_queue_store()
    email = email.strip()

    with store.session() as db:
        existing = db.query(Candidate).filter(Candidate.email == email).first()
        if existing:
            raise DuplicateCandidateError(email, existing.name)

        candidate = Candidate(
            name=name.strip(),
            email=email,
            audio_source=audio_source,
            source_type=SourceType(source_type).value,
            snapshot_url=snapshot_url,
            question_id=question_id,
        )
        db.add(candidate)
        db.commit()
        db.refresh(candidate)
        view = CandidateView.model_validate(candidate)

    logger.info(f"Created candidate {view.id} ({view.email})")
    item = enqueue(view.id, priority=priority, store=store, dispatcher=dispatcher)
    return view, item
