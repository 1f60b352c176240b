"""Access layer for the persisted assessment queue.

Every state transition is a single conditional UPDATE on the current status,
so an item can only be claimed by one worker even if several dispatchers
poll the same table.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .analysis import ScoreResult, build_assessment
from .config import settings
from .database import SessionLocal
from .errors import (
    InvalidQueueStateError,
    QueueItemNotFoundError,
    QueueStoreError,
    SubjectNotFoundError,
)
from .models import AssessmentQueueItem, Candidate, QueueStatus, ELIGIBLE_STATUSES
from .schemas import CandidateView, QueueCounts, QueueItemView

logger = logging.getLogger(__name__)

Item = AssessmentQueueItem


class QueueStore:
    """Reads and writes queue items."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        max_retries: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.max_retries = settings.max_retries if max_retries is None else max_retries

    @contextmanager
    def session(self):
        """Session scope that turns database failures into QueueStoreError."""
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise QueueStoreError(str(e)) from e
        finally:
            db.close()

    # ==================== Enqueue ====================

    def enqueue(self, candidate_id: int, priority: int = 0, batch_id: Optional[str] = None) -> QueueItemView:
        """Insert a pending item for an existing candidate."""
        with self.session() as db:
            exists = db.query(Candidate.id).filter(Candidate.id == candidate_id).first()
            if not exists:
                raise SubjectNotFoundError(candidate_id)

            now = datetime.utcnow()
            item = Item(
                candidate_id=candidate_id,
                status=QueueStatus.PENDING.value,
                priority=priority,
                retry_count=0,
                max_retries=self.max_retries,
                batch_id=batch_id,
                created_at=now,
                updated_at=now,
            )
            db.add(item)
            db.commit()
            db.refresh(item)
            return QueueItemView.model_validate(item)

    # ==================== Reads ====================

    def get(self, item_id: int) -> Optional[QueueItemView]:
        with self.session() as db:
            item = db.query(Item).filter(Item.id == item_id).first()
            return QueueItemView.model_validate(item) if item else None

    def get_candidate(self, candidate_id: int) -> Optional[CandidateView]:
        with self.session() as db:
            candidate = db.query(Candidate).filter(Candidate.id == candidate_id).first()
            return CandidateView.model_validate(candidate) if candidate else None

    def list_items(self, status: Optional[str] = None, limit: int = 50) -> List[QueueItemView]:
        with self.session() as db:
            query = db.query(Item)
            if status:
                query = query.filter(Item.status == status)
            items = query.order_by(Item.priority.desc(), Item.created_at.desc()).limit(limit).all()
            return [QueueItemView.model_validate(item) for item in items]

    def fetch_eligible(self, limit: int) -> List[QueueItemView]:
        """
        Items the dispatcher may pick, highest priority then oldest first.

        Failed items stay eligible until retry_count reaches max_retries.
        """
        if limit <= 0:
            return []
        with self.session() as db:
            items = db.query(Item).filter(
                Item.status.in_(ELIGIBLE_STATUSES),
                Item.retry_count < Item.max_retries,
            ).order_by(
                Item.priority.desc(),
                Item.created_at.asc(),
                Item.id.asc(),
            ).limit(limit).all()
            return [QueueItemView.model_validate(item) for item in items]

    def counts(self) -> QueueCounts:
        with self.session() as db:
            def count(status: QueueStatus) -> int:
                return db.query(Item).filter(Item.status == status.value).count()

            counts = QueueCounts(
                pending=count(QueueStatus.PENDING),
                processing=count(QueueStatus.PROCESSING),
                completed=count(QueueStatus.COMPLETED),
                failed=count(QueueStatus.FAILED),
            )
            counts.permanently_failed = db.query(Item).filter(
                Item.status == QueueStatus.FAILED.value,
                Item.retry_count >= Item.max_retries,
            ).count()
            return counts

    def ping(self) -> None:
        """Round-trip to the database."""
        with self.session() as db:
            db.execute(text("SELECT 1"))

    # ==================== Transitions ====================

    def claim(self, item_id: int) -> Optional[QueueItemView]:
        """
        Atomically move an eligible item to processing.

        Returns:
            The claimed item, or None if another worker got there first or
            the item is no longer eligible
        """
        with self.session() as db:
            updated = db.query(Item).filter(
                Item.id == item_id,
                Item.status.in_(ELIGIBLE_STATUSES),
                Item.retry_count < Item.max_retries,
            ).update(
                {
                    Item.status: QueueStatus.PROCESSING.value,
                    Item.error_message: None,
                    Item.attempt: Item.attempt + 1,
                    Item.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            db.commit()
            if updated != 1:
                return None
            item = db.query(Item).filter(Item.id == item_id).first()
            return QueueItemView.model_validate(item)

    def claim_next(self, limit: int) -> List[QueueItemView]:
        """Claim up to ``limit`` eligible items in dispatch order."""
        claimed = []
        for candidate in self.fetch_eligible(limit):
            item = self.claim(candidate.id)
            if item is not None:
                claimed.append(item)
            else:
                logger.debug(f"Queue item {candidate.id} was claimed elsewhere")
        return claimed

    def complete(self, item: QueueItemView, result: ScoreResult, model_version: Optional[str] = None) -> bool:
        """Persist the assessment and mark the item completed in one transaction."""
        with self.session() as db:
            updated = db.query(Item).filter(
                Item.id == item.id,
                Item.status == QueueStatus.PROCESSING.value,
                Item.attempt == item.attempt,
            ).update(
                {
                    Item.status: QueueStatus.COMPLETED.value,
                    Item.error_message: None,
                    Item.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            if updated != 1:
                db.rollback()
                logger.warning(f"Queue item {item.id} was no longer held by attempt {item.attempt}; result discarded")
                return False

            candidate = db.query(Candidate).filter(Candidate.id == item.candidate_id).first()
            db.add(build_assessment(
                result,
                candidate_id=item.candidate_id,
                queue_item_id=item.id,
                question_id=candidate.question_id if candidate else None,
                model_version=model_version,
            ))
            db.commit()
            return True

    def record_failure(self, item: QueueItemView, error_message: str) -> Optional[QueueItemView]:
        """
        Mark a processing item failed and count the attempt.

        The write is a compare-and-swap on the attempt and retry_count seen
        at claim time, so each attempt increments it exactly once and a
        stale attempt cannot touch a re-claimed item.

        Returns:
            The updated item, or None if it changed under us
        """
        new_count = min(item.retry_count + 1, item.max_retries)
        with self.session() as db:
            updated = db.query(Item).filter(
                Item.id == item.id,
                Item.status == QueueStatus.PROCESSING.value,
                Item.attempt == item.attempt,
                Item.retry_count == item.retry_count,
            ).update(
                {
                    Item.status: QueueStatus.FAILED.value,
                    Item.retry_count: new_count,
                    Item.error_message: error_message[:500],
                    Item.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            db.commit()
            if updated != 1:
                logger.warning(f"Queue item {item.id} changed before its failure could be recorded")
                return None
            row = db.query(Item).filter(Item.id == item.id).first()
            return QueueItemView.model_validate(row)

    def reset_stuck(self, older_than: datetime, message: str) -> List[int]:
        """Move processing items not updated since ``older_than`` back to pending."""
        with self.session() as db:
            stuck_ids = [
                row.id for row in db.query(Item.id).filter(
                    Item.status == QueueStatus.PROCESSING.value,
                    Item.updated_at < older_than,
                ).all()
            ]
            if not stuck_ids:
                return []

            reset_ids = []
            for item_id in stuck_ids:
                updated = db.query(Item).filter(
                    Item.id == item_id,
                    Item.status == QueueStatus.PROCESSING.value,
                    Item.updated_at < older_than,
                ).update(
                    {
                        Item.status: QueueStatus.PENDING.value,
                        Item.error_message: message,
                        Item.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
                if updated == 1:
                    reset_ids.append(item_id)
            db.commit()
            return reset_ids

    # ==================== Housekeeping ====================

    def cancel(self, item_id: int) -> QueueItemView:
        """Delete a pending item."""
        with self.session() as db:
            item = db.query(Item).filter(Item.id == item_id).first()
            if not item:
                raise QueueItemNotFoundError(item_id)
            deleted = db.query(Item).filter(
                Item.id == item_id,
                Item.status == QueueStatus.PENDING.value,
            ).delete(synchronize_session=False)
            if deleted != 1:
                raise InvalidQueueStateError(f"Cannot cancel item with status '{item.status}'")
            view = QueueItemView.model_validate(item)
            db.commit()
            return view

    def clear(self, statuses: Iterable[str] = (QueueStatus.COMPLETED.value, QueueStatus.FAILED.value)) -> int:
        """Delete items in the given statuses (completed and failed by default)."""
        with self.session() as db:
            removed = db.query(Item).filter(
                Item.status.in_(list(statuses))
            ).delete(synchronize_session=False)
            db.commit()
            return removed
