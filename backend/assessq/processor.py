"""Lifecycle of a single claimed queue item."""
import logging
from enum import Enum
from typing import Optional

from .errors import (
    ErrorKind,
    QueueStoreError,
    ScoringError,
    classify_exception,
    user_message,
)
from .events import QueueEventManager, queue_events
from .queue_store import QueueStore
from .retry import RetryPolicy, outer_policy
from .schemas import CandidateView, QueueItemView
from .scorer import AudioScorer
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


class ProcessOutcome(str, Enum):
    """How an attempt ended."""
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    PERMANENTLY_FAILED = "permanently_failed"
    ABANDONED = "abandoned"  # Store unavailable; left for stuck-item recovery


class ItemProcessor:
    """Scores a claimed item and records the outcome."""

    def __init__(
        self,
        store: QueueStore,
        scorer: AudioScorer,
        artifacts: Optional[ArtifactStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        events: QueueEventManager = queue_events,
    ):
        self.store = store
        self.scorer = scorer
        self.artifacts = artifacts
        self.retry_policy = retry_policy or outer_policy()
        self.events = events

    def process(self, item: QueueItemView) -> ProcessOutcome:
        """
        Run one attempt for an item the dispatcher has already claimed.

        Args:
            item: Snapshot taken at claim time (status processing)

        Returns:
            The outcome of the attempt
        """
        candidate: Optional[CandidateView] = None
        try:
            candidate = self.store.get_candidate(item.candidate_id)
            if candidate is None:
                raise ScoringError(ErrorKind.CLIENT_ERROR, "Candidate not found")

            logger.info(f"Processing queue item {item.id} (candidate {candidate.id})")
            self.events.broadcast({
                "type": "processing",
                "item_id": item.id,
                "candidate_id": candidate.id,
                "candidate_name": candidate.name,
                "status": "processing",
            })

            result = self.scorer.assess(candidate.audio_source)
        except QueueStoreError as e:
            logger.error(f"Queue store unavailable while processing item {item.id}: {e}")
            return ProcessOutcome.ABANDONED
        except Exception as e:
            return self._handle_failure(item, candidate, e)

        try:
            saved = self.store.complete(item, result, model_version=self.scorer.model_version)
        except QueueStoreError as e:
            logger.error(f"Could not save assessment for queue item {item.id}: {e}")
            return ProcessOutcome.ABANDONED
        if not saved:
            return ProcessOutcome.ABANDONED

        self.events.broadcast({
            "type": "completed",
            "item_id": item.id,
            "candidate_id": item.candidate_id,
            "candidate_name": candidate.name,
            "status": "completed",
            "cefr_level": result.overall_cefr_level,
            "grade": result.overall_grade,
            "dual_audio_detected": result.dual_audio_detected,
        })
        logger.info(f"Completed queue item {item.id}: level={result.overall_cefr_level}")
        return ProcessOutcome.COMPLETED

    def _handle_failure(
        self,
        item: QueueItemView,
        candidate: Optional[CandidateView],
        error: Exception,
    ) -> ProcessOutcome:
        kind = classify_exception(error)
        attempts = item.retry_count + 1
        exhausted = attempts >= item.max_retries

        message = user_message(error)
        if exhausted:
            message = f"Assessment failed after {attempts} attempts: {message}"

        logger.warning(f"Queue item {item.id} attempt {attempts} failed ({kind.value}): {error}")

        try:
            updated = self.store.record_failure(item, message)
        except QueueStoreError as e:
            logger.error(f"Could not record failure for queue item {item.id}: {e}")
            return ProcessOutcome.ABANDONED

        self._cleanup_artifacts(candidate)

        if updated is None:
            return ProcessOutcome.ABANDONED

        event = {
            "type": "failed",
            "item_id": item.id,
            "candidate_id": item.candidate_id,
            "status": "failed",
            "error": message[:200],
            "error_kind": kind.value,
            "retry_count": updated.retry_count,
            "permanent": exhausted,
        }

        if exhausted:
            logger.error(f"Queue item {item.id} failed permanently after {attempts} attempts")
            self.events.broadcast(event)
            return ProcessOutcome.PERMANENTLY_FAILED

        # Advisory only: the item is re-picked on whichever tick comes next
        suggested_wait = self.retry_policy.get_delay(attempts - 1)
        event["retry_in_seconds"] = round(suggested_wait)
        logger.info(
            f"Queue item {item.id} will be retried (attempt {attempts + 1}/{item.max_retries}), "
            f"suggested wait {suggested_wait / 60:.1f} min"
        )
        self.events.broadcast(event)
        return ProcessOutcome.RETRY_SCHEDULED

    def _cleanup_artifacts(self, candidate: Optional[CandidateView]):
        """Best-effort removal of the uploaded snapshot; never affects the item."""
        if not candidate or not candidate.snapshot_url or self.artifacts is None:
            return
        if not self.artifacts.owns(candidate.snapshot_url):
            return
        try:
            self.artifacts.delete(candidate.snapshot_url)
        except Exception as e:
            logger.warning(f"Could not delete snapshot from storage: {e}")
