"""Failure taxonomy for the assessment queue."""
from enum import Enum
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError


class ErrorKind(str, Enum):
    """Closed set of failure classes the retry policy is defined over."""
    OVERLOADED = "overloaded"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    INFRASTRUCTURE = "infrastructure"


class ErrorStage(str, Enum):
    """Where a scoring failure happened."""
    AUDIO = "audio"  # Fetching the recording
    SCORER = "scorer"  # Calling the model
    RESPONSE = "response"  # Parsing/validating the model output


class ScoringError(Exception):
    """A failed scoring attempt, tagged with its ErrorKind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: Optional[int] = None,
        stage: ErrorStage = ErrorStage.SCORER,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.stage = stage

    @classmethod
    def from_status(
        cls,
        status_code: int,
        message: str,
        stage: ErrorStage = ErrorStage.SCORER,
    ) -> "ScoringError":
        """Map an HTTP status onto the failure taxonomy."""
        if status_code == 503:
            kind = ErrorKind.OVERLOADED
        elif status_code == 429:
            kind = ErrorKind.RATE_LIMITED
        elif status_code >= 500:
            kind = ErrorKind.SERVER_ERROR
        else:
            kind = ErrorKind.CLIENT_ERROR
        return cls(kind, message, status_code=status_code, stage=stage)

    def __repr__(self):
        return f"<ScoringError kind={self.kind.value} status={self.status_code} stage={self.stage.value}>"


class QueueStoreError(Exception):
    """The queue store could not be read or written."""


class SubjectNotFoundError(Exception):
    """The candidate referenced by an enqueue request does not exist."""

    def __init__(self, candidate_id: int):
        super().__init__(f"Candidate {candidate_id} not found")
        self.candidate_id = candidate_id


class DuplicateCandidateError(Exception):
    """A candidate with the same email address already exists."""

    def __init__(self, email: str, existing_name: str):
        super().__init__(f'A candidate with email "{email}" already exists: {existing_name}')
        self.email = email
        self.existing_name = existing_name


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map any exception raised during an attempt onto an ErrorKind."""
    if isinstance(exc, ScoringError):
        return exc.kind
    if isinstance(exc, (SQLAlchemyError, QueueStoreError)):
        return ErrorKind.INFRASTRUCTURE
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.SERVER_ERROR
    return ErrorKind.CLIENT_ERROR


_USER_MESSAGES = {
    ErrorKind.OVERLOADED: "AI service is currently overloaded. The assessment will be retried automatically in a few minutes.",
    ErrorKind.RATE_LIMITED: "AI service rate limit reached. The assessment will be retried automatically.",
    ErrorKind.SERVER_ERROR: "AI service is temporarily unavailable. The assessment will be retried automatically.",
    ErrorKind.CLIENT_ERROR: "An error occurred while processing the assessment",
    ErrorKind.INFRASTRUCTURE: "The assessment could not be saved. It will be retried automatically.",
}


def user_message(exc: BaseException) -> str:
    """Human-readable cause shown on the dashboard; never a stack trace."""
    kind = classify_exception(exc)
    if isinstance(exc, ScoringError) and kind == ErrorKind.CLIENT_ERROR:
        if exc.stage == ErrorStage.AUDIO:
            return "Could not access the audio file. Please check the audio URL and try again."
        if exc.stage == ErrorStage.RESPONSE:
            return "AI service returned invalid results. The assessment will be retried automatically."
    return _USER_MESSAGES[kind]


class QueueItemNotFoundError(Exception):
    """No queue item with the given id."""

    def __init__(self, item_id: int):
        super().__init__(f"Queue item {item_id} not found")
        self.item_id = item_id


class InvalidQueueStateError(Exception):
    """The queue item is not in a state that allows the operation."""
