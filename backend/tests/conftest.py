"""Shared fixtures: a throwaway SQLite queue and fake collaborators."""
import itertools
import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from assessq.analysis import ScoreResult
from assessq.database import create_db_engine, init_db
from assessq.events import QueueEventManager
from assessq.models import Candidate
from assessq.processor import ItemProcessor
from assessq.queue_store import QueueStore
from assessq.queue_worker import QueueDispatcher


def make_result(level: str = "B2", dual_audio: bool = False) -> ScoreResult:
    return ScoreResult(
        overall_cefr_level=level,
        detailed_analysis="Clear pronunciation with minor hesitations.",
        specific_strengths="Good range of vocabulary.",
        areas_for_improvement="Complex grammatical structures.",
        score_justification="Fluent on familiar topics.",
        dual_audio_detected=dual_audio,
    )


class FakeScorer:
    """Returns queued outcomes in order; an exception outcome is raised."""

    model_version = "fake-model"

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []
        self._lock = threading.Lock()

    def assess(self, audio_url):
        with self._lock:
            self.calls.append(audio_url)
            outcome = self.outcomes.pop(0) if self.outcomes else make_result()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingDispatcher(QueueDispatcher):
    """Dispatcher whose background loop is never started."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.start_calls = 0

    def start(self):
        self.start_calls += 1


class Clock:
    """Settable clock for time-dependent checks."""

    def __init__(self, now: datetime = None):
        self.now = now or datetime.utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'queue.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def store(session_factory):
    return QueueStore(session_factory=session_factory, max_retries=5)


@pytest.fixture
def events():
    return QueueEventManager()


@pytest.fixture
def make_candidate(session_factory):
    """Insert a candidate and return its id."""
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        fields = {
            "name": f"Candidate {n}",
            "email": f"candidate{n}@example.com",
            "audio_source": f"https://files.example.com/audio/{n}.mp3",
        }
        fields.update(overrides)
        db = session_factory()
        try:
            candidate = Candidate(**fields)
            db.add(candidate)
            db.commit()
            db.refresh(candidate)
            return candidate.id
        finally:
            db.close()

    return _make


@pytest.fixture
def dispatcher(store, events):
    """Dispatcher driven by explicit ticks only."""
    return RecordingDispatcher(store, ItemProcessor(store, FakeScorer(), events=events), events=events)
