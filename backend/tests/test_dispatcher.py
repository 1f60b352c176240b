"""Tests for dispatch order, concurrency and end-to-end retry behaviour."""
import json
import threading
import time

import httpx

from assessq.processor import ItemProcessor, ProcessOutcome
from assessq.queue_store import QueueStore
from assessq.queue_worker import QueueDispatcher
from assessq.retry import RetryPolicy
from assessq.scorer import AudioScorer

from conftest import FakeScorer

SCORE_JSON = json.dumps({
    "overall_cefr_level": "B1",
    "detailed_analysis": "Understandable with frequent pauses.",
    "specific_strengths": "Everyday vocabulary.",
    "areas_for_improvement": "Verb tenses.",
    "score_justification": "Can describe experiences simply.",
    "dual_audio_detected": False,
})


class RecordingProcessor:
    """Remembers which items it was given and optionally blocks."""

    def __init__(self, gate: threading.Event = None):
        self.seen = []
        self.gate = gate
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def process(self, item):
        with self._lock:
            self.seen.append(item.candidate_id)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        with self._lock:
            self.active -= 1
        return ProcessOutcome.COMPLETED


def _gemini_transport(statuses):
    """Serve audio, then answer generateContent with each status in turn (200 once exhausted)."""
    calls = {"generate": 0}
    remaining = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=b"ID3fake", headers={"content-type": "audio/mpeg"})
        calls["generate"] += 1
        status = remaining.pop(0) if remaining else 200
        if status != 200:
            return httpx.Response(status, json={"error": {"message": f"upstream {status}"}})
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": SCORE_JSON}]}}],
        })

    return httpx.MockTransport(handler), calls


def _scorer(transport):
    return AudioScorer(
        api_key="test-key",
        model="gemini-test",
        api_base="https://gemini.test/v1beta",
        http_client=httpx.Client(transport=transport),
        retry_policy=RetryPolicy(max_attempts=5, jitter=0.0),
        sleep=lambda _: None,
    )


def test_higher_priority_is_dispatched_first(store, make_candidate, events):
    a = make_candidate()
    b = make_candidate()
    store.enqueue(b, priority=0)
    store.enqueue(a, priority=10)
    processor = RecordingProcessor()
    dispatcher = QueueDispatcher(store, processor, concurrency=1, poll_interval=0, events=events)

    try:
        first = dispatcher.tick()
        dispatcher.drain(timeout=5)
        second = dispatcher.tick()
        dispatcher.drain(timeout=5)
    finally:
        dispatcher.stop(timeout=5)

    assert [item.candidate_id for item in first] == [a]
    assert [item.candidate_id for item in second] == [b]
    assert processor.seen == [a, b]


def test_concurrency_cap_is_never_exceeded(store, make_candidate, events):
    for _ in range(5):
        store.enqueue(make_candidate())
    gate = threading.Event()
    processor = RecordingProcessor(gate)
    dispatcher = QueueDispatcher(store, processor, concurrency=2, poll_interval=0, events=events)

    try:
        assert len(dispatcher.tick()) == 2
        # All slots busy
        assert dispatcher.tick() == []
        assert dispatcher.in_flight_count == 2
        assert store.counts().processing == 2

        gate.set()
        assert dispatcher.drain(timeout=5)
        assert dispatcher.in_flight_count == 0
        assert len(dispatcher.tick()) == 2
        dispatcher.drain(timeout=5)
    finally:
        gate.set()
        dispatcher.stop(timeout=5)

    assert processor.max_active <= 2


def test_completed_item_is_not_dispatched_again(store, make_candidate, events):
    item = store.enqueue(make_candidate())
    scorer = FakeScorer()
    dispatcher = QueueDispatcher(
        store, ItemProcessor(store, scorer, events=events), concurrency=1, poll_interval=0, events=events,
    )

    try:
        dispatcher.tick()
        dispatcher.drain(timeout=5)
        assert dispatcher.tick() == []
    finally:
        dispatcher.stop(timeout=5)

    assert store.get(item.id).status == "completed"
    assert len(scorer.calls) == 1


def test_overload_is_absorbed_within_one_attempt(store, make_candidate, events):
    transport, calls = _gemini_transport([503, 503, 503])
    item = store.enqueue(make_candidate())
    processor = ItemProcessor(store, _scorer(transport), events=events)
    dispatcher = QueueDispatcher(store, processor, concurrency=1, poll_interval=0, events=events)

    try:
        dispatcher.tick()
        dispatcher.drain(timeout=5)
    finally:
        dispatcher.stop(timeout=5)

    done = store.get(item.id)
    assert done.status == "completed"
    assert done.retry_count == 0
    assert calls["generate"] == 4


def test_client_error_exhausts_queue_retries(store, make_candidate, events):
    transport, calls = _gemini_transport([400] * 100)
    item = store.enqueue(make_candidate())
    processor = ItemProcessor(store, _scorer(transport), events=events)
    dispatcher = QueueDispatcher(store, processor, concurrency=1, poll_interval=0, events=events)

    try:
        for _ in range(item.max_retries):
            assert len(dispatcher.tick()) == 1
            dispatcher.drain(timeout=5)
        # Terminal: no further attempts
        assert dispatcher.tick() == []
    finally:
        dispatcher.stop(timeout=5)

    final = store.get(item.id)
    assert final.status == "failed"
    assert final.retry_count == final.max_retries
    assert final.is_permanently_failed
    # Client errors are not retried inside an attempt
    assert calls["generate"] == item.max_retries


def test_background_loop_processes_queue(store, make_candidate, events):
    items = [store.enqueue(make_candidate()) for _ in range(3)]
    scorer = FakeScorer()
    dispatcher = QueueDispatcher(
        store, ItemProcessor(store, scorer, events=events), concurrency=2, poll_interval=0.05, events=events,
    )

    dispatcher.start()
    dispatcher.start()
    assert dispatcher.is_running
    try:
        for _ in range(100):
            if store.counts().completed == 3:
                break
            time.sleep(0.05)
    finally:
        dispatcher.stop(timeout=5)

    assert not dispatcher.is_running
    assert [store.get(item.id).status for item in items] == ["completed"] * 3


def test_status_reports_counts(store, make_candidate, events):
    store.enqueue(make_candidate())
    dispatcher = QueueDispatcher(store, RecordingProcessor(), concurrency=3, poll_interval=0, events=events)

    status = dispatcher.get_status()

    assert status["worker_running"] is False
    assert status["concurrency"] == 3
    assert status["pending"] == 1
    assert status["total"] == 1
    assert status["in_flight"] == []


def test_loop_survives_unexpected_tick_errors(store, make_candidate, events):
    item = store.enqueue(make_candidate())
    calls = []

    def flaky_claim_next(limit):
        calls.append(limit)
        if len(calls) == 1:
            raise ValueError("unexpected")
        return QueueStore.claim_next(store, limit)

    store.claim_next = flaky_claim_next
    dispatcher = QueueDispatcher(
        store, ItemProcessor(store, FakeScorer(), events=events), concurrency=1, poll_interval=0.05, events=events,
    )

    dispatcher.start()
    try:
        for _ in range(100):
            if store.get(item.id).status == "completed":
                break
            time.sleep(0.05)
        assert dispatcher.is_running
    finally:
        dispatcher.stop(timeout=5)

    assert len(calls) >= 2
    assert store.get(item.id).status == "completed"


def test_slots_are_returned_when_executor_is_gone(store, make_candidate, events):
    item = store.enqueue(make_candidate())
    dispatcher = QueueDispatcher(store, RecordingProcessor(), concurrency=2, poll_interval=0, events=events)
    dispatcher._get_executor().shutdown(wait=True)

    assert dispatcher.tick() == []
    assert dispatcher.in_flight_count == 0
    # Both slots are free again
    assert dispatcher._reserve_slots() == 2
    dispatcher._release_slots(2)
    # The claimed item waits for stuck-item recovery
    assert store.get(item.id).status == "processing"
