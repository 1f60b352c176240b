"""Tests for retry policies and the failure taxonomy."""
import httpx
import pytest
from sqlalchemy.exc import OperationalError

from assessq.errors import (
    ErrorKind,
    ErrorStage,
    QueueStoreError,
    ScoringError,
    classify_exception,
    user_message,
)
from assessq.retry import RETRYABLE, RetryPolicy, is_retryable, outer_policy, retry_call


def test_every_error_kind_has_a_retry_decision():
    assert set(RETRYABLE) == set(ErrorKind)
    assert is_retryable(ErrorKind.OVERLOADED)
    assert is_retryable(ErrorKind.RATE_LIMITED)
    assert is_retryable(ErrorKind.SERVER_ERROR)
    assert not is_retryable(ErrorKind.CLIENT_ERROR)
    assert not is_retryable(ErrorKind.INFRASTRUCTURE)


def test_delay_grows_exponentially_and_is_capped():
    policy = RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=3.0, exponential_base=1.5, jitter=0.0)
    assert policy.get_delay(0) == pytest.approx(1.0)
    assert policy.get_delay(1) == pytest.approx(1.5)
    assert policy.get_delay(2) == pytest.approx(2.25)
    assert policy.get_delay(3) == pytest.approx(3.0)
    assert policy.get_delay(10) == pytest.approx(3.0)


def test_jitter_adds_at_most_the_configured_fraction():
    policy = RetryPolicy(base_delay_seconds=10.0, max_delay_seconds=100.0, exponential_base=1.0, jitter=0.2)
    for _ in range(50):
        assert 10.0 <= policy.get_delay(0) <= 12.0


def test_outer_policy_is_deterministic_minutes():
    policy = outer_policy()
    assert policy.jitter == 0.0
    assert policy.get_delay(0) == pytest.approx(60.0)
    assert policy.get_delay(1) == pytest.approx(120.0)
    assert policy.get_delay(20) == pytest.approx(3600.0)


def test_retry_call_retries_overload_until_success():
    sleeps = []
    outcomes = [
        ScoringError(ErrorKind.OVERLOADED, "busy", status_code=503),
        ScoringError(ErrorKind.RATE_LIMITED, "slow down", status_code=429),
        "ok",
    ]

    def fn():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    policy = RetryPolicy(max_attempts=5, jitter=0.0)
    assert retry_call(fn, policy, sleep=sleeps.append) == "ok"
    assert sleeps == [pytest.approx(1.0), pytest.approx(1.5)]


def test_retry_call_does_not_retry_client_errors():
    calls = []

    def fn():
        calls.append(1)
        raise ScoringError(ErrorKind.CLIENT_ERROR, "bad request", status_code=400)

    with pytest.raises(ScoringError) as exc_info:
        retry_call(fn, RetryPolicy(), sleep=lambda _: None)
    assert exc_info.value.kind == ErrorKind.CLIENT_ERROR
    assert len(calls) == 1


def test_retry_call_gives_up_after_max_attempts():
    calls = []

    def fn():
        calls.append(1)
        raise ScoringError(ErrorKind.SERVER_ERROR, "boom", status_code=500)

    with pytest.raises(ScoringError):
        retry_call(fn, RetryPolicy(max_attempts=3), sleep=lambda _: None)
    # First try plus three retries
    assert len(calls) == 4


@pytest.mark.parametrize("status,kind", [
    (503, ErrorKind.OVERLOADED),
    (429, ErrorKind.RATE_LIMITED),
    (500, ErrorKind.SERVER_ERROR),
    (502, ErrorKind.SERVER_ERROR),
    (400, ErrorKind.CLIENT_ERROR),
    (404, ErrorKind.CLIENT_ERROR),
])
def test_status_codes_map_onto_error_kinds(status, kind):
    assert ScoringError.from_status(status, "x").kind == kind


def test_classify_exception_covers_non_scoring_failures():
    assert classify_exception(QueueStoreError("down")) == ErrorKind.INFRASTRUCTURE
    assert classify_exception(OperationalError("SELECT 1", {}, Exception("locked"))) == ErrorKind.INFRASTRUCTURE
    assert classify_exception(httpx.ConnectError("refused")) == ErrorKind.SERVER_ERROR
    assert classify_exception(ValueError("unexpected")) == ErrorKind.CLIENT_ERROR


def test_user_messages_never_leak_internal_detail():
    overloaded = user_message(ScoringError(ErrorKind.OVERLOADED, "upstream said 503 with trace"))
    assert "overloaded" in overloaded
    assert "trace" not in overloaded

    audio = user_message(ScoringError(ErrorKind.CLIENT_ERROR, "404", stage=ErrorStage.AUDIO))
    assert audio.startswith("Could not access the audio file")

    response = user_message(ScoringError(ErrorKind.CLIENT_ERROR, "bad json", stage=ErrorStage.RESPONSE))
    assert response.startswith("AI service returned invalid results")

    assert user_message(KeyError("oops")) == "An error occurred while processing the assessment"
