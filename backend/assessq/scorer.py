"""Gemini audio scorer client.

Fetches the candidate's recording, sends it inline to Gemini's
``generateContent`` endpoint together with the CEFR prompt and validates the
structured result. Upstream failures are raised as ScoringError tagged with
the HTTP status class so the retry policy can decide what to do with them.
"""
import base64
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import httpx

from .analysis import CEFR_ASSESSMENT_PROMPT, ScoreResult, parse_score_result
from .config import settings
from .errors import ErrorKind, ErrorStage, ScoringError
from .retry import RetryPolicy, inner_policy, retry_call

logger = logging.getLogger(__name__)

_VOCAROO_ID_PATTERNS = [
    re.compile(r"voca\.ro/([a-zA-Z0-9]+)"),
    re.compile(r"vocaroo\.com/([a-zA-Z0-9]+)"),
]


@dataclass
class AudioPayload:
    """Recording ready to be sent inline."""
    data_base64: str
    mime_type: str


def extract_vocaroo_id(url: str) -> Optional[str]:
    """Return the recording ID of a Vocaroo share link, if it is one."""
    for pattern in _VOCAROO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def vocaroo_media_urls(recording_id: str) -> List[str]:
    """Direct media URLs a Vocaroo recording may be served from."""
    return [
        f"https://media1.vocaroo.com/mp3/{recording_id}",
        f"https://media.vocaroo.com/mp3/{recording_id}",
        f"https://media1.vocaroo.com/mp3/{recording_id}.mp3",
        f"https://media.vocaroo.com/mp3/{recording_id}.mp3",
    ]


class AudioScorer:
    """Scores a recording with Gemini, retrying transient upstream failures."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_base: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = settings.gemini_api_key if api_key is None else api_key
        self.model = model or settings.gemini_model
        self.api_base = (api_base or settings.gemini_api_base).rstrip("/")
        self.http_client = http_client or httpx.Client(
            timeout=settings.scorer_timeout_seconds,
            follow_redirects=True,
        )
        self.retry_policy = retry_policy or inner_policy()
        self._sleep = sleep

    @property
    def model_version(self) -> str:
        return self.model

    def assess(self, audio_url: str) -> ScoreResult:
        """
        Score a recording.

        Args:
            audio_url: Fetchable audio reference (direct URL or Vocaroo link)

        Returns:
            Validated ScoreResult

        Raises:
            ScoringError: once inner retries are exhausted, or immediately
                for non-retryable failures
        """
        if not self.api_key:
            raise ScoringError(ErrorKind.CLIENT_ERROR, "Gemini API key not configured")

        return retry_call(
            lambda: self._assess_once(audio_url),
            self.retry_policy,
            sleep=self._sleep,
            description=f"Scoring {audio_url}",
        )

    def _assess_once(self, audio_url: str) -> ScoreResult:
        audio = self.fetch_audio(audio_url)
        logger.debug(f"Audio fetched ({audio.mime_type}, {len(audio.data_base64)} base64 chars)")
        text = self._generate(audio)
        result = parse_score_result(text)
        logger.info(
            f"Scored {audio_url}: level={result.overall_cefr_level} "
            f"dual_audio={result.dual_audio_detected}"
        )
        return result

    # ==================== Audio ====================

    def fetch_audio(self, audio_url: str) -> AudioPayload:
        """Download a recording, resolving Vocaroo share links first."""
        recording_id = extract_vocaroo_id(audio_url)
        if recording_id is None:
            return self._fetch_direct(audio_url)

        last_error: Optional[ScoringError] = None
        for direct_url in vocaroo_media_urls(recording_id):
            try:
                return self._fetch_direct(direct_url)
            except ScoringError as e:
                logger.debug(f"Vocaroo media URL {direct_url} failed: {e}")
                last_error = e
        raise ScoringError(
            last_error.kind if last_error else ErrorKind.CLIENT_ERROR,
            f"Failed to get Vocaroo audio: {last_error}",
            status_code=last_error.status_code if last_error else None,
            stage=ErrorStage.AUDIO,
        )

    def _fetch_direct(self, url: str) -> AudioPayload:
        try:
            response = self.http_client.get(url, timeout=settings.audio_fetch_timeout_seconds)
        except httpx.TransportError as e:
            raise ScoringError(
                ErrorKind.SERVER_ERROR,
                f"Failed to fetch audio: {e}",
                stage=ErrorStage.AUDIO,
            )

        if not response.is_success:
            raise ScoringError.from_status(
                response.status_code,
                f"Failed to fetch audio: {response.status_code} {response.reason_phrase}",
                stage=ErrorStage.AUDIO,
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("audio/"):
            raise ScoringError(
                ErrorKind.CLIENT_ERROR,
                f"Expected audio file, but got: {content_type or 'unknown'}",
                stage=ErrorStage.AUDIO,
            )

        return AudioPayload(
            data_base64=base64.b64encode(response.content).decode("ascii"),
            mime_type=content_type,
        )

    # ==================== Model ====================

    def _generate(self, audio: AudioPayload) -> str:
        """Send the recording and prompt, returning the model's text."""
        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": CEFR_ASSESSMENT_PROMPT},
                        {"inline_data": {"mime_type": audio.mime_type, "data": audio.data_base64}},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 0.1,
                "topK": 32,
                "topP": 1,
                "maxOutputTokens": 2048,
            },
        }

        try:
            response = self.http_client.post(
                f"{self.api_base}/models/{self.model}:generateContent",
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
            )
        except httpx.TransportError as e:
            raise ScoringError(ErrorKind.SERVER_ERROR, f"Gemini API unreachable: {e}")

        if not response.is_success:
            message = f"Gemini API error: {response.status_code} {response.reason_phrase}"
            try:
                detail = response.json().get("error", {}).get("message")
                if detail:
                    message = detail
            except (ValueError, AttributeError):
                pass
            logger.error(f"Gemini API error {response.status_code}: {message}")
            raise ScoringError.from_status(response.status_code, message)

        try:
            data = response.json()
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise ScoringError(
                ErrorKind.CLIENT_ERROR,
                "Invalid response from Gemini API",
                stage=ErrorStage.RESPONSE,
            )

    def close(self):
        self.http_client.close()


# Global scorer instance
_scorer: Optional[AudioScorer] = None


def get_scorer() -> AudioScorer:
    """Get or create the global scorer."""
    global _scorer
    if _scorer is None:
        _scorer = AudioScorer()
    return _scorer
