"""Parsing and validation of scorer output into assessment records."""
import json
import logging
import re
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from ..errors import ErrorKind, ErrorStage, ScoringError
from ..models import Assessment
from .criteria import CEFR_LEVELS, map_cefr_to_grade

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

REQUIRED_TEXT_FIELDS = (
    "detailed_analysis",
    "specific_strengths",
    "areas_for_improvement",
    "score_justification",
)


class ScoreResult(BaseModel):
    """Structured result returned by the scorer."""
    overall_cefr_level: Literal["A1", "A2", "B1", "B2", "C1", "C2"]
    detailed_analysis: str = Field(min_length=1)
    specific_strengths: str = Field(min_length=1)
    areas_for_improvement: str = Field(min_length=1)
    score_justification: str = Field(min_length=1)
    dual_audio_detected: bool = False

    @property
    def overall_grade(self) -> str:
        return map_cefr_to_grade(self.overall_cefr_level)


def _invalid(message: str) -> ScoringError:
    return ScoringError(ErrorKind.CLIENT_ERROR, message, stage=ErrorStage.RESPONSE)


def parse_score_result(text: str) -> ScoreResult:
    """
    Extract and validate the JSON object in a scorer response.

    Raises:
        ScoringError: CLIENT_ERROR at the response stage when the output is
            missing, malformed or carries an unsupported level.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise _invalid("Could not extract JSON from scorer response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise _invalid(f"Invalid assessment result: {e}")

    if not isinstance(data, dict):
        raise _invalid("Invalid assessment result: expected a JSON object")

    for field in REQUIRED_TEXT_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise _invalid(f"Invalid assessment result: missing or invalid {field}")

    if data.get("overall_cefr_level") not in CEFR_LEVELS:
        raise _invalid(f"Invalid CEFR level: {data.get('overall_cefr_level')}")

    if not isinstance(data.get("dual_audio_detected"), bool):
        logger.warning("dual_audio_detected missing or invalid, defaulting to false")
        data["dual_audio_detected"] = False

    try:
        return ScoreResult.model_validate(data)
    except ValidationError as e:
        raise _invalid(f"Invalid assessment result: {e.errors()[0]['msg']}")


def build_assessment(
    result: ScoreResult,
    candidate_id: int,
    queue_item_id: Optional[int] = None,
    question_id: Optional[str] = None,
    model_version: Optional[str] = None,
) -> Assessment:
    """Create (but do not persist) the Assessment row for a scored recording."""
    return Assessment(
        candidate_id=candidate_id,
        queue_item_id=queue_item_id,
        overall_cefr_level=result.overall_cefr_level,
        overall_grade=result.overall_grade,
        detailed_analysis=result.detailed_analysis,
        specific_strengths=result.specific_strengths,
        areas_for_improvement=result.areas_for_improvement,
        score_justification=result.score_justification,
        ai_feedback=result.detailed_analysis,
        dual_audio_detected=result.dual_audio_detected,
        assessed_by="Candidate Submission",
        processing_status="completed",
        question_id=question_id,
        model_version=model_version,
    )
