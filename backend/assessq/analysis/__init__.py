"""Scoring criteria and result parsing."""
from .assessor import ScoreResult, parse_score_result, build_assessment
from .criteria import CEFR_LEVELS, CEFR_ASSESSMENT_PROMPT, map_cefr_to_grade

__all__ = [
    "ScoreResult",
    "parse_score_result",
    "build_assessment",
    "CEFR_LEVELS",
    "CEFR_ASSESSMENT_PROMPT",
    "map_cefr_to_grade",
]
