"""CEFR proficiency criteria and the scoring prompt."""
from typing import Dict, List


CEFR_LEVELS: List[str] = ["A1", "A2", "B1", "B2", "C1", "C2"]

# Traffic-light grade shown on the dashboard
GRADE_BY_LEVEL: Dict[str, str] = {
    "C2": "Green",
    "C1": "Green",
    "B2": "Amber",
    "B1": "Amber",
    "A2": "Red",
    "A1": "Red",
}


def map_cefr_to_grade(level: str) -> str:
    """Convert a CEFR level to a Red/Amber/Green grade."""
    return GRADE_BY_LEVEL.get(level, "Red")


CEFR_ASSESSMENT_PROMPT = """You are an expert multilingual language assessment AI. Evaluate the spoken language in the attached recording using the CEFR (Common European Framework of Reference for Languages) Qualitative Aspects of Spoken Language Use: range, accuracy, fluency, interaction and coherence.

First verify that the recording contains speech. If it does not, assign A1 and explain why.
Identify the language being spoken and apply the CEFR criteria appropriate to it.
Apply standards rigorously but fairly; focus on the quality of language use rather than quantity of speech.
Set dual_audio_detected to true ONLY when an additional human voice is clearly present (not background noise or echo).

Respond with JSON only, in exactly this structure:
{
  "overall_cefr_level": "A1|A2|B1|B2|C1|C2",
  "detailed_analysis": "Vocabulary, grammar, pronunciation, fluency and coherence with specific examples from the recording.",
  "specific_strengths": "What the candidate does well, with concrete examples.",
  "areas_for_improvement": "Specific, actionable suggestions.",
  "score_justification": "Why this level was assigned, referencing evidence from the recording.",
  "dual_audio_detected": false
}"""
