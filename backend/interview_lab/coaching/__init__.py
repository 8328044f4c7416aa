from interview_lab.coaching.advisor import Advisor, OpenAIAdvisor, sanitize_tip
from interview_lab.coaching.engine import CoachingCueEngine, CoachRatePolicy, advise_or_fallback
from interview_lab.coaching.heuristics import heuristic_tip, is_greeting_or_short
from interview_lab.coaching.models import LABELS, SEVERITIES, CoachRequest, CoachTip

__all__ = [
    "Advisor",
    "CoachRatePolicy",
    "CoachRequest",
    "CoachTip",
    "CoachingCueEngine",
    "LABELS",
    "OpenAIAdvisor",
    "SEVERITIES",
    "advise_or_fallback",
    "heuristic_tip",
    "is_greeting_or_short",
    "sanitize_tip",
]
