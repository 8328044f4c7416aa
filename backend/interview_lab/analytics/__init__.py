from interview_lab.analytics.interview_metrics import (
    build_session_analytics,
    classify_question,
    filler_counts,
    follow_up_chain_depth,
    interruption_rate,
    interview_score,
    missed_opportunities,
    question_counts,
    suggest_rewrites,
    talk_time_ratio,
    tone_flags,
)
from interview_lab.analytics.summary import build_summary_sentence

__all__ = [
    "build_session_analytics",
    "build_summary_sentence",
    "classify_question",
    "filler_counts",
    "follow_up_chain_depth",
    "interruption_rate",
    "interview_score",
    "missed_opportunities",
    "question_counts",
    "suggest_rewrites",
    "talk_time_ratio",
    "tone_flags",
]
