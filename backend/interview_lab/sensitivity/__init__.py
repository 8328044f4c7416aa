from interview_lab.sensitivity.facts import FactStore, build_fact_guidance, extract_facts
from interview_lab.sensitivity.scoring import (
    GUIDANCE_PREFIX,
    SensitivityScore,
    build_guidance_preface,
    is_guidance_preface,
    score_utterance,
)

__all__ = [
    "FactStore",
    "build_fact_guidance",
    "extract_facts",
    "GUIDANCE_PREFIX",
    "SensitivityScore",
    "build_guidance_preface",
    "is_guidance_preface",
    "score_utterance",
]
