from interview_lab.persona.knobs import (
    DEFAULT_BOUNDARIES,
    PersonaKnobs,
    TurnTaking,
    age_bucket,
    choose_voice_profile,
    derive_knobs,
    load_voice_table,
    normalize_personality,
    normalize_tech_level,
)
from interview_lab.persona.prompt import (
    build_rules_appendix,
    build_system_prompt,
    persona_snapshot,
    project_context,
)

__all__ = [
    "DEFAULT_BOUNDARIES",
    "PersonaKnobs",
    "TurnTaking",
    "age_bucket",
    "choose_voice_profile",
    "derive_knobs",
    "load_voice_table",
    "normalize_personality",
    "normalize_tech_level",
    "build_rules_appendix",
    "build_system_prompt",
    "persona_snapshot",
    "project_context",
]
