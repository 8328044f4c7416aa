from __future__ import annotations

from typing import Any

from interview_lab.persona.knobs import PersonaKnobs, resolve_age, to_string_list


DEFAULT_PROJECT_CONTEXT = "General UX research interview."

_SNAPSHOT_FIELDS = (
    "name",
    "age",
    "occupation",
    "techfamiliarity",
    "personality",
    "goals",
    "frustrations",
    "painpoints",
    "notes",
)


def _clean(value: Any, fallback: str = "Not specified") -> str:
    if value is None:
        return fallback
    if isinstance(value, str):
        return value.strip() or fallback
    if isinstance(value, (list, tuple)):
        items = [_clean(item, "") for item in value]
        items = [item for item in items if item]
        return ", ".join(items) if items else fallback
    return str(value)


def _format_list(value: Any, fallback: str) -> str:
    items = to_string_list(value)
    return ", ".join(items) if items else fallback


def project_context(project: dict[str, Any] | None) -> str:
    if not isinstance(project, dict):
        return DEFAULT_PROJECT_CONTEXT
    parts = []
    for key in ("title", "description"):
        value = project.get(key)
        if isinstance(value, str) and value.strip():
            parts.append(value.strip())
    return " - ".join(parts) or DEFAULT_PROJECT_CONTEXT


def persona_snapshot(persona: dict[str, Any] | None) -> dict[str, Any]:
    record = persona if isinstance(persona, dict) else {}
    snapshot = {key: record.get(key) for key in _SNAPSHOT_FIELDS}
    snapshot["name"] = _clean(record.get("name"), "Participant")
    return snapshot


def build_rules_appendix(persona: dict[str, Any] | None, project: dict[str, Any] | None) -> str:
    record = persona if isinstance(persona, dict) else {}
    lines: list[str] = []

    name = record.get("name")
    if isinstance(name, str) and name.strip():
        lines.append(f"Name rule: Your name is {name.strip()}. Do not change it or invent other names.")

    if record.get("age") is not None:
        lines.append(f"Age rule: You are {resolve_age(record.get('age'))} years old. Do not claim a different age.")

    title = project.get("title") if isinstance(project, dict) else None
    if isinstance(title, str) and title.strip():
        lines.append(
            f'Project rule: You are participating in a research interview for "{title.strip()}". '
            "Do not substitute a different project."
        )

    lines.append(
        "Consistency rule: Do not contradict the persona details above. "
        "If asked for your name/age/role, answer consistently."
    )
    lines.append(
        "Guidance rule: Messages starting with [[guidance]] are private stage directions. "
        "Follow them silently and never read them aloud."
    )

    raw_personality = record.get("personality")
    if isinstance(raw_personality, str) and raw_personality.strip():
        lines.append(
            f"Style rule: Your disposition is '{raw_personality.strip()}'; "
            "reflect this in tone and brevity while staying professional."
        )
    return "\n".join(lines)


def build_system_prompt(
    persona: dict[str, Any] | None,
    project: dict[str, Any] | None,
    knobs: PersonaKnobs,
) -> str:
    record = persona if isinstance(persona, dict) else {}
    proj = project if isinstance(project, dict) else {}

    sections = [
        f"You are {_clean(record.get('name'), 'a real person')}, a real human research participant in a UX interview.",
        "Stay in character at all times.",
        "",
        "## Identity",
        f"Age: {knobs.age}",
        f"Occupation: {_clean(record.get('occupation'))}",
        f"Tech literacy: {knobs.tech_familiarity}",
        f"Personality: {knobs.personality}",
        f"Traits: {', '.join(knobs.traits) if knobs.traits else 'Thoughtful, observant'}",
        f"Goals: {_format_list(record.get('goals'), 'Understand whether the product fits their life')}",
        f"Pain points: {_format_list(record.get('painpoints'), 'None recorded')}",
        f"Frustrations: {_format_list(record.get('frustrations'), 'None recorded')}",
        "",
        "## Context",
        f"Product: {_clean(proj.get('title'), 'Untitled concept')}",
        f"Brief: {project_context(project)}",
        "",
        "## Interaction rules",
        "- Wait for the interviewer to speak first; do not initiate the conversation.",
        "- Answer from lived experience; don't invent product strategy.",
        "- Reveal gradually; share more when the interviewer earns it with good probing.",
        "- Keep memory consistent; if you never stated a specific detail, say you are not sure.",
        f"- Treat these topics as private until trust is built: {', '.join(knobs.boundaries)}.",
        f"- Keep turns under {knobs.turn_taking.max_seconds} seconds of speech unless asked to expand.",
        "",
        "## Behavior knobs (0-1)",
        f"openness={knobs.openness:.2f}",
        f"cautiousness={knobs.cautiousness:.2f}",
        f"speech_rate={knobs.speech_rate:.2f}",
    ]
    base = "\n".join(sections)
    appendix = build_rules_appendix(persona, project)
    return f"{base}\n{appendix}" if appendix else base
