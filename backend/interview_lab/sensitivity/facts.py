from __future__ import annotations

import re
from threading import Lock


FACT_KEYS = ("school", "employer", "address", "email", "phone")

UNKNOWN_FACT_GUIDANCE = "(You do not know this. Say you're not sure and ask a clarifying question; do not guess.)"

_VALUE_STOP = re.compile(r"[.;,!\n\r]")

_SCHOOL_PATTERNS = (
    re.compile(r"(?:my|the)?\s*school\s*(?:is|was|called)\s+(.+)", re.IGNORECASE),
    re.compile(r"studied\s+at\s+(.+)", re.IGNORECASE),
)
_EMPLOYER_PATTERN = re.compile(r"(?:i\s+work\s+at|my\s+company\s+is|employed\s+at)\s+(.+)", re.IGNORECASE)
_ADDRESS_PATTERN = re.compile(r"(?:my\s+address\s+is|i\s+live\s+at)\s+(.+)", re.IGNORECASE)
_EMAIL_PATTERNS = (
    re.compile(r"my\s+email\s+is\s+(\S+)", re.IGNORECASE),
    re.compile(r"([a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,})", re.IGNORECASE),
)
_PHONE_PATTERN = re.compile(r"my\s+phone\s+(?:number\s+)?is\s+([\d\-\s]{7,})", re.IGNORECASE)

_TOPIC_PATTERNS = (
    ("school", re.compile(r"school|university|college")),
    ("employer", re.compile(r"company|employer|work\s+at")),
    ("address", re.compile(r"address|street|road|st\.?\s")),
    ("email", re.compile(r"email|@")),
    ("phone", re.compile(r"phone|number")),
)


def _cut_value(raw: str) -> str:
    return _VALUE_STOP.split(str(raw or ""), maxsplit=1)[0].strip()


def _first_match(patterns, line: str) -> str:
    for pattern in patterns:
        match = pattern.search(line)
        if match:
            return match.group(1)
    return ""


def extract_facts(text: str) -> list[tuple[str, str]]:
    facts: list[tuple[str, str]] = []
    for line in re.split(r"\n+", str(text or "").strip()):
        line = line.strip()
        if not line:
            continue

        school = _cut_value(_first_match(_SCHOOL_PATTERNS, line))
        if school:
            facts.append(("school", school))

        employer = _cut_value(_first_match((_EMPLOYER_PATTERN,), line))
        if employer:
            facts.append(("employer", employer))

        address = _cut_value(_first_match((_ADDRESS_PATTERN,), line))
        if address:
            facts.append(("address", address))

        # emails keep their dots, only trailing sentence punctuation is dropped
        email = _first_match(_EMAIL_PATTERNS, line).strip().rstrip(".,;!")
        if email:
            facts.append(("email", email))

        phone = _cut_value(_first_match((_PHONE_PATTERN,), line))
        if phone:
            facts.append(("phone", phone))
    return facts


def detect_fact_topics(text: str) -> list[str]:
    lowered = str(text or "").lower()
    return [key for key, pattern in _TOPIC_PATTERNS if pattern.search(lowered)]


class FactStore:
    """Per-session memory of facts stated during the interview; last statement wins."""

    def __init__(self):
        self._lock = Lock()
        self._facts: dict[str, str] = {}

    def set(self, key: str, value: str) -> bool:
        normalized = str(key or "").strip().lower()
        clean = str(value or "").strip()
        if normalized == "company":
            normalized = "employer"
        if normalized not in FACT_KEYS or not clean:
            return False
        with self._lock:
            self._facts[normalized] = clean
        return True

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._facts.get(str(key or "").strip().lower())

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def upsert_from(self, text: str) -> list[tuple[str, str]]:
        extracted = extract_facts(text)
        for key, value in extracted:
            self.set(key, value)
        return extracted

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._facts)

    def clear(self) -> None:
        with self._lock:
            self._facts.clear()


def build_fact_guidance(text: str, store: FactStore) -> tuple[str, list[str]]:
    matched = detect_fact_topics(text)
    pieces: list[str] = []
    for key in matched:
        value = store.get(key)
        if value is None:
            pieces.append(UNKNOWN_FACT_GUIDANCE)
        else:
            pieces.append(f"(Previously you said your {key} was: {value}.)")
    return " ".join(pieces), matched
