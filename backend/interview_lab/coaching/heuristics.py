from __future__ import annotations

import re

from interview_lab.coaching.models import SOURCE_HEURISTIC, CoachTip

IGNORE_PHRASES = ("hi", "hello", "hey", "how are you", "good morning", "good afternoon")

HOSTILE_RE = re.compile(
    r"(\bshut up\b|\byou('| a)?re (wrong|dumb|stupid|useless)\b|\bthat'?s dumb\b|\bi (hate|despise) you\b|\byou suck\b"
    r"|\bfuck\b|\bshit\b|\basshole\b|\bbitch\b|\bidiot\b)",
    re.IGNORECASE,
)
PERSONAL_RE = re.compile(r"\b(income|salary|address|medical|religion|school|company|finances?)\b", re.IGNORECASE)
INTERROGATIVE_RE = re.compile(r"\b(which|what|where|who)\b", re.IGNORECASE)
FACT_CHECK_RE = re.compile(r"(just to confirm|to clarify|so you'?re saying|did i get (this|that) right)", re.IGNORECASE)
LEADING_RE = re.compile(r"(don'?t you think|wouldn'?t you say)", re.IGNORECASE)
DOUBLE_BARREL_RE = re.compile(r"(\?\s*and\s+|\?.+\?)", re.IGNORECASE)
RAPPORT_RE = re.compile(r"(\bthanks?\b|\bthank you\b|\bappreciate\b|\bnice to meet\b)", re.IGNORECASE)
OPEN_RE = re.compile(r"^(how|what|why|describe|tell me|walk me|can you tell me about|could you explain)\b", re.IGNORECASE)

SHORT_REPLY_CHARS = 80

# One canned message per category.
CANNED_TIPS: dict[str, CoachTip] = {
    "deescalate_emotion": CoachTip(
        label="deescalate_emotion",
        message="Keep your tone calm and respectful; acknowledge the participant before asking anything else.",
        suggestion="Sorry, let me rephrase that.",
        severity="important",
    ),
    "boundaries": CoachTip(
        label="boundaries",
        message="Avoid asking for specific personal details. Reframe more generally or defer.",
        suggestion="What kind of place do you study in?",
        severity="important",
    ),
    "clarify_gently": CoachTip(
        label="clarify_gently",
        message="Confirming is fine; reflect back in their words and let them correct you.",
        severity="info",
    ),
    "open_over_closed": CoachTip(
        label="open_over_closed",
        message="Try neutral, single-part questions. Ask one thing at a time.",
        severity="nudge",
    ),
    "rapport_to_specifics": CoachTip(
        label="rapport_to_specifics",
        message="Good rapport. Acknowledge briefly, then move toward a concrete recent example.",
        suggestion="Tell me about the last time that happened.",
        severity="info",
    ),
    "affirm_good_move": CoachTip(
        label="affirm_good_move",
        message="Nice open-ended question. Give space and follow up gently.",
        severity="info",
    ),
    "follow_up_opportunity": CoachTip(
        label="follow_up_opportunity",
        message="Consider a soft probe to go deeper on what they just said.",
        suggestion="Could you share a bit more about that?",
        severity="nudge",
    ),
}


def is_greeting_or_short(text: str) -> bool:
    clean = str(text or "").strip().lower()
    if not clean:
        return True
    if len(clean.split()) < 3:
        return True
    return any(clean == phrase or clean.startswith(phrase + " ") for phrase in IGNORE_PHRASES)


def classify_utterance(utterance: str) -> str:
    text = str(utterance or "").strip()
    if HOSTILE_RE.search(text):
        return "deescalate_emotion"
    if PERSONAL_RE.search(text) and INTERROGATIVE_RE.search(text):
        return "boundaries"
    if FACT_CHECK_RE.search(text):
        return "clarify_gently"
    if LEADING_RE.search(text) or DOUBLE_BARREL_RE.search(text):
        return "open_over_closed"
    if RAPPORT_RE.search(text):
        return "rapport_to_specifics"
    if OPEN_RE.match(text):
        return "affirm_good_move"
    return "follow_up_opportunity"


def heuristic_tip(utterance: str, last_persona_reply: str = "") -> CoachTip:
    label = classify_utterance(utterance)
    reply = str(last_persona_reply or "").strip()
    if label == "affirm_good_move" and reply and len(reply) < SHORT_REPLY_CHARS:
        # short answer to the previous open question: nudge to probe instead of praising
        label = "follow_up_opportunity"
    tip = CANNED_TIPS[label]
    return CoachTip(
        label=tip.label,
        message=tip.message,
        severity=tip.severity,
        suggestion=tip.suggestion,
        source=SOURCE_HEURISTIC,
    )
