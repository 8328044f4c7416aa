from interview_lab.persona import derive_knobs
from interview_lab.sensitivity import (
    FactStore,
    build_fact_guidance,
    build_guidance_preface,
    extract_facts,
    is_guidance_preface,
    score_utterance,
)
from interview_lab.sensitivity.facts import UNKNOWN_FACT_GUIDANCE
from interview_lab.sensitivity.scoring import boundary_keywords, detect_boundary_hit


LEVEL_ORDER = {"low": 0, "medium": 1, "high": 2}


def _default_knobs():
    return derive_knobs({}, voice_table={})


def test_address_and_school_question_is_high_sensitivity():
    score = score_utterance("What is your home address and which school do you attend?", _default_knobs(), 0)

    assert score.level == "high"
    assert score.max_sentences == 2
    assert score.boundary_hit is True
    assert "school" in score.matched_keys
    assert "address" in score.matched_keys
    assert score.hesitation_ms == 954


def test_small_talk_is_low_sensitivity():
    score = score_utterance("How was your morning?", _default_knobs(), 0)

    assert score.level == "low"
    assert score.max_sentences == 4
    assert score.hesitation_ms == 212
    assert score.boundary_hit is False


def test_trust_never_raises_sensitivity():
    knobs = _default_knobs()
    scores = [score_utterance("Where do you work these days?", knobs, turns) for turns in range(0, 6)]

    for earlier, later in zip(scores, scores[1:]):
        assert later.risk <= earlier.risk
        assert LEVEL_ORDER[later.level] <= LEVEL_ORDER[earlier.level]
        assert later.disclose_probability >= earlier.disclose_probability
    assert scores[4].trust_factor == 1.0
    assert scores[5].trust_factor == 1.0


def test_risk_and_probability_stay_in_range():
    knobs = derive_knobs({"openness": 0, "cautiousness": 1}, voice_table={})
    score = score_utterance(
        "Why won't you tell me which company, what street address, your email and phone 555-123-4567?",
        knobs,
        0,
    )

    assert score.risk == 4.0
    assert 0.0 <= score.disclose_probability <= 1.0


def test_boundary_keywords_skip_qualifiers():
    assert boundary_keywords("exact address") == ["exact address", "address"]
    assert boundary_keywords("") == []
    assert detect_boundary_hit("tell me about your MEDICAL history", ("medical",)) is True
    assert detect_boundary_hit("tell me about your week", ("medical",)) is False


def test_preface_carries_stage_directives():
    score = score_utterance("What is your home address and which school do you attend?", _default_knobs(), 0)
    preface = build_guidance_preface(score, "(Previously you said your school was: Lincoln High.)")

    assert preface.startswith("[[guidance]] (Previously you said your school was: Lincoln High.) [max_sentences=2]")
    assert "ask a clarifying question" in preface
    assert preface.endswith(f"[disclose_prob={score.disclose_probability:.2f}]")
    assert is_guidance_preface(preface)
    assert not is_guidance_preface("What is your job?")


def test_fact_store_last_write_wins_and_restates_verbatim():
    store = FactStore()
    store.upsert_from("My school is Lincoln High.")
    store.upsert_from("Actually my school is Roosevelt Academy, downtown.")

    guidance, matched = build_fact_guidance("Which school did you go to?", store)

    assert matched == ["school"]
    assert guidance == "(Previously you said your school was: Roosevelt Academy.)"


def test_unknown_fact_asks_persona_not_to_guess():
    guidance, matched = build_fact_guidance("What is your email?", FactStore())

    assert matched == ["email"]
    assert guidance == UNKNOWN_FACT_GUIDANCE


def test_extract_facts_recognises_each_kind():
    facts = dict(
        extract_facts(
            "I work at Acme Corp, since 2019\n"
            "I live at 12 Elm Road; near the park\n"
            "reach me at dana.k@example.com.\n"
            "my phone number is 555-123-4567"
        )
    )

    assert facts["employer"] == "Acme Corp"
    assert facts["address"] == "12 Elm Road"
    assert facts["email"] == "dana.k@example.com"
    assert facts["phone"] == "555-123-4567"


def test_company_key_is_stored_as_employer():
    store = FactStore()

    assert store.set("company", "Globex") is True
    assert store.get("employer") == "Globex"
    assert store.set("favourite colour", "blue") is False
    assert store.snapshot() == {"employer": "Globex"}
