from interview_lab.persona import build_system_prompt, derive_knobs, persona_snapshot
from interview_lab.persona.knobs import DEFAULT_BOUNDARIES, choose_voice_profile, load_voice_table


def test_senior_guarded_persona_is_reserved_and_slower():
    knobs = derive_knobs({"age": 65, "personality": "guarded"}, voice_table={})

    assert knobs.age == 65
    assert knobs.age_bucket == "senior"
    assert knobs.personality == "reserved"
    assert knobs.speech_rate == 0.9
    assert knobs.turn_taking.max_seconds == 8
    assert knobs.turn_taking.interrupt_on_voice is True


def test_derive_knobs_is_total_over_garbage_input():
    for persona in (None, {}, {"age": "abc", "personality": 42, "techfamiliarity": None}, "not a dict"):
        knobs = derive_knobs(persona, voice_table={})
        assert knobs.age == 35
        assert knobs.age_bucket == "adult"
        assert knobs.personality == "neutral"
        assert knobs.tech_familiarity == "medium"
        assert knobs.speech_rate == 1.0
        assert knobs.boundaries == DEFAULT_BOUNDARIES


def test_derive_knobs_is_deterministic():
    persona = {"age": 22, "personality": "warm and chatty", "techfamiliarity": "expert", "goals": "ship; learn"}
    first = derive_knobs(persona, voice_table={"female_youth": "cfg-young"})
    second = derive_knobs(dict(persona), voice_table={"female_youth": "cfg-young"})

    assert first == second
    assert first.age_bucket == "youth"
    assert first.personality == "warm"
    assert first.tech_familiarity == "high"
    assert first.traits == ("ship", "learn")


def test_voice_profile_prefers_personality_specific_entry():
    table = {"male_adult": "cfg-adult", "male_adult_warm": "cfg-adult-warm"}
    knobs = derive_knobs({"age": 40, "gender": "Male", "personality": "friendly"}, voice_table=table)

    assert knobs.gender == "male"
    assert knobs.voice_profile_id == "cfg-adult-warm"


def test_voice_profile_falls_back_female_then_male_when_gender_unknown():
    assert choose_voice_profile("adult", "neutral", None, {"male_adult": "m", "female_adult": "f"}) == "f"
    assert choose_voice_profile("adult", "neutral", None, {"male_adult": "m"}) == "m"
    assert choose_voice_profile("adult", "neutral", "male", {}, default="fallback") == "fallback"


def test_gender_can_come_from_demographics():
    knobs = derive_knobs({"demographics": {"gender": "f"}, "age": 70}, voice_table={"female_senior": "cfg"})

    assert knobs.gender == "female"
    assert knobs.voice_profile_id == "cfg"


def test_overrides_are_clamped_and_lowercased():
    knobs = derive_knobs(
        {
            "openness": 3,
            "cautiousness": -1,
            "boundaries": "Salary, Health",
            "trustWarmupTurns": 2,
        },
        voice_table={},
    )

    assert knobs.openness == 1.0
    assert knobs.cautiousness == 0.0
    assert knobs.boundaries == ("salary", "health")
    assert knobs.trust_warmup_turns == 2


def test_load_voice_table_reads_prefixed_entries():
    table = load_voice_table({"HUME_CFG_FEMALE_ADULT": " cfg-1 ", "HUME_CFG_MALE_YOUTH": "", "OTHER": "x"})

    assert table == {"female_adult": "cfg-1"}


def test_system_prompt_mentions_persona_and_project(persona):
    knobs = derive_knobs(persona, voice_table={})
    prompt = build_system_prompt(persona, {"title": "Shift scheduling"}, knobs)

    assert "Dana" in prompt
    assert "Shift scheduling" in prompt
    assert persona_snapshot(persona)["name"] == "Dana"
    assert persona_snapshot(None)["name"] == "Participant"
