"""End-to-end tests for consult/engine.py with scripted providers."""

import asyncio
import random

import pytest

from consult.errors import ConsultStateError, ConsultValidationError
from consult.models import (
    DISCUSSION,
    DOCTOR,
    ELIMINATED,
    FINISHED,
    PATIENT,
    SETUP,
    VOTE_DETAIL,
    VOTE_RESULT,
)
from consult.providers.base import ProviderError
from tests.conftest import MockProvider, make_doctor, scripted_provider


async def _spin(times: int = 20) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


async def test_three_way_ties_finish_on_stagnation(make_engine, sample_case):
    # Each doctor votes for the next one: 1-1-1 every round.
    providers = {
        "a": scripted_provider("A thinks angina.", vote_target="b"),
        "b": scripted_provider("B thinks reflux.", vote_target="c"),
        "c": scripted_provider("C thinks anxiety.", vote_target="a"),
    }
    engine = make_engine(providers)

    await engine.run(sample_case, [make_doctor("a"), make_doctor("b"), make_doctor("c")])

    assert engine.phase == FINISHED
    assert engine.current_round == 3
    assert engine.rounds_without_elimination == 3
    assert all(d.status == "active" for d in engine.doctors)
    contents = [e.content for e in engine.transcript]
    assert "Round 3 of the consultation begins" in contents
    assert "Round 4 of the consultation begins" not in contents
    assert engine.final_summary.status == "ready"
    assert engine.final_summary.doctor_id == "a"


async def test_unanimous_vote_leaves_one_winner(make_engine, sample_case):
    providers = {
        "a": scripted_provider("A speaks.", vote_target="a"),
        "b": scripted_provider("B speaks.", vote_target="a", summary="Adopted: stable angina."),
    }
    engine = make_engine(providers)

    await engine.run(sample_case, [make_doctor("a"), make_doctor("b")])

    assert engine.phase == FINISHED
    assert engine.current_round == 1
    assert engine.doctors[0].status == ELIMINATED
    assert [d.id for d in engine.active_doctors] == ["b"]
    assert engine.final_summary.status == "ready"
    assert engine.final_summary.doctor_id == "b"
    assert engine.final_summary.content == "Adopted: stable angina."
    assert engine.transcript[-1].content == "Consultation over: Dr. B's answer is adopted."


async def test_start_with_empty_problem_changes_nothing(make_engine, sample_case):
    engine = make_engine({"a": scripted_provider("x")})
    sample_case.current_problem = "   "

    with pytest.raises(ConsultValidationError):
        engine.start(sample_case, [make_doctor("a")])

    assert engine.phase == SETUP
    assert len(engine.transcript) == 0
    assert engine.doctors == []


async def test_start_with_empty_roster_fails(make_engine, sample_case):
    engine = make_engine({})
    with pytest.raises(ConsultValidationError):
        engine.start(sample_case, [])
    assert engine.phase == SETUP


async def test_start_with_duplicate_ids_fails(make_engine, sample_case):
    engine = make_engine({"a": scripted_provider("x")})
    with pytest.raises(ConsultValidationError, match="unique"):
        engine.start(sample_case, [make_doctor("a"), make_doctor("a")])
    assert engine.phase == SETUP


async def test_start_twice_needs_reset(make_engine, sample_case):
    engine = make_engine({"a": scripted_provider("x")})
    await engine.run(sample_case, [make_doctor("a", api_key="")])
    assert engine.phase == FINISHED

    with pytest.raises(ConsultStateError):
        engine.start(sample_case, [make_doctor("a")])

    engine.reset()
    assert engine.phase == SETUP
    await engine.run(sample_case, [make_doctor("a", api_key="")])
    assert engine.phase == FINISHED
    assert engine.final_summary.status == "ready"
    assert engine.final_summary.doctor_id == "a"


async def test_pause_freezes_reveal_and_resumes_at_same_offset(make_engine, sample_case):
    text = "Order a troponin test and an ECG."
    paused_once = False
    engine = None

    def on_change(state):
        nonlocal paused_once
        spoken = [e for e in state.transcript if e.type == DOCTOR]
        if not paused_once and spoken and len(spoken[0].content) == 5:
            paused_once = True
            engine.pause()

    engine = make_engine({"a": MockProvider("mock", text)}, on_change=on_change)
    engine.start(sample_case, [make_doctor("a", api_key="")])

    for _ in range(200):
        if engine.paused:
            break
        await asyncio.sleep(0)
    assert engine.paused

    await _spin(50)
    spoken = [e for e in engine.transcript if e.type == DOCTOR]
    assert spoken[0].content == text[:5]
    assert engine.phase == DISCUSSION

    engine.resume()
    await engine.wait()

    assert spoken[0].content == text
    assert engine.phase == FINISHED


async def test_pause_during_call_applies_result_then_waits(make_engine, sample_case):
    engine = None

    async def reply(prompt, history):
        engine.pause()
        return "Arrived while paused."

    provider = MockProvider("mock")
    provider.generate.side_effect = reply
    engine = make_engine({"a": provider})
    engine.start(sample_case, [make_doctor("a", api_key="")])

    await _spin(50)
    spoken = [e for e in engine.transcript if e.type == DOCTOR]
    assert len(spoken) == 1
    assert spoken[0].content == ""
    assert not any(e.transient for e in engine.transcript)

    engine.toggle_pause()
    assert engine.paused is False
    await engine.wait()
    assert spoken[0].content == "Arrived while paused."


async def test_failed_doctor_adds_exactly_one_entry(make_engine, sample_case):
    failing = MockProvider("mock")
    failing.generate.side_effect = ProviderError("openai", "invalid api key")
    engine = make_engine({"a": failing, "b": scripted_provider("B is fine.", vote_target="a")})

    await engine.run(sample_case, [make_doctor("a", api_key=""), make_doctor("b")])

    spoken = [e for e in engine.transcript if e.type == DOCTOR]
    assert spoken[0].doctor_id == "a"
    assert "invalid api key" in spoken[0].content
    assert not any("is typing" in e.content for e in engine.transcript)


async def test_reset_abandons_in_flight_call(make_engine, sample_case):
    release = asyncio.Event()
    called = asyncio.Event()

    async def reply(prompt, history):
        called.set()
        await release.wait()
        return "Too late."

    provider = MockProvider("mock")
    provider.generate.side_effect = reply
    engine = make_engine({"a": provider, "b": scripted_provider("b")})
    task = engine.start(sample_case, [make_doctor("a"), make_doctor("b")])
    await called.wait()

    engine.reset()
    release.set()
    result = await task

    assert result is None
    assert engine.phase == SETUP
    assert len(engine.transcript) == 0
    assert engine.doctors == []
    assert engine.final_summary.status == "idle"


async def test_reset_wakes_paused_run(make_engine, sample_case):
    engine = make_engine({"a": scripted_provider("x"), "b": scripted_provider("y")})
    task = engine.start(sample_case, [make_doctor("a"), make_doctor("b")])
    engine.pause()
    await _spin()

    engine.reset()
    await asyncio.wait_for(task, timeout=1)

    assert engine.phase == SETUP
    assert engine.paused is False


async def test_reset_restores_constructor_settings(make_engine, sample_case):
    engine = make_engine({})
    engine.update_settings(max_rounds_without_elimination=9, turn_order="random")
    engine.reset()
    assert engine.settings.max_rounds_without_elimination == 3
    assert engine.settings.turn_order == "custom"


async def test_update_settings_rejects_bad_values(make_engine):
    engine = make_engine({})
    with pytest.raises(ValueError):
        engine.update_settings(turn_order="alphabetical")
    with pytest.raises(ValueError):
        engine.update_settings(max_rounds_without_elimination=0)
    assert engine.settings.turn_order == "custom"


async def test_supplement_is_visible_to_next_speaker(make_engine, sample_case):
    engine = None

    async def first(prompt, history):
        engine.submit_supplement("I also have a cough.")
        return "A speaks."

    providers = {"a": MockProvider("mock"), "b": scripted_provider("B speaks.", vote_target="a")}
    providers["a"].generate.side_effect = first
    engine = make_engine(providers)

    await engine.run(sample_case, [make_doctor("a", api_key=""), make_doctor("b")])

    patient = [e for e in engine.transcript if e.type == PATIENT]
    assert len(patient) == 1
    assert patient[0].author == "Patient (Jane Doe)"
    prompt_b, history_b = providers["b"].generate.await_args_list[0].args
    assert "I also have a cough." in prompt_b
    assert {"role": "user", "content": "Patient (Jane Doe): I also have a cough."} in history_b


async def test_blank_supplement_is_ignored(make_engine):
    engine = make_engine({})
    assert engine.submit_supplement("  ") is None
    assert len(engine.transcript) == 0


async def test_finished_phase_never_seen_with_idle_summary(make_engine, sample_case):
    observed = []

    def on_change(state):
        observed.append((state.workflow.phase, state.final_summary.status))

    providers = {
        "a": scripted_provider("A", vote_target="b"),
        "b": scripted_provider("B", vote_target="b"),
    }
    engine = make_engine(providers, on_change=on_change)

    await engine.run(sample_case, [make_doctor("a"), make_doctor("b")])

    finished = [status for phase, status in observed if phase == FINISHED]
    assert finished
    assert "idle" not in finished
    assert finished[-1] == "ready"


async def test_vote_totals_match_voters_each_round(make_engine, sample_case):
    totals = []

    def on_change(state):
        if len(state.transcript) == 0 or state.transcript[-1].type not in (VOTE_DETAIL, VOTE_RESULT):
            return
        if len(state.last_round_votes) == len(state.active_doctors()):
            totals.append((sum(d.votes for d in state.active_doctors()), len(state.last_round_votes)))

    providers = {
        "a": scripted_provider("A", vote_target="b"),
        "b": scripted_provider("B", vote_target="c"),
        "c": scripted_provider("C", vote_target="a"),
    }
    engine = make_engine(providers, on_change=on_change)

    await engine.run(sample_case, [make_doctor("a"), make_doctor("b"), make_doctor("c")])

    assert totals
    assert all(total == voters for total, voters in totals)


async def test_random_order_gives_every_active_doctor_one_turn(make_engine, sample_case, sample_settings):
    providers = {d: scripted_provider(f"{d} speaks", vote_target="a") for d in ("a", "b", "c", "d")}
    sample_settings.turn_order = "random"
    engine = make_engine(providers, rng=random.Random(11))

    await engine.run(
        sample_case,
        [make_doctor(d) for d in ("a", "b", "c", "d")],
        settings=sample_settings,
    )

    # Round 1 eliminates "a"; votes for "a" then fall back to self-votes and tie.
    spoken = [e.doctor_id for e in engine.transcript if e.type == DOCTOR]
    assert engine.current_round == 4
    assert len(spoken) == 4 + 3 * 3
    assert sorted(spoken[:4]) == ["a", "b", "c", "d"]
    for start in (4, 7, 10):
        assert sorted(spoken[start:start + 3]) == ["b", "c", "d"]


async def test_snapshot_hides_typing_placeholder(make_engine, sample_case):
    snapshots = []
    engine = None

    async def reply(prompt, history):
        snapshots.append(engine.snapshot())
        return "ok"

    provider = MockProvider("mock")
    provider.generate.side_effect = reply
    engine = make_engine({"a": provider})
    engine.set_consultation_name("  Chest pain review  ")

    await engine.run(sample_case, [make_doctor("a", api_key="")])

    snap = snapshots[0]
    assert snap["consultation_name"] == "Chest pain review"
    assert snap["workflow"]["phase"] == DISCUSSION
    assert snap["workflow"]["active_turn"] == "a"
    assert [e["content"] for e in snap["transcript"]] == ["Round 1 of the consultation begins"]
    assert snap["doctors"][0]["id"] == "a"
    assert snap["final_summary"]["status"] == "idle"


async def test_single_doctor_still_gets_a_summary(make_engine, sample_case):
    # The lone doctor votes for itself and is eliminated in round 1.
    provider = scripted_provider("Likely GERD.", vote_target="a", summary="GERD; trial of PPI.")
    engine = make_engine({"a": provider})

    await engine.run(sample_case, [make_doctor("a")])

    assert engine.phase == FINISHED
    assert engine.active_doctors == []
    assert engine.transcript[-1].content == "Consultation over: no doctor remains."
    assert engine.final_summary.status == "ready"
    assert engine.final_summary.doctor_id == "a"
    assert engine.final_summary.content == "GERD; trial of PPI."


async def test_snapshot_leaves_out_api_keys(make_engine, sample_case):
    engine = make_engine({})
    engine.set_doctors([make_doctor("a", api_key="sk-secret")])

    snap = engine.snapshot()

    assert "api_key" not in snap["doctors"][0]
    assert "sk-secret" not in repr(snap)
    assert engine.doctors[0].api_key == "sk-secret"


async def test_broken_vote_template_still_reaches_finished(make_engine, sample_case, sample_prompts_config):
    sample_prompts_config.vote = 'CAST YOUR VOTE {"targetDoctorId": "x"}'
    providers = {"a": scripted_provider("A", vote_target="b"), "b": scripted_provider("B", vote_target="a")}
    engine = make_engine(providers)

    await engine.run(sample_case, [make_doctor("a"), make_doctor("b")])

    assert engine.phase == FINISHED
    assert engine.rounds_without_elimination == 3
    assert [(v.voter_id, v.target_id) for v in engine.last_round_votes] == [("a", "a"), ("b", "b")]
    assert engine.final_summary.status == "ready"


async def test_broken_summary_template_ends_in_error(make_engine, sample_case, sample_prompts_config):
    sample_prompts_config.summary = 'Reply as {"diagnosis": ...} {transcript}'
    providers = {"a": scripted_provider("A", vote_target="a"), "b": scripted_provider("B", vote_target="a")}
    engine = make_engine(providers)

    await engine.run(sample_case, [make_doctor("a"), make_doctor("b")])

    assert engine.phase == FINISHED
    assert engine.final_summary.status == "error"
    assert engine.final_summary.content.startswith("Failed to generate the summary:")
