"""Tests for src/engine.py."""

import asyncio
import logging
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from config.config_loader import DebateConfig, VerdictRules
from src.engine import INTERJECTION_PHASE, DebateEngine
from src.errors import (
    DebateError,
    DebateSetupError,
    PhaseAdvanceRejected,
    VerdictRequestRejected,
    VerdictTimeoutError,
)
from src.models import Classification, DebateState, LateTurn, Turn
from src.phases import PHASES, speaker_mode
from tests.conftest import SAMPLE_VERDICT, MockAgent, MockChatAgent, cited

TOPIC = "核能是实现碳中和的必要手段"


async def _start(engine: DebateEngine) -> None:
    await engine.start(TOPIC, "claude", "openai", "gemini")


def _answer_current_phase(engine: DebateEngine, agents: dict[str, MockAgent]) -> None:
    for agent_id in sorted(engine.session.pending_responses):
        agents[agent_id].reply(cited(f"{agent_id} speaks in {engine.current_phase}"))


async def _run_all_phases(engine: DebateEngine, agents: dict[str, MockAgent]) -> None:
    await _start(engine)
    _answer_current_phase(engine, agents)
    while engine.state != DebateState.ALL_PHASES_COMPLETE:
        await engine.advance_phase()
        _answer_current_phase(engine, agents)


# --- start ---

async def test_start_creates_session_at_opening(engine, agents):
    await _start(engine)
    session = engine.session
    assert session.active is True
    assert session.topic == TOPIC
    assert session.phase_index == 0
    assert engine.current_phase == "opening"
    assert session.pending_responses == {"claude", "openai"}
    assert session.phase_in_flight is True
    assert engine.state == DebateState.PHASE_IN_FLIGHT


async def test_start_sends_opening_to_both_sides(engine, agents):
    await _start(engine)
    assert len(agents["claude"].sent) == 1
    assert len(agents["openai"].sent) == 1
    assert agents["gemini"].sent == []
    assert "正方辩手" in agents["claude"].sent[0]
    assert "反方辩手" in agents["openai"].sent[0]
    assert TOPIC in agents["claude"].sent[0]


async def test_start_dispatches_concurrently(real_prompts, fast_debate_config):
    """Both dispatches are issued before either one finishes."""
    events: list[str] = []
    gate = asyncio.Event()

    class GatedAgent(MockAgent):
        async def dispatch(self, text):
            events.append(f"start:{self.name()}")
            await gate.wait()
            events.append(f"end:{self.name()}")
            return await super().dispatch(text)

    gated = {n: GatedAgent(n) for n in ("claude", "openai", "gemini")}
    engine = DebateEngine(gated, real_prompts, fast_debate_config)

    task = asyncio.create_task(engine.start(TOPIC, "claude", "openai", "gemini"))
    for _ in range(5):
        await asyncio.sleep(0)
    assert sorted(events) == ["start:claude", "start:openai"]
    # Flag and pending set are in place before any dispatch completes
    assert engine.session.phase_in_flight is True
    assert engine.session.pending_responses == {"claude", "openai"}

    gate.set()
    await task
    assert events[2:] and all(e.startswith("end:") for e in events[2:])


@pytest.mark.parametrize(
    "topic, pro, con, judge, message",
    [
        ("", "claude", "openai", "gemini", "Topic"),
        ("   ", "claude", "openai", "gemini", "Topic"),
        (TOPIC, "claude", "claude", "gemini", "different"),
        (TOPIC, "claude", "openai", "claude", "judge"),
        (TOPIC, "claude", "openai", "openai", "judge"),
        (TOPIC, "claude", "openai", "nobody", "Unknown"),
    ],
)
async def test_start_rejects_invalid_setup(engine, agents, topic, pro, con, judge, message):
    with pytest.raises(DebateSetupError, match=message):
        await engine.start(topic, pro, con, judge)
    assert engine.session.active is False
    assert engine.state == DebateState.IDLE
    assert all(a.sent == [] for a in agents.values())


async def test_start_rejected_while_debate_running(engine, agents):
    await _start(engine)
    with pytest.raises(DebateSetupError, match="already running"):
        await engine.start("another topic", "grok", "openai", "gemini")
    assert engine.session.topic == TOPIC


# --- on_response ---

async def test_opening_completes_after_both_replies(engine, agents):
    await _start(engine)

    turn = engine.on_response("claude", cited("pro opening"))
    assert isinstance(turn, Turn)
    assert engine.session.phase_in_flight is True
    assert engine.session.pending_responses == {"openai"}

    engine.on_response("openai", "con opening without sources")
    assert engine.session.phase_in_flight is False
    assert engine.session.pending_responses == set()
    assert engine.state == DebateState.PHASE_READY


async def test_turn_records_side_and_compliance(engine, agents):
    await _start(engine)
    agents["claude"].reply(cited("pro opening", 3))
    agents["openai"].reply(cited("con opening", 1))

    pro_turn, con_turn = engine.session.history
    assert pro_turn.side == "pro" and pro_turn.agent == "claude" and pro_turn.phase == "opening"
    assert pro_turn.source_compliance.compliant is True
    assert pro_turn.source_compliance.url_count == 3
    assert con_turn.side == "con"
    assert con_turn.source_compliance.compliant is False
    assert con_turn.source_compliance.url_count == 1


async def test_response_ignored_when_inactive(engine, agents):
    assert engine.on_response("claude", "hello") is None
    assert engine.session.history == []
    assert engine.session.late_responses == []


async def test_unexpected_speaker_is_discarded(engine, agents, caplog):
    await _start(engine)
    with caplog.at_level(logging.WARNING):
        assert engine.on_response("grok", "I was not invited") is None
    assert engine.session.history == []
    assert engine.session.late_responses == []
    assert engine.session.pending_responses == {"claude", "openai"}
    assert any("unexpected" in msg for msg in caplog.messages)


async def test_judge_push_is_not_recorded_as_turn(engine, agents):
    await _start(engine)
    agents["gemini"].reply("judge chatter")
    assert engine.session.history == []
    assert engine.session.late_responses == []


async def test_late_response_archived_with_previous_phase(engine, agents):
    await _start(engine)
    _answer_current_phase(engine, agents)
    await engine.advance_phase()  # attack_pro: only pro is pending

    history_before = list(engine.session.history)
    result = engine.on_response("openai", "a second opening from con")

    assert isinstance(result, LateTurn)
    assert result.phase == "opening"
    assert result.side == "con"
    assert result.content == "a second opening from con"
    assert engine.session.history == history_before
    assert engine.session.pending_responses == {"claude"}
    assert engine.session.phase_in_flight is True
    assert engine.current_phase == "attack_pro"


async def test_duplicate_reply_in_opening_is_late(engine, agents):
    await _start(engine)
    engine.on_response("claude", "first")
    late = engine.on_response("claude", "again")
    assert isinstance(late, LateTurn)
    assert late.phase == "unknown"
    assert len(engine.session.history) == 1
    assert engine.session.pending_responses == {"openai"}


# --- advance_phase ---

async def test_advance_rejected_when_inactive(engine):
    with pytest.raises(PhaseAdvanceRejected) as exc_info:
        await engine.advance_phase()
    assert exc_info.value.reason == PhaseAdvanceRejected.INACTIVE


async def test_advance_rejected_while_phase_in_flight(engine, agents):
    await _start(engine)
    engine.on_response("claude", "pro opening")
    with pytest.raises(PhaseAdvanceRejected) as exc_info:
        await engine.advance_phase()
    assert exc_info.value.reason == PhaseAdvanceRejected.IN_FLIGHT
    assert engine.session.phase_index == 0


async def test_advance_rejected_with_pending_replies(engine, agents):
    await _start(engine)
    engine.session.phase_in_flight = False  # flag cleared but a reply is still owed
    with pytest.raises(PhaseAdvanceRejected) as exc_info:
        await engine.advance_phase()
    assert exc_info.value.reason == PhaseAdvanceRejected.PENDING
    assert engine.session.phase_index == 0


async def test_double_advance_only_moves_one_phase(engine, agents):
    await _start(engine)
    _answer_current_phase(engine, agents)

    results = await asyncio.gather(
        engine.advance_phase(), engine.advance_phase(), return_exceptions=True
    )
    rejected = [r for r in results if isinstance(r, PhaseAdvanceRejected)]
    assert len(rejected) == 1
    assert rejected[0].reason == PhaseAdvanceRejected.IN_FLIGHT
    assert engine.session.phase_index == 1


async def test_single_side_phase_waits_for_one_agent(engine, agents):
    await _start(engine)
    _answer_current_phase(engine, agents)
    sent_before = len(agents["openai"].sent)

    await engine.advance_phase()

    assert engine.current_phase == "attack_pro"
    assert engine.session.pending_responses == {"claude"}
    assert engine.session.phase_in_flight is True
    assert len(agents["claude"].sent) == 2
    assert len(agents["openai"].sent) == sent_before


async def test_full_debate_reaches_all_phases_complete(engine, agents):
    await _run_all_phases(engine, agents)

    assert engine.state == DebateState.ALL_PHASES_COMPLETE
    assert engine.current_phase == "closing_pro"
    assert [t.phase for t in engine.session.history] == ["opening", "opening", *PHASES[1:]]
    for turn in engine.session.history[2:]:
        expected = speaker_mode(turn.phase)
        assert turn.side == expected

    with pytest.raises(PhaseAdvanceRejected) as exc_info:
        await engine.advance_phase()
    assert exc_info.value.reason == PhaseAdvanceRejected.COMPLETE
    assert engine.session.phase_index == len(PHASES) - 1


async def test_closing_turns_skip_source_check(engine, agents):
    await _run_all_phases(engine, agents)
    by_phase = {t.phase: t for t in engine.session.history}
    assert by_phase["closing_con"].source_compliance is None
    assert by_phase["closing_pro"].source_compliance is None
    assert by_phase["rebuttal_con_2"].source_compliance is not None


async def test_closing_pro_prompt_has_final_word(engine, agents):
    await _run_all_phases(engine, agents)
    assert "最后发言者" in agents["claude"].sent[-1]
    assert "最后发言者" not in agents["openai"].sent[-1]


async def test_wait_for_phase_returns_when_phase_completes(engine, agents):
    await _start(engine)
    waiter = asyncio.create_task(engine.wait_for_phase(timeout=1))
    await asyncio.sleep(0)
    assert not waiter.done()
    _answer_current_phase(engine, agents)
    await waiter


async def test_wait_for_phase_times_out(engine, agents):
    await _start(engine)
    with pytest.raises(asyncio.TimeoutError):
        await engine.wait_for_phase(timeout=0.01)


async def test_dispatch_failure_keeps_agent_pending(real_prompts, fast_debate_config, caplog):
    agents = {"claude": MockAgent("claude"), "openai": MockAgent("openai", fail=True), "gemini": MockAgent("gemini")}
    engine = DebateEngine(agents, real_prompts, fast_debate_config)
    with caplog.at_level(logging.WARNING):
        results = await engine.start(TOPIC, "claude", "openai", "gemini")
    assert [r.success for r in results] == [True, False]
    assert engine.session.pending_responses == {"claude", "openai"}
    assert any("tab not connected" in msg for msg in caplog.messages)


# --- verdict ---

async def test_request_verdict_parses_and_ends_session(engine, agents):
    await _run_all_phases(engine, agents)
    agents["gemini"].latest = SAMPLE_VERDICT

    outcome = await engine.request_verdict()

    assert outcome.classification == Classification.SINGLE_JUDGE
    assert outcome.judge == "gemini"
    assert outcome.verdict.skill_winner == "正方"
    assert engine.session.verdict is outcome.verdict
    assert engine.session.active is False
    assert engine.state == DebateState.VERDICT_SHOWN

    prompt = agents["gemini"].sent[-1]
    assert "===审计结果===" in prompt
    assert TOPIC in prompt
    assert "[正方 (Claude) - 立论阶段]" in prompt


async def test_request_verdict_waits_for_sentinel(engine, agents):
    await _run_all_phases(engine, agents)
    agents["gemini"].latest = "still researching..."
    engine._settings.max_poll_attempts = 50

    task = asyncio.create_task(engine.request_verdict())
    for _ in range(5):
        await asyncio.sleep(0)
    assert not task.done()
    assert engine.state == DebateState.AWAITING_VERDICT

    agents["gemini"].latest = SAMPLE_VERDICT
    outcome = await task
    assert outcome.classification == Classification.SINGLE_JUDGE


async def test_request_verdict_times_out_and_can_retry(engine, agents):
    await _run_all_phases(engine, agents)

    with pytest.raises(VerdictTimeoutError):
        await engine.request_verdict()
    assert engine.session.active is True
    assert engine.state == DebateState.ALL_PHASES_COMPLETE

    agents["gemini"].latest = SAMPLE_VERDICT
    outcome = await engine.request_verdict()
    assert outcome is not None
    assert len(agents["gemini"].sent) == 2


async def test_request_verdict_invalid_report(engine, agents):
    await _run_all_phases(engine, agents)
    agents["gemini"].latest = "===审计结果===\n我拒绝打分\n==============="

    outcome = await engine.request_verdict()

    assert outcome.classification == Classification.INVALID
    assert outcome.verdict.valid is False
    assert "我拒绝打分" in outcome.verdict.raw_text


async def test_request_verdict_rejected_without_session(engine):
    with pytest.raises(VerdictRequestRejected):
        await engine.request_verdict()


async def test_request_verdict_rejected_while_phase_in_flight(engine, agents):
    await _start(engine)
    with pytest.raises(VerdictRequestRejected):
        await engine.request_verdict()
    assert agents["gemini"].sent == []


async def test_reset_cancels_verdict_poll(agents, real_prompts):
    engine = DebateEngine(agents, real_prompts, DebateConfig(poll_interval_sec=0.01, max_poll_attempts=10_000))
    await _run_all_phases(engine, agents)

    task = asyncio.create_task(engine.request_verdict())
    for _ in range(5):
        await asyncio.sleep(0)
    assert engine.state == DebateState.AWAITING_VERDICT

    engine.reset()
    assert await task is None
    assert engine.state == DebateState.IDLE
    assert engine.session.history == []


async def test_new_verdict_request_cancels_previous_poll(agents, real_prompts):
    engine = DebateEngine(agents, real_prompts, DebateConfig(poll_interval_sec=0.01, max_poll_attempts=10_000))
    await _run_all_phases(engine, agents)

    first = asyncio.create_task(engine.request_verdict())
    for _ in range(5):
        await asyncio.sleep(0)
    agents["gemini"].latest = SAMPLE_VERDICT
    second = await engine.request_verdict()

    assert await first is None
    assert second.classification == Classification.SINGLE_JUDGE


# --- interject / reset / snapshot ---

async def test_interject_quotes_opponent_latest_reply(engine, agents):
    await _start(engine)
    agents["claude"].reply("pro says yes")
    agents["openai"].reply("con says no")

    await engine.interject("请双方聚焦成本问题")

    pro_msg = agents["claude"].sent[-1]
    con_msg = agents["openai"].sent[-1]
    assert "[主持人发言] 请双方聚焦成本问题" in pro_msg
    assert "con says no" in pro_msg
    assert "pro says yes" in con_msg


async def test_interject_replies_are_archived_not_recorded(engine, agents):
    await _start(engine)
    _answer_current_phase(engine, agents)
    await engine.interject("请补充数据")

    late = engine.on_response("claude", "补充数据如下")
    assert isinstance(late, LateTurn)
    assert late.phase == INTERJECTION_PHASE
    assert len(engine.session.history) == 2


async def test_interject_uses_placeholder_without_replies(engine, agents):
    await _start(engine)
    engine.session.phase_in_flight = False
    await engine.interject("开始吧")
    assert "暂无回复" in agents["claude"].sent[-1]


async def test_interject_rejected_while_phase_in_flight(engine, agents):
    await _start(engine)
    with pytest.raises(DebateError):
        await engine.interject("hello")


def _delayed_chat_agent(config, name: str) -> MockChatAgent:
    """ChatAgent that answers 50ms after each message, like a slow provider."""
    agent = MockChatAgent(replace(config, name=name))

    async def slow_complete(messages):
        await asyncio.sleep(0.05)
        if "[主持人发言]" in messages[-1]["content"]:
            return cited(f"{name} INTERJECTION-ANSWER")
        return cited(f"{name} PHASE-ANSWER")

    agent.complete = AsyncMock(side_effect=slow_complete)
    return agent


@pytest.fixture
def chat_engine(sample_agent_config, real_prompts, fast_debate_config) -> DebateEngine:
    chat_agents = {
        "claude": _delayed_chat_agent(sample_agent_config, "claude"),
        "openai": _delayed_chat_agent(sample_agent_config, "openai"),
        "gemini": MockAgent("gemini"),
    }
    return DebateEngine(chat_agents, real_prompts, fast_debate_config, VerdictRules())


async def test_slow_interjection_reply_does_not_become_next_turn(chat_engine):
    await _start(chat_engine)
    await chat_engine.wait_for_phase(timeout=2)

    await chat_engine.interject("请聚焦数据")
    with pytest.raises(PhaseAdvanceRejected) as exc_info:
        await chat_engine.advance_phase()
    assert exc_info.value.reason == PhaseAdvanceRejected.INTERJECTION
    assert chat_engine.current_phase == "opening"

    await chat_engine.wait_for_interjection(timeout=2)
    await chat_engine.advance_phase()
    await chat_engine.wait_for_phase(timeout=2)

    attack = chat_engine.session.history[-1]
    assert attack.phase == "attack_pro"
    assert "PHASE-ANSWER" in attack.content
    answers = [t for t in chat_engine.session.late_responses if t.phase == INTERJECTION_PHASE]
    assert sorted(t.agent for t in answers) == ["claude", "openai"]
    assert all("INTERJECTION-ANSWER" in t.content for t in answers)


async def test_verdict_rejected_until_moderator_is_answered(chat_engine):
    await _start(chat_engine)
    await chat_engine.wait_for_phase(timeout=2)
    await chat_engine.interject("请聚焦数据")

    with pytest.raises(VerdictRequestRejected):
        await chat_engine.request_verdict()
    with pytest.raises(DebateError):
        await chat_engine.interject("再说一次")

    await chat_engine.wait_for_interjection(timeout=2)
    await chat_engine.interject("再说一次")
    await chat_engine.wait_for_interjection(timeout=2)


async def test_interjection_reply_counts_before_phase_reply(engine, agents):
    await _start(engine)
    _answer_current_phase(engine, agents)
    await engine.interject("请补充数据")

    agents["claude"].reply("补充")
    agents["openai"].reply("补充")
    await engine.wait_for_interjection(timeout=1)
    await engine.advance_phase()

    turn = engine.on_response("claude", cited("攻击"))
    assert isinstance(turn, Turn)
    assert turn.phase == "attack_pro"


async def test_failed_interjection_dispatch_is_not_awaited(real_prompts, fast_debate_config):
    agents = {
        "claude": MockAgent("claude"),
        "openai": MockAgent("openai", fail=True),
        "gemini": MockAgent("gemini"),
    }
    engine = DebateEngine(agents, real_prompts, fast_debate_config)
    await _start(engine)
    agents["claude"].reply(cited("pro"))
    engine.session.pending_responses.clear()
    engine.session.phase_in_flight = False

    await engine.interject("请补充数据")
    agents["claude"].reply("补充")

    await engine.wait_for_interjection(timeout=1)
    await engine.advance_phase()
    assert engine.current_phase == "attack_pro"


async def test_reset_releases_interjection_waiters(engine, agents):
    await _start(engine)
    _answer_current_phase(engine, agents)
    await engine.interject("请补充数据")
    waiter = asyncio.create_task(engine.wait_for_interjection())
    await asyncio.sleep(0)
    engine.reset()
    await asyncio.wait_for(waiter, timeout=1)


async def test_reset_returns_to_idle(engine, agents):
    await _start(engine)
    engine.reset()
    assert engine.state == DebateState.IDLE
    assert engine.session.active is False
    assert engine.current_phase is None
    # Replies from the old debate are ignored
    assert engine.on_response("claude", "late") is None


async def test_reset_releases_phase_waiters(engine, agents):
    await _start(engine)
    waiter = asyncio.create_task(engine.wait_for_phase())
    await asyncio.sleep(0)
    engine.reset()
    await asyncio.wait_for(waiter, timeout=1)


async def test_snapshot_is_a_copy(engine, agents):
    await _start(engine)
    engine.on_response("claude", "pro opening")
    snap = engine.snapshot()

    assert snap.state == DebateState.PHASE_IN_FLIGHT
    assert snap.phase == "opening"
    assert snap.phase_display == "立论阶段"
    assert snap.pending == ("openai",)
    assert len(snap.history) == 1

    engine.on_response("openai", "con opening")
    assert len(snap.history) == 1


async def test_custom_rules_reach_evaluator(agents, real_prompts, fast_debate_config):
    rules = VerdictRules(low_credibility_max=3)
    engine = DebateEngine(agents, real_prompts, fast_debate_config, rules)
    await _run_all_phases(engine, agents)
    agents["gemini"].latest = SAMPLE_VERDICT  # con credibility is 3 stars

    outcome = await engine.request_verdict()
    assert outcome.classification == Classification.RISK_FLAGGED
