"""Debate orchestration: phase state machine, pending replies, verdict polling."""

import asyncio
import logging
from datetime import datetime

from config.config_loader import DebateConfig, PromptsConfig, VerdictRules
from src.agents.base import AgentAdapter
from src.errors import (
    DebateError,
    DebateSetupError,
    PhaseAdvanceRejected,
    VerdictRequestRejected,
    VerdictTimeoutError,
)
from src.models import (
    BOTH,
    CON,
    PRO,
    DebateSession,
    DebateState,
    DispatchResult,
    LateTurn,
    SessionSnapshot,
    Turn,
    VerdictOutcome,
)
from src.phases import LAST_PHASE_INDEX, PHASES, display_name, is_closing, speaker_mode
from src.prompts import (
    VERDICT_START_MARKER,
    build_interject_prompt,
    build_phase_prompt,
    build_verdict_prompt,
    display_agent,
)
from src.risk import evaluate
from src.sources import check_compliance
from src.verdict import parse_verdict

logger = logging.getLogger(__name__)

INTERJECTION_PHASE = "interjection"


class DebateEngine:
    """Owns one DebateSession and every mutation of it.

    Replies are pushed in through ``on_response``, which every agent adapter
    is subscribed to. All methods run on a single event loop, so the pending
    set needs no locking; ``phase_in_flight`` is always set before the first
    await of a dispatch so repeated advance requests cannot skip a phase.
    """

    def __init__(
        self,
        agents: dict[str, AgentAdapter],
        prompts: PromptsConfig,
        settings: DebateConfig | None = None,
        rules: VerdictRules | None = None,
    ) -> None:
        self._agents = agents
        self._prompts = prompts
        self._settings = settings or DebateConfig()
        self._rules = rules or VerdictRules()
        self.session = DebateSession()
        self._phase_done = asyncio.Event()
        self._poll_task: asyncio.Task | None = None
        self._awaiting_interjection: set[str] = set()
        self._interjection_done = asyncio.Event()
        self._interjection_done.set()
        for agent in agents.values():
            agent.subscribe(self.on_response)

    # --- state ---

    @property
    def current_phase(self) -> str | None:
        if not self.session.active and self.session.topic == "":
            return None
        return PHASES[self.session.phase_index]

    @property
    def state(self) -> str:
        session = self.session
        if session.outcome is not None:
            return DebateState.VERDICT_SHOWN
        if not session.active:
            return DebateState.IDLE
        if self._poll_task is not None and not self._poll_task.done():
            return DebateState.AWAITING_VERDICT
        if session.phase_in_flight:
            return DebateState.PHASE_IN_FLIGHT
        if session.phase_index >= LAST_PHASE_INDEX:
            return DebateState.ALL_PHASES_COMPLETE
        return DebateState.PHASE_READY

    def snapshot(self) -> SessionSnapshot:
        """Read-only copy of the session for display."""
        session = self.session
        phase = self.current_phase
        return SessionSnapshot(
            state=self.state,
            topic=session.topic,
            pro_agent=session.pro_agent,
            con_agent=session.con_agent,
            judge_agent=session.judge_agent,
            phase=phase,
            phase_display=display_name(phase) if phase else None,
            pending=tuple(sorted(session.pending_responses)),
            history=tuple(session.history),
            late_responses=tuple(session.late_responses),
            outcome=session.outcome,
        )

    # --- commands ---

    async def start(self, topic: str, pro: str, con: str, judge: str) -> list[DispatchResult]:
        """Create a session and send the opening prompt to both sides at once.

        Raises:
            DebateSetupError: Empty topic, conflicting roles, unknown agent,
                or a debate already running. Nothing is changed.
        """
        topic = (topic or "").strip()
        if self.session.active:
            raise DebateSetupError("A debate is already running; reset it first")
        if not topic:
            raise DebateSetupError("Topic must not be empty")
        if pro == con:
            raise DebateSetupError("Pro and con must be different agents")
        if judge in (pro, con):
            raise DebateSetupError("The judge cannot take part in the debate")
        unknown = [a for a in (pro, con, judge) if a not in self._agents]
        if unknown:
            raise DebateSetupError(f"Unknown agent(s): {', '.join(unknown)}")

        self.cancel_verdict_poll()
        self._clear_interjection()
        self.session = DebateSession(
            active=True,
            topic=topic,
            pro_agent=pro,
            con_agent=con,
            judge_agent=judge,
            phase_index=0,
            pending_responses={pro, con},
            phase_in_flight=True,
            started_at=datetime.now(),
        )
        self._phase_done = asyncio.Event()

        logger.info(
            "Debate started: %s (pro) vs %s (con), judge %s",
            display_agent(pro), display_agent(con), display_agent(judge),
        )
        return await self._dispatch_phase(PHASES[0])

    def on_response(self, agent_id: str, content: str) -> Turn | LateTurn | None:
        """Record a reply pushed by an agent.

        Returns the recorded Turn, the archived LateTurn, or None when the
        reply was ignored.
        """
        session = self.session
        if not session.active:
            logger.debug("Ignoring reply from %s: no active debate", agent_id)
            return None

        if agent_id not in (session.pro_agent, session.con_agent):
            if agent_id == session.judge_agent:
                logger.debug("Judge reply from %s is handled by the verdict poll", agent_id)
            else:
                logger.warning("Ignoring unexpected reply from %s (not a debater)", agent_id)
            return None

        side = PRO if agent_id == session.pro_agent else CON

        # Agents answer in order, so the next reply after a moderator message answers it.
        if agent_id in self._awaiting_interjection:
            self._awaiting_interjection.discard(agent_id)
            if not self._awaiting_interjection:
                self._interjection_done.set()
            logger.info("%s answered the moderator", display_agent(agent_id))
            return self._archive_late(agent_id, side, content, INTERJECTION_PHASE)

        if agent_id not in session.pending_responses:
            phase = PHASES[session.phase_index - 1] if session.phase_index > 0 else "unknown"
            logger.warning(
                "Late reply from %s (%s) kept for %s; current phase unaffected",
                display_agent(agent_id), side, phase,
            )
            return self._archive_late(agent_id, side, content, phase)

        phase = PHASES[session.phase_index]
        compliance = None
        if not is_closing(phase):
            compliance = check_compliance(content, self._settings.min_sources)
            if compliance.compliant:
                logger.info("%s cited %d URL sources", display_agent(agent_id), compliance.url_count)
            else:
                logger.warning("Source check for %s: %s", display_agent(agent_id), compliance.warning)

        turn = Turn(phase=phase, agent=agent_id, side=side, content=content, source_compliance=compliance)
        session.history.append(turn)
        session.pending_responses.discard(agent_id)
        logger.info("[%s] %s (%s) finished speaking", display_name(phase), display_agent(agent_id), side)

        if not session.pending_responses:
            self._complete_phase()
        else:
            logger.info("Waiting for %s", ", ".join(sorted(session.pending_responses)))
        return turn

    async def advance_phase(self) -> list[DispatchResult]:
        """Move to the next phase and dispatch its prompt(s).

        Raises:
            PhaseAdvanceRejected: With reason INACTIVE, IN_FLIGHT, PENDING,
                INTERJECTION or COMPLETE. The phase index is unchanged.
        """
        session = self.session
        if not session.active:
            raise PhaseAdvanceRejected(PhaseAdvanceRejected.INACTIVE, "No active debate")
        if session.phase_in_flight:
            raise PhaseAdvanceRejected(PhaseAdvanceRejected.IN_FLIGHT, "Current phase is still in progress")
        if session.pending_responses:
            remaining = ", ".join(sorted(session.pending_responses))
            raise PhaseAdvanceRejected(PhaseAdvanceRejected.PENDING, f"Still waiting for {remaining}")
        if self._awaiting_interjection:
            remaining = ", ".join(sorted(self._awaiting_interjection))
            raise PhaseAdvanceRejected(
                PhaseAdvanceRejected.INTERJECTION,
                f"Still waiting for {remaining} to answer the moderator",
            )
        if session.phase_index >= LAST_PHASE_INDEX:
            logger.info("Debate has completed all phases")
            raise PhaseAdvanceRejected(PhaseAdvanceRejected.COMPLETE, "All phases are complete")

        session.phase_index += 1
        phase = PHASES[session.phase_index]
        session.phase_in_flight = True
        mode = speaker_mode(phase)
        if mode == BOTH:
            session.pending_responses = {session.pro_agent, session.con_agent}
        else:
            session.pending_responses = {self._agent_for(mode)}
        self._phase_done = asyncio.Event()

        logger.info("Phase %s started (%s)", display_name(phase), mode)
        return await self._dispatch_phase(phase)

    async def wait_for_phase(self, timeout: float | None = None) -> None:
        """Wait until the in-flight phase has all its replies (or the debate is reset).

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        if not self.session.phase_in_flight:
            return
        await asyncio.wait_for(self._phase_done.wait(), timeout)

    async def request_verdict(self) -> VerdictOutcome | None:
        """Send the transcript to the judge and poll for the audit block.

        Returns the evaluated outcome, or None if the poll was cancelled by
        a reset.

        Raises:
            VerdictRequestRejected: No active debate, a phase in flight, an
                unanswered moderator message, or the judge could not be reached.
            VerdictTimeoutError: The judge did not answer within the poll
                bound. The session stays active, so the request can be retried.
        """
        session = self.session
        if not session.active:
            raise VerdictRequestRejected("No active debate")
        if session.phase_in_flight:
            raise VerdictRequestRejected("Current phase is still in progress")
        if self._awaiting_interjection:
            raise VerdictRequestRejected("Debaters are still answering the moderator")

        judge = session.judge_agent
        prompt = build_verdict_prompt(session, self._prompts)
        self.cancel_verdict_poll()

        logger.info("Judge %s is auditing the debate...", display_agent(judge))
        result = await self._dispatch(judge, prompt)
        if not result.success:
            raise VerdictRequestRejected(f"Could not reach judge {judge}: {result.error}")

        poll = asyncio.create_task(self._poll_verdict(session, judge))
        self._poll_task = poll
        try:
            await asyncio.wait({poll})
        except asyncio.CancelledError:
            poll.cancel()
            raise
        if poll.cancelled():
            logger.info("Verdict poll cancelled")
            return None
        return poll.result()

    async def interject(self, message: str) -> list[DispatchResult]:
        """Moderator message to both sides, each quoting the other's latest reply.

        Raises:
            DebateError: Empty message, no active debate, a phase in flight,
                or an earlier moderator message still unanswered.

        Until both sides have answered, advance_phase() and request_verdict()
        are rejected; use wait_for_interjection() to block on the replies.
        """
        message = (message or "").strip()
        session = self.session
        if not message:
            raise DebateError("Moderator message must not be empty")
        if not session.active:
            raise DebateError("No active debate")
        if session.phase_in_flight:
            raise DebateError("Wait for the current phase to finish before interjecting")
        if self._awaiting_interjection:
            raise DebateError("Both sides must answer the previous moderator message first")

        pro, con = session.pro_agent, session.con_agent
        self._awaiting_interjection.update({pro, con})
        self._interjection_done = asyncio.Event()
        pro_reply, con_reply = await asyncio.gather(
            self._agents[pro].fetch_latest(),
            self._agents[con].fetch_latest(),
        )
        results = await asyncio.gather(
            self._dispatch(pro, build_interject_prompt(message, CON, con_reply, self._prompts)),
            self._dispatch(con, build_interject_prompt(message, PRO, pro_reply, self._prompts)),
        )
        # An agent that never got the message will not answer it.
        for result in results:
            if not result.success:
                self._awaiting_interjection.discard(result.agent)
        if not self._awaiting_interjection:
            self._interjection_done.set()
        logger.info("Moderator message sent to both sides")
        return list(results)

    async def wait_for_interjection(self, timeout: float | None = None) -> None:
        """Wait until both sides have answered the last moderator message.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        if not self._awaiting_interjection:
            return
        await asyncio.wait_for(self._interjection_done.wait(), timeout)

    def cancel_verdict_poll(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = None

    def reset(self) -> None:
        """Drop the session, cancelling any verdict poll and releasing all waiters."""
        self.cancel_verdict_poll()
        self._phase_done.set()
        self._phase_done = asyncio.Event()
        self._clear_interjection()
        self.session = DebateSession()
        logger.info("Debate reset")

    # --- internals ---

    def _clear_interjection(self) -> None:
        self._awaiting_interjection.clear()
        self._interjection_done.set()

    def _archive_late(self, agent_id: str, side: str, content: str, phase: str) -> LateTurn:
        late = LateTurn(phase=phase, agent=agent_id, side=side, content=content)
        self.session.late_responses.append(late)
        return late

    def _agent_for(self, side: str) -> str:
        return self.session.pro_agent if side == PRO else self.session.con_agent

    def _complete_phase(self) -> None:
        session = self.session
        session.phase_in_flight = False
        self._phase_done.set()
        phase = PHASES[session.phase_index]
        if session.phase_index < LAST_PHASE_INDEX:
            logger.info(
                "%s complete; ready for %s",
                display_name(phase), display_name(PHASES[session.phase_index + 1]),
            )
        else:
            logger.info("%s complete; all phases done, verdict can be requested", display_name(phase))

    async def _dispatch_phase(self, phase: str) -> list[DispatchResult]:
        mode = speaker_mode(phase)
        sides = (PRO, CON) if mode == BOTH else (mode,)
        session = self.session
        prompts = {
            side: build_phase_prompt(phase, side, session, self._prompts, self._settings.min_sources)
            for side in sides
        }
        # Build every prompt before the first await so both sides see the same history.
        results = await asyncio.gather(
            *(self._dispatch(self._agent_for(side), prompts[side]) for side in sides)
        )
        return list(results)

    async def _dispatch(self, agent_id: str, text: str) -> DispatchResult:
        try:
            result = await self._agents[agent_id].dispatch(text)
        except Exception as exc:
            result = DispatchResult(agent=agent_id, success=False, error=f"Unexpected error: {exc}")
        if result.success:
            logger.debug("Sent to %s", agent_id)
        else:
            logger.warning("Failed to send to %s: %s", agent_id, result.error)
        return result

    async def _poll_verdict(self, session: DebateSession, judge: str) -> VerdictOutcome | None:
        interval = self._settings.poll_interval_sec
        max_attempts = self._settings.max_poll_attempts
        try:
            for attempt in range(1, max_attempts + 1):
                await asyncio.sleep(interval)
                if not session.active or session is not self.session:
                    logger.info("Debate ended during verdict poll; stopping")
                    return None
                try:
                    reply = await self._agents[judge].fetch_latest()
                except Exception as exc:
                    logger.warning("Polling judge %s failed (attempt %d): %s", judge, attempt, exc)
                    continue
                if reply and VERDICT_START_MARKER in reply:
                    logger.info("Judge %s submitted the audit report", display_agent(judge))
                    return self._record_verdict(session, judge, reply)
                logger.debug("Waiting for %s's audit report (%d/%d)", judge, attempt, max_attempts)
        finally:
            if self._poll_task is asyncio.current_task():
                self._poll_task = None

        logger.error("Judge %s did not submit a report after %d polls", judge, max_attempts)
        raise VerdictTimeoutError(judge, max_attempts)

    def _record_verdict(self, session: DebateSession, judge: str, reply: str) -> VerdictOutcome:
        parsed = parse_verdict(reply)
        outcome = evaluate(parsed, judge, self._rules)
        session.verdict = parsed
        session.outcome = outcome
        session.active = False
        return outcome
