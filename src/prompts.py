"""Phase prompts, transcripts and the judge's verdict request.

Everything here is a pure function of the session and the prompt templates
loaded from settings.yaml; nothing mutates the session.
"""

from config.config_loader import PromptsConfig
from src.models import CON, PRO, DebateSession, Turn
from src.phases import (
    display_name,
    is_attack,
    is_closing,
    is_rebuttal,
    opposite,
    rebuttal_round,
    side_label,
)
from src.sources import DEFAULT_MIN_SOURCES

VERDICT_START_MARKER = "===审计结果==="
VERDICT_END_MARKER = "==============="
TRANSCRIPT_RULE = "=" * 50
CLOSING_SEPARATOR = "\n\n---\n\n"
NO_REPLY_PLACEHOLDER = "暂无回复"


def display_agent(agent_id: str | None) -> str:
    """'claude' -> 'Claude'."""
    if not agent_id:
        return ""
    return agent_id[:1].upper() + agent_id[1:]


def _position_label(side: str) -> str:
    return "正方（支持）" if side == PRO else "反方（反对）"


def opening_content(history: list[Turn], side: str) -> str:
    """Content of the first opening turn by ``side``, or '' if there is none."""
    for turn in history:
        if turn.phase == "opening" and turn.side == side:
            return turn.content
    return ""


def latest_opposing_content(history: list[Turn], side: str) -> str:
    """Most recent turn by the other side, scanning from the end; '' if none yet."""
    for turn in reversed(history):
        if turn.side != side:
            return turn.content
    return ""


def format_closing_history(history: list[Turn]) -> str:
    parts = [
        f"[{side_label(t.side)} - {display_name(t.phase)}]\n{t.content}"
        for t in history
    ]
    return CLOSING_SEPARATOR.join(parts)


def build_opening_prompt(side: str, session: DebateSession, prompts: PromptsConfig,
                         min_sources: int = DEFAULT_MIN_SOURCES) -> str:
    rules = prompts.opening_rules.format(min_sources=min_sources)
    return prompts.opening.format(
        side_label=side_label(side),
        topic=session.topic,
        stance=prompts.stances.get(side, _position_label(side)),
        rules=rules,
    )


def build_attack_prompt(phase: str, side: str, session: DebateSession, prompts: PromptsConfig) -> str:
    # attack_con also sees the pro attack so it can answer it
    previous_attack = ""
    if phase == "attack_con":
        previous_attack = latest_opposing_content(session.history, side)
    return prompts.attack.format(
        topic=session.topic,
        position_label=_position_label(side),
        pro_opening=opening_content(session.history, PRO),
        con_opening=opening_content(session.history, CON),
        previous_attack=prompts.attack_previous.format(content=previous_attack) if previous_attack else "",
        reply_rule=prompts.attack_reply_rule if previous_attack else "",
    )


def build_rebuttal_prompt(phase: str, side: str, session: DebateSession, prompts: PromptsConfig) -> str:
    round_number = rebuttal_round(phase)
    return prompts.rebuttal.format(
        round=round_number,
        topic=session.topic,
        position_label=_position_label(side),
        opposing_label=side_label(opposite(side)),
        opposing_response=latest_opposing_content(session.history, side),
        focus=prompts.rebuttal_focus.get(round_number, ""),
    )


def build_closing_prompt(phase: str, side: str, session: DebateSession, prompts: PromptsConfig) -> str:
    # The side closing last gets the final word; keep that asymmetry.
    closing_note = prompts.closing_final_note if phase == "closing_pro" else ""
    return prompts.closing.format(
        closing_note=closing_note,
        topic=session.topic,
        position_label=_position_label(side),
        history=format_closing_history(session.history),
    )


def build_phase_prompt(
    phase: str,
    side: str,
    session: DebateSession,
    prompts: PromptsConfig,
    min_sources: int = DEFAULT_MIN_SOURCES,
) -> str:
    """Return the instruction text sent to ``side`` for ``phase``."""
    if phase == "opening":
        return build_opening_prompt(side, session, prompts, min_sources)
    if is_attack(phase):
        return build_attack_prompt(phase, side, session, prompts)
    if is_rebuttal(phase):
        return build_rebuttal_prompt(phase, side, session, prompts)
    if is_closing(phase):
        return build_closing_prompt(phase, side, session, prompts)
    raise ValueError(f"Unknown debate phase: {phase!r}")


def build_transcript(session: DebateSession) -> str:
    """Chronological transcript for the judge, turns separated by a rule of '='."""
    parts = []
    for turn in session.history:
        label = f"[{side_label(turn.side)} ({display_agent(turn.agent)}) - {display_name(turn.phase)}]"
        parts.append(f"{label}\n{turn.content}")
    return f"\n\n{TRANSCRIPT_RULE}\n\n".join(parts)


def build_verdict_prompt(session: DebateSession, prompts: PromptsConfig) -> str:
    return prompts.verdict.format(
        topic=session.topic,
        pro_agent=display_agent(session.pro_agent),
        con_agent=display_agent(session.con_agent),
        rule=TRANSCRIPT_RULE,
        transcript=build_transcript(session),
        start_marker=VERDICT_START_MARKER,
        end_marker=VERDICT_END_MARKER,
    )


def build_interject_prompt(
    message: str,
    opponent_side: str,
    opponent_reply: str | None,
    prompts: PromptsConfig,
) -> str:
    """Moderator message for one side, quoting the opponent's latest reply."""
    return prompts.interject.format(
        message=message,
        opposing_label=side_label(opponent_side),
        opposing_response=opponent_reply or NO_REPLY_PLACEHOLDER,
    )
