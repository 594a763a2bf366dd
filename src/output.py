"""Rich console output and markdown file save for debate sessions."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from src.models import Classification, LateTurn, SessionSnapshot, Turn, VerdictOutcome
from src.phases import display_name, side_label
from src.prompts import display_agent
from src.risk import risk_reason_text
from src.verdict import strip_audit_block

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

CLASSIFICATION_LABELS: dict[str, str] = {
    Classification.SINGLE_JUDGE: "⚖️ 裁判裁决",
    Classification.RISK_FLAGGED: "⛔️ 风险警报 (自动熔断)",
    Classification.DISPUTED: "⚠️ 存在争议",
    Classification.INVALID: "❌ 无效审计",
}

_CLASSIFICATION_STYLES: dict[str, str] = {
    Classification.SINGLE_JUDGE: "bold green",
    Classification.RISK_FLAGGED: "bold red",
    Classification.DISPUTED: "bold yellow",
    Classification.INVALID: "bold red",
}

_SIDE_STYLES = {"pro": "cyan", "con": "magenta"}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(content: str, words: int = 50) -> str:
    """Return first N words of a reply."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _compliance_label(turn: Turn) -> str:
    check = turn.source_compliance
    if check is None:
        return "no source check"
    if check.compliant:
        return f"✓ {check.url_count} sources"
    return f"⚠ {check.warning}"


def _score(value: int | None) -> str:
    return "-" if value is None else str(value)


def print_turn(turn: Turn) -> None:
    """Print a brief panel for one recorded turn."""
    style = _SIDE_STYLES.get(turn.side, "dim")
    console.print(
        Panel(
            Text(_preview(turn.content)),
            title=f"[bold {style}]{side_label(turn.side)}[/bold {style}] {display_agent(turn.agent)} · {display_name(turn.phase)}",
            subtitle=_compliance_label(turn),
            border_style="dim",
        )
    )


def print_late_responses(late: tuple[LateTurn, ...] | list[LateTurn]) -> None:
    if not late:
        return
    console.print(Rule("[yellow]Late replies (not part of the debate record)[/yellow]"))
    for item in late:
        console.print(
            Text.assemble(
                (display_agent(item.agent), "yellow"),
                f" ({side_label(item.side)}, {display_name(item.phase)}, {item.received_at:%H:%M:%S}): ",
                _preview(item.content, 20),
            )
        )


def print_verdict(outcome: VerdictOutcome) -> None:
    """Print the classified verdict using Rich."""
    verdict = outcome.verdict
    label = CLASSIFICATION_LABELS.get(outcome.classification, outcome.classification)
    style = _CLASSIFICATION_STYLES.get(outcome.classification, "bold")

    console.print(Rule("[bold green]Verdict[/bold green]"))
    console.print(Text(label, style=style))
    if outcome.risk_reason:
        console.print(Text(f"⚠️ 熔断原因: {risk_reason_text(outcome.risk_reason)}", style="red"))

    if outcome.classification == Classification.INVALID:
        console.print(Text("The audit report could not be parsed; raw report follows.", style="dim"))
        console.print(Markdown(verdict.raw_text))
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("🎯 辩论技巧评分")
    table.add_column("📊 事实裁决")
    # Judge-written text is wrapped in Text so brackets are never read as markup.
    table.add_row(
        Text(
            f"胜方: {verdict.skill_winner}\n"
            f"正方: {_score(verdict.pro_skill_score)}分 | 反方: {_score(verdict.con_skill_score)}分\n"
            f"{verdict.skill_comment}"
        ),
        Text(
            f"倾向: {verdict.fact_verdict}\n"
            f"来源可信度: ⭐{_score(verdict.pro_credibility)} vs ⭐{_score(verdict.con_credibility)}"
        ),
    )
    console.print(table)

    if verdict.judge_evidence:
        console.print(Text(f"📌 裁判补充: {verdict.judge_evidence}"))
    if verdict.verdict_reason:
        console.print(Text(f"📝 裁决理由: {verdict.verdict_reason}"))
    console.print(Text(f"⚠️ 风险提示: {verdict.critical_risk}"))
    console.print(Text(f"裁判: {display_agent(outcome.judge)}", style="dim"))


def save_to_file(snapshot: SessionSnapshot, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the full debate record and verdict as a markdown file.

    Args:
        snapshot: Session snapshot taken after the verdict.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the topic. Useful for inbox mode.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(snapshot.topic)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# Debate: {snapshot.topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Pro:** {display_agent(snapshot.pro_agent)}",
        f"**Con:** {display_agent(snapshot.con_agent)}",
        f"**Judge:** {display_agent(snapshot.judge_agent)}",
        f"**Last phase:** {snapshot.phase_display or '-'}",
        "",
        "---",
        "",
    ]

    for turn in snapshot.history:
        lines.append(f"## {display_name(turn.phase)}: {side_label(turn.side)} ({display_agent(turn.agent)})")
        lines.append("")
        lines.append(turn.content)
        lines.append("")
        lines.append(f"*Sources: {_compliance_label(turn)}*")
        lines.append("")

    if snapshot.late_responses:
        lines += ["## Late replies", ""]
        for item in snapshot.late_responses:
            lines.append(f"### {display_agent(item.agent)} ({display_name(item.phase)})")
            lines.append("")
            lines.append(item.content)
            lines.append("")

    outcome = snapshot.outcome
    if outcome is not None:
        verdict = outcome.verdict
        lines += [
            f"## Verdict (by {display_agent(outcome.judge)})",
            "",
            f"**Classification:** {CLASSIFICATION_LABELS.get(outcome.classification, outcome.classification)}",
        ]
        if outcome.risk_reason:
            lines.append(f"**Risk:** {risk_reason_text(outcome.risk_reason)}")
        if outcome.classification != Classification.INVALID:
            lines += [
                f"**Skill winner:** {verdict.skill_winner} "
                f"({_score(verdict.pro_skill_score)} vs {_score(verdict.con_skill_score)})",
                f"**Fact verdict:** {verdict.fact_verdict}",
                f"**Source credibility:** {_score(verdict.pro_credibility)} vs {_score(verdict.con_credibility)}",
                f"**Critical risk:** {verdict.critical_risk}",
            ]
        lines += ["", "### Full audit report", "", strip_audit_block(verdict.raw_text), ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Debate saved to: %s", filepath)
    return filepath
