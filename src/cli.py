"""Click CLI — loads config, builds agents, drives a debate phase by phase and renders the verdict."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from src.agents.anthropic import AnthropicAgent
from src.agents.base import ChatAgent
from src.agents.gemini import GeminiAgent
from src.agents.openai_agent import OpenAIAgent
from src.engine import DebateEngine
from src.errors import DebateError, VerdictTimeoutError
from src.healthcheck import run_health_checks
from src.inbox import Motion, archive_file, ensure_dirs, parse_motion, scan_inbox
from src.models import DebateState, VerdictOutcome
from src.output import print_late_responses, print_turn, print_verdict, save_to_file
from src.phases import PHASES, display_name
from src.prompts import display_agent

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

AGENT_CLASSES: dict[str, type[ChatAgent]] = {
    "anthropic": AnthropicAgent,
    "openai": OpenAIAgent,
    "gemini": GeminiAgent,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_all_agents(config: AppConfig) -> dict[str, ChatAgent]:
    """Build all available agents. Returns dict keyed by name."""
    agents: dict[str, ChatAgent] = {}
    for name in sorted(config.available_agents):
        agent_cfg = config.agents[name]
        agent_class = AGENT_CLASSES.get(agent_cfg.sdk)
        if agent_class is None:
            logging.warning("Agent '%s' uses unknown sdk '%s', skipping", name, agent_cfg.sdk)
            continue
        try:
            agents[name] = agent_class(agent_cfg)
        except Exception as exc:
            logging.warning("Failed to instantiate agent '%s': %s", name, exc)
    return agents


def _resolve_roles(
    config: AppConfig,
    motion: Motion | None,
    pro: str | None,
    con: str | None,
    judge: str | None,
) -> tuple[str, str, str]:
    """CLI flag > motion frontmatter > config default, per role."""
    def pick(cli_value: str | None, key: str) -> str:
        if cli_value:
            return cli_value
        if motion is not None and getattr(motion, key):
            return getattr(motion, key)
        return getattr(config.defaults, key)

    return pick(pro, "pro"), pick(con, "con"), pick(judge, "judge")


def _check_and_filter_agents(agents: dict[str, ChatAgent]) -> dict[str, ChatAgent]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working agents. Exits if the user declines
    to continue or no agent passes.
    """
    console.print("\n[bold]Checking agents...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(agents))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return agents

    working = {n: a for n, a in agents.items() if n not in failed_names}

    if len(working) < 3:
        console.print("\n[bold red]Error:[/bold red] A debate needs 3 working agents (pro, con, judge).")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} agent(s) failed:[/yellow] {', '.join(failed_names)}")
    console.print(f"Working agents: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working agents only?", default=True):
        sys.exit(0)

    console.print()
    return working


async def _wait_for_phase(engine: DebateEngine, timeout: float) -> None:
    phase = engine.current_phase
    pending = ", ".join(display_agent(a) for a in sorted(engine.session.pending_responses))
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f"{display_name(phase)}: waiting for {pending}...", total=None)
        try:
            await engine.wait_for_phase(timeout)
        except TimeoutError as exc:
            raise DebateError(f"Timed out after {timeout:.0f}s waiting for {pending}") from exc


async def _wait_for_interjection(engine: DebateEngine, timeout: float) -> None:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Waiting for both sides to answer the moderator...", total=None)
        try:
            await engine.wait_for_interjection(timeout)
        except TimeoutError as exc:
            raise DebateError(f"Timed out after {timeout:.0f}s waiting for replies to the moderator") from exc


async def _request_verdict(engine: DebateEngine) -> VerdictOutcome | None:
    """Request the verdict, offering a retry when the judge times out."""
    while True:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            judge = display_agent(engine.session.judge_agent)
            progress.add_task(f"Waiting for {judge}'s audit report...", total=None)
            try:
                return await engine.request_verdict()
            except VerdictTimeoutError as exc:
                progress.print(f"[yellow]{escape(str(exc))}[/yellow]")
        if not click.confirm("Retry the verdict request?", default=True):
            return None


async def _run_single(
    engine: DebateEngine,
    topic: str,
    roles: tuple[str, str, str],
    phase_timeout: float,
    output_dir: Path,
    step: bool,
    slug_override: str | None = None,
) -> Path:
    """Run one full debate on ``engine`` and return the saved output path."""
    pro, con, judge = roles
    console.print(
        f"\n[bold cyan]Debate[/bold cyan] — {display_agent(pro)} (pro) vs "
        f"{display_agent(con)} (con), judge {display_agent(judge)}"
    )
    preview = escape(topic[:80]) + ("..." if len(topic) > 80 else "")
    console.print(f"Topic: [italic]{preview}[/italic]\n")

    try:
        await engine.start(topic, pro, con, judge)
        shown = 0
        while True:
            await _wait_for_phase(engine, phase_timeout)
            history = engine.session.history
            for turn in history[shown:]:
                print_turn(turn)
            shown = len(history)

            if engine.state == DebateState.ALL_PHASES_COMPLETE:
                break
            if step:
                next_phase = display_name(PHASES[engine.session.phase_index + 1])
                message = click.prompt(
                    "Moderator message (empty to skip)", default="", show_default=False,
                )
                if message.strip():
                    await engine.interject(message)
                    await _wait_for_interjection(engine, phase_timeout)
                if not click.confirm(f"Continue to {next_phase}?", default=True):
                    break
            await engine.advance_phase()

        outcome = await _request_verdict(engine)
        snapshot = engine.snapshot()
    finally:
        engine.reset()

    print_late_responses(snapshot.late_responses)
    if outcome is not None:
        print_verdict(outcome)
    else:
        console.print("[yellow]No verdict was recorded.[/yellow]")

    saved_path = save_to_file(snapshot, output_dir, slug_override=slug_override)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    return saved_path


async def _close_agents(agents: dict[str, ChatAgent]) -> None:
    await asyncio.gather(*(a.aclose() for a in agents.values()))


async def _run_motions(
    config: AppConfig,
    agents: dict[str, ChatAgent],
    motions: list[tuple[Motion, Path | None]],
    roles_cli: tuple[str | None, str | None, str | None],
    output_dir: Path,
    step: bool,
    archive_dir: Path | None = None,
) -> None:
    """Debate each motion in turn; inbox files are archived afterwards.

    Precedence for roles: CLI flag > frontmatter > config default.
    """
    engine = DebateEngine(agents, config.prompts, config.debate, config.rules)
    try:
        for motion, file_path in motions:
            roles = _resolve_roles(config, motion, *roles_cli)
            for agent in agents.values():
                agent.reset_conversation()
            try:
                saved = await _run_single(
                    engine=engine,
                    topic=motion.topic,
                    roles=roles,
                    phase_timeout=config.defaults.phase_timeout_sec,
                    output_dir=output_dir,
                    step=step,
                    slug_override=file_path.stem if file_path else None,
                )
            except DebateError as exc:
                logger.error("Debate failed: %s -- %s", motion.source, exc)
                if file_path is not None and archive_dir is not None:
                    archive_file(file_path, archive_dir, failed=True)
                    continue
                raise
            if file_path is not None and archive_dir is not None:
                archived = archive_file(file_path, archive_dir)
                click.echo(f"Processed: {file_path.name} -> {saved} (archived: {archived.name})")
    finally:
        await _close_agents(agents)


@click.command()
@click.argument("topic", required=False)
@click.option("--file", "motion_file", type=click.Path(exists=True), help="Read topic and roles from a .md motion file")
@click.option("--pro", default=None, help="Agent arguing for the topic (default: from config)")
@click.option("--con", default=None, help="Agent arguing against the topic (default: from config)")
@click.option("--judge", default=None, help="Agent that audits the debate (default: from config)")
@click.option("--step", is_flag=True, help="Confirm each phase and allow moderator messages")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--inbox", "use_inbox", is_flag=True, default=False,
              help="Debate all .md motion files in the inbox folder")
@click.option("--inbox-dir", "inbox_dir_override", default=None,
              help="Override inbox folder path (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    topic: str | None,
    motion_file: str | None,
    pro: str | None,
    con: str | None,
    judge: str | None,
    step: bool,
    output_path: str | None,
    verbose: bool,
    use_inbox: bool,
    inbox_dir_override: str | None,
    skip_health_check: bool,
) -> None:
    """Debate Arbiter -- two agents debate a motion, a third one judges.

    \b
    Examples:
      debate-arbiter "Remote work should be the default" --pro claude --con grok --judge gemini
      debate-arbiter "Nuclear power is essential for decarbonisation" --step
      debate-arbiter --file motion.md
      debate-arbiter --inbox
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    roles_cli = (pro, con, judge)

    all_agents = _build_all_agents(config)
    if len(all_agents) < 3:
        console.print(
            f"[bold red]Error:[/bold red] Need at least 3 agents, got {len(all_agents)}. Check API keys in .env."
        )
        sys.exit(1)

    if not skip_health_check:
        all_agents = _check_and_filter_agents(all_agents)

    archive_dir: Path | None = None
    if use_inbox:
        inbox_dir = Path(inbox_dir_override) if inbox_dir_override else config.defaults.inbox_dir
        archive_dir = config.defaults.archive_dir
        ensure_dirs(inbox_dir, archive_dir)
        files = scan_inbox(inbox_dir)
        if not files:
            click.echo("No files in inbox.")
            return
        motions = [(parse_motion(f), f) for f in files]
    elif motion_file:
        motions = [(parse_motion(Path(motion_file)), None)]
    elif topic:
        motions = [(Motion(topic=topic, source="cli"), None)]
    else:
        console.print("[bold red]Error:[/bold red] Provide a TOPIC argument, --file, or --inbox.")
        sys.exit(1)

    try:
        asyncio.run(
            _run_motions(
                config=config,
                agents=all_agents,
                motions=motions,
                roles_cli=roles_cli,
                output_dir=effective_output,
                step=step,
                archive_dir=archive_dir,
            )
        )
    except DebateError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)


if __name__ == "__main__":
    main()
