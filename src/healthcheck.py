"""Agent health checks — ping each API before starting a debate."""

import asyncio
import logging

from src.agents.base import ChatAgent

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(name: str, agent: ChatAgent) -> tuple[str, bool, str]:
    """Ping a single agent outside its debate conversation. Returns (name, ok, error_message)."""
    try:
        await asyncio.wait_for(agent.ask(_PING_PROMPT), timeout=_TIMEOUT_SEC)
        return name, True, ""
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", name, exc)
        return name, False, str(exc)


async def run_health_checks(
    agents: dict[str, ChatAgent],
) -> dict[str, tuple[bool, str]]:
    """Ping all agents in parallel.

    Returns:
        Dict mapping agent name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, a) for n, a in agents.items()))
    return {name: (ok, err) for name, ok, err in results}
