"""Agent adapter interface and the shared conversational chat agent."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from config.config_loader import AgentConfig
from src.models import DispatchResult

logger = logging.getLogger(__name__)

ResponseCallback = Callable[[str, str], None]


class AgentError(Exception):
    """Raised when an agent call fails."""

    def __init__(self, agent_name: str, message: str) -> None:
        self.agent_name = agent_name
        super().__init__(f"[{agent_name}] {message}")


class AgentAdapter(ABC):
    """Delivers text to one agent's conversation and reports its replies.

    Replies arrive two ways: pushed to every subscribed callback as
    ``callback(agent_name, text)`` when the agent finishes, and on demand
    through ``fetch_latest()``.
    """

    def __init__(self) -> None:
        self._subscribers: list[ResponseCallback] = []

    @abstractmethod
    def name(self) -> str:
        """Return the short agent name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    async def dispatch(self, text: str) -> DispatchResult:
        """Deliver ``text`` to the agent's conversation. Does not wait for the reply."""
        ...

    @abstractmethod
    async def fetch_latest(self) -> str | None:
        """Return the most recently completed reply, or None if none has settled."""
        ...

    def subscribe(self, callback: ResponseCallback) -> None:
        self._subscribers.append(callback)

    def _notify(self, text: str) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self.name(), text)
            except Exception:
                logger.exception("Response callback failed for %s", self.name())


class ChatAgent(AgentAdapter):
    """LLM-backed agent holding one running conversation.

    Each dispatch becomes a background completion; replies are serialized so
    the conversation stays in order even when several messages are queued.
    """

    def __init__(self, config: AgentConfig) -> None:
        super().__init__()
        self._config = config
        self._messages: list[dict[str, str]] = []
        self._latest: str | None = None
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    @abstractmethod
    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Return the assistant reply to ``messages`` (role/content dicts).

        Raises:
            AgentError: On API failure, timeout, or empty response.
        """
        ...

    async def ask(self, prompt: str) -> str:
        """One-off completion outside the running conversation."""
        return await self.complete([{"role": "user", "content": prompt}])

    async def dispatch(self, text: str) -> DispatchResult:
        if self._closed:
            return DispatchResult(agent=self.name(), success=False, error="agent is closed")
        task = asyncio.create_task(self._converse(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Dispatched %d chars to %s", len(text), self.name())
        return DispatchResult(agent=self.name(), success=True)

    async def fetch_latest(self) -> str | None:
        return self._latest

    def reset_conversation(self) -> None:
        self._messages.clear()
        self._latest = None

    async def aclose(self) -> None:
        """Cancel in-flight completions."""
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _converse(self, text: str) -> None:
        async with self._lock:
            self._messages.append({"role": "user", "content": text})
            try:
                reply = await self._complete_with_retry(list(self._messages))
            except AgentError as exc:
                # Drop the unanswered turn so the next dispatch starts clean.
                self._messages.pop()
                logger.error("Agent %s failed to reply: %s", self.name(), exc)
                return
            self._messages.append({"role": "assistant", "content": reply})
            self._latest = reply
        self._notify(reply)

    async def _complete_with_retry(self, messages: list[dict[str, str]]) -> str:
        """Call complete(), retrying once on timeout with 1.5x the timeout."""
        try:
            return await self.complete(messages)
        except AgentError as exc:
            if "timed out" not in str(exc).lower():
                raise
            original_timeout = self._config.timeout_sec
            self._config.timeout_sec = int(original_timeout * 1.5)
            logger.warning(
                "Agent %s timed out, retrying with %ds (1.5x)",
                self.name(), self._config.timeout_sec,
            )
            try:
                return await self.complete(messages)
            finally:
                self._config.timeout_sec = original_timeout
