"""Anthropic Claude agent using anthropic SDK with native async."""

import asyncio
import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import AgentConfig
from src.agents.base import AgentError, ChatAgent

logger = logging.getLogger(__name__)


class AnthropicAgent(ChatAgent):
    """Anthropic Claude agent via anthropic SDK."""

    def __init__(self, config: AgentConfig) -> None:
        super().__init__(config)
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise AgentError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    async def complete(self, messages: list[dict[str, str]]) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=self._config.max_tokens,
                    messages=messages,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise AgentError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise AgentError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise AgentError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise AgentError(self._config.name, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic reply: %.2fs, %s tokens", latency, token_count)
        return "\n".join(text_blocks)
