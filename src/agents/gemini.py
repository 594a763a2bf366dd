"""Gemini agent using google-genai SDK with native async."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import types as genai_types

from config.config_loader import AgentConfig
from src.agents.base import AgentError, ChatAgent

logger = logging.getLogger(__name__)

_ROLES = {"user": "user", "assistant": "model"}


def _to_contents(messages: list[dict[str, str]]) -> list[genai_types.Content]:
    return [
        genai_types.Content(role=_ROLES[m["role"]], parts=[genai_types.Part(text=m["content"])])
        for m in messages
    ]


class GeminiAgent(ChatAgent):
    """Google Gemini agent via google-genai SDK."""

    def __init__(self, config: AgentConfig) -> None:
        super().__init__(config)
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise AgentError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    async def complete(self, messages: list[dict[str, str]]) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=_to_contents(messages),
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=self._config.max_tokens,
                    ),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise AgentError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise AgentError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise AgentError(self._config.name, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini reply: %.2fs, %s tokens", latency, token_count)
        return response.text
