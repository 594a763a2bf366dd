"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AgentConfig,
    AppConfig,
    DebateConfig,
    DefaultsConfig,
    PromptsConfig,
    VerdictRules,
    load_config,
)
from src.agents.base import AgentAdapter, ChatAgent
from src.engine import DebateEngine
from src.models import DispatchResult

SAMPLE_VERDICT = """经过核实，双方来源大体可靠。

===审计结果===
【辩论技巧】
技巧胜方：正方 (谁辩得更好)
正方技巧分：82
反方技巧分：74
技巧评语：正方论证链条更完整

【事实裁决】
事实倾向：正方观点
来源可信度-正方：4星
来源可信度-反方：3星
裁判补充证据：国际能源署2023年报告显示
核电装机容量持续增长
裁决理由：正方数据为一手来源

【风险提示】
致命风险：忽略了核废料处置成本
===============
"""


@pytest.fixture(scope="session")
def real_prompts() -> PromptsConfig:
    """Prompt templates from the shipped settings.yaml."""
    return load_config().prompts


@pytest.fixture
def fast_debate_config() -> DebateConfig:
    return DebateConfig(poll_interval_sec=0, max_poll_attempts=5, min_sources=3)


@pytest.fixture
def sample_agent_config() -> AgentConfig:
    return AgentConfig(
        name="test_agent",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        output_dir=tmp_path / "output",
        pro="claude",
        con="openai",
        judge="gemini",
    )


@pytest.fixture
def sample_app_config(sample_defaults_config: DefaultsConfig, real_prompts: PromptsConfig) -> AppConfig:
    agent_cfg = AgentConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-20250514",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        debate=DebateConfig(),
        rules=VerdictRules(),
        agents={"claude": agent_cfg},
        prompts=real_prompts,
        available_agents={"claude"},
    )


class MockAgent(AgentAdapter):
    """Test double AgentAdapter. Replies only when the test calls reply()."""

    def __init__(self, agent_name: str = "mock", fail: bool = False) -> None:
        super().__init__()
        self._name = agent_name
        self._fail = fail
        self.sent: list[str] = []
        self.latest: str | None = None

    def name(self) -> str:
        return self._name

    async def dispatch(self, text: str) -> DispatchResult:
        self.sent.append(text)
        if self._fail:
            return DispatchResult(agent=self._name, success=False, error="tab not connected")
        return DispatchResult(agent=self._name, success=True)

    async def fetch_latest(self) -> str | None:
        return self.latest

    def reply(self, text: str) -> None:
        """Settle a reply and push it to subscribers, like a real adapter."""
        self.latest = text
        self._notify(text)


class MockChatAgent(ChatAgent):
    """ChatAgent whose SDK call is an AsyncMock."""

    def __init__(self, config: AgentConfig, reply: str = "Mock reply") -> None:
        super().__init__(config)
        self.complete = AsyncMock(return_value=reply)  # type: ignore[method-assign]

    async def complete(self, messages: list[dict[str, str]]) -> str:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return "Mock reply"


@pytest.fixture
def agents() -> dict[str, MockAgent]:
    return {name: MockAgent(name) for name in ("claude", "openai", "gemini", "grok")}


@pytest.fixture
def engine(agents, real_prompts, fast_debate_config) -> DebateEngine:
    return DebateEngine(agents, real_prompts, fast_debate_config, VerdictRules())


def cited(text: str, n: int = 3) -> str:
    """Reply text citing ``n`` distinct URLs."""
    urls = " ".join(f"(来源: https://example.org/source/{i})" for i in range(n))
    return f"{text} {urls}"
