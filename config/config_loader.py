"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class AgentConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class PromptsConfig:
    opening_rules: str
    opening: str
    attack: str
    attack_previous: str
    attack_reply_rule: str
    rebuttal: str
    rebuttal_focus: dict[int, str]
    closing: str
    closing_final_note: str
    verdict: str
    interject: str
    stances: dict[str, str] = field(default_factory=dict)


@dataclass
class DebateConfig:
    poll_interval_sec: float = 2.0
    max_poll_attempts: int = 300
    min_sources: int = 3


@dataclass
class VerdictRules:
    low_credibility_max: int = 2
    weak_skill_below: int = 60
    tie_labels: list[str] = field(default_factory=lambda: ["平局"])
    inconclusive_markers: list[str] = field(default_factory=lambda: ["各有"])


@dataclass
class DefaultsConfig:
    output_dir: Path
    pro: str
    con: str
    judge: str
    phase_timeout_sec: int = 600
    inbox_dir: Path = Path("./inbox")
    archive_dir: Path = Path("./inbox/archive")


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    debate: DebateConfig
    rules: VerdictRules
    agents: dict[str, AgentConfig]
    prompts: PromptsConfig
    available_agents: set[str] = field(default_factory=set)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs agents without an API key but does not raise — callers check
    available_agents before starting a debate.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw["output_dir"]),
        pro=str(defaults_raw["pro"]),
        con=str(defaults_raw["con"]),
        judge=str(defaults_raw["judge"]),
        phase_timeout_sec=int(defaults_raw.get("phase_timeout_sec", 600)),
        inbox_dir=Path(defaults_raw.get("inbox_dir", "./inbox")),
        archive_dir=Path(defaults_raw.get("archive_dir", "./inbox/archive")),
    )

    debate_raw = raw.get("debate", {})
    debate = DebateConfig(
        poll_interval_sec=float(debate_raw.get("poll_interval_sec", 2.0)),
        max_poll_attempts=int(debate_raw.get("max_poll_attempts", 300)),
        min_sources=int(debate_raw.get("min_sources", 3)),
    )

    rules_raw = raw.get("verdict_rules", {})
    rules = VerdictRules(
        low_credibility_max=int(rules_raw.get("low_credibility_max", 2)),
        weak_skill_below=int(rules_raw.get("weak_skill_below", 60)),
        tie_labels=[str(v) for v in rules_raw.get("tie_labels", ["平局"])],
        inconclusive_markers=[str(v) for v in rules_raw.get("inconclusive_markers", ["各有"])],
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        opening_rules=prompts_raw["opening_rules"],
        opening=prompts_raw["opening"],
        attack=prompts_raw["attack"],
        attack_previous=prompts_raw["attack_previous"],
        attack_reply_rule=prompts_raw["attack_reply_rule"],
        rebuttal=prompts_raw["rebuttal"],
        rebuttal_focus={int(k): str(v) for k, v in prompts_raw["rebuttal_focus"].items()},
        closing=prompts_raw["closing"],
        closing_final_note=prompts_raw["closing_final_note"],
        verdict=prompts_raw["verdict"],
        interject=prompts_raw["interject"],
        stances={k: str(v) for k, v in prompts_raw.get("stances", {}).items()},
    )

    agents: dict[str, AgentConfig] = {}
    available_agents: set[str] = set()

    for agent_name, agent_raw in raw["agents"].items():
        agent_cfg = AgentConfig(
            name=agent_name,
            sdk=agent_raw["sdk"],
            model=agent_raw["model"],
            api_key_env=agent_raw["api_key_env"],
            timeout_sec=int(agent_raw["timeout_sec"]),
            max_tokens=int(agent_raw["max_tokens"]),
            base_url=agent_raw.get("base_url"),
        )
        agents[agent_name] = agent_cfg

        api_key = os.environ.get(agent_raw["api_key_env"], "").strip()
        if api_key:
            available_agents.add(agent_name)
            logger.info("Agent available: %s", agent_name)
        else:
            logger.info(
                "Agent skipped (no API key): %s — set %s in .env",
                agent_name,
                agent_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        debate=debate,
        rules=rules,
        agents=agents,
        prompts=prompts,
        available_agents=available_agents,
    )
