"""Pure dataclasses for the debate pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from datetime import datetime

PRO = "pro"
CON = "con"
BOTH = "both"


class DebateState:
    IDLE = "idle"
    PHASE_IN_FLIGHT = "phase_in_flight"
    PHASE_READY = "phase_ready"
    ALL_PHASES_COMPLETE = "all_phases_complete"
    AWAITING_VERDICT = "awaiting_verdict"
    VERDICT_SHOWN = "verdict_shown"


class Classification:
    SINGLE_JUDGE = "single_judge"
    DISPUTED = "disputed"
    RISK_FLAGGED = "risk_flagged"
    INVALID = "invalid"


class RiskFlag:
    LOW_CREDIBILITY_SOURCES = "low_credibility_sources"
    MISSING_INDEPENDENT_REASONING = "missing_independent_reasoning"
    WEAK_ARGUMENTATION = "weak_argumentation"


@dataclass(frozen=True)
class ComplianceResult:
    compliant: bool
    url_count: int
    warning: str | None


@dataclass(frozen=True)
class Turn:
    phase: str
    agent: str
    side: str              # PRO or CON
    content: str
    source_compliance: ComplianceResult | None  # None for closing phases


@dataclass(frozen=True)
class LateTurn:
    phase: str             # phase before the one active when the reply arrived
    agent: str
    side: str
    content: str
    received_at: datetime = field(default_factory=datetime.now)


@dataclass
class ParsedVerdict:
    raw_text: str
    valid: bool = False
    skill_winner: str = "平局"
    pro_skill_score: int | None = None
    con_skill_score: int | None = None
    skill_comment: str = ""
    fact_verdict: str = "证据不足"
    pro_credibility: int | None = None
    con_credibility: int | None = None
    judge_evidence: str = ""
    verdict_reason: str = ""
    critical_risk: str = "无"
    parse_errors: list[str] = field(default_factory=list)


@dataclass
class VerdictOutcome:
    classification: str
    verdict: ParsedVerdict
    judge: str
    risk_reason: str | None = None


@dataclass
class DispatchResult:
    agent: str
    success: bool
    error: str | None = None


@dataclass
class DebateSession:
    active: bool = False
    topic: str = ""
    pro_agent: str | None = None
    con_agent: str | None = None
    judge_agent: str | None = None
    phase_index: int = 0
    history: list[Turn] = field(default_factory=list)
    pending_responses: set[str] = field(default_factory=set)
    phase_in_flight: bool = False
    late_responses: list[LateTurn] = field(default_factory=list)
    verdict: ParsedVerdict | None = None
    outcome: VerdictOutcome | None = None
    started_at: datetime | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    state: str
    topic: str
    pro_agent: str | None
    con_agent: str | None
    judge_agent: str | None
    phase: str | None
    phase_display: str | None
    pending: tuple[str, ...]
    history: tuple[Turn, ...]
    late_responses: tuple[LateTurn, ...]
    outcome: VerdictOutcome | None
