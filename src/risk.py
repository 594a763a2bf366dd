"""Deterministic reliability checks over a parsed verdict. No I/O."""

import logging

from config.config_loader import VerdictRules
from src.models import Classification, ParsedVerdict, RiskFlag, VerdictOutcome

logger = logging.getLogger(__name__)

RISK_REASON_TEXT: dict[str, str] = {
    RiskFlag.LOW_CREDIBILITY_SOURCES: "来源可信度过低 (存在虚假或低质来源)",
    RiskFlag.MISSING_INDEPENDENT_REASONING: "裁判未提供独立调研或裁决理由",
    RiskFlag.WEAK_ARGUMENTATION: "双方辩论技巧均未达标 (<60分)",
}


def risk_reason_text(code: str | None) -> str:
    if code is None:
        return ""
    return RISK_REASON_TEXT.get(code, code)


def _risk_flag(verdict: ParsedVerdict, rules: VerdictRules) -> str | None:
    """First failing check wins; order matters."""
    credibility = [c for c in (verdict.pro_credibility, verdict.con_credibility) if c is not None]
    if any(c <= rules.low_credibility_max for c in credibility):
        return RiskFlag.LOW_CREDIBILITY_SOURCES

    if not verdict.judge_evidence and not verdict.verdict_reason:
        return RiskFlag.MISSING_INDEPENDENT_REASONING

    scores = (verdict.pro_skill_score, verdict.con_skill_score)
    if all(s is not None for s in scores) and all(s < rules.weak_skill_below for s in scores):
        return RiskFlag.WEAK_ARGUMENTATION

    return None


def is_disputed(verdict: ParsedVerdict, rules: VerdictRules) -> bool:
    """Tie on skill and an inconclusive fact verdict."""
    if verdict.skill_winner not in rules.tie_labels:
        return False
    return any(marker in verdict.fact_verdict for marker in rules.inconclusive_markers)


def evaluate(verdict: ParsedVerdict, judge: str, rules: VerdictRules | None = None) -> VerdictOutcome:
    """Classify a parsed verdict as single_judge, disputed, risk_flagged or invalid."""
    rules = rules or VerdictRules()

    if not verdict.valid:
        logger.warning("Verdict from %s is invalid: %s", judge, "; ".join(verdict.parse_errors))
        return VerdictOutcome(classification=Classification.INVALID, verdict=verdict, judge=judge)

    flag = _risk_flag(verdict, rules)
    if flag is not None:
        logger.warning("Verdict from %s risk-flagged: %s", judge, flag)
        return VerdictOutcome(
            classification=Classification.RISK_FLAGGED,
            verdict=verdict,
            judge=judge,
            risk_reason=flag,
        )

    if is_disputed(verdict, rules):
        classification = Classification.DISPUTED
    else:
        classification = Classification.SINGLE_JUDGE

    logger.info(
        "Verdict from %s: %s (skill winner %s, fact verdict %s)",
        judge, classification, verdict.skill_winner, verdict.fact_verdict,
    )
    return VerdictOutcome(classification=classification, verdict=verdict, judge=judge)
