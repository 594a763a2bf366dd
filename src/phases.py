"""Fixed debate phase sequence and per-phase speaker rules."""

from src.models import BOTH, CON, PRO

# Opening is prepared in parallel; every later phase alternates single speakers.
PHASES: tuple[str, ...] = (
    "opening",
    "attack_pro",
    "attack_con",
    "rebuttal_pro_1",
    "rebuttal_con_1",
    "rebuttal_pro_2",
    "rebuttal_con_2",
    "closing_con",   # con closes first
    "closing_pro",   # pro has the final word
)

PHASE_NAMES: dict[str, str] = {
    "opening": "立论阶段",
    "attack_pro": "正方攻辩",
    "attack_con": "反方攻辩",
    "rebuttal_pro_1": "正方驳论(1)",
    "rebuttal_con_1": "反方驳论(1)",
    "rebuttal_pro_2": "正方驳论(2)",
    "rebuttal_con_2": "反方驳论(2)",
    "closing_con": "反方总结",
    "closing_pro": "正方总结",
}

LAST_PHASE_INDEX = len(PHASES) - 1

_SIDE_LABELS = {PRO: "正方", CON: "反方"}


def _check(phase: str) -> None:
    if phase not in PHASE_NAMES:
        raise ValueError(f"Unknown debate phase: {phase!r}")


def speaker_mode(phase: str) -> str:
    """Return BOTH for parallel phases, otherwise the single side that speaks."""
    _check(phase)
    if phase == "opening":
        return BOTH
    if phase.endswith("_pro") or "_pro_" in phase:
        return PRO
    return CON


def display_name(phase: str) -> str:
    return PHASE_NAMES.get(phase, phase)


def is_closing(phase: str) -> bool:
    return phase.startswith("closing")


def is_attack(phase: str) -> bool:
    return phase.startswith("attack")


def is_rebuttal(phase: str) -> bool:
    return phase.startswith("rebuttal")


def rebuttal_round(phase: str) -> int:
    """Round number (1 or 2) of a rebuttal phase."""
    if not is_rebuttal(phase):
        raise ValueError(f"Not a rebuttal phase: {phase!r}")
    return 1 if phase.endswith("_1") else 2


def side_label(side: str) -> str:
    return _SIDE_LABELS[side]


def opposite(side: str) -> str:
    return CON if side == PRO else PRO
