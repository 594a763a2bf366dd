"""Parse the judge's free-text audit report into a ParsedVerdict.

Judges wrap the machine-readable part of their answer in a sentinel block::

    ===审计结果===
    技巧胜方：正方
    正方技巧分：82
    ...
    ===============

Agents are sloppy about markdown, so each field is found by its own
label-tolerant extractor and parsing degrades field by field instead of
failing as a whole.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.models import ParsedVerdict

logger = logging.getLogger(__name__)

_BLOCK_PATTERN = re.compile(r"={3,}审计结果={3,}([\s\S]*?)={10,}")
_OPEN_BLOCK_PATTERN = re.compile(r"={3,}审计结果={3,}([\s\S]*)\Z")
_AUDIT_BLOCK_PATTERN = re.compile(r"===审计结果===[\s\S]*?===============")

# Optional bullet and emphasis before the label, emphasis after it.
_LABEL_PREFIX = r"(?:[-*]?\s*)?(?:\*{1,2})?"
_LABEL_SUFFIX = r"(?:\*{1,2})?[：:]"

# Labels that terminate a multi-line field.
_MULTILINE_STOP = r"(?=(?:【|裁判补充|裁决理由|致命风险|来源可信度|\Z))"

_CHINESE_STARS = {"一": 1, "二": 2, "三": 3, "四": 4, "五": 5}


def _line_field(label: str) -> re.Pattern[str]:
    return re.compile(
        _LABEL_PREFIX + label + _LABEL_SUFFIX + r"\s*(?:\*{1,2})?(.+?)(?:\*{1,2})?$",
        re.MULTILINE,
    )


def _number_field(label: str) -> re.Pattern[str]:
    return re.compile(_LABEL_PREFIX + label + _LABEL_SUFFIX + r"\s*(?:\*{1,2})?(\d+)")


def _multiline_field(label: str) -> re.Pattern[str]:
    return re.compile(_LABEL_PREFIX + label + _LABEL_SUFFIX + r"\s*([\s\S]*?)" + _MULTILINE_STOP)


def _credibility_field(side_label: str) -> re.Pattern[str]:
    # "来源可信度-正方", "来源可信度—正方", "来源可信度 正方" ...
    return re.compile(
        _LABEL_PREFIX + r"来源可信度.?" + side_label + _LABEL_SUFFIX + r"\s*(.+?)$",
        re.MULTILINE,
    )


def _clean_text(value: str) -> str | None:
    cleaned = value.strip().replace("*", "").strip()
    return cleaned or None


def _clean_winner(value: str) -> str | None:
    cleaned = _clean_text(value)
    if cleaned is None:
        return None
    # "正方 (谁辩得更好)" -> "正方"
    cleaned = re.sub(r"\s*[(（].*[)）]", "", cleaned, count=1).strip()
    return cleaned or None


def _clean_multiline(value: str) -> str | None:
    cleaned = _clean_text(value)
    if cleaned is None:
        return None
    return re.sub(r"\n+", " ", cleaned)


def _to_int(value: str) -> int | None:
    return int(value)


def parse_credibility(text: str) -> int | None:
    """Star rating from '⭐5', '5星', '5 星', '4/5' or '五星'. None when unreadable."""
    if not text:
        return None
    numeric = re.search(r"[⭐★]?\s*(\d)\s*[星/]?", text)
    if numeric:
        return int(numeric.group(1))
    chinese = re.search(r"([一二三四五])\s*星", text)
    if chinese:
        return _CHINESE_STARS[chinese.group(1)]
    return None


@dataclass(frozen=True)
class FieldExtractor:
    """Locate one ParsedVerdict attribute; patterns are tried in order, first hit wins."""

    attribute: str
    patterns: tuple[re.Pattern[str], ...]
    convert: Callable[[str], Any]

    def extract(self, block: str) -> tuple[bool, Any | None]:
        """Return ``(label_found, value)``; a label with an unreadable value gives ``(True, None)``."""
        found = False
        for pattern in self.patterns:
            match = pattern.search(block)
            if not match:
                continue
            found = True
            value = self.convert(match.group(1))
            if value is not None:
                return True, value
        return found, None


FIELD_EXTRACTORS: tuple[FieldExtractor, ...] = (
    FieldExtractor("skill_winner", (_line_field("技巧胜方"), _line_field("胜方")), _clean_winner),
    FieldExtractor("pro_skill_score", (_number_field("正方技巧分"), _number_field("正方得分")), _to_int),
    FieldExtractor("con_skill_score", (_number_field("反方技巧分"), _number_field("反方得分")), _to_int),
    FieldExtractor("skill_comment", (_line_field("技巧评语"),), _clean_text),
    FieldExtractor("fact_verdict", (_line_field("事实倾向"),), _clean_text),
    FieldExtractor("pro_credibility", (_credibility_field("正方"),), parse_credibility),
    FieldExtractor("con_credibility", (_credibility_field("反方"),), parse_credibility),
    FieldExtractor("judge_evidence", (_multiline_field("裁判补充证据"),), _clean_multiline),
    FieldExtractor("verdict_reason", (_multiline_field("裁决理由"),), _clean_multiline),
    FieldExtractor("critical_risk", (_line_field("致命风险"),), _clean_text),
)

# A report counts as valid when either label is present, even with an empty value.
_MINIMUM_FIELDS = ("skill_winner", "fact_verdict")


def extract_block(text: str) -> str | None:
    """Return the audit block body; runs to end of text when the end marker is missing."""
    match = _BLOCK_PATTERN.search(text) or _OPEN_BLOCK_PATTERN.search(text)
    return match.group(1) if match else None


def parse_verdict(text: str) -> ParsedVerdict:
    """Parse judge output. Never raises; malformed input yields valid=False."""
    result = ParsedVerdict(raw_text=text)

    block = extract_block(text)
    if block is None:
        result.parse_errors.append("Missing audit block")
        logger.warning("Verdict has no audit block (%d chars)", len(text))
        return result

    found: set[str] = set()
    for extractor in FIELD_EXTRACTORS:
        label_found, value = extractor.extract(block)
        if not label_found:
            result.parse_errors.append(f"Missing field: {extractor.attribute}")
            continue
        found.add(extractor.attribute)
        if value is not None:
            setattr(result, extractor.attribute, value)

    result.valid = any(name in found for name in _MINIMUM_FIELDS)
    logger.debug("Parsed verdict fields: %s (valid=%s)", sorted(found), result.valid)
    return result


def strip_audit_block(text: str) -> str:
    """Judge report with the sentinel block removed, for audit display."""
    return _AUDIT_BLOCK_PATTERN.sub("", text, count=1).strip()
