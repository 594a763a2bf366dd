"""URL citation counting for debate turns. Informational only, never blocks a phase."""

import re

from src.models import ComplianceResult


URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)

DEFAULT_MIN_SOURCES = 3


def count_urls(content: str) -> int:
    return len(URL_PATTERN.findall(content))


def check_compliance(content: str, min_sources: int = DEFAULT_MIN_SOURCES) -> ComplianceResult:
    """Classify a turn by how many URL sources it cites.

    0 URLs and fewer than ``min_sources`` are both non-compliant, with
    different warnings so the audit trail can tell them apart.
    """
    url_count = count_urls(content)
    if url_count == 0:
        return ComplianceResult(compliant=False, url_count=0, warning="无URL来源")
    if url_count < min_sources:
        return ComplianceResult(compliant=False, url_count=url_count, warning=f"仅{url_count}个来源")
    return ComplianceResult(compliant=True, url_count=url_count, warning=None)
