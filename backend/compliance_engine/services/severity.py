"""
Canonical severity and status classifiers for findings.

Scanners report severity either as high / medium / low or as the STIG
"CAT I / CAT II / CAT III" categories, and a single deployment may mix both.
All call sites go through classify_severity so the alias table lives in one
place; a value outside the table is reported as "unknown", never folded into
another bucket.
"""
from __future__ import annotations

import re

from compliance_engine.services.errors import InvalidSeverity, InvalidStatus

SEVERITIES = ("high", "medium", "low")
UNKNOWN = "unknown"

# Weights used for the weighted compliance score
SEVERITY_WEIGHTS = {"high": 10, "medium": 5, "low": 1, UNKNOWN: 3}

# STIG categories, checked most specific first: "cat iii" contains "cat ii" contains "cat i"
_CATEGORY_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bcat\s*(?:iii|3)\b"), "low"),
    (re.compile(r"\bcat\s*(?:ii|2)\b"), "medium"),
    (re.compile(r"\bcat\s*(?:i|1)\b"), "high"),
)

_WORD_ALIASES = {
    "high": "high",
    "critical": "high",
    "medium": "medium",
    "moderate": "medium",
    "low": "low",
}

_NUMERIC_ALIASES = {"1": "high", "2": "medium", "3": "low"}

STATUSES = ("open", "not_a_finding", "not_applicable", "not_reviewed")

_STATUS_ALIASES = {
    "open": "open",
    "fail": "open",
    "failed": "open",
    "notafinding": "not_a_finding",
    "naf": "not_a_finding",
    "pass": "not_a_finding",
    "passed": "not_a_finding",
    "notapplicable": "not_applicable",
    "na": "not_applicable",
    "n/a": "not_applicable",
    "notreviewed": "not_reviewed",
    "notchecked": "not_reviewed",
}

SATISFIED_STATUSES = ("not_a_finding", "not_applicable")

# Free-text statuses ("Open - Verified", "Not Applicable (inherited)"), checked
# most specific first: "not a finding" and "not applicable" both start with "not"
_STATUS_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bnot ?(?:reviewed|checked)\b"), "not_reviewed"),
    (re.compile(r"\bnot ?a ?finding\b|\bnaf\b|\bpass(?:ed)?\b"), "not_a_finding"),
    (re.compile(r"\bnot ?applicable\b|\bn ?/ ?a\b|\bna\b"), "not_applicable"),
    (re.compile(r"\bopen\b|\bfail(?:ed)?\b"), "open"),
)


def _fold(raw: str) -> str:
    return re.sub(r"[\s_\-]+", " ", raw.strip().lower())


def classify_severity(raw: str | None) -> str:
    """Map a raw severity string to high / medium / low, or "unknown"."""
    if not raw:
        return UNKNOWN
    text = _fold(str(raw))
    if text in _NUMERIC_ALIASES:
        return _NUMERIC_ALIASES[text]

    for pattern, bucket in _CATEGORY_PATTERNS:
        if pattern.search(text):
            return bucket
    for word, bucket in _WORD_ALIASES.items():
        if re.search(rf"\b{word}\b", text):
            return bucket
    return UNKNOWN


def require_severity(raw: str | None) -> str:
    bucket = classify_severity(raw)
    if bucket == UNKNOWN:
        raise InvalidSeverity(f"Unrecognized severity: {raw!r}")
    return bucket


def classify_status(raw: str | None) -> str:
    """Map a checklist status to open / not_a_finding / not_applicable / not_reviewed."""
    if not raw:
        raise InvalidStatus("Missing finding status")
    text = _fold(str(raw))
    key = text.replace(" ", "")
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]

    for pattern, status in _STATUS_PATTERNS:
        if pattern.search(text):
            return status
    raise InvalidStatus(f"Unrecognized status: {raw!r}")
