"""
Control identifier canonicalization.

Catalog entries, CCI links, baselines and findings spell the same control as
"AC-2 (1)", "AC-2(1)" or "AC-2( 1 )". Every id is passed through
normalize_control_id before it is stored, compared or used as a lookup key.
"""
from __future__ import annotations

import re

_OPEN_PAREN = re.compile(r"\s*\(\s*")
_CLOSE_PAREN = re.compile(r"\s+\)")
_CONTROL_ID = re.compile(r"^([A-Za-z]+)-(\d+)(?:\((\d+)\))?$")


def normalize_control_id(control_id: str) -> str:
    """Drop whitespace around "(" and before ")". Case and other spacing are kept.

    >>> normalize_control_id("AC-2 (1)")
    'AC-2(1)'
    """
    return _CLOSE_PAREN.sub(")", _OPEN_PAREN.sub("(", control_id))


def canonical_control_id(raw: str | None) -> str | None:
    """Trim and normalize an incoming id; empty values become None."""
    if raw is None:
        return None
    value = normalize_control_id(str(raw).strip())
    return value or None


def control_family(control_id: str) -> str | None:
    """"AC-2(1)" -> "AC"."""
    head, sep, _ = control_id.partition("-")
    if not sep or not head:
        return None
    return head.upper()


def control_sort_key(control_id: str) -> tuple[str, int, int, str]:
    """Order by family, then control number, then enhancement number."""
    m = _CONTROL_ID.match(control_id)
    if not m:
        return (control_id, 0, 0, control_id)
    return (m.group(1).upper(), int(m.group(2)), int(m.group(3) or 0), control_id)
