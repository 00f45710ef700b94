"""
Compliance determination state machine.

States (package/control pair):

    NOT_ASSESSED                  no evidence
    CU / NC_U / NA_U              inferred from findings (unofficial)
    CO / NC_O / NA_O              confirmed by a reviewer (official)

Automatic inference only ever produces unofficial states and never moves an
official one; an official state changes only through another override or an
explicit clear.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field

from compliance_engine.services.errors import InvalidTransition

NOT_ASSESSED = "not-assessed"
COMPLIANT = "compliant"
NON_COMPLIANT = "non-compliant"
NOT_APPLICABLE = "not-applicable"

DETERMINATIONS = (NOT_ASSESSED, NON_COMPLIANT, COMPLIANT, NOT_APPLICABLE)

STATE_CODES = ("NOT_ASSESSED", "CU", "NC_U", "NA_U", "CO", "NC_O", "NA_O")

_CODE_BY_STATUS = {
    (COMPLIANT, False): "CU",
    (NON_COMPLIANT, False): "NC_U",
    (NOT_APPLICABLE, False): "NA_U",
    (COMPLIANT, True): "CO",
    (NON_COMPLIANT, True): "NC_O",
    (NOT_APPLICABLE, True): "NA_O",
}

_STATUS_BY_CODE = {code: key for key, code in _CODE_BY_STATUS.items()}

OFFICIAL_CODES = frozenset(code for (_, official), code in _CODE_BY_STATUS.items() if official)


def state_code(status: str, official: bool) -> str:
    if status == NOT_ASSESSED:
        return "NOT_ASSESSED"
    return _CODE_BY_STATUS[(status, official)]


def parse_state(code: str) -> tuple[str, bool]:
    """"NC_O" -> ("non-compliant", True)."""
    if code == "NOT_ASSESSED":
        return NOT_ASSESSED, False
    try:
        return _STATUS_BY_CODE[code]
    except KeyError:
        raise InvalidTransition(f"Unknown compliance state: {code}") from None


def is_official(code: str) -> bool:
    return code in OFFICIAL_CODES


def transition(current: str, event: str, status: str | None = None) -> str:
    """Apply an event ("infer", "override", "clear") to a state code."""
    if event == "infer":
        if is_official(current):
            return current
        if status is None or status not in DETERMINATIONS:
            raise InvalidTransition(f"infer needs a determination, got {status!r}")
        return state_code(status, official=False)

    if event == "override":
        if status not in (COMPLIANT, NON_COMPLIANT, NOT_APPLICABLE):
            raise InvalidTransition(f"Cannot record {status!r} as an official determination")
        return state_code(status, official=True)

    if event == "clear":
        if not is_official(current):
            raise InvalidTransition(f"No official determination to clear (state {current})")
        return "NOT_ASSESSED"

    raise InvalidTransition(f"Unknown event: {event}")


@dataclass
class FindingCounts:
    total: int = 0
    open: int = 0
    open_high: int = 0
    open_medium: int = 0
    open_low: int = 0
    open_unknown: int = 0
    not_reviewed: int = 0
    not_a_finding: int = 0
    not_applicable: int = 0
    rejected: int = 0

    @property
    def satisfied(self) -> int:
        return self.not_a_finding + self.not_applicable


@dataclass
class ComplianceDetermination:
    """Verdict for one (package, control) pair with its supporting counts."""
    package_id: int
    control_id: str
    status: str = NOT_ASSESSED
    official: bool = False
    score: int = 100
    assessment_progress: float = 0.0
    systems_assessed: int = 0
    total_systems: int = 0
    counts: FindingCounts = field(default_factory=FindingCounts)
    notes: str | None = None

    @property
    def state(self) -> str:
        return state_code(self.status, self.official)

    @property
    def evidence_backed(self) -> bool:
        return self.official or self.status != NOT_ASSESSED

    def as_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state
        data["counts"]["satisfied"] = self.counts.satisfied
        return data
