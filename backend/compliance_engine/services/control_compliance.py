"""
Compliance Aggregator — one determination per (package, control).

Evidence is read with a single SELECT joining systems to findings for the
package. Each finding is resolved against a ResolutionIndex built once per
call, then the findings that resolve to the control are reduced:

  1. official override (human entered)      -> that status, official
  2. any open finding of high severity      -> non-compliant
  3. any open finding                       -> non-compliant
  4. every resolved finding satisfied       -> compliant
     (all of them not_applicable)           -> not-applicable
  5. anything else, or no findings at all   -> not-assessed

Steps 2..5 are unofficial. Findings with a malformed status or severity are
rejected one by one and counted; they never abort the aggregation, but a
control with a rejected finding and nothing open stays not-assessed.

Weighted score (satisfied weight / total weight):
  high=10  medium=5  low=1  unknown=3     no findings -> 100
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.config import settings
from compliance_engine.models.compliance import ComplianceOverride
from compliance_engine.models.package import Finding, Package, System
from compliance_engine.services.control_ids import canonical_control_id
from compliance_engine.services.determination import (
    COMPLIANT,
    NON_COMPLIANT,
    NOT_APPLICABLE,
    NOT_ASSESSED,
    ComplianceDetermination,
    FindingCounts,
    parse_state,
    state_code,
    transition,
)
from compliance_engine.services.errors import (
    AggregationIncomplete,
    ControlNotFound,
    InvalidFinding,
    PackageNotFound,
)
from compliance_engine.services.finding_resolver import ResolutionIndex, build_resolution_index
from compliance_engine.services.severity import (
    SEVERITY_WEIGHTS,
    UNKNOWN,
    classify_status,
    require_severity,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FindingRecord:
    """One finding as read by the evidence query."""
    finding_id: int
    system_id: int
    group_id: int | None
    control_id: str | None
    cci: str | None
    severity: str | None
    status: str | None


@dataclass
class PackageEvidence:
    package_id: int
    system_ids: list[int]
    findings: list[FindingRecord]


# ═══════════════════════════════════════════════
# EVIDENCE
# ═══════════════════════════════════════════════

async def get_package(s: AsyncSession, package_id: int) -> Package:
    package = await s.get(Package, package_id)
    if not package:
        raise PackageNotFound(f"Package {package_id} not found")
    return package


async def load_package_evidence(s: AsyncSession, package_id: int) -> PackageEvidence:
    """Every system of the package and every finding on them, in one query."""
    await get_package(s, package_id)
    rows = (await s.execute(
        select(
            System.id, System.group_id,
            Finding.id, Finding.control_id, Finding.cci, Finding.severity, Finding.status,
        )
        .select_from(System)
        .outerjoin(Finding, Finding.system_id == System.id)
        .where(System.package_id == package_id)
        .order_by(System.id, Finding.id)
    )).all()

    system_ids: list[int] = []
    findings: list[FindingRecord] = []
    for system_id, group_id, finding_id, control_id, cci, severity, status in rows:
        if not system_ids or system_ids[-1] != system_id:
            system_ids.append(system_id)
        if finding_id is not None:
            findings.append(FindingRecord(
                finding_id, system_id, group_id, control_id, cci, severity, status,
            ))
    return PackageEvidence(package_id=package_id, system_ids=system_ids, findings=findings)


def group_by_control(
    findings: list[FindingRecord], index: ResolutionIndex,
) -> tuple[dict[str, list[FindingRecord]], list[FindingRecord]]:
    """Fan findings out to the controls they resolve to. Returns (by control, unmapped)."""
    by_control: dict[str, list[FindingRecord]] = {}
    unmapped: list[FindingRecord] = []
    for f in findings:
        control_ids = index.resolve_ids(f)
        if not control_ids:
            unmapped.append(f)
        for control_id in control_ids:
            by_control.setdefault(control_id, []).append(f)
    return by_control, unmapped


# ═══════════════════════════════════════════════
# REDUCTION
# ═══════════════════════════════════════════════

def classify_finding(f: FindingRecord) -> tuple[str, str]:
    """(status, severity) of a finding. Raises InvalidStatus / InvalidSeverity.

    A missing severity is "unknown"; a present but unrecognized one is malformed.
    """
    status = classify_status(f.status)
    if f.severity is None or not str(f.severity).strip():
        return status, UNKNOWN
    return status, require_severity(f.severity)


def reduce_findings(
    package_id: int,
    control_id: str,
    findings: list[FindingRecord],
    *,
    total_systems: int = 0,
    override: ComplianceOverride | None = None,
) -> ComplianceDetermination:
    """Reduce the findings kept for one control to a determination."""
    counts = FindingCounts()
    systems: set[int] = set()
    total_weight = 0
    satisfied_weight = 0

    for f in findings:
        try:
            status, severity = classify_finding(f)
        except InvalidFinding as e:
            counts.rejected += 1
            log.warning("Rejected finding %s for %s: %s", f.finding_id, control_id, e)
            continue

        counts.total += 1
        systems.add(f.system_id)
        weight = SEVERITY_WEIGHTS[severity]
        total_weight += weight

        if status == "open":
            counts.open += 1
            setattr(counts, f"open_{severity}", getattr(counts, f"open_{severity}") + 1)
        elif status == "not_reviewed":
            counts.not_reviewed += 1
        else:
            if status == "not_a_finding":
                counts.not_a_finding += 1
            else:
                counts.not_applicable += 1
            satisfied_weight += weight

    inferred, notes = _infer(counts, len(systems))
    state = transition("NOT_ASSESSED", "infer", inferred)
    if override is not None:
        state = transition(state, "override", override.status)
        notes = override.notes or f"Official determination by {override.assessed_by or 'reviewer'}"
    status, official = parse_state(state)

    return ComplianceDetermination(
        package_id=package_id,
        control_id=control_id,
        status=status,
        official=official,
        score=round(satisfied_weight / total_weight * 100) if total_weight else 100,
        assessment_progress=(
            round((counts.total - counts.not_reviewed) / counts.total * 100, 1) if counts.total else 0.0
        ),
        systems_assessed=len(systems),
        total_systems=total_systems,
        counts=counts,
        notes=notes,
    )


def _infer(counts: FindingCounts, system_count: int) -> tuple[str, str | None]:
    if counts.open_high:
        return NON_COMPLIANT, f"{counts.open_high} open high severity finding(s) across {system_count} system(s)"
    if counts.open:
        return NON_COMPLIANT, f"{counts.open} open finding(s) across {system_count} system(s)"
    if counts.rejected:
        return NOT_ASSESSED, f"{counts.rejected} finding(s) rejected as malformed"
    if counts.total and counts.satisfied == counts.total:
        if counts.not_applicable == counts.total:
            return NOT_APPLICABLE, "All findings not applicable"
        return COMPLIANT, f"All {counts.total} finding(s) satisfied"
    if counts.total:
        return NOT_ASSESSED, f"{counts.not_reviewed} finding(s) not yet reviewed"
    return NOT_ASSESSED, None


# ═══════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════

async def compute_control_compliance(
    s: AsyncSession,
    package_id: int,
    control_id: str,
    *,
    catalog_id: int | None = None,
    timeout: float | None = None,
) -> ComplianceDetermination:
    """Determination for one control of a package.

    Raises PackageNotFound / ControlNotFound, or AggregationIncomplete when the
    deadline passes before all evidence is read.
    """
    if timeout is None:
        timeout = settings.AGGREGATION_TIMEOUT_SECONDS
    return await with_deadline(
        _compute_control_compliance(s, package_id, control_id, catalog_id),
        timeout,
        f"compliance of {control_id} in package {package_id}",
    )


async def with_deadline(coro, timeout: float | None, what: str):
    try:
        return await asyncio.wait_for(coro, timeout if timeout and timeout > 0 else None)
    except asyncio.TimeoutError:
        log.error("Aggregation of %s did not finish within %ss", what, timeout)
        raise AggregationIncomplete(f"Aggregation of {what} incomplete after {timeout}s") from None


async def _compute_control_compliance(
    s: AsyncSession, package_id: int, control_id: str, catalog_id: int | None,
) -> ComplianceDetermination:
    normalized = canonical_control_id(control_id)
    index = await build_resolution_index(s, catalog_id)
    if not normalized or normalized not in index.controls:
        raise ControlNotFound(f"Control {control_id!r} not found")

    evidence = await load_package_evidence(s, package_id)
    kept = [f for f in evidence.findings if normalized in index.resolve_ids(f)]
    override = await get_override(s, package_id, normalized)

    determination = reduce_findings(
        package_id, normalized, kept,
        total_systems=len(evidence.system_ids),
        override=override,
    )
    log.debug("Package %d %s -> %s", package_id, normalized, determination.state)
    return determination


# ═══════════════════════════════════════════════
# OVERRIDES
# ═══════════════════════════════════════════════

async def get_override(s: AsyncSession, package_id: int, control_id: str) -> ComplianceOverride | None:
    return (await s.execute(
        select(ComplianceOverride).where(
            ComplianceOverride.package_id == package_id,
            ComplianceOverride.control_id == canonical_control_id(control_id),
        )
    )).scalar_one_or_none()


async def list_overrides(s: AsyncSession, package_id: int) -> dict[str, ComplianceOverride]:
    rows = (await s.execute(
        select(ComplianceOverride).where(ComplianceOverride.package_id == package_id)
    )).scalars().all()
    return {o.control_id: o for o in rows}


async def record_override(
    s: AsyncSession,
    package_id: int,
    control_id: str,
    status: str,
    *,
    notes: str | None = None,
    assessed_by: str | None = None,
    catalog_id: int | None = None,
) -> ComplianceOverride:
    """Store an official determination. The caller commits."""
    # Validates the status; raises InvalidTransition for anything else
    transition("NOT_ASSESSED", "override", status)
    await get_package(s, package_id)

    normalized = canonical_control_id(control_id)
    index = await build_resolution_index(s, catalog_id)
    if not normalized or normalized not in index.controls:
        raise ControlNotFound(f"Control {control_id!r} not found")

    override = await get_override(s, package_id, normalized)
    if override is None:
        override = ComplianceOverride(package_id=package_id, control_id=normalized)
        s.add(override)
    override.status = status
    override.notes = notes
    override.assessed_by = assessed_by
    override.assessed_at = datetime.utcnow()
    await s.flush()
    log.info("Official determination %s for %s in package %d by %s",
             status, normalized, package_id, assessed_by or "unknown")
    return override


async def clear_override(s: AsyncSession, package_id: int, control_id: str) -> None:
    """Remove an official determination so inference applies again. The caller commits."""
    override = await get_override(s, package_id, control_id)
    current = "NOT_ASSESSED" if override is None else state_code(override.status, official=True)
    transition(current, "clear")
    await s.delete(override)
    await s.flush()
    log.info("Cleared official determination for %s in package %d", override.control_id, package_id)

