"""
Rollups — severity summaries per system and group, determinations per package.

System and group rollups count every finding regardless of status and bucket
it with classify_severity. Their compliance score is a plain linear penalty,
not a risk model:

    score = max(0, 100 - min(100, total_findings * 2))

The control drill-down lists, group by group and system by system, the
findings of a package that resolve to one control, with the STIG CAT counts
of the open ones.

The package rollup runs the aggregator over every control in scope: the
package's included baseline rows, or the controls its findings resolve to when
it has no baseline.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.config import settings
from compliance_engine.models.compliance import PackageControlBaseline
from compliance_engine.models.package import Finding, Group, System
from compliance_engine.schemas.compliance import ControlDeterminationOut
from compliance_engine.schemas.rollup import (
    ControlFindingTally,
    ControlGroupFindings,
    ControlPackageFindings,
    ControlSystemFindings,
    FamilyBreakdown,
    GroupRollup,
    PackageRollup,
    SeverityHistogram,
    SystemRollup,
)
from compliance_engine.services.control_compliance import (
    FindingRecord,
    classify_finding,
    get_package,
    group_by_control,
    list_overrides,
    load_package_evidence,
    reduce_findings,
    with_deadline,
)
from compliance_engine.services.control_ids import canonical_control_id, control_family, control_sort_key
from compliance_engine.services.determination import DETERMINATIONS, STATE_CODES
from compliance_engine.services.errors import (
    ControlNotFound,
    GroupNotFound,
    InvalidFinding,
    InvalidStatus,
    SystemNotFound,
)
from compliance_engine.services.finding_resolver import ResolutionIndex, build_resolution_index
from compliance_engine.services.severity import classify_severity, classify_status

log = logging.getLogger(__name__)


def compliance_score(total_findings: int) -> int:
    return max(0, 100 - min(100, total_findings * 2))


def severity_histogram(findings: list[FindingRecord], index: ResolutionIndex) -> SeverityHistogram:
    hist = SeverityHistogram()
    for f in findings:
        hist.total += 1
        bucket = classify_severity(f.severity)
        setattr(hist, bucket, getattr(hist, bucket) + 1)
        try:
            if classify_status(f.status) == "open":
                hist.open += 1
        except InvalidStatus:
            pass
        if not index.resolve(f):
            hist.unmapped += 1
    return hist


async def _load_findings(s: AsyncSession, *where) -> list[tuple[int, str, int | None, FindingRecord | None]]:
    """(system id, system name, group id, finding or None) rows in one query."""
    rows = (await s.execute(
        select(
            System.id, System.name, System.group_id,
            Finding.id, Finding.control_id, Finding.cci, Finding.severity, Finding.status,
        )
        .select_from(System)
        .outerjoin(Finding, Finding.system_id == System.id)
        .where(*where)
        .order_by(System.id, Finding.id)
    )).all()
    return [
        (
            system_id, name, group_id,
            FindingRecord(finding_id, system_id, group_id, control_id, cci, severity, status)
            if finding_id is not None else None,
        )
        for system_id, name, group_id, finding_id, control_id, cci, severity, status in rows
    ]


def _system_rollups(rows, index: ResolutionIndex) -> list[SystemRollup]:
    systems: dict[int, tuple[str, int | None, list[FindingRecord]]] = {}
    for system_id, name, group_id, finding in rows:
        entry = systems.setdefault(system_id, (name, group_id, []))
        if finding is not None:
            entry[2].append(finding)

    result = []
    for system_id, (name, group_id, findings) in systems.items():
        hist = severity_histogram(findings, index)
        result.append(SystemRollup(
            system_id=system_id,
            system_name=name,
            group_id=group_id,
            compliance_score=compliance_score(hist.total),
            **hist.model_dump(),
        ))
    return result


async def rollup_system(s: AsyncSession, system_id: int, catalog_id: int | None = None) -> SystemRollup:
    system = await s.get(System, system_id)
    if not system:
        raise SystemNotFound(f"System {system_id} not found")
    index = await build_resolution_index(s, catalog_id)
    rows = await _load_findings(s, System.id == system_id)
    return _system_rollups(rows, index)[0]


def _group_rollup(group: Group, systems: list[SystemRollup]) -> GroupRollup:
    totals = SeverityHistogram()
    for rollup in systems:
        for key in SeverityHistogram.model_fields:
            setattr(totals, key, getattr(totals, key) + getattr(rollup, key))
    return GroupRollup(
        group_id=group.id,
        group_name=group.name,
        package_id=group.package_id,
        system_count=len(systems),
        compliance_score=compliance_score(totals.total),
        systems=systems,
        **totals.model_dump(),
    )


async def rollup_group(s: AsyncSession, group_id: int, catalog_id: int | None = None) -> GroupRollup:
    group = await s.get(Group, group_id)
    if not group:
        raise GroupNotFound(f"Group {group_id} not found")
    index = await build_resolution_index(s, catalog_id)
    rows = await _load_findings(s, System.group_id == group_id)
    return _group_rollup(group, _system_rollups(rows, index))


async def list_group_rollups(
    s: AsyncSession, package_id: int, catalog_id: int | None = None,
) -> list[GroupRollup]:
    """Every group of a package with its rollup, from one findings query."""
    await get_package(s, package_id)
    groups = (await s.execute(
        select(Group).where(Group.package_id == package_id).order_by(Group.name, Group.id)
    )).scalars().all()
    index = await build_resolution_index(s, catalog_id)
    systems = _system_rollups(
        await _load_findings(s, System.package_id == package_id, System.group_id.is_not(None)),
        index,
    )
    return [
        _group_rollup(g, [r for r in systems if r.group_id == g.id])
        for g in groups
    ]


# ═══════════════════════════════════════════════
# PACKAGE
# ═══════════════════════════════════════════════

async def rollup_package(
    s: AsyncSession,
    package_id: int,
    *,
    catalog_id: int | None = None,
    timeout: float | None = None,
) -> PackageRollup:
    """Per-control determinations plus histograms for a whole package.

    Raises PackageNotFound, or AggregationIncomplete on deadline.
    """
    if timeout is None:
        timeout = settings.AGGREGATION_TIMEOUT_SECONDS
    return await with_deadline(
        _rollup_package(s, package_id, catalog_id),
        timeout,
        f"package {package_id}",
    )


async def _rollup_package(s: AsyncSession, package_id: int, catalog_id: int | None) -> PackageRollup:
    package = await get_package(s, package_id)
    index = await build_resolution_index(s, catalog_id)
    evidence = await load_package_evidence(s, package_id)
    by_control, _ = group_by_control(evidence.findings, index)
    overrides = await list_overrides(s, package_id)

    baseline_ids = (await s.execute(
        select(PackageControlBaseline.control_id).where(
            PackageControlBaseline.package_id == package_id,
            PackageControlBaseline.include_in_baseline.is_(True),
        )
    )).scalars().all()
    if baseline_ids:
        scope, control_ids = "baseline", set(baseline_ids)
    else:
        scope, control_ids = "findings", set(by_control) | set(overrides)

    determinations = {status: 0 for status in DETERMINATIONS}
    states = {code: 0 for code in STATE_CODES}
    families: dict[str, FamilyBreakdown] = {}
    controls: list[ControlDeterminationOut] = []

    for control_id in sorted(control_ids, key=control_sort_key):
        d = reduce_findings(
            package_id, control_id, by_control.get(control_id, []),
            total_systems=len(evidence.system_ids),
            override=overrides.get(control_id),
        )
        determinations[d.status] += 1
        states[d.state] += 1
        controls.append(ControlDeterminationOut(**d.as_dict()))

        family = control_family(control_id) or "?"
        fb = families.setdefault(family, FamilyBreakdown(family=family))
        fb.total += 1
        field = d.status.replace("-", "_")
        setattr(fb, field, getattr(fb, field) + 1)

    total = len(controls)
    rejected = 0
    for f in evidence.findings:
        try:
            classify_finding(f)
        except InvalidFinding:
            rejected += 1
    log.info("Package %d rollup: %d controls (%s scope), %d compliant",
             package_id, total, scope, determinations["compliant"])
    return PackageRollup(
        package_id=package_id,
        package_name=package.name,
        catalog_id=index.catalog_id,
        scope=scope,
        total_controls=total,
        total_systems=len(evidence.system_ids),
        compliance_percentage=round(determinations["compliant"] / total * 100, 1) if total else 0.0,
        determinations=determinations,
        states=states,
        severity=severity_histogram(evidence.findings, index),
        rejected_findings=rejected,
        families=[families[k] for k in sorted(families)],
        controls=controls,
    )


# ═══════════════════════════════════════════════
# CONTROL DRILL-DOWN
# ═══════════════════════════════════════════════

_CAT_FIELDS = {"high": "cat_i_open", "medium": "cat_ii_open", "low": "cat_iii_open"}
_TALLY_FIELDS = ("total_findings", "open_findings", "cat_i_open", "cat_ii_open", "cat_iii_open", "rejected")


def _tally(item: ControlFindingTally, f: FindingRecord) -> None:
    item.total_findings += 1
    try:
        status = classify_status(f.status)
    except InvalidStatus:
        item.rejected += 1
        return
    if status == "open":
        item.open_findings += 1
        # open findings of unknown severity have no CAT bucket
        field = _CAT_FIELDS.get(classify_severity(f.severity))
        if field:
            setattr(item, field, getattr(item, field) + 1)


def _settle(item: ControlFindingTally, score: int) -> None:
    item.compliance_score = score
    if not item.open_findings and not item.rejected:
        item.status = "Compliant"
    elif score >= 70:
        item.status = "Partially Compliant"
    else:
        item.status = "Non-Compliant"


async def control_package_findings(
    s: AsyncSession, package_id: int, control_id: str, catalog_id: int | None = None,
) -> ControlPackageFindings:
    """Findings of one control across a package, grouped by group then system.

    Only systems with at least one finding for the control are listed. A system
    scores the share of its findings that are neither open nor malformed; a
    group scores the mean of its systems.

    Raises PackageNotFound / ControlNotFound.
    """
    package = await get_package(s, package_id)
    index = await build_resolution_index(s, catalog_id)
    normalized = canonical_control_id(control_id)
    if not normalized or normalized not in index.controls:
        raise ControlNotFound(f"Control {control_id!r} not found")

    evidence = await load_package_evidence(s, package_id)
    by_control, _ = group_by_control(evidence.findings, index)
    findings = by_control.get(normalized, [])

    system_names = dict((await s.execute(
        select(System.id, System.name).where(System.package_id == package_id)
    )).all())
    group_names = dict((await s.execute(
        select(Group.id, Group.name).where(Group.package_id == package_id)
    )).all())

    systems: dict[int, ControlSystemFindings] = {}
    group_of: dict[int, int | None] = {}
    for f in findings:
        item = systems.get(f.system_id)
        if item is None:
            item = systems[f.system_id] = ControlSystemFindings(
                system_id=f.system_id, system_name=system_names[f.system_id],
            )
            group_of[f.system_id] = f.group_id
        _tally(item, f)
    for item in systems.values():
        closed = item.total_findings - item.open_findings - item.rejected
        _settle(item, round(closed / item.total_findings * 100))

    groups: dict[int, ControlGroupFindings] = {}
    ungrouped: list[ControlSystemFindings] = []
    for system_id, item in systems.items():
        group_id = group_of[system_id]
        if group_id is None:
            ungrouped.append(item)
            continue
        group = groups.get(group_id)
        if group is None:
            group = groups[group_id] = ControlGroupFindings(
                group_id=group_id, group_name=group_names.get(group_id, f"Group {group_id}"),
            )
        group.systems.append(item)
        for key in _TALLY_FIELDS:
            setattr(group, key, getattr(group, key) + getattr(item, key))
    for group in groups.values():
        group.system_count = len(group.systems)
        group.compliant_systems = sum(1 for item in group.systems if item.status == "Compliant")
        _settle(group, round(sum(item.compliance_score for item in group.systems) / group.system_count))

    listed = list(systems.values())
    log.debug("Package %d %s drill-down: %d finding(s) on %d system(s)",
              package_id, normalized, len(findings), len(listed))
    return ControlPackageFindings(
        package_id=package_id,
        package_name=package.name,
        control_id=normalized,
        control_name=index.controls[normalized].name,
        total_findings=len(findings),
        open_findings=sum(item.open_findings for item in listed),
        total_systems=len(listed),
        affected_systems=sum(1 for item in listed if item.open_findings),
        overall_compliance=(
            round(sum(item.compliance_score for item in listed) / len(listed)) if listed else 100
        ),
        groups=sorted(groups.values(), key=lambda g: (g.group_name, g.group_id)),
        ungrouped_systems=ungrouped,
    )
