"""
Maintenance — re-canonicalize control ids written before normalization existed.

Findings, baseline rows and overrides are rewritten to the canonical id. For
baselines and overrides, which are unique per (package, control), a row whose
canonical form already exists for the package is removed instead.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.models.compliance import ComplianceOverride, PackageControlBaseline
from compliance_engine.models.package import Finding
from compliance_engine.services.control_ids import canonical_control_id

log = logging.getLogger(__name__)


async def _renormalize_findings(s: AsyncSession) -> int:
    updated = 0
    rows = (await s.execute(
        select(Finding).where(Finding.control_id.is_not(None))
    )).scalars().all()
    for finding in rows:
        # blank ids become NULL so the finding falls back to its CCI
        normalized = canonical_control_id(finding.control_id)
        if normalized != finding.control_id:
            log.info("Finding %d: %r -> %r", finding.id, finding.control_id, normalized)
            finding.control_id = normalized
            updated += 1
    return updated


async def _renormalize_package_rows(s: AsyncSession, model) -> tuple[int, int]:
    """Returns (updated, duplicates removed) for a (package_id, control_id) keyed table."""
    rows = (await s.execute(select(model).order_by(model.id))).scalars().all()
    taken = {(r.package_id, r.control_id) for r in rows}
    updated = removed = 0
    for row in rows:
        normalized = canonical_control_id(row.control_id)
        if normalized is None:
            log.warning("%s %d: blank control id left in place", model.__tablename__, row.id)
            continue
        if normalized == row.control_id:
            continue
        if (row.package_id, normalized) in taken:
            log.warning("%s %d: %r duplicates %r in package %d, removed",
                        model.__tablename__, row.id, row.control_id, normalized, row.package_id)
            await s.delete(row)
            removed += 1
            continue
        taken.discard((row.package_id, row.control_id))
        taken.add((row.package_id, normalized))
        row.control_id = normalized
        updated += 1
    return updated, removed


async def renormalize_control_ids(s: AsyncSession) -> dict[str, int]:
    """Rewrite stored control ids to canonical form. The caller commits."""
    findings = await _renormalize_findings(s)
    baselines, baseline_dupes = await _renormalize_package_rows(s, PackageControlBaseline)
    overrides, override_dupes = await _renormalize_package_rows(s, ComplianceOverride)
    await s.flush()

    result = {
        "findings": findings,
        "baselines": baselines,
        "overrides": overrides,
        "duplicates_removed": baseline_dupes + override_dupes,
    }
    log.info("Control id normalization: %s", result)
    return result
