"""
Package baseline — which catalog controls are in scope for a package.

A package starts from one of the NIST SP 800-53 Rev. 5 baselines (Low,
Moderate, High; cumulative) and is then tailored control by control.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.models.catalog import Control
from compliance_engine.models.compliance import BASELINE_LEVELS, PackageControlBaseline
from compliance_engine.schemas.compliance import (
    BaselineBulkFailure,
    BaselineBulkResult,
    BaselineControlOut,
    BaselineInitResult,
    BaselineSummary,
    PackageBaselineOut,
)
from compliance_engine.services.catalog import resolve_catalog_id
from compliance_engine.services.control_compliance import get_package
from compliance_engine.services.control_ids import canonical_control_id, control_family, control_sort_key
from compliance_engine.services.errors import ControlNotFound

log = logging.getLogger(__name__)

BASELINES_FILE = Path(__file__).resolve().parent.parent / "data" / "nist_800_53_baselines.yaml"


@lru_cache(maxsize=1)
def _load_baselines() -> dict[str, list[str]]:
    with open(BASELINES_FILE, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return {level: [canonical_control_id(c) for c in data.get(level) or []] for level in BASELINE_LEVELS}


def baseline_controls(level: str) -> list[str]:
    """Control ids of a baseline level, including every lower level."""
    if level not in BASELINE_LEVELS:
        raise ValueError(f"Unknown baseline level: {level!r}. Expected one of {', '.join(BASELINE_LEVELS)}")
    baselines = _load_baselines()
    ids: dict[str, None] = {}
    for lvl in BASELINE_LEVELS[:BASELINE_LEVELS.index(level) + 1]:
        ids.update(dict.fromkeys(baselines[lvl]))
    return list(ids)


async def _existing_rows(s: AsyncSession, package_id: int) -> dict[str, PackageControlBaseline]:
    rows = (await s.execute(
        select(PackageControlBaseline).where(PackageControlBaseline.package_id == package_id)
    )).scalars().all()
    return {r.control_id: r for r in rows}


async def initialize_package_baseline(s: AsyncSession, package_id: int, level: str) -> BaselineInitResult:
    """Create baseline rows for a level; rows that already exist are left alone. The caller commits."""
    package = await get_package(s, package_id)
    control_ids = baseline_controls(level)
    existing = await _existing_rows(s, package_id)

    created = 0
    for control_id in control_ids:
        if control_id in existing:
            continue
        s.add(PackageControlBaseline(
            package_id=package_id,
            control_id=control_id,
            include_in_baseline=True,
            baseline_source=level,
        ))
        created += 1
    package.baseline_level = level
    await s.flush()

    log.info("Initialized %s baseline for package %d: %d created, %d already present",
             level, package_id, created, len(control_ids) - created)
    return BaselineInitResult(
        package_id=package_id, level=level,
        created=created, skipped=len(control_ids) - created,
    )


async def get_package_baseline(
    s: AsyncSession, package_id: int, catalog_id: int | None = None,
) -> PackageBaselineOut:
    package = await get_package(s, package_id)
    rows = sorted((await _existing_rows(s, package_id)).values(), key=lambda r: control_sort_key(r.control_id))

    catalog_id = await resolve_catalog_id(s, catalog_id)
    controls: dict[str, Control] = {}
    if catalog_id is not None and rows:
        controls = {
            c.control_id: c
            for c in (await s.execute(
                select(Control).where(
                    Control.catalog_id == catalog_id,
                    Control.control_id.in_([r.control_id for r in rows]),
                )
            )).scalars().all()
        }

    out = []
    for r in rows:
        control = controls.get(r.control_id)
        item = BaselineControlOut.model_validate(r)
        item.family = control.family if control else control_family(r.control_id)
        item.name = control.name if control else None
        item.in_catalog = control is not None
        out.append(item)

    included = sum(1 for r in rows if r.include_in_baseline)
    return PackageBaselineOut(
        package_id=package_id,
        baseline_level=package.baseline_level,
        summary=BaselineSummary(
            total=len(rows),
            included=included,
            excluded=len(rows) - included,
            tailored=sum(1 for r in rows if r.tailoring_action),
        ),
        controls=out,
    )


async def update_baseline_control(
    s: AsyncSession,
    package_id: int,
    control_id: str,
    *,
    include_in_baseline: bool | None = None,
    tailoring_action: str | None = None,
    tailoring_rationale: str | None = None,
    implementation_status: str | None = None,
    catalog_id: int | None = None,
) -> PackageControlBaseline:
    """Tailor one baseline row, creating it as "Added" when absent. The caller commits.

    Raises ControlNotFound when the control is not in the catalog.
    """
    await get_package(s, package_id)
    normalized = canonical_control_id(control_id)
    catalog_id = await resolve_catalog_id(s, catalog_id)
    exists = normalized and catalog_id is not None and (await s.execute(
        select(Control.id).where(Control.catalog_id == catalog_id, Control.control_id == normalized)
    )).scalar_one_or_none() is not None
    if not exists:
        log.warning("Control %s not found in catalog; baseline not changed", control_id)
        raise ControlNotFound(f"Control {control_id!r} not found in catalog. Import the catalog first.")

    row = (await _existing_rows(s, package_id)).get(normalized)
    if row is None:
        row = PackageControlBaseline(
            package_id=package_id,
            control_id=normalized,
            include_in_baseline=True if include_in_baseline is None else include_in_baseline,
            tailoring_action=tailoring_action or "Added",
        )
        s.add(row)
    else:
        if include_in_baseline is not None:
            row.include_in_baseline = include_in_baseline
        if tailoring_action is not None:
            row.tailoring_action = tailoring_action
    if tailoring_rationale is not None:
        row.tailoring_rationale = tailoring_rationale
    if implementation_status is not None:
        row.implementation_status = implementation_status
    await s.flush()
    return row


async def remove_from_baseline(
    s: AsyncSession, package_id: int, control_id: str, rationale: str, catalog_id: int | None = None,
) -> PackageControlBaseline:
    return await update_baseline_control(
        s, package_id, control_id,
        include_in_baseline=False,
        tailoring_action="Removed",
        tailoring_rationale=rationale,
        catalog_id=catalog_id,
    )


async def bulk_update_baseline(
    s: AsyncSession,
    package_id: int,
    updates: Iterable[Mapping[str, Any]],
    catalog_id: int | None = None,
) -> BaselineBulkResult:
    """Tailor several controls in order. The caller commits.

    Each update is a mapping with "control_id" plus update_baseline_control's
    keyword fields. A control missing from the catalog is reported in `failed`
    and the rest are still applied; an unknown package raises PackageNotFound.
    """
    await get_package(s, package_id)
    result = BaselineBulkResult(package_id=package_id)
    for update in updates:
        fields = dict(update)
        control_id = fields.pop("control_id")
        try:
            row = await update_baseline_control(s, package_id, control_id, catalog_id=catalog_id, **fields)
        except ControlNotFound as e:
            result.failed.append(BaselineBulkFailure(control_id=control_id, error=str(e)))
            continue
        result.updated.append(BaselineControlOut.model_validate(row))

    log.info("Bulk baseline update for package %d: %d updated, %d failed",
             package_id, len(result.updated), len(result.failed))
    return result
