"""
Finding Resolver — maps a finding to the control(s) it speaks to.

Precedence:
  1. explicit control id, normalized, when it names a control in the catalog
  2. otherwise every control linked to the finding's CCI
  3. otherwise nothing (the finding is "unmapped")

A CCI linked to several controls fans the finding out to all of them.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.models.catalog import Control, ControlCci
from compliance_engine.services.catalog import resolve_catalog_id
from compliance_engine.services.cci_resolver import resolve_cci
from compliance_engine.services.control_ids import canonical_control_id, control_sort_key


def finding_keys(finding: Any) -> tuple[str | None, str | None]:
    """(normalized control id, CCI) of a Finding row, dataclass or mapping."""
    if isinstance(finding, Mapping):
        control_id = finding.get("control_id", finding.get("controlId"))
        cci = finding.get("cci")
    else:
        control_id = getattr(finding, "control_id", None)
        cci = getattr(finding, "cci", None)
    cci = cci.strip() if isinstance(cci, str) and cci.strip() else None
    return canonical_control_id(control_id), cci


@dataclass
class ResolutionIndex:
    """Control and CCI maps of one catalog, built once per aggregation call."""
    catalog_id: int | None
    controls: dict[str, Control] = field(default_factory=dict)
    cci_controls: dict[str, list[str]] = field(default_factory=dict)

    def resolve(self, finding: Any) -> list[Control]:
        control_id, cci = finding_keys(finding)
        if control_id and control_id in self.controls:
            return [self.controls[control_id]]
        if cci:
            return [self.controls[cid] for cid in self.cci_controls.get(cci, ())]
        return []

    def resolve_ids(self, finding: Any) -> list[str]:
        return [c.control_id for c in self.resolve(finding)]


async def build_resolution_index(s: AsyncSession, catalog_id: int | None = None) -> ResolutionIndex:
    catalog_id = await resolve_catalog_id(s, catalog_id)
    index = ResolutionIndex(catalog_id=catalog_id)
    if catalog_id is None:
        return index

    controls = (await s.execute(
        select(Control).where(Control.catalog_id == catalog_id)
    )).scalars().all()
    index.controls = {c.control_id: c for c in controls}

    links = (await s.execute(
        select(ControlCci.cci, Control.control_id)
        .join(Control, ControlCci.control_pk == Control.id)
        .where(Control.catalog_id == catalog_id)
    )).all()
    by_cci: dict[str, set[str]] = {}
    for cci, control_id in links:
        by_cci.setdefault(cci, set()).add(control_id)
    index.cci_controls = {
        cci: sorted(ids, key=control_sort_key) for cci, ids in by_cci.items()
    }
    return index


async def resolve_finding(
    s: AsyncSession,
    finding: Any,
    catalog_id: int | None = None,
    index: ResolutionIndex | None = None,
) -> list[Control]:
    """Controls implicated by one finding; empty when unmapped."""
    if index is not None:
        return index.resolve(finding)

    catalog_id = await resolve_catalog_id(s, catalog_id)
    if catalog_id is None:
        return []

    control_id, cci = finding_keys(finding)
    if control_id:
        control = (await s.execute(
            select(Control).where(Control.catalog_id == catalog_id, Control.control_id == control_id)
        )).scalar_one_or_none()
        if control:
            return [control]
    return await resolve_cci(s, cci, catalog_id)
