"""
Catalog queries — active catalog, control lookup, listing and stats.

Every lookup is scoped to one catalog. Callers pass catalog_id explicitly or
get the active catalog.
"""
from __future__ import annotations

import math

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from compliance_engine.models.catalog import Catalog, Control, ControlCci, ControlRelation
from compliance_engine.services.catalog_import import count_catalog_rows
from compliance_engine.services.control_ids import canonical_control_id, control_sort_key
from compliance_engine.services.errors import CatalogNotFound, ControlNotFound


async def get_active_catalog(s: AsyncSession) -> Catalog | None:
    return (await s.execute(
        select(Catalog).where(Catalog.is_active.is_(True)).order_by(Catalog.id.desc()).limit(1)
    )).scalar_one_or_none()


async def resolve_catalog_id(s: AsyncSession, catalog_id: int | None = None) -> int | None:
    """Explicit catalog id, or the active catalog's id (None when nothing is imported)."""
    if catalog_id is not None:
        return catalog_id
    catalog = await get_active_catalog(s)
    return catalog.id if catalog else None


async def list_catalogs(s: AsyncSession) -> list[Catalog]:
    return list((await s.execute(select(Catalog).order_by(Catalog.id))).scalars().all())


async def get_catalog(s: AsyncSession, catalog_id: int) -> Catalog:
    catalog = await s.get(Catalog, catalog_id)
    if not catalog:
        raise CatalogNotFound(f"Catalog {catalog_id} not found")
    return catalog


async def get_control(s: AsyncSession, control_id: str, catalog_id: int | None = None) -> Control:
    """Control with its CCIs and relations. Raises ControlNotFound."""
    normalized = canonical_control_id(control_id)
    catalog_id = await resolve_catalog_id(s, catalog_id)
    if not normalized or catalog_id is None:
        raise ControlNotFound(f"Control {control_id!r} not found")

    control = (await s.execute(
        select(Control)
        .options(selectinload(Control.ccis), selectinload(Control.relations))
        .where(Control.catalog_id == catalog_id, Control.control_id == normalized)
    )).scalar_one_or_none()
    if not control:
        raise ControlNotFound(f"Control {normalized} not found")
    return control


async def relation_target(s: AsyncSession, relation: ControlRelation) -> Control | None:
    """Resolve the related side of an edge within the source control's catalog."""
    source = await s.get(Control, relation.source_control_pk)
    if source is None:
        return None
    return (await s.execute(
        select(Control).where(
            Control.catalog_id == source.catalog_id,
            Control.control_id == relation.related_control_id,
        )
    )).scalar_one_or_none()


async def resolve_relations(
    s: AsyncSession, control: Control,
) -> list[tuple[ControlRelation, Control | None]]:
    """All relations of a control paired with their target (None when dangling)."""
    relations = list(control.relations)
    if not relations:
        return []
    targets = {
        c.control_id: c
        for c in (await s.execute(
            select(Control).where(
                Control.catalog_id == control.catalog_id,
                Control.control_id.in_([r.related_control_id for r in relations]),
            )
        )).scalars().all()
    }
    return [(r, targets.get(r.related_control_id)) for r in relations]


async def list_controls(
    s: AsyncSession,
    *,
    search: str | None = None,
    family: str | None = None,
    page: int = 1,
    limit: int = 50,
    catalog_id: int | None = None,
) -> tuple[list[Control], int]:
    """Filtered page of controls ordered by family, number, enhancement.

    Returns (controls, total matching).
    """
    catalog_id = await resolve_catalog_id(s, catalog_id)
    if catalog_id is None:
        return [], 0

    q = select(Control).where(Control.catalog_id == catalog_id)
    if family:
        q = q.where(Control.family == family.upper())
    if search:
        like = f"%{search.strip()}%"
        q = q.where(
            Control.control_id.ilike(like)
            | Control.name.ilike(like)
            | Control.control_text.ilike(like)
        )

    controls = sorted(
        (await s.execute(q)).scalars().all(),
        key=lambda c: control_sort_key(c.control_id),
    )
    page = max(1, page)
    offset = (page - 1) * limit
    return controls[offset:offset + limit], len(controls)


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


async def get_catalog_stats(s: AsyncSession, catalog_id: int | None = None) -> dict:
    catalog_id = await resolve_catalog_id(s, catalog_id)
    if catalog_id is None:
        return {
            "catalog_id": None, "total_controls": 0, "total_ccis": 0,
            "total_relations": 0, "dangling_relations": 0, "controls_by_family": {},
        }

    controls, ccis, relations = await count_catalog_rows(s, catalog_id)

    source = aliased(Control)
    known_ids = select(Control.control_id).where(Control.catalog_id == catalog_id)
    dangling = (await s.execute(
        select(func.count(ControlRelation.id))
        .join(source, ControlRelation.source_control_pk == source.id)
        .where(
            source.catalog_id == catalog_id,
            ControlRelation.related_control_id.not_in(known_ids),
        )
    )).scalar() or 0

    by_family = {
        (family or "?"): count
        for family, count in (await s.execute(
            select(Control.family, func.count(Control.id))
            .where(Control.catalog_id == catalog_id)
            .group_by(Control.family)
            .order_by(Control.family)
        )).all()
    }

    return {
        "catalog_id": catalog_id,
        "total_controls": controls,
        "total_ccis": ccis,
        "total_relations": relations,
        "dangling_relations": dangling,
        "controls_by_family": by_family,
    }


async def list_control_ccis(s: AsyncSession, control: Control) -> list[ControlCci]:
    return list((await s.execute(
        select(ControlCci).where(ControlCci.control_pk == control.id).order_by(ControlCci.cci)
    )).scalars().all())
