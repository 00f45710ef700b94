"""CCI -> control lookup."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.models.catalog import Control, ControlCci
from compliance_engine.services.catalog import resolve_catalog_id
from compliance_engine.services.control_ids import control_sort_key


async def resolve_cci(s: AsyncSession, cci: str | None, catalog_id: int | None = None) -> list[Control]:
    """Controls linked to a CCI code by exact match.

    An unknown CCI is common (scanner coverage exceeds the catalog) and yields
    an empty list.
    """
    if not cci or not cci.strip():
        return []
    catalog_id = await resolve_catalog_id(s, catalog_id)
    if catalog_id is None:
        return []

    controls = (await s.execute(
        select(Control)
        .join(ControlCci, ControlCci.control_pk == Control.id)
        .where(Control.catalog_id == catalog_id, ControlCci.cci == cci.strip())
    )).scalars().unique().all()
    return sorted(controls, key=lambda c: control_sort_key(c.control_id))
