"""
Control catalog — /api/v1/catalog
Catalog import, stats, control listing and lookup, CCI resolution.
"""
from dataclasses import asdict

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from compliance_engine.database import get_session, get_session_factory
from compliance_engine.schemas.catalog import (
    CatalogImportResult,
    CatalogOut,
    CatalogStats,
    ControlBrief,
    ControlCciOut,
    ControlOut,
    ControlPage,
    RelatedControlOut,
)
from compliance_engine.services.catalog import (
    get_catalog_stats,
    get_control,
    list_catalogs,
    list_controls,
    page_count,
    resolve_relations,
)
from compliance_engine.services.catalog_import import import_catalog
from compliance_engine.services.cci_resolver import resolve_cci
from compliance_engine.services.errors import NotFound

router = APIRouter(prefix="/api/v1/catalog", tags=["Control Catalog"])


@router.post("/import", response_model=CatalogImportResult, summary="Import (reseed) a control catalog")
async def import_catalog_file(
    file: UploadFile = File(...),
    catalog_name: str = Query("default", min_length=1, max_length=200),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    if not file.filename or not file.filename.lower().endswith((".json", ".yaml", ".yml")):
        raise HTTPException(400, "Catalog file must be .json, .yaml or .yml")

    try:
        report = await import_catalog(
            session_factory, file.file, catalog_name=catalog_name, source_name=file.filename,
        )
    except NotFound as e:
        raise HTTPException(400, str(e))
    return CatalogImportResult(**asdict(report))


@router.get("", response_model=list[CatalogOut], summary="Imported catalogs")
async def catalogs(s: AsyncSession = Depends(get_session)):
    return await list_catalogs(s)


@router.get("/stats", response_model=CatalogStats, summary="Control / CCI / relation counts")
async def catalog_stats(
    catalog_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    return CatalogStats(**await get_catalog_stats(s, catalog_id))


@router.get("/controls", response_model=ControlPage, summary="Filtered list of controls")
async def controls(
    search: str | None = Query(None),
    family: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    catalog_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    items, total = await list_controls(
        s, search=search, family=family, page=page, limit=limit, catalog_id=catalog_id,
    )
    return ControlPage(
        controls=[ControlBrief.model_validate(c) for c in items],
        page=page,
        limit=limit,
        total=total,
        pages=page_count(total, limit),
    )


@router.get("/controls/{control_id}", response_model=ControlOut, summary="Control with CCIs and relations")
async def control_detail(
    control_id: str,
    catalog_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    try:
        control = await get_control(s, control_id, catalog_id)
    except NotFound as e:
        raise HTTPException(404, str(e))

    relations = await resolve_relations(s, control)
    return ControlOut(
        id=control.id,
        catalog_id=control.catalog_id,
        control_id=control.control_id,
        family=control.family,
        name=control.name,
        control_text=control.control_text,
        discussion=control.discussion,
        ccis=[ControlCciOut.model_validate(c) for c in control.ccis],
        related_controls=[
            RelatedControlOut(
                related_control_id=rel.related_control_id,
                resolved=target is not None,
                name=target.name if target else None,
            )
            for rel, target in relations
        ],
    )


@router.get("/ccis/{cci}", response_model=list[ControlBrief], summary="Controls linked to a CCI")
async def cci_controls(
    cci: str,
    catalog_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    return [ControlBrief.model_validate(c) for c in await resolve_cci(s, cci, catalog_id)]
