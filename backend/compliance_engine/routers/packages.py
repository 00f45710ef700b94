"""
Package compliance — /api/v1/packages/{package_id}
Per-control determinations, official overrides, baseline tailoring, rollups.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.database import get_session
from compliance_engine.schemas.compliance import (
    BaselineBulkResult,
    BaselineBulkUpdate,
    BaselineControlOut,
    BaselineControlUpdate,
    BaselineInit,
    BaselineInitResult,
    BaselineRemove,
    ControlDeterminationOut,
    OverrideIn,
    OverrideOut,
    PackageBaselineOut,
)
from compliance_engine.schemas.rollup import ControlPackageFindings, GroupRollup, PackageRollup
from compliance_engine.services.control_compliance import compute_control_compliance, record_override
from compliance_engine.services.errors import AggregationIncomplete, NotFound
from compliance_engine.services.package_baseline import (
    bulk_update_baseline,
    get_package_baseline,
    initialize_package_baseline,
    remove_from_baseline,
    update_baseline_control,
)
from compliance_engine.services.rollup import control_package_findings, list_group_rollups, rollup_package

router = APIRouter(prefix="/api/v1/packages", tags=["Package Compliance"])


# ─── Determinations ───────────────────────────────────────────


@router.get(
    "/{package_id}/controls/{control_id}/compliance",
    response_model=ControlDeterminationOut,
    summary="Compliance determination for one control",
)
async def control_compliance(
    package_id: int,
    control_id: str,
    catalog_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    try:
        d = await compute_control_compliance(s, package_id, control_id, catalog_id=catalog_id)
    except NotFound as e:
        raise HTTPException(404, str(e))
    except AggregationIncomplete as e:
        raise HTTPException(504, str(e))
    return ControlDeterminationOut(**d.as_dict())


@router.get(
    "/{package_id}/controls/{control_id}/findings",
    response_model=ControlPackageFindings,
    summary="Findings of one control by group and system",
)
async def control_findings(
    package_id: int,
    control_id: str,
    catalog_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    try:
        return await control_package_findings(s, package_id, control_id, catalog_id=catalog_id)
    except NotFound as e:
        raise HTTPException(404, str(e))


@router.put(
    "/{package_id}/controls/{control_id}/override",
    response_model=OverrideOut,
    summary="Record an official determination",
)
async def put_override(
    package_id: int,
    control_id: str,
    body: OverrideIn,
    s: AsyncSession = Depends(get_session),
):
    try:
        override = await record_override(
            s, package_id, control_id, body.status,
            notes=body.notes, assessed_by=body.assessed_by,
        )
    except NotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    await s.commit()
    return override


# ─── Rollups ──────────────────────────────────────────────────


@router.get("/{package_id}/rollup", response_model=PackageRollup, summary="Package compliance rollup")
async def package_rollup(
    package_id: int,
    catalog_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    try:
        return await rollup_package(s, package_id, catalog_id=catalog_id)
    except NotFound as e:
        raise HTTPException(404, str(e))
    except AggregationIncomplete as e:
        raise HTTPException(504, str(e))


@router.get("/{package_id}/groups", response_model=list[GroupRollup], summary="Groups of a package with rollups")
async def package_groups(
    package_id: int,
    s: AsyncSession = Depends(get_session),
):
    try:
        return await list_group_rollups(s, package_id)
    except NotFound as e:
        raise HTTPException(404, str(e))


# ─── Baseline ─────────────────────────────────────────────────


@router.get("/{package_id}/baseline", response_model=PackageBaselineOut, summary="Package control baseline")
async def baseline(package_id: int, s: AsyncSession = Depends(get_session)):
    try:
        return await get_package_baseline(s, package_id)
    except NotFound as e:
        raise HTTPException(404, str(e))


@router.post(
    "/{package_id}/baseline/initialize",
    response_model=BaselineInitResult,
    summary="Initialize from a NIST baseline",
)
async def baseline_initialize(
    package_id: int,
    body: BaselineInit,
    s: AsyncSession = Depends(get_session),
):
    try:
        result = await initialize_package_baseline(s, package_id, body.level)
    except NotFound as e:
        raise HTTPException(404, str(e))
    await s.commit()
    return result


@router.put(
    "/{package_id}/baseline/{control_id}",
    response_model=BaselineControlOut,
    summary="Tailor one baseline control",
)
async def baseline_update(
    package_id: int,
    control_id: str,
    body: BaselineControlUpdate,
    s: AsyncSession = Depends(get_session),
):
    try:
        row = await update_baseline_control(s, package_id, control_id, **body.model_dump(exclude_unset=True))
    except NotFound as e:
        raise HTTPException(404, str(e))
    await s.commit()
    return BaselineControlOut.model_validate(row)


@router.post(
    "/{package_id}/baseline/{control_id}/remove",
    response_model=BaselineControlOut,
    summary="Tailor a control out of the baseline",
)
async def baseline_remove(
    package_id: int,
    control_id: str,
    body: BaselineRemove,
    s: AsyncSession = Depends(get_session),
):
    try:
        row = await remove_from_baseline(s, package_id, control_id, body.rationale)
    except NotFound as e:
        raise HTTPException(404, str(e))
    await s.commit()
    return BaselineControlOut.model_validate(row)


@router.post(
    "/{package_id}/baseline/bulk-update",
    response_model=BaselineBulkResult,
    summary="Tailor several baseline controls",
)
async def baseline_bulk_update(
    package_id: int,
    body: BaselineBulkUpdate,
    s: AsyncSession = Depends(get_session),
):
    try:
        result = await bulk_update_baseline(
            s, package_id, [c.model_dump(exclude_unset=True) for c in body.controls],
        )
    except NotFound as e:
        raise HTTPException(404, str(e))
    await s.commit()
    return result
