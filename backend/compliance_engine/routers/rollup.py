"""
Severity rollups — /api/v1/groups/{id}/rollup, /api/v1/systems/{id}/rollup
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.database import get_session
from compliance_engine.schemas.rollup import GroupRollup, SystemRollup
from compliance_engine.services.errors import NotFound
from compliance_engine.services.rollup import rollup_group, rollup_system

router = APIRouter(prefix="/api/v1", tags=["Rollups"])


@router.get("/groups/{group_id}/rollup", response_model=GroupRollup, summary="Group severity rollup")
async def group_rollup(group_id: int, s: AsyncSession = Depends(get_session)):
    try:
        return await rollup_group(s, group_id)
    except NotFound as e:
        raise HTTPException(404, str(e))


@router.get("/systems/{system_id}/rollup", response_model=SystemRollup, summary="System severity rollup")
async def system_rollup(system_id: int, s: AsyncSession = Depends(get_session)):
    try:
        return await rollup_system(s, system_id)
    except NotFound as e:
        raise HTTPException(404, str(e))
