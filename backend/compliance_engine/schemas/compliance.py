"""Pydantic schemas for control determinations, overrides and package baselines."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# ═══════════════════ Determinations ═══════════════════

class FindingCountsOut(BaseModel):
    total: int = 0
    open: int = 0
    open_high: int = 0
    open_medium: int = 0
    open_low: int = 0
    open_unknown: int = 0
    not_reviewed: int = 0
    not_a_finding: int = 0
    not_applicable: int = 0
    satisfied: int = 0
    rejected: int = 0


class ControlDeterminationOut(BaseModel):
    package_id: int
    control_id: str
    status: str
    official: bool
    state: str
    score: int
    assessment_progress: float
    systems_assessed: int
    total_systems: int
    counts: FindingCountsOut
    notes: str | None = None


# ═══════════════════ Overrides ═══════════════════

class OverrideIn(BaseModel):
    status: Literal["compliant", "non-compliant", "not-applicable"]
    notes: str | None = None
    assessed_by: str | None = Field(None, max_length=200)


class OverrideOut(BaseModel):
    id: int
    package_id: int
    control_id: str
    status: str
    notes: str | None = None
    assessed_by: str | None = None
    assessed_at: datetime
    model_config = {"from_attributes": True}


# ═══════════════════ Baseline ═══════════════════

class BaselineInit(BaseModel):
    level: Literal["Low", "Moderate", "High"]


class BaselineControlUpdate(BaseModel):
    include_in_baseline: bool | None = None
    tailoring_action: Literal["Added", "Removed", "Modified"] | None = None
    tailoring_rationale: str | None = None
    implementation_status: str | None = Field(None, max_length=30)


class BaselineRemove(BaseModel):
    rationale: str = Field(..., min_length=1)


class BaselineControlOut(BaseModel):
    id: int
    package_id: int
    control_id: str
    include_in_baseline: bool
    baseline_source: str | None = None
    tailoring_action: str | None = None
    tailoring_rationale: str | None = None
    implementation_status: str | None = None
    family: str | None = None
    name: str | None = None
    in_catalog: bool = False
    model_config = {"from_attributes": True}


class BaselineSummary(BaseModel):
    total: int = 0
    included: int = 0
    excluded: int = 0
    tailored: int = 0


class PackageBaselineOut(BaseModel):
    package_id: int
    baseline_level: str | None = None
    summary: BaselineSummary
    controls: list[BaselineControlOut] = []


class BaselineInitResult(BaseModel):
    package_id: int
    level: str
    created: int
    skipped: int


class BaselineBulkItem(BaselineControlUpdate):
    control_id: str = Field(..., min_length=1, max_length=50)


class BaselineBulkUpdate(BaseModel):
    controls: list[BaselineBulkItem] = Field(..., min_length=1)


class BaselineBulkFailure(BaseModel):
    control_id: str
    error: str


class BaselineBulkResult(BaseModel):
    package_id: int
    updated: list[BaselineControlOut] = []
    failed: list[BaselineBulkFailure] = []
