"""Pydantic schemas for system / group / package rollups."""
from pydantic import BaseModel

from compliance_engine.schemas.compliance import ControlDeterminationOut


class SeverityHistogram(BaseModel):
    total: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    unknown: int = 0
    open: int = 0
    unmapped: int = 0


class SystemRollup(SeverityHistogram):
    system_id: int
    system_name: str
    group_id: int | None = None
    compliance_score: int = 100


class GroupRollup(SeverityHistogram):
    group_id: int
    group_name: str
    package_id: int
    system_count: int = 0
    compliance_score: int = 100
    systems: list[SystemRollup] = []


class FamilyBreakdown(BaseModel):
    family: str
    total: int = 0
    compliant: int = 0
    non_compliant: int = 0
    not_applicable: int = 0
    not_assessed: int = 0


class PackageRollup(BaseModel):
    package_id: int
    package_name: str
    catalog_id: int | None = None
    scope: str                                   # "baseline" | "findings"
    total_controls: int = 0
    total_systems: int = 0
    compliance_percentage: float = 0.0
    determinations: dict[str, int] = {}
    states: dict[str, int] = {}
    severity: SeverityHistogram
    rejected_findings: int = 0
    families: list[FamilyBreakdown] = []
    controls: list[ControlDeterminationOut] = []


# ═══════════════════ Control drill-down ═══════════════════

class ControlFindingTally(BaseModel):
    total_findings: int = 0
    open_findings: int = 0
    cat_i_open: int = 0
    cat_ii_open: int = 0
    cat_iii_open: int = 0
    rejected: int = 0
    compliance_score: int = 100
    status: str = "Compliant"                    # "Compliant" | "Partially Compliant" | "Non-Compliant"


class ControlSystemFindings(ControlFindingTally):
    system_id: int
    system_name: str


class ControlGroupFindings(ControlFindingTally):
    group_id: int
    group_name: str
    system_count: int = 0
    compliant_systems: int = 0
    systems: list[ControlSystemFindings] = []


class ControlPackageFindings(BaseModel):
    package_id: int
    package_name: str
    control_id: str
    control_name: str
    total_findings: int = 0
    open_findings: int = 0
    total_systems: int = 0
    affected_systems: int = 0
    overall_compliance: int = 100
    groups: list[ControlGroupFindings] = []
    ungrouped_systems: list[ControlSystemFindings] = []
