"""Pydantic schemas for the control catalog."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════ Catalog source (input) ═══════════════════

class CatalogCciEntry(BaseModel):
    cci: str = Field(..., min_length=1, max_length=20)
    definition: str | None = None


class CatalogEntry(BaseModel):
    """One control of a catalog source file, keyed by its raw control id."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=500)
    control_text: str = Field(..., alias="controlText")
    discussion: str | None = None
    related_controls: list[str] = Field(default_factory=list, alias="relatedControls")
    ccis: list[CatalogCciEntry] = Field(default_factory=list)


# ═══════════════════ Import report ═══════════════════

class ImportIssueOut(BaseModel):
    kind: str
    message: str
    phase: str | None = None
    batch: int | None = None
    control_id: str | None = None


class CatalogImportResult(BaseModel):
    catalog_id: int | None = None
    catalog_name: str
    generation: int = 0
    imported: int = 0
    cci_count: int = 0
    relation_count: int = 0
    errors: list[ImportIssueOut] = []


# ═══════════════════ Controls ═══════════════════

class ControlCciOut(BaseModel):
    id: int
    cci: str
    definition: str | None = None
    model_config = {"from_attributes": True}


class RelatedControlOut(BaseModel):
    related_control_id: str
    resolved: bool = False
    name: str | None = None


class ControlBrief(BaseModel):
    id: int
    catalog_id: int
    control_id: str
    family: str | None = None
    name: str
    model_config = {"from_attributes": True}


class ControlOut(ControlBrief):
    control_text: str
    discussion: str | None = None
    ccis: list[ControlCciOut] = []
    related_controls: list[RelatedControlOut] = []


class ControlPage(BaseModel):
    controls: list[ControlBrief]
    page: int
    limit: int
    total: int
    pages: int


class CatalogOut(BaseModel):
    id: int
    name: str
    generation: int
    source_name: str | None = None
    is_active: bool
    imported_at: datetime | None = None
    model_config = {"from_attributes": True}


class CatalogStats(BaseModel):
    catalog_id: int | None = None
    total_controls: int = 0
    total_ccis: int = 0
    total_relations: int = 0
    dangling_relations: int = 0
    controls_by_family: dict[str, int] = {}
