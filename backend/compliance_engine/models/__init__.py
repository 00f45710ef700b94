from .base import Base
from .catalog import Catalog, Control, ControlCci, ControlRelation
from .package import Package, Group, System, Finding
from .compliance import PackageControlBaseline, ComplianceOverride

__all__ = [
    "Base",
    "Catalog", "Control", "ControlCci", "ControlRelation",
    "Package", "Group", "System", "Finding",
    "PackageControlBaseline", "ComplianceOverride",
]
