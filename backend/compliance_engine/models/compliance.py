"""
Package compliance models — control baselines and official determinations.

Tables: package_control_baselines, compliance_overrides
"""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

# Statuses a reviewer may record as official
OVERRIDE_STATUSES = ("compliant", "non-compliant", "not-applicable")

BASELINE_LEVELS = ("Low", "Moderate", "High")

TAILORING_ACTIONS = ("Added", "Removed", "Modified")


class PackageControlBaseline(Base):
    """Control selected (or tailored out) for a package."""
    __tablename__ = "package_control_baselines"
    __table_args__ = (
        UniqueConstraint("package_id", "control_id", name="uq_baseline_package_control"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[str] = mapped_column(String(50), nullable=False)
    include_in_baseline: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    baseline_source: Mapped[str | None] = mapped_column(String(20))
    tailoring_action: Mapped[str | None] = mapped_column(String(20))
    tailoring_rationale: Mapped[str | None] = mapped_column(Text)
    implementation_status: Mapped[str | None] = mapped_column(String(30))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )


class ComplianceOverride(Base):
    """Official (human-confirmed) determination for a package/control pair."""
    __tablename__ = "compliance_overrides"
    __table_args__ = (
        UniqueConstraint("package_id", "control_id", name="uq_override_package_control"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    assessed_by: Mapped[str | None] = mapped_column(String(200))
    assessed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
