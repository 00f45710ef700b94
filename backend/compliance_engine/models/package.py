"""
Authorization boundary models — packages, groups, systems, findings.

These rows are owned by the surrounding application (package wizard, system
inventory, STIG / vulnerability import). The compliance engine only reads them.
"""
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Package(Base):
    __tablename__ = "packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    baseline_level: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    groups: Mapped[list["Group"]] = relationship(back_populates="package")
    systems: Mapped[list["System"]] = relationship(back_populates="package")


class Group(Base):
    __tablename__ = "package_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    package: Mapped["Package"] = relationship(back_populates="groups")
    systems: Mapped[list["System"]] = relationship(back_populates="group")


class System(Base):
    __tablename__ = "systems"
    __table_args__ = (
        Index("ix_system_package", "package_id"),
        Index("ix_system_group", "group_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id", ondelete="CASCADE"), nullable=False)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("package_groups.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    package: Mapped["Package"] = relationship(back_populates="systems")
    group: Mapped["Group | None"] = relationship(back_populates="systems")
    findings: Mapped[list["Finding"]] = relationship(back_populates="system")


class Finding(Base):
    """One STIG checklist / scanner observation on one system."""
    __tablename__ = "findings"
    __table_args__ = (
        Index("ix_finding_system", "system_id"),
        Index("ix_finding_control", "control_id"),
        Index("ix_finding_cci", "cci"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    system_id: Mapped[int] = mapped_column(ForeignKey("systems.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[str | None] = mapped_column(String(50))
    cci: Mapped[str | None] = mapped_column(String(20))
    severity: Mapped[str | None] = mapped_column(String(30))
    status: Mapped[str | None] = mapped_column(String(30))
    rule_id: Mapped[str | None] = mapped_column(String(100))
    rule_title: Mapped[str | None] = mapped_column(String(1000))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    system: Mapped["System"] = relationship(back_populates="findings")
