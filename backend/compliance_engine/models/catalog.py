"""
Control catalog models — catalog handle, controls, CCI links, control relations.

Tables: catalogs, controls, control_ccis, control_relations

A catalog is rebuilt as a whole on every import (clear, then reload). Control
identifiers are stored in canonical form (see services.control_ids), so two
spellings of the same control can never coexist within one catalog.
"""
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Catalog(Base):
    """Explicit catalog handle; one row per named catalog, one active at a time."""
    __tablename__ = "catalogs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    generation: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_name: Mapped[str | None] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    imported_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    controls: Mapped[list["Control"]] = relationship(back_populates="catalog")


class Control(Base):
    __tablename__ = "controls"
    __table_args__ = (
        UniqueConstraint("catalog_id", "control_id", name="uq_control_catalog_control_id"),
        Index("ix_control_catalog_family", "catalog_id", "family"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    catalog_id: Mapped[int] = mapped_column(ForeignKey("catalogs.id"), nullable=False)
    control_id: Mapped[str] = mapped_column(String(50), nullable=False)
    family: Mapped[str | None] = mapped_column(String(10))
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    control_text: Mapped[str] = mapped_column(Text, nullable=False)
    discussion: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    catalog: Mapped["Catalog"] = relationship(back_populates="controls")
    ccis: Mapped[list["ControlCci"]] = relationship(
        back_populates="control", order_by="ControlCci.cci",
    )
    relations: Mapped[list["ControlRelation"]] = relationship(
        back_populates="source_control", order_by="ControlRelation.related_control_id",
    )


class ControlCci(Base):
    __tablename__ = "control_ccis"
    __table_args__ = (
        UniqueConstraint("control_pk", "cci", name="uq_control_cci"),
        Index("ix_control_cci_cci", "cci"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    control_pk: Mapped[int] = mapped_column(ForeignKey("controls.id", ondelete="CASCADE"), nullable=False)
    cci: Mapped[str] = mapped_column(String(20), nullable=False)
    definition: Mapped[str | None] = mapped_column(Text)

    control: Mapped["Control"] = relationship(back_populates="ccis")


class ControlRelation(Base):
    """Directed edge from a control to a related control identifier.

    The related side is a plain string, not a foreign key: catalogs reference
    enhancements and controls outside the loaded set.
    """
    __tablename__ = "control_relations"
    __table_args__ = (
        UniqueConstraint("source_control_pk", "related_control_id", name="uq_control_relation"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_control_pk: Mapped[int] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), nullable=False,
    )
    related_control_id: Mapped[str] = mapped_column(String(50), nullable=False)

    source_control: Mapped["Control"] = relationship(back_populates="relations")
