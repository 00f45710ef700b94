"""Control catalog, package scope and compliance tables

Revision ID: 001_control_catalog
Revises:
Create Date: 2026-10-19

Creates: catalogs, controls, control_ccis, control_relations,
         packages, package_groups, systems, findings,
         package_control_baselines, compliance_overrides
"""
from alembic import op
import sqlalchemy as sa

revision = "001_control_catalog"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── 1. Catalog ────────────────────────────────────────────────
    op.create_table(
        "catalogs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("generation", sa.Integer, nullable=False, server_default="0"),
        sa.Column("source_name", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("imported_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "controls",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("catalog_id", sa.Integer, sa.ForeignKey("catalogs.id"), nullable=False),
        sa.Column("control_id", sa.String(50), nullable=False),
        sa.Column("family", sa.String(10), nullable=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("control_text", sa.Text, nullable=False),
        sa.Column("discussion", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("catalog_id", "control_id", name="uq_control_catalog_control_id"),
    )
    op.create_index("ix_control_catalog_family", "controls", ["catalog_id", "family"])

    op.create_table(
        "control_ccis",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("control_pk", sa.Integer, sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False),
        sa.Column("cci", sa.String(20), nullable=False),
        sa.Column("definition", sa.Text, nullable=True),
        sa.UniqueConstraint("control_pk", "cci", name="uq_control_cci"),
    )
    op.create_index("ix_control_cci_cci", "control_ccis", ["cci"])

    op.create_table(
        "control_relations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "source_control_pk", sa.Integer,
            sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("related_control_id", sa.String(50), nullable=False),
        sa.UniqueConstraint("source_control_pk", "related_control_id", name="uq_control_relation"),
    )

    # ── 2. Packages, groups, systems, findings ────────────────────
    op.create_table(
        "packages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("baseline_level", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "package_groups",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("package_id", sa.Integer, sa.ForeignKey("packages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
    )

    op.create_table(
        "systems",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("package_id", sa.Integer, sa.ForeignKey("packages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("group_id", sa.Integer, sa.ForeignKey("package_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_system_package", "systems", ["package_id"])
    op.create_index("ix_system_group", "systems", ["group_id"])

    op.create_table(
        "findings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("system_id", sa.Integer, sa.ForeignKey("systems.id", ondelete="CASCADE"), nullable=False),
        sa.Column("control_id", sa.String(50), nullable=True),
        sa.Column("cci", sa.String(20), nullable=True),
        sa.Column("severity", sa.String(30), nullable=True),
        sa.Column("status", sa.String(30), nullable=True),
        sa.Column("rule_id", sa.String(100), nullable=True),
        sa.Column("rule_title", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_finding_system", "findings", ["system_id"])
    op.create_index("ix_finding_control", "findings", ["control_id"])
    op.create_index("ix_finding_cci", "findings", ["cci"])

    # ── 3. Baselines and official determinations ──────────────────
    op.create_table(
        "package_control_baselines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("package_id", sa.Integer, sa.ForeignKey("packages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("control_id", sa.String(50), nullable=False),
        sa.Column("include_in_baseline", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("baseline_source", sa.String(20), nullable=True),
        sa.Column("tailoring_action", sa.String(20), nullable=True),
        sa.Column("tailoring_rationale", sa.Text, nullable=True),
        sa.Column("implementation_status", sa.String(30), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("package_id", "control_id", name="uq_baseline_package_control"),
    )

    op.create_table(
        "compliance_overrides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("package_id", sa.Integer, sa.ForeignKey("packages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("control_id", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("assessed_by", sa.String(200), nullable=True),
        sa.Column("assessed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("package_id", "control_id", name="uq_override_package_control"),
    )


def downgrade() -> None:
    op.drop_table("compliance_overrides")
    op.drop_table("package_control_baselines")
    op.drop_index("ix_finding_cci", "findings")
    op.drop_index("ix_finding_control", "findings")
    op.drop_index("ix_finding_system", "findings")
    op.drop_table("findings")
    op.drop_index("ix_system_group", "systems")
    op.drop_index("ix_system_package", "systems")
    op.drop_table("systems")
    op.drop_table("package_groups")
    op.drop_table("packages")
    op.drop_table("control_relations")
    op.drop_index("ix_control_cci_cci", "control_ccis")
    op.drop_table("control_ccis")
    op.drop_index("ix_control_catalog_family", "controls")
    op.drop_table("controls")
    op.drop_table("catalogs")
