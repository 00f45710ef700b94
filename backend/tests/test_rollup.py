"""System, group and package rollups."""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_engine.services.control_compliance import compute_control_compliance, record_override
from compliance_engine.services.errors import ControlNotFound, GroupNotFound, PackageNotFound, SystemNotFound
from compliance_engine.services.package_baseline import initialize_package_baseline, remove_from_baseline
from compliance_engine.services.rollup import (
    compliance_score,
    control_package_findings,
    list_group_rollups,
    rollup_group,
    rollup_package,
    rollup_system,
)

from conftest import add_findings


@pytest_asyncio.fixture
async def server_findings(db: AsyncSession, seed_catalog, seed_package):
    await add_findings(
        db, seed_package["web"],
        {"control_id": "AC-2", "severity": "high", "status": "Open"},
        {"control_id": "AU-2", "severity": "CAT I", "status": "NotAFinding"},
    )
    await add_findings(
        db, seed_package["db"],
        {"control_id": None, "cci": "CCI-999999", "severity": "medium", "status": "Open"},
    )
    return seed_package


def test_compliance_score_is_linear_and_floored():
    assert compliance_score(0) == 100
    assert compliance_score(3) == 94
    assert compliance_score(50) == 0
    assert compliance_score(80) == 0


# ═══════════════════ SYSTEM / GROUP ═══════════════════

@pytest.mark.asyncio
async def test_group_rollup_buckets_mixed_vocabularies(db: AsyncSession, server_findings):
    rollup = await rollup_group(db, server_findings["servers"])
    assert (rollup.high, rollup.medium, rollup.low, rollup.unknown) == (2, 1, 0, 0)
    assert rollup.total == 3
    assert rollup.compliance_score == 94
    assert rollup.open == 2
    assert rollup.unmapped == 1
    assert rollup.system_count == 2


@pytest.mark.asyncio
async def test_unrecognized_severity_lands_in_unknown(db: AsyncSession, seed_catalog, seed_package):
    await add_findings(
        db, seed_package["ws"],
        {"control_id": "SC-7", "severity": "informational", "status": "Open"},
        {"control_id": "SC-7", "severity": None, "status": "Open"},
    )
    rollup = await rollup_group(db, seed_package["workstations"])
    assert rollup.unknown == 2
    assert rollup.total == 2
    assert rollup.high == rollup.medium == rollup.low == 0


@pytest.mark.asyncio
async def test_system_rollup(db: AsyncSession, server_findings):
    rollup = await rollup_system(db, server_findings["web"])
    assert rollup.system_name == "web-01"
    assert rollup.group_id == server_findings["servers"]
    assert (rollup.total, rollup.high) == (2, 2)
    assert rollup.compliance_score == 96


@pytest.mark.asyncio
async def test_system_without_findings(db: AsyncSession, seed_package):
    rollup = await rollup_system(db, seed_package["lab"])
    assert rollup.total == 0
    assert rollup.compliance_score == 100


@pytest.mark.asyncio
async def test_unknown_group_and_system(db: AsyncSession):
    with pytest.raises(GroupNotFound):
        await rollup_group(db, 404)
    with pytest.raises(SystemNotFound):
        await rollup_system(db, 404)


@pytest.mark.asyncio
async def test_list_group_rollups(db: AsyncSession, server_findings):
    rollups = await list_group_rollups(db, server_findings["package"])
    assert [g.group_name for g in rollups] == ["Servers", "Workstations"]
    servers, workstations = rollups
    assert servers.total == 3
    assert [s.system_name for s in servers.systems] == ["web-01", "db-01"]
    assert workstations.total == 0
    assert workstations.compliance_score == 100

    with pytest.raises(PackageNotFound):
        await list_group_rollups(db, 404)


# ═══════════════════ PACKAGE ═══════════════════

@pytest.mark.asyncio
async def test_package_rollup_scoped_to_findings(db: AsyncSession, server_findings):
    rollup = await rollup_package(db, server_findings["package"])
    assert rollup.scope == "findings"
    assert rollup.total_systems == 4
    assert [c.control_id for c in rollup.controls] == ["AC-2", "AU-2"]
    assert rollup.determinations["non-compliant"] == 1
    assert rollup.determinations["compliant"] == 1
    assert rollup.states["NC_U"] == 1 and rollup.states["CU"] == 1
    assert rollup.compliance_percentage == 50.0
    assert rollup.severity.unmapped == 1
    families = {f.family: f for f in rollup.families}
    assert families["AC"].non_compliant == 1
    assert families["AU"].compliant == 1


@pytest.mark.asyncio
async def test_package_rollup_includes_overridden_controls(db: AsyncSession, server_findings):
    pkg = server_findings["package"]
    await record_override(db, pkg, "SC-7", "not-applicable")
    await db.commit()
    rollup = await rollup_package(db, pkg)
    assert [c.control_id for c in rollup.controls] == ["AC-2", "AU-2", "SC-7"]
    assert rollup.states["NA_O"] == 1


@pytest.mark.asyncio
async def test_package_rollup_scoped_to_baseline(db: AsyncSession, server_findings):
    pkg = server_findings["package"]
    await initialize_package_baseline(db, pkg, "Low")
    await remove_from_baseline(db, pkg, "SC-7", "Boundary inherited from the hosting provider")
    await db.commit()

    rollup = await rollup_package(db, pkg)
    assert rollup.scope == "baseline"
    assert rollup.total_controls == 125
    assert "SC-7" not in {c.control_id for c in rollup.controls}
    assert rollup.determinations["non-compliant"] == 1
    assert rollup.determinations["compliant"] == 1
    assert rollup.determinations["not-assessed"] == 123
    assert sum(f.total for f in rollup.families) == 125
    assert rollup.compliance_percentage == round(1 / 125 * 100, 1)


@pytest.mark.asyncio
async def test_package_rollup_counts_rejected_findings(db: AsyncSession, seed_catalog, seed_package):
    await add_findings(
        db, seed_package["web"],
        {"control_id": "AU-2", "severity": "low", "status": "Open"},
        {"control_id": "AU-2", "severity": "low", "status": "maybe"},
    )
    rollup = await rollup_package(db, seed_package["package"])
    assert rollup.rejected_findings == 1
    assert rollup.controls[0].counts.rejected == 1


@pytest.mark.asyncio
async def test_package_rollup_without_findings(db: AsyncSession, seed_catalog, seed_package):
    rollup = await rollup_package(db, seed_package["package"])
    assert rollup.total_controls == 0
    assert rollup.compliance_percentage == 0.0
    with pytest.raises(PackageNotFound):
        await rollup_package(db, 404)


@pytest.mark.asyncio
async def test_aggregation_is_deterministic(db: AsyncSession, session_factory, seed_catalog, seed_package):
    pkg = seed_package["package"]
    await add_findings(
        db, seed_package["web"],
        {"cci": "CCI-002110", "severity": "CAT II", "status": "Open"},
        {"control_id": "AU-2", "severity": "low", "status": "Open"},
        {"control_id": "SC-7", "severity": "high", "status": "Not_A_Finding"},
    )
    await add_findings(
        db, seed_package["ws"],
        {"cci": "CCI-002110", "severity": "high", "status": "NotAFinding"},
        {"control_id": "AC-1", "severity": "bogus", "status": "Open"},
    )
    await record_override(db, pkg, "AU-2", "compliant", notes="Compensating control")
    await db.commit()

    runs = []
    for _ in range(2):
        async with session_factory() as s:
            controls = [
                (await compute_control_compliance(s, pkg, control_id)).as_dict()
                for control_id in ("AC-1", "AC-2", "AC-2(1)", "AU-2", "SC-7")
            ]
            package = (await rollup_package(s, pkg)).model_dump()
        runs.append((controls, package))

    assert runs[0] == runs[1]
    controls, package = runs[0]
    # the shared CCI fans out to both controls
    assert [c["state"] for c in controls] == ["NOT_ASSESSED", "NC_U", "NC_U", "CO", "CU"]
    assert package["states"]["CO"] == 1


# ═══════════════════ CONTROL DRILL-DOWN ═══════════════════

@pytest.mark.asyncio
async def test_control_findings_by_group_and_system(db: AsyncSession, seed_catalog, seed_package):
    await add_findings(
        db, seed_package["web"],
        {"control_id": "AC-2", "severity": "CAT I", "status": "Open"},
        {"control_id": "AC-2", "severity": "low", "status": "NotAFinding"},
        {"control_id": "AU-2", "severity": "high", "status": "Open"},
    )
    await add_findings(
        db, seed_package["db"],
        {"cci": "CCI-002110", "severity": "medium", "status": "Open"},
        {"control_id": "AC-2", "severity": "high", "status": "???"},
    )
    await add_findings(db, seed_package["ws"], {"control_id": "AC-2", "severity": "high", "status": "NotAFinding"})
    await add_findings(db, seed_package["lab"], {"control_id": "AC-2", "severity": "CAT III", "status": "Open"})

    data = await control_package_findings(db, seed_package["package"], "AC-2")
    assert data.control_name == "Account Management"
    assert data.package_name == "Enterprise Network"
    assert (data.total_findings, data.open_findings) == (6, 3)
    assert (data.total_systems, data.affected_systems) == (4, 3)
    assert data.overall_compliance == 38

    servers, workstations = data.groups
    assert servers.group_name == "Servers"
    assert (servers.total_findings, servers.open_findings, servers.rejected) == (4, 2, 1)
    assert (servers.cat_i_open, servers.cat_ii_open, servers.cat_iii_open) == (1, 1, 0)
    assert (servers.system_count, servers.compliant_systems) == (2, 0)
    assert servers.compliance_score == 25
    assert servers.status == "Non-Compliant"

    web, dbs = servers.systems
    assert (web.system_name, web.compliance_score, web.status) == ("web-01", 50, "Non-Compliant")
    assert (dbs.system_name, dbs.compliance_score) == ("db-01", 0)

    assert workstations.status == "Compliant"
    assert workstations.compliant_systems == 1

    [lab] = data.ungrouped_systems
    assert (lab.system_name, lab.cat_iii_open) == ("lab-01", 1)


@pytest.mark.asyncio
async def test_control_findings_follow_cci_fan_out(db: AsyncSession, seed_catalog, seed_package):
    await add_findings(db, seed_package["ws"], {"cci": "CCI-002110", "severity": "CAT II", "status": "Open - Verified"})

    data = await control_package_findings(db, seed_package["package"], "AC-2 (1)")
    assert data.control_id == "AC-2(1)"
    [workstations] = data.groups
    assert workstations.cat_ii_open == 1
    assert workstations.status == "Non-Compliant"


@pytest.mark.asyncio
async def test_control_findings_without_evidence(db: AsyncSession, seed_catalog, seed_package):
    data = await control_package_findings(db, seed_package["package"], "SC-7")
    assert data.total_systems == 0
    assert data.overall_compliance == 100
    assert data.groups == []
    assert data.ungrouped_systems == []

    with pytest.raises(ControlNotFound):
        await control_package_findings(db, seed_package["package"], "ZZ-9")
    with pytest.raises(PackageNotFound):
        await control_package_findings(db, 9999, "AC-2")
