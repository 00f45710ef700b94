"""HTTP surface: catalog, package compliance and rollup endpoints."""
import json

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import CATALOG, add_findings


def _upload(payload: dict | str, filename: str = "catalog.json") -> dict:
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return {"file": (filename, body.encode(), "application/json")}


# ═══════════════════ CATALOG ═══════════════════

@pytest.mark.asyncio
async def test_import_upload(client: AsyncClient):
    r = await client.post("/api/v1/catalog/import", files=_upload(CATALOG))
    assert r.status_code == 200
    data = r.json()
    assert data["imported"] == 5
    assert data["cci_count"] == 6
    assert data["relation_count"] == 4
    assert [e["kind"] for e in data["errors"]] == ["RelationTargetMissing"] * 2

    r = await client.get("/api/v1/catalog")
    [catalog] = r.json()
    assert catalog["name"] == "default"
    assert catalog["source_name"] == "catalog.json"
    assert catalog["is_active"] is True


@pytest.mark.asyncio
async def test_import_upload_yaml(client: AsyncClient):
    yaml_body = "AU-2:\n  name: Event Logging\n  controlText: Log events.\n  ccis:\n    - cci: CCI-000123\n"
    r = await client.post(
        "/api/v1/catalog/import",
        params={"catalog_name": "yaml"},
        files={"file": ("catalog.yaml", yaml_body.encode(), "application/x-yaml")},
    )
    assert r.status_code == 200
    assert r.json()["imported"] == 1
    assert r.json()["catalog_name"] == "yaml"


@pytest.mark.asyncio
async def test_import_rejects_bad_files(client: AsyncClient):
    r = await client.post("/api/v1/catalog/import", files=_upload(CATALOG, filename="catalog.xlsx"))
    assert r.status_code == 400
    r = await client.post("/api/v1/catalog/import", files=_upload("[]"))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, seed_catalog):
    data = (await client.get("/api/v1/catalog/stats")).json()
    assert data["total_controls"] == 5
    assert data["total_ccis"] == 6
    assert data["controls_by_family"]["AC"] == 3


@pytest.mark.asyncio
async def test_stats_empty(client: AsyncClient):
    data = (await client.get("/api/v1/catalog/stats")).json()
    assert data["catalog_id"] is None
    assert data["total_controls"] == 0


@pytest.mark.asyncio
async def test_list_controls(client: AsyncClient, seed_catalog):
    r = await client.get("/api/v1/catalog/controls", params={"family": "AC", "limit": 2})
    data = r.json()
    assert data["total"] == 3
    assert data["pages"] == 2
    assert [c["control_id"] for c in data["controls"]] == ["AC-1", "AC-2"]


@pytest.mark.asyncio
async def test_control_detail(client: AsyncClient, seed_catalog):
    r = await client.get("/api/v1/catalog/controls/AC-2 (1)")
    assert r.status_code == 200
    data = r.json()
    assert data["control_id"] == "AC-2(1)"
    assert [c["cci"] for c in data["ccis"]] == ["CCI-000015", "CCI-002110"]
    assert data["related_controls"] == [
        {"related_control_id": "AC-2", "resolved": True, "name": "Account Management"},
    ]


@pytest.mark.asyncio
async def test_control_detail_dangling(client: AsyncClient, session_factory):
    from compliance_engine.services.catalog_import import import_catalog

    await import_catalog(session_factory, CATALOG, keep_dangling_relations=True)
    data = (await client.get("/api/v1/catalog/controls/SC-7")).json()
    assert data["related_controls"] == [
        {"related_control_id": "AC-4", "resolved": False, "name": None},
    ]


@pytest.mark.asyncio
async def test_control_not_found(client: AsyncClient, seed_catalog):
    r = await client.get("/api/v1/catalog/controls/ZZ-1")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_cci_lookup(client: AsyncClient, seed_catalog):
    data = (await client.get("/api/v1/catalog/ccis/CCI-002110")).json()
    assert [c["control_id"] for c in data] == ["AC-2", "AC-2(1)"]
    assert (await client.get("/api/v1/catalog/ccis/CCI-999999")).json() == []


# ═══════════════════ PACKAGE COMPLIANCE ═══════════════════

@pytest.mark.asyncio
async def test_compliance_and_override(client: AsyncClient, db: AsyncSession, seed_catalog, seed_package):
    pkg = seed_package["package"]
    url = f"/api/v1/packages/{pkg}/controls/AC-2/compliance"

    data = (await client.get(url)).json()
    assert data["status"] == "not-assessed"
    assert data["state"] == "NOT_ASSESSED"

    await add_findings(db, seed_package["web"], {"control_id": "AC-2", "severity": "CAT I", "status": "Open"})
    data = (await client.get(url)).json()
    assert data["state"] == "NC_U"
    assert data["counts"]["open_high"] == 1

    r = await client.put(
        f"/api/v1/packages/{pkg}/controls/AC-2/override",
        json={"status": "compliant", "notes": "Risk accepted", "assessed_by": "ao"},
    )
    assert r.status_code == 200
    assert r.json()["status"] == "compliant"

    data = (await client.get(url)).json()
    assert data["state"] == "CO"
    assert data["official"] is True


@pytest.mark.asyncio
async def test_override_validation(client: AsyncClient, seed_catalog, seed_package):
    pkg = seed_package["package"]
    r = await client.put(f"/api/v1/packages/{pkg}/controls/AC-2/override", json={"status": "not-assessed"})
    assert r.status_code == 422
    r = await client.put(f"/api/v1/packages/{pkg}/controls/ZZ-9/override", json={"status": "compliant"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_compliance_not_found(client: AsyncClient, seed_catalog, seed_package):
    assert (await client.get("/api/v1/packages/404/controls/AC-2/compliance")).status_code == 404
    r = await client.get(f"/api/v1/packages/{seed_package['package']}/controls/ZZ-9/compliance")
    assert r.status_code == 404


# ═══════════════════ ROLLUPS ═══════════════════

@pytest.mark.asyncio
async def test_rollup_endpoints(client: AsyncClient, db: AsyncSession, seed_catalog, seed_package):
    await add_findings(
        db, seed_package["web"],
        {"control_id": "AC-2", "severity": "high", "status": "Open"},
        {"control_id": "AU-2", "severity": "CAT I", "status": "Open"},
    )
    await add_findings(db, seed_package["db"], {"control_id": "AU-2", "severity": "medium", "status": "Open"})

    group = (await client.get(f"/api/v1/groups/{seed_package['servers']}/rollup")).json()
    assert (group["high"], group["medium"], group["total"]) == (2, 1, 3)
    assert group["compliance_score"] == 94

    system = (await client.get(f"/api/v1/systems/{seed_package['db']}/rollup")).json()
    assert system["medium"] == 1
    assert system["compliance_score"] == 98

    groups = (await client.get(f"/api/v1/packages/{seed_package['package']}/groups")).json()
    assert [g["group_name"] for g in groups] == ["Servers", "Workstations"]

    package = (await client.get(f"/api/v1/packages/{seed_package['package']}/rollup")).json()
    assert package["scope"] == "findings"
    assert package["determinations"]["non-compliant"] == 2
    assert package["severity"]["total"] == 3


@pytest.mark.asyncio
async def test_rollup_not_found(client: AsyncClient):
    assert (await client.get("/api/v1/groups/404/rollup")).status_code == 404
    assert (await client.get("/api/v1/systems/404/rollup")).status_code == 404
    assert (await client.get("/api/v1/packages/404/rollup")).status_code == 404
    assert (await client.get("/api/v1/packages/404/groups")).status_code == 404


# ═══════════════════ BASELINE ═══════════════════

@pytest.mark.asyncio
async def test_baseline_endpoints(client: AsyncClient, seed_catalog, seed_package):
    pkg = seed_package["package"]
    r = await client.post(f"/api/v1/packages/{pkg}/baseline/initialize", json={"level": "Low"})
    assert r.status_code == 200
    assert r.json()["created"] == 126

    r = await client.post(f"/api/v1/packages/{pkg}/baseline/SC-7/remove", json={"rationale": "Inherited"})
    assert r.status_code == 200
    assert r.json()["include_in_baseline"] is False

    r = await client.put(f"/api/v1/packages/{pkg}/baseline/AC-2(1)", json={"tailoring_rationale": "IdM"})
    assert r.status_code == 200
    assert r.json()["tailoring_action"] == "Added"

    r = await client.put(f"/api/v1/packages/{pkg}/baseline/CM-2", json={})
    assert r.status_code == 404

    data = (await client.get(f"/api/v1/packages/{pkg}/baseline")).json()
    assert data["baseline_level"] == "Low"
    assert data["summary"] == {"total": 127, "included": 126, "excluded": 1, "tailored": 2}

    rollup = (await client.get(f"/api/v1/packages/{pkg}/rollup")).json()
    assert rollup["scope"] == "baseline"
    assert rollup["total_controls"] == 126


@pytest.mark.asyncio
async def test_baseline_rejects_unknown_level(client: AsyncClient, seed_package):
    r = await client.post(
        f"/api/v1/packages/{seed_package['package']}/baseline/initialize", json={"level": "Extreme"},
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_baseline_bulk_update(client: AsyncClient, seed_catalog, seed_package):
    pkg = seed_package["package"]
    r = await client.post(f"/api/v1/packages/{pkg}/baseline/bulk-update", json={"controls": [
        {"control_id": "AU-2", "implementation_status": "Implemented"},
        {"control_id": "ZZ-9", "tailoring_rationale": "typo"},
    ]})
    assert r.status_code == 200
    data = r.json()
    assert [c["control_id"] for c in data["updated"]] == ["AU-2"]
    assert [f["control_id"] for f in data["failed"]] == ["ZZ-9"]

    baseline = (await client.get(f"/api/v1/packages/{pkg}/baseline")).json()
    assert [c["implementation_status"] for c in baseline["controls"]] == ["Implemented"]

    r = await client.post(f"/api/v1/packages/{pkg}/baseline/bulk-update", json={"controls": []})
    assert r.status_code == 422
    r = await client.post("/api/v1/packages/404/baseline/bulk-update", json={"controls": [{"control_id": "AU-2"}]})
    assert r.status_code == 404


# ═══════════════════ CONTROL DRILL-DOWN ═══════════════════

@pytest.mark.asyncio
async def test_control_findings_endpoint(client: AsyncClient, db: AsyncSession, seed_catalog, seed_package):
    pkg = seed_package["package"]
    await add_findings(db, seed_package["web"], {"control_id": "AC-2", "severity": "CAT I", "status": "Open"})

    r = await client.get(f"/api/v1/packages/{pkg}/controls/AC-2/findings")
    assert r.status_code == 200
    data = r.json()
    assert data["open_findings"] == 1
    assert data["groups"][0]["group_name"] == "Servers"
    assert data["groups"][0]["systems"][0]["cat_i_open"] == 1

    assert (await client.get(f"/api/v1/packages/{pkg}/controls/ZZ-9/findings")).status_code == 404
    assert (await client.get("/api/v1/packages/404/controls/AC-2/findings")).status_code == 404
