"""Integration tests for the /api/v1/filemaker endpoints.

Builds a minimal FastAPI app around the filemaker router with the FileMaker
client, in-memory repository and layouts placed on app.state, and drives it
through httpx ASGITransport. FileMaker itself is the fake Data API server.
"""

from __future__ import annotations

from datetime import datetime

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.portal.filemaker.circuit import FAILURE_THRESHOLD, CircuitBreaker
from src.portal.filemaker.repository import PropertyRead, SubmissionDetail
from tests.fakes import fm_error, fm_ok, fm_records


def _make_app(client, repo, layouts) -> FastAPI:
    from src.portal.api.v1.filemaker import router

    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    app.state.filemaker_client = client
    app.state.portal_repository = repo
    app.state.filemaker_layouts = layouts
    return app


@pytest_asyncio.fixture
async def api(fm_client, portal_repo, layouts):
    portal_repo.add_program("FeaturedHomes", "Featured Homes")
    app = _make_app(fm_client, portal_repo, layouts)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def unconfigured_api(unconfigured_client, portal_repo, layouts):
    app = _make_app(unconfigured_client, portal_repo, layouts)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


# ── Status ───────────────────────────────────────────────────────────────────


class TestStatusEndpoint:
    async def test_connected(self, api, fm_server):
        fm_server.on(
            "GET",
            "layouts/Properties/records",
            fm_ok({"data": [], "dataInfo": {"totalRecordCount": 42, "database": "GCLB"}}),
        )

        resp = await api.get("/api/v1/filemaker/status")

        assert resp.status_code == 200
        data = resp.json()
        assert data["connected"] is True
        assert data["fm_record_count"] == 42
        assert data["delta"] == 42

    async def test_unconfigured_is_still_200(self, unconfigured_api):
        resp = await unconfigured_api.get("/api/v1/filemaker/status")

        assert resp.status_code == 200
        assert resp.json()["configured"] is False

    async def test_bridge_not_initialized(self):
        app = FastAPI()
        from src.portal.api.v1.filemaker import router

        app.include_router(router, prefix="/api/v1")
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/api/v1/filemaker/status")

        assert resp.status_code == 503


# ── Sync ─────────────────────────────────────────────────────────────────────


class TestSyncEndpoint:
    async def test_full_sync(self, api, portal_repo, fm_server):
        fm_server.on(
            "GET",
            "layouts/Properties/records",
            fm_records({"Parc ID": "1000000001", "Sales Disposition": "Featured"}, {"Parc ID": ""}),
        )

        resp = await api.post("/api/v1/filemaker/sync")

        assert resp.status_code == 200
        data = resp.json()
        assert data["stats"]["synced"] == 1
        assert data["stats"]["skipped"] == 1
        assert data["stats"]["errors"][0]["error"] == "Missing parcel id"
        assert await portal_repo.count_properties() == 1

    async def test_dry_run_alias(self, api, portal_repo, fm_server):
        fm_server.on("GET", "layouts/Properties/records", fm_records({"Parc ID": "1000000001"}))

        resp = await api.post("/api/v1/filemaker/sync", params={"dryRun": "true"})

        assert resp.status_code == 200
        assert resp.json()["dry_run"] is True
        assert len(resp.json()["preview"]) == 1
        assert await portal_repo.count_properties() == 0

    async def test_limit_bounds(self, api):
        resp = await api.post("/api/v1/filemaker/sync", params={"limit": 0})
        assert resp.status_code == 422

    async def test_running_sync_conflict(self, api, portal_repo):
        portal_repo.sync_metadata = portal_repo.sync_metadata.model_copy(update={"status": "running"})

        resp = await api.post("/api/v1/filemaker/sync")

        assert resp.status_code == 409

    async def test_unconfigured_is_503(self, unconfigured_api):
        resp = await unconfigured_api.post("/api/v1/filemaker/sync")

        assert resp.status_code == 503
        assert "FM_SERVER_URL" in resp.json()["detail"]["hint"]

    async def test_filemaker_failure_is_502(self, api, portal_repo, fm_server):
        fm_server.on("GET", "layouts/Properties/records", fm_error("802", "Unable to open file"))

        resp = await api.post("/api/v1/filemaker/sync")

        assert resp.status_code == 502
        assert resp.json()["detail"]["code"] == "802"
        assert portal_repo.sync_metadata.status == "failed"

    async def test_open_circuit_is_503(self, api, state_store, fm_server):
        breaker = CircuitBreaker(state_store)
        for _ in range(FAILURE_THRESHOLD):
            await breaker.record_failure()

        resp = await api.post("/api/v1/filemaker/sync")

        assert resp.status_code == 503
        assert resp.json()["detail"]["category"] == "circuit_open"
        assert fm_server.requests == []


# ── Push ─────────────────────────────────────────────────────────────────────


class TestPushEndpoint:
    async def test_push_submission(self, api, portal_repo, fm_server):
        portal_repo.submissions["sub-1"] = SubmissionDetail(
            id="sub-1",
            type="progress_update",
            created_at=datetime(2024, 4, 2),
            property=PropertyRead(id="p-1", parcel_id="4635457003"),
        )
        fm_server.on("POST", "layouts/Properties/_find", fm_error("401", "No records match"))
        fm_server.on("POST", "layouts/Submissions/records", fm_ok({"recordId": "312"}))

        resp = await api.post(
            "/api/v1/filemaker/push", json={"type": "submission", "record_id": "sub-1"}
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "type": "submission",
            "portal_id": "sub-1",
            "fm_record_id": "312",
        }

    async def test_unknown_record_is_404(self, api):
        resp = await api.post(
            "/api/v1/filemaker/push", json={"type": "communication", "record_id": "nope"}
        )
        assert resp.status_code == 404

    async def test_invalid_type_is_422(self, api):
        resp = await api.post(
            "/api/v1/filemaker/push", json={"type": "buyer", "record_id": "x"}
        )
        assert resp.status_code == 422

    async def test_unconfigured_is_503(self, unconfigured_api):
        resp = await unconfigured_api.post(
            "/api/v1/filemaker/push", json={"type": "submission", "record_id": "sub-1"}
        )
        assert resp.status_code == 503
