"""Tests for the HTTP API."""

import uuid

import httpx
import pytest
import pytest_asyncio

from achadinhos.bootstrap import build_runtime
from achadinhos.dependencies import get_db
from achadinhos.main import app
from achadinhos.models import ExecutionStatus


@pytest_asyncio.fixture
async def runtime(session_factory, fetcher, registry):
    runtime = build_runtime(session_factory=session_factory, fetcher=fetcher, registry=registry)
    app.state.runtime = runtime
    yield runtime
    del app.state.runtime


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestHealth:
    async def test_healthy(self, client, runtime):
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["scheduler"] == "stopped"
        assert body["active_scrapes"] == 0

    async def test_without_runtime(self, client):
        response = await client.get("/api/v1/health")
        assert response.json()["scheduler"] == "not_initialized"

    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["health"] == "/api/v1/health"


class TestRunScraper:
    async def test_queues_pending_execution(self, client, runtime, scraper_config):
        response = await client.post(f"/api/v1/scrapers/{scraper_config.id}/run")

        assert response.status_code == 202
        data = response.json()["data"]
        assert data["status"] == ExecutionStatus.PENDING.value

        execution = await runtime.state_machine.get(uuid.UUID(data["execution_id"]))
        assert execution.status == ExecutionStatus.PENDING
        assert execution.scraper_id == scraper_config.id

    async def test_unknown_scraper(self, client, runtime):
        response = await client.post(f"/api/v1/scrapers/{uuid.uuid4()}/run")
        assert response.status_code == 404

    async def test_runtime_missing(self, client, scraper_config):
        response = await client.post(f"/api/v1/scrapers/{scraper_config.id}/run")
        assert response.status_code == 503


class TestExecutions:
    @pytest_asyncio.fixture
    async def executions(self, runtime, scraper_config):
        done = await runtime.orchestrator.run_scraper(scraper_config)
        queued = await runtime.orchestrator.enqueue_run(scraper_config.id)
        return done, queued

    async def test_list_newest_first(self, client, executions):
        done, queued = executions
        response = await client.get("/api/v1/scrapers/executions")

        assert response.status_code == 200
        ids = [e["id"] for e in response.json()["data"]]
        assert ids == [str(queued.id), str(done.execution_id)]

    async def test_filter_by_status(self, client, executions):
        done, _ = executions
        response = await client.get("/api/v1/scrapers/executions", params={"status": "SUCCESS"})

        data = response.json()["data"]
        assert [e["id"] for e in data] == [str(done.execution_id)]
        assert data[0]["products_found"] == 2

    async def test_get_one(self, client, executions):
        done, _ = executions
        response = await client.get(f"/api/v1/scrapers/executions/{done.execution_id}")
        assert response.json()["data"]["status"] == "SUCCESS"

    async def test_get_missing(self, client, runtime):
        response = await client.get(f"/api/v1/scrapers/executions/{uuid.uuid4()}")
        assert response.status_code == 404

    @pytest.mark.parametrize("params", [{"status": "DONE"}, {"limit": 0}])
    async def test_invalid_query(self, client, runtime, params):
        response = await client.get("/api/v1/scrapers/executions", params=params)
        assert response.status_code == 422
