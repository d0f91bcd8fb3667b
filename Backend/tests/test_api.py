# tests/test_api.py
"""
Route tests over the ASGI app with in-memory collaborators.
"""
import asyncio

import pytest

from devbox.core.exceptions import BackendError


async def drain(orchestrator):
    while orchestrator._tasks:
        await asyncio.gather(*list(orchestrator._tasks), return_exceptions=True)


class TestContainerRoutes:
    @pytest.mark.asyncio
    async def test_start_and_status(self, async_client, orchestrator, backend):
        backend.create_phase = "Running"

        response = await async_client.post("/api/containers/start", json={"projectId": "p", "runtime": "node"})
        await drain(orchestrator)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "creating"
        assert body["data"]["endpointUrl"].endswith(":30112")

        status = (await async_client.get("/api/containers/status", params={"projectId": "p"})).json()
        assert status["data"]["phase"] == "Running"

    @pytest.mark.asyncio
    async def test_missing_project_id_is_rejected(self, async_client):
        response = await async_client.post("/api/containers/start", json={})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stop_unknown_project(self, async_client):
        response = await async_client.post("/api/containers/stop", json={"projectId": "ghost"})
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_sync_without_sandbox_is_conflict(self, async_client):
        response = await async_client.post("/api/containers/sync", json={"projectId": "p"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_backend_error_maps_to_bad_gateway(self, async_client, backend):
        backend.fail_with = BackendError("apiserver unavailable", status=503)
        response = await async_client.post("/api/containers/start", json={"projectId": "p"})
        assert response.status_code == 502
        assert "apiserver unavailable" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_logs(self, async_client, orchestrator, backend):
        backend.create_phase = "Running"
        await orchestrator.start("p")
        await drain(orchestrator)
        backend.logs["code-editor-p"] = "a\nb\nc"

        response = await async_client.get("/api/containers/logs", params={"projectId": "p", "tailLines": 1})

        assert response.json()["data"]["logs"] == "c"

    @pytest.mark.asyncio
    async def test_url(self, async_client):
        response = await async_client.get("/api/containers/url", params={"projectId": "a"})
        assert response.json()["data"]["url"].endswith(":30097")

    @pytest.mark.asyncio
    async def test_cleanup(self, async_client):
        response = await async_client.post("/api/containers/cleanup", json={"projectId": "p"})
        assert response.status_code == 200
        assert set(response.json()["data"]["resources"]) == {"pod", "service", "configmap", "ingress"}


class TestFileRoutes:
    @pytest.mark.asyncio
    async def test_push_file(self, async_client, store):
        response = await async_client.post(
            "/api/files/sync", json={"projectId": "p", "filename": "index.js", "content": "x"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "stored"
        assert store.projects["p"]["index.js"] == "x"

    @pytest.mark.asyncio
    async def test_push_file_rejects_escaping_path(self, async_client):
        response = await async_client.post(
            "/api/files/sync", json={"projectId": "p", "filename": "../../etc/passwd", "content": "x"}
        )
        assert response.status_code == 400


class TestWebSocket:
    def test_ws_greets_with_connected(self, backend, store, registry, executor):
        from fastapi.testclient import TestClient

        from devbox.main import app
        from devbox.sandbox import SandboxOrchestrator, set_orchestrator

        set_orchestrator(SandboxOrchestrator(backend, store, registry=registry, executor=executor))
        try:
            with TestClient(app).websocket_connect("/ws/proj-ws") as ws:
                event = ws.receive_json()
            assert event["type"] == "connected"
            assert event["data"]["projectId"] == "proj-ws"
        finally:
            set_orchestrator(None)
