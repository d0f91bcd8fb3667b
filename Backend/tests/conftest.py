# tests/conftest.py
"""
Shared pytest fixtures for the devbox orchestrator tests.

Provides:
- In-memory Kubernetes backend
- Fake remote executor (sandbox filesystem + process table)
- In-memory file store
- Recording / broken push channels
- Controllable clock
- ASGI test client
"""
import os

os.environ.setdefault("RATE_LIMIT", "10000/minute")

import hashlib
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from kubernetes import client

from devbox.core.config import settings
from devbox.core.exceptions import ConflictError, ExecFailure, NotFoundError
from devbox.lib.file_store import FileRecord
from devbox.sandbox.executor import resolve_path
from devbox.sandbox.kube import ExecResult
from devbox.sandbox.orchestrator import SandboxOrchestrator
from devbox.sandbox.status import StatusRegistry


# ═══════════════════════════════════════════════════════
# FAKE KUBERNETES BACKEND
# ═══════════════════════════════════════════════════════

class FakeBackend:
    """Dict-backed stand-in for KubeBackend with the same error contract."""

    def __init__(self) -> None:
        self.resources: Dict[str, Dict[str, Any]] = {
            "pod": {}, "service": {}, "configmap": {}, "ingress": {},
        }
        self.mutations: List[Tuple[str, str, str]] = []
        self.create_phase = "Pending"
        self.conflict_once: set = set()
        self.fail_with: Optional[Exception] = None
        self.logs: Dict[str, str] = {}
        self.exec_calls: List[Tuple[str, List[str]]] = []
        self.exec_result = ExecResult(output="", success=True)

    def _read(self, kind: str, name: str):
        if self.fail_with is not None:
            raise self.fail_with
        if name not in self.resources[kind]:
            raise NotFoundError(kind, name)
        return self.resources[kind][name]

    def _create(self, kind: str, body):
        if self.fail_with is not None:
            raise self.fail_with
        name = body.metadata.name
        if kind in self.conflict_once:
            # Another caller creates the resource between our read and create
            self.conflict_once.discard(kind)
            self.resources[kind][name] = body
            raise ConflictError(kind, name)
        if name in self.resources[kind]:
            raise ConflictError(kind, name)
        self.mutations.append(("create", kind, name))
        self.resources[kind][name] = body
        return body

    def _delete(self, kind: str, name: str):
        if self.fail_with is not None:
            raise self.fail_with
        if name not in self.resources[kind]:
            raise NotFoundError(kind, name)
        self.mutations.append(("delete", kind, name))
        del self.resources[kind][name]

    def set_phase(self, name: str, phase: str, ready: Optional[bool] = None) -> None:
        pod = self.resources["pod"][name]
        conditions = None
        if ready is not None:
            conditions = [client.V1PodCondition(type="Ready", status="True" if ready else "False")]
        pod.status = client.V1PodStatus(phase=phase, conditions=conditions)

    async def read_pod(self, name):
        return self._read("pod", name)

    async def create_pod(self, body):
        body.status = client.V1PodStatus(phase=self.create_phase)
        return self._create("pod", body)

    async def delete_pod(self, name):
        self._delete("pod", name)

    async def read_pod_logs(self, name, container, tail_lines):
        self._read("pod", name)
        lines = self.logs.get(name, "").splitlines()
        return "\n".join(lines[-tail_lines:])

    async def exec_in_pod(self, name, container, command):
        self.exec_calls.append((name, command))
        return self.exec_result

    async def read_service(self, name):
        return self._read("service", name)

    async def create_service(self, body):
        return self._create("service", body)

    async def delete_service(self, name):
        self._delete("service", name)

    async def read_config_map(self, name):
        return self._read("configmap", name)

    async def create_config_map(self, body):
        return self._create("configmap", body)

    async def delete_config_map(self, name):
        self._delete("configmap", name)

    async def read_ingress(self, name):
        return self._read("ingress", name)

    async def create_ingress(self, body):
        return self._create("ingress", body)

    async def delete_ingress(self, name):
        self._delete("ingress", name)

    async def ping(self):
        return {"reachable": True, "version": "v1.29.0"}


# ═══════════════════════════════════════════════════════
# FAKE EXECUTOR
# ═══════════════════════════════════════════════════════

class FakeExecutor:
    """Sandbox filesystem and process table held in memory."""

    def __init__(self) -> None:
        self.files: Dict[str, str] = {}
        self.writes: List[str] = []
        self.fail_paths: set = set()
        self.processes: List[Tuple[int, str]] = []
        self.ps_error: Optional[Exception] = None
        self.sh_error: Optional[Exception] = None
        self.commands: List[List[str]] = []
        self.scripts: List[str] = []

    async def exec(self, project_id, command):
        self.commands.append(command)
        return ""

    async def sh(self, project_id, script):
        self.scripts.append(script)
        if self.sh_error is not None:
            raise self.sh_error
        return ""

    async def write_file(self, project_id, path, content):
        resolve_path(path)
        if path in self.fail_paths:
            raise ExecFailure(project_id, ["sh", "-c", "write"], "disk full")
        self.writes.append(path)
        self.files[path] = content

    async def file_digests(self, project_id, paths):
        digests = {}
        for p in paths:
            try:
                resolve_path(p)
            except ValueError:
                continue
            if p in self.files:
                digests[p] = hashlib.sha256(self.files[p].encode("utf-8")).hexdigest()
        return digests

    async def list_processes(self, project_id):
        if self.ps_error is not None:
            raise self.ps_error
        return list(self.processes)


# ═══════════════════════════════════════════════════════
# FAKE FILE STORE
# ═══════════════════════════════════════════════════════

class FakeFileStore:
    def __init__(self) -> None:
        self.projects: Dict[str, Dict[str, str]] = {}

    def put(self, project_id: str, files: Dict[str, str]) -> None:
        self.projects.setdefault(project_id, {}).update(files)

    async def list_files(self, project_id):
        files = self.projects.get(project_id, {})
        return [FileRecord(path=p, content=c) for p, c in sorted(files.items())]

    async def get_file(self, project_id, path):
        content = self.projects.get(project_id, {}).get(path)
        return FileRecord(path=path, content=content) if content is not None else None

    async def save_file(self, project_id, path, content):
        self.put(project_id, {path: content})
        return FileRecord(path=path, content=content)

    async def delete_file(self, project_id, path):
        return self.projects.get(project_id, {}).pop(path, None) is not None


# ═══════════════════════════════════════════════════════
# CHANNELS & CLOCK
# ═══════════════════════════════════════════════════════

class RecordingChannel:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    async def send(self, event):
        self.events.append(event)

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]


class BrokenChannel:
    def __init__(self) -> None:
        self.attempts = 0

    async def send(self, event):
        self.attempts += 1
        raise ConnectionError("client went away")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ═══════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    """Collapse the fixed waits so lifecycle flows run instantly."""
    monkeypatch.setattr(settings.sandbox, "recreate_grace_seconds", 0)
    monkeypatch.setattr(settings.sandbox, "restart_grace_seconds", 0)
    monkeypatch.setattr(settings.sandbox, "post_start_delay_seconds", 0)
    monkeypatch.setattr(settings.sandbox, "ready_poll_seconds", 0)
    monkeypatch.setattr(settings.sandbox, "ready_timeout_seconds", 0.2)
    monkeypatch.setattr(settings.sandbox, "http_probe", False)
    monkeypatch.setattr(settings.kubernetes, "profile", "local")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def store():
    return FakeFileStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return StatusRegistry(clock=clock)


@pytest.fixture
def orchestrator(backend, store, registry, executor):
    return SandboxOrchestrator(backend, store, registry=registry, executor=executor)


@pytest.fixture
async def async_client(orchestrator):
    from devbox.main import app
    from devbox.sandbox import set_orchestrator

    set_orchestrator(orchestrator)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await orchestrator.shutdown()
    set_orchestrator(None)


@pytest.fixture
def make_channel():
    """Factory for recording channels: make_channel() or make_channel(broken=True)."""
    def _make(broken: bool = False):
        return BrokenChannel() if broken else RecordingChannel()
    return _make
