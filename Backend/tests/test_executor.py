# tests/test_executor.py
"""
Tests for the remote command executor and its file helpers.
"""
import base64

import pytest

from devbox.core.exceptions import ExecFailure
from devbox.sandbox import executor as executor_module
from devbox.sandbox.executor import (
    RemoteExecutor,
    parse_ps,
    parse_sha256sum,
    resolve_path,
)
from devbox.sandbox.kube import ExecResult


class TestResolvePath:
    def test_maps_under_workspace(self):
        assert resolve_path("src/index.js") == "/workspace/src/index.js"

    def test_normalizes_inner_dots(self):
        assert resolve_path("src/../package.json") == "/workspace/package.json"

    @pytest.mark.parametrize("bad", ["", "/etc/passwd", "../secret", "a/../../b", ".", "a\\b"])
    def test_rejects_escapes(self, bad):
        with pytest.raises(ValueError):
            resolve_path(bad)


class TestRemoteExecutor:
    @pytest.mark.asyncio
    async def test_exec_targets_project_pod(self, backend):
        backend.exec_result = ExecResult(output="ok", success=True)
        result = await RemoteExecutor(backend).exec("demo", ["ls"])
        assert result == "ok"
        assert backend.exec_calls == [("code-editor-demo", ["ls"])]

    @pytest.mark.asyncio
    async def test_exec_failure_carries_remote_message(self, backend):
        backend.exec_result = ExecResult(output="boom", success=False, message="exit code 1")
        with pytest.raises(ExecFailure) as info:
            await RemoteExecutor(backend).exec("p", ["false"])
        assert info.value.remote_message == "exit code 1"
        assert info.value.output == "boom"

    @pytest.mark.asyncio
    async def test_write_file_creates_parent_then_writes(self, backend):
        await RemoteExecutor(backend).write_file("p", "src/app.js", "console.log(1)")
        scripts = [cmd[2] for _, cmd in backend.exec_calls]
        assert scripts[0] == "mkdir -p /workspace/src"
        encoded = base64.b64encode(b"console.log(1)").decode()
        assert scripts[1] == f"printf '%s' {encoded} | base64 -d > /workspace/src/app.js"

    @pytest.mark.asyncio
    async def test_large_file_is_chunked_and_appended(self, backend, monkeypatch):
        monkeypatch.setattr(executor_module, "WRITE_CHUNK_BYTES", 4)
        await RemoteExecutor(backend).write_file("p", "a.txt", "0123456789")
        writes = [cmd[2] for _, cmd in backend.exec_calls][1:]
        assert len(writes) == 3
        assert writes[0].endswith("> /workspace/a.txt")
        assert all(w.endswith(">> /workspace/a.txt") for w in writes[1:])

    @pytest.mark.asyncio
    async def test_empty_file_is_truncated(self, backend):
        await RemoteExecutor(backend).write_file("p", "empty.txt", "")
        assert backend.exec_calls[-1][1][2] == ": > /workspace/empty.txt"

    @pytest.mark.asyncio
    async def test_read_file_cats_resolved_path(self, backend):
        backend.exec_result = ExecResult(output="hello", success=True)
        assert await RemoteExecutor(backend).read_file("p", "docs/readme.md") == "hello"
        assert backend.exec_calls[-1][1] == ["cat", "/workspace/docs/readme.md"]

    @pytest.mark.asyncio
    async def test_file_digests_maps_back_to_project_paths(self, backend):
        digest = "a" * 64
        backend.exec_result = ExecResult(output=f"{digest}  /workspace/src/a.js\n", success=True)
        result = await RemoteExecutor(backend).file_digests("p", ["src/a.js", "missing.js"])
        assert result == {"src/a.js": digest}


def test_parse_sha256sum_skips_noise():
    digest = "0" * 64
    out = f"{digest}  /workspace/x\nsha256sum: /workspace/y: No such file\n"
    assert parse_sha256sum(out) == [(digest, "/workspace/x")]


def test_parse_ps():
    out = "PID   COMMAND\n    1 sh /scripts/startup.sh\n   42 node server.js\n"
    assert parse_ps(out) == [(1, "sh /scripts/startup.sh"), (42, "node server.js")]
