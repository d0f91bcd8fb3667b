# devbox/sandbox/executor.py
"""
Remote Command Executor

Runs commands inside the code-runner container of a project's pod and builds
the file helpers used by sync and restart on top of that single primitive.
"""
import base64
import posixpath
import shlex
from typing import Dict, List, Optional, Tuple

from devbox.core.config import settings
from devbox.core.exceptions import ExecFailure
from devbox.core.logging import log
from devbox.sandbox.kube import KubeBackend
from devbox.sandbox.sandbox_config import pod_name

# Raw bytes per write chunk. Base64 grows this by a third, which keeps each
# exec argument well below ARG_MAX.
WRITE_CHUNK_BYTES = 48 * 1024
DIGEST_BATCH_SIZE = 200


def resolve_path(path: str, root: Optional[str] = None) -> str:
    """
    Map a project-relative path under the working directory.

    Absolute paths and paths escaping the root are rejected.
    """
    root = root or settings.sandbox.working_dir
    if not path or path.startswith("/") or "\\" in path:
        raise ValueError(f"Invalid project path: {path!r}")
    normalized = posixpath.normpath(path)
    if normalized in (".", "") or normalized == ".." or normalized.startswith("../"):
        raise ValueError(f"Path escapes project root: {path!r}")
    return posixpath.join(root, normalized)


class RemoteExecutor:
    def __init__(self, backend: KubeBackend, container: Optional[str] = None):
        self.backend = backend
        self.container = container or settings.sandbox.container_name

    async def exec(self, project_id: str, command: List[str]) -> str:
        """Run a command in the project's sandbox and return combined output."""
        log("EXEC", f"$ {' '.join(command)[:200]}", project_id=project_id)
        result = await self.backend.exec_in_pod(pod_name(project_id), self.container, command)
        if not result.success:
            raise ExecFailure(project_id, command, result.message, result.output)
        return result.output

    async def sh(self, project_id: str, script: str) -> str:
        return await self.exec(project_id, ["sh", "-c", script])

    # =========================================================================
    # FILE HELPERS
    # =========================================================================

    async def write_file(self, project_id: str, path: str, content: str) -> None:
        """Write a project file, creating parent directories."""
        target = resolve_path(path)
        quoted = shlex.quote(target)
        data = content.encode("utf-8")

        await self.sh(project_id, f"mkdir -p {shlex.quote(posixpath.dirname(target))}")

        if not data:
            await self.sh(project_id, f": > {quoted}")
            return

        for offset in range(0, len(data), WRITE_CHUNK_BYTES):
            chunk = base64.b64encode(data[offset:offset + WRITE_CHUNK_BYTES]).decode("ascii")
            redirect = ">" if offset == 0 else ">>"
            await self.sh(project_id, f"printf '%s' {chunk} | base64 -d {redirect} {quoted}")

    async def read_file(self, project_id: str, path: str) -> str:
        target = resolve_path(path)
        return await self.exec(project_id, ["cat", target])

    async def file_digests(self, project_id: str, paths: List[str]) -> Dict[str, str]:
        """
        SHA-256 digests of project files in the sandbox.

        Files that do not exist remotely, and paths that cannot be mapped
        under the workspace, are absent from the result.
        """
        digests: Dict[str, str] = {}
        by_target = {}
        for path in paths:
            try:
                by_target[resolve_path(path)] = path
            except ValueError as e:
                log("EXEC", f"Skipping digest of invalid path: {e}", project_id=project_id)
        targets = list(by_target)

        for i in range(0, len(targets), DIGEST_BATCH_SIZE):
            batch = targets[i:i + DIGEST_BATCH_SIZE]
            quoted = " ".join(shlex.quote(t) for t in batch)
            # sha256sum exits non-zero when some files are missing
            output = await self.sh(project_id, f"sha256sum {quoted} 2>/dev/null; true")
            for digest, target in parse_sha256sum(output):
                if target in by_target:
                    digests[by_target[target]] = digest

        return digests

    async def list_processes(self, project_id: str) -> List[Tuple[int, str]]:
        output = await self.exec(project_id, ["ps", "-o", "pid,args"])
        return parse_ps(output)


def parse_sha256sum(output: str) -> List[Tuple[str, str]]:
    entries = []
    for line in output.splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2 or len(parts[0]) != 64:
            continue
        digest, target = parts
        entries.append((digest.lower(), target.lstrip("*")))
    return entries


def parse_ps(output: str) -> List[Tuple[int, str]]:
    processes = []
    for line in output.splitlines():
        parts = line.strip().split(None, 1)
        if not parts or not parts[0].isdigit():
            continue
        processes.append((int(parts[0]), parts[1] if len(parts) > 1 else ""))
    return processes
