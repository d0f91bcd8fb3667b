# devbox/core/exceptions.py
"""
Custom exceptions for the orchestrator.

Backend-specific failures are translated into this taxonomy at the
Kubernetes boundary (see devbox.sandbox.kube.translate_api_error).
"""
from typing import Optional, Dict, Any, List


class DevboxError(Exception):
    """Base exception for all devbox errors."""
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(DevboxError):
    """Backend resource does not exist."""
    status_code = 404

    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind} {name} not found", {"kind": kind, "name": name})
        self.kind = kind
        self.name = name


class ConflictError(DevboxError):
    """Backend resource already exists."""
    status_code = 409

    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind} {name} already exists", {"kind": kind, "name": name})
        self.kind = kind
        self.name = name


class BackendError(DevboxError):
    """Any other orchestration backend failure."""
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message, {"status": status, "reason": reason})
        self.status = status
        self.reason = reason


class ExecFailure(DevboxError):
    """Remote command inside the sandbox did not succeed."""
    status_code = 502

    def __init__(self, project_id: str, command: List[str], remote_message: str, output: str = ""):
        super().__init__(
            f"Command failed in sandbox {project_id}: {remote_message}",
            {"project_id": project_id, "command": command, "output": output[-2000:]},
        )
        self.project_id = project_id
        self.command = command
        self.remote_message = remote_message
        self.output = output


class SyncFailure(DevboxError):
    """One or more file writes into the sandbox failed."""
    status_code = 500

    def __init__(self, project_id: str, failed_paths: List[str], written: int = 0):
        super().__init__(
            f"File sync failed for {project_id}: {len(failed_paths)} file(s) could not be written",
            {"project_id": project_id, "failed_paths": failed_paths, "written": written},
        )
        self.project_id = project_id
        self.failed_paths = failed_paths
        self.written = written


class StartupTimeout(DevboxError):
    """Sandbox did not become ready within its bound."""
    status_code = 504

    def __init__(self, project_id: str, timeout: float, phase: Optional[str] = None):
        super().__init__(
            f"Sandbox {project_id} not ready after {timeout:.0f}s (phase: {phase or 'unknown'})",
            {"project_id": project_id, "timeout": timeout, "phase": phase},
        )
        self.project_id = project_id
        self.timeout = timeout
        self.phase = phase


class SandboxNotRunning(DevboxError):
    """Operation requires a running sandbox."""
    status_code = 409

    def __init__(self, project_id: str, phase: str):
        super().__init__(
            f"Sandbox {project_id} is not running (phase: {phase}), start it first",
            {"project_id": project_id, "phase": phase},
        )
        self.project_id = project_id
        self.phase = phase


class InvalidStatusTransition(DevboxError):
    """Status machine edge that is not allowed."""
    status_code = 409

    def __init__(self, project_id: str, current: str, requested: str):
        super().__init__(
            f"Invalid status transition for {project_id}: {current} -> {requested}",
            {"project_id": project_id, "current": current, "requested": requested},
        )
        self.project_id = project_id
        self.current = current
        self.requested = requested


class StoreUnavailable(DevboxError):
    """The file store is not connected."""
    status_code = 503
