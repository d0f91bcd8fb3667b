# devbox/sandbox/orchestrator.py
"""
Sandbox Orchestrator

The boundary operations behind the HTTP routes: start, stop, restart, sync,
status, logs, url, cleanup, push_file and status subscriptions.

Lifecycle operations (start/stop/restart/cleanup) for one project are
serialized by a per-project asyncio.Lock. Sync is not serialized; the
idempotent get-or-create contracts cover cross-process races.
"""
import asyncio
from typing import Any, Dict, Optional, Set

from devbox.core.config import settings
from devbox.core.exceptions import (
    DevboxError,
    InvalidStatusTransition,
    NotFoundError,
    SandboxNotRunning,
)
from devbox.core.logging import log, log_section
from devbox.lib.monitoring import record_operation
from devbox.sandbox.endpoints import endpoint_url
from devbox.sandbox.executor import RemoteExecutor, resolve_path
from devbox.sandbox.file_sync import FileSynchronizer
from devbox.sandbox.health_monitor import HealthMonitor
from devbox.sandbox.log_streamer import DEFAULT_TAIL_LINES, LogStreamer
from devbox.sandbox.preview_manager import PreviewManager
from devbox.sandbox.resources import ResourceController
from devbox.sandbox.restart import AppRestartController
from devbox.sandbox.sandbox_config import normalize_runtime
from devbox.sandbox.status import StatusRegistry, can_transition


class SandboxOrchestrator:
    def __init__(
        self,
        backend,
        store,
        registry: Optional[StatusRegistry] = None,
        executor: Optional[RemoteExecutor] = None,
    ) -> None:
        self.backend = backend
        self.store = store
        self.registry = registry or StatusRegistry()
        self.executor = executor or RemoteExecutor(backend)
        self.resources = ResourceController(backend)
        self.sync_engine = FileSynchronizer(store, self.executor, self.registry)
        self.restarter = AppRestartController(self.executor, self.resources)
        self.health = HealthMonitor(self.resources)
        self.logs_reader = LogStreamer(backend)
        self.preview = PreviewManager(self.registry)

        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _lock_for(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log("SANDBOX", f"Background task {task.get_name()} failed: {task.exception()!r}")

    async def _mirror_error(self, project_id: str, error: Exception) -> None:
        message = error.message if isinstance(error, DevboxError) else str(error)
        try:
            await self.registry.set_status(project_id, "error", message)
        except InvalidStatusTransition:
            log("STATUS", f"Error not mirrored ({self.registry.status_of(project_id)}): {message}",
                project_id=project_id)

    async def _provision(self, project_id: str, runtime: str) -> None:
        # Sandbox first, then its endpoint, then the background sequence
        await self.resources.ensure_sandbox(project_id, runtime)
        await self.resources.ensure_network_endpoint(project_id)
        await self.resources.ensure_public_route(project_id)
        self._spawn(self._post_start(project_id), f"post-start:{project_id}")

    async def _post_start(self, project_id: str) -> None:
        """Wait for the pod, push every file, restart the app, then announce the preview."""
        await asyncio.sleep(settings.sandbox.post_start_delay_seconds)
        try:
            await self.health.wait_for_running(project_id)
            await self.registry.set_status(project_id, "syncing", "Syncing project files")
            result = await self.sync_engine.sync_all(project_id)
            if result.has_changes:
                # The supervisor may have booted the placeholder before files landed
                await self.restarter.restart_app(project_id)
            if settings.sandbox.http_probe:
                await self.health.probe_http(project_id)
            await self.registry.set_status(
                project_id, "running", f"Container is running ({result.changed_count} file(s) synced)"
            )
            await self.preview.publish(project_id)
        except InvalidStatusTransition as e:
            log("SANDBOX", f"Post-start superseded ({e.current} -> {e.requested})", project_id=project_id)
        except DevboxError as e:
            log("SANDBOX", f"Post-start failed: {e.message}", project_id=project_id)
            await self._mirror_error(project_id, e)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self, project_id: str, runtime: str = "node") -> Dict[str, Any]:
        runtime = normalize_runtime(runtime)
        async with self._lock_for(project_id):
            log_section("SANDBOX", f"Start ({runtime})", project_id=project_id)
            if self.registry.status_of(project_id) == "syncing":
                # A start is already past provisioning
                return {"status": "syncing", "endpointUrl": endpoint_url(project_id)}
            try:
                await self.registry.set_status(project_id, "creating", "Creating container")
                await self._provision(project_id, runtime)
            except DevboxError as e:
                record_operation("start", "error")
                await self._mirror_error(project_id, e)
                raise
            record_operation("start", "success")
            return {"status": "creating", "endpointUrl": endpoint_url(project_id)}

    async def stop(self, project_id: str) -> Dict[str, Any]:
        async with self._lock_for(project_id):
            log_section("SANDBOX", "Stop", project_id=project_id)
            if self.registry.status_of(project_id) in ("creating", "syncing"):
                await self.registry.set_status(project_id, "error", "Stopped during startup")
            try:
                await self.resources.delete_sandbox(project_id)
            except DevboxError as e:
                record_operation("stop", "error")
                await self._mirror_error(project_id, e)
                raise
            self.preview.stop_preview(project_id)
            await self.registry.set_status(project_id, "stopped", "Container stopped")
            record_operation("stop", "success")
            return {"status": "stopped"}

    async def restart(self, project_id: str, runtime: Optional[str] = None) -> Dict[str, Any]:
        """Recreate the sandbox pod. The startup config and service are kept."""
        async with self._lock_for(project_id):
            log_section("SANDBOX", "Restart", project_id=project_id)
            try:
                state = await self.resources.get_sandbox_status(project_id)
                runtime = normalize_runtime(runtime or state.runtime or settings.sandbox.default_runtime)

                if self.registry.status_of(project_id) == "syncing":
                    await self.registry.set_status(project_id, "error", "Restart requested during sync")
                await self.registry.set_status(project_id, "creating", "Restarting container")

                if await self.resources.delete_sandbox(project_id):
                    await asyncio.sleep(settings.sandbox.recreate_grace_seconds)
                if state.runtime and state.runtime != runtime:
                    # Startup script is runtime-specific
                    await self.resources.delete_startup_config(project_id)
                await self._provision(project_id, runtime)
            except DevboxError as e:
                record_operation("restart", "error")
                await self._mirror_error(project_id, e)
                raise
            record_operation("restart", "success")
            return {"status": "creating", "endpointUrl": endpoint_url(project_id)}

    async def cleanup(self, project_id: str) -> Dict[str, Any]:
        """Remove every resource of the project. Per-resource failures are reported, not raised."""
        async with self._lock_for(project_id):
            log_section("SANDBOX", "Cleanup", project_id=project_id)
            if self.registry.status_of(project_id) in ("creating", "syncing"):
                await self.registry.set_status(project_id, "error", "Cleaned up during startup")
            results = await self.resources.cleanup(project_id)
            self.preview.stop_preview(project_id)
            await self.registry.set_status(project_id, "stopped", "Container resources removed")
            record_operation("cleanup", "success")
            return {"projectId": project_id, "resources": results}

    # =========================================================================
    # FILES
    # =========================================================================

    async def sync(self, project_id: str) -> Dict[str, Any]:
        """Smart sync; restarts the app only when something changed."""
        state = await self.resources.get_sandbox_status(project_id)
        if state.phase != "Running" or state.logical == "stopped":
            raise SandboxNotRunning(project_id, state.phase)

        try:
            if not can_transition(self.registry.status_of(project_id), "syncing"):
                await self.registry.set_status(project_id, "creating", "Attaching to running container")
            await self.registry.set_status(project_id, "syncing", "Syncing project files")

            result = await self.sync_engine.sync_smart(project_id)
            if result.has_changes:
                outcome = await self.restarter.restart_app(project_id, state.runtime)
                message = f"{result.changed_count} file(s) updated, app restart: {outcome.method}"
            else:
                message = "No file changes"

            await self.registry.set_status(project_id, "running", message)
        except DevboxError as e:
            record_operation("sync", "error")
            await self._mirror_error(project_id, e)
            raise

        record_operation("sync", "success")
        if result.has_changes:
            await self.preview.publish(project_id)
        return result.to_dict()

    async def push_file(self, project_id: str, path: str, content: str) -> Dict[str, Any]:
        """Store an editor-pushed file and write it into the sandbox when it is running."""
        resolve_path(path)
        await self.store.save_file(project_id, path, content)

        state = await self.resources.get_sandbox_status(project_id)
        if state.phase == "Running" and state.logical != "stopped":
            await self.sync_engine.push_file(project_id, path, content)
            delivered = "synced"
        else:
            await self.registry.record_file(project_id, path, content)
            delivered = "stored"

        return {"projectId": project_id, "filename": path, "status": delivered, "size": len(content)}

    # =========================================================================
    # READS
    # =========================================================================

    async def status(self, project_id: str) -> Dict[str, Any]:
        state = await self.resources.get_sandbox_status(project_id)
        record = self.registry.get_status(project_id)

        if state.logical == "stopped":
            status, message = "stopped", state.message
        elif record is not None and record.status in ("creating", "syncing", "error"):
            status, message = record.status, record.message
        else:
            status, message = state.logical, state.message

        result = {"status": status, "message": message, "phase": state.phase}
        if status != "stopped":
            result["endpointUrl"] = endpoint_url(project_id)
        return result

    async def logs(self, project_id: str, tail_lines: int = DEFAULT_TAIL_LINES) -> str:
        try:
            return await self.logs_reader.tail(project_id, tail_lines)
        except NotFoundError:
            raise SandboxNotRunning(project_id, "NotFound")

    def url(self, project_id: str) -> str:
        return self.preview.preview_url(project_id)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def subscribe(self, project_id: str, channel) -> None:
        await self.registry.subscribe(project_id, channel)

    async def unsubscribe(self, project_id: str, channel) -> None:
        await self.registry.unsubscribe(project_id, channel)

    async def shutdown(self) -> None:
        """Cancel outstanding background continuations."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
