# devbox/sandbox/status.py
"""
Status Broadcaster & State Machine

Per-project status records plus push fan-out to subscribed channels.

A channel is any object with an async ``send(event: dict)`` method
(see devbox.lib.channels). All state is process-local.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from devbox.core.config import settings
from devbox.core.exceptions import InvalidStatusTransition
from devbox.core.logging import log
from devbox.lib.monitoring import set_active_subscribers, set_tracked_projects


STATUSES = ("stopped", "creating", "syncing", "running", "error")

ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    "stopped": {"stopped", "creating"},
    "creating": {"creating", "syncing", "running", "error"},
    "syncing": {"syncing", "running", "error"},
    "running": {"running", "syncing", "creating", "stopped", "error"},
    "error": {"error", "creating", "stopped"},
}


def can_transition(current: str, requested: str) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, set())


@dataclass
class ProjectStatus:
    status: str = "stopped"
    message: str = ""
    last_activity: float = 0.0
    # path -> {"content": str, "lastModified": ms}
    files: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "containerStatus": self.status,
            "message": self.message,
            "lastActivity": int(self.last_activity * 1000),
            "files": {path: dict(entry) for path, entry in self.files.items()},
        }


def make_event(kind: str, project_id: str, timestamp: float, **data) -> Dict[str, Any]:
    return {
        "type": kind,
        "data": {"projectId": project_id, "timestamp": int(timestamp * 1000), **data},
    }


class StatusRegistry:
    def __init__(self, clock: Callable[[], float] = time.time, expiry_seconds: Optional[float] = None) -> None:
        self._clock = clock
        self._expiry = settings.status.expiry_seconds if expiry_seconds is None else expiry_seconds
        self._records: Dict[str, ProjectStatus] = {}
        self._subscribers: Dict[str, List[Any]] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # READS
    # =========================================================================

    def get_status(self, project_id: str) -> Optional[ProjectStatus]:
        return self._records.get(project_id)

    def status_of(self, project_id: str) -> str:
        record = self._records.get(project_id)
        return record.status if record else "stopped"

    def connection_count(self, project_id: Optional[str] = None) -> int:
        if project_id is None:
            return sum(len(channels) for channels in self._subscribers.values())
        return len(self._subscribers.get(project_id, []))

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def set_status(self, project_id: str, status: str, message: str = "") -> ProjectStatus:
        """Validate and apply a transition, then notify subscribers."""
        if status not in STATUSES:
            raise ValueError(f"Unknown status: {status}")

        now = self._clock()
        async with self._lock:
            record = self._records.get(project_id)
            current = record.status if record else "stopped"
            if not can_transition(current, status):
                raise InvalidStatusTransition(project_id, current, status)
            if record is None:
                record = self._records[project_id] = ProjectStatus()
            record.status = status
            record.message = message
            record.last_activity = now
            set_tracked_projects(len(self._records))

        if current != status:
            log("STATUS", f"{current} -> {status}: {message}", project_id=project_id)

        await self._broadcast(project_id, make_event(
            "container-status", project_id, now, status=status, message=message,
        ))
        return record

    async def record_file(self, project_id: str, path: str, content: str) -> None:
        now = self._clock()
        async with self._lock:
            record = self._records.get(project_id)
            if record is None:
                record = self._records[project_id] = ProjectStatus()
            record.files[path] = {"content": content, "lastModified": int(now * 1000)}
            record.last_activity = now
            set_tracked_projects(len(self._records))

        await self._broadcast(project_id, make_event(
            "file-updated", project_id, now, filename=path, content=content,
        ))

    async def notify_preview(self, project_id: str, url: Optional[str] = None) -> None:
        now = self._clock()
        async with self._lock:
            record = self._records.get(project_id)
            if record is not None:
                record.last_activity = now

        data = {"url": url} if url else {}
        await self._broadcast(project_id, make_event("preview-updated", project_id, now, **data))

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def subscribe(self, project_id: str, channel) -> None:
        """Register a channel, then greet it with the current project state."""
        async with self._lock:
            self._subscribers.setdefault(project_id, []).append(channel)
            record = self._records.get(project_id)
            snapshot = record.to_dict() if record else None
            set_active_subscribers(self.connection_count())

        now = self._clock()
        greeting = [make_event("connected", project_id, now)]
        if snapshot is not None:
            greeting.append(make_event("project-state", project_id, now, state=snapshot))

        for event in greeting:
            try:
                await channel.send(event)
            except Exception as e:
                log("STATUS", f"Subscriber failed on connect: {e}", project_id=project_id)
                await self.unsubscribe(project_id, channel)
                return

    async def unsubscribe(self, project_id: str, channel) -> None:
        async with self._lock:
            channels = self._subscribers.get(project_id, [])
            if channel in channels:
                channels.remove(channel)
            if not channels and project_id in self._subscribers:
                del self._subscribers[project_id]
            set_active_subscribers(self.connection_count())

    async def _broadcast(self, project_id: str, event: Dict[str, Any]) -> None:
        # Snapshot under lock, send outside it
        async with self._lock:
            channels = list(self._subscribers.get(project_id, []))

        dead = []
        for channel in channels:
            try:
                await channel.send(event)
            except Exception as e:
                log("STATUS", f"Dropping subscriber after send failure: {e}", project_id=project_id)
                dead.append(channel)

        for channel in dead:
            await self.unsubscribe(project_id, channel)

    # =========================================================================
    # EXPIRY
    # =========================================================================

    async def sweep(self) -> List[str]:
        """Purge records idle for longer than the expiry window."""
        cutoff = self._clock() - self._expiry
        async with self._lock:
            expired = [pid for pid, rec in self._records.items() if rec.last_activity < cutoff]
            for pid in expired:
                del self._records[pid]
            set_tracked_projects(len(self._records))

        if expired:
            log("STATUS", f"Purged {len(expired)} idle project record(s)", data=expired)
        return expired

    async def run_sweeper(self, interval: Optional[float] = None) -> None:
        """Sweep forever; cancelled by the app lifespan."""
        interval = settings.status.sweep_interval_seconds if interval is None else interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as e:
                log("STATUS", f"Sweep failed: {e}")
