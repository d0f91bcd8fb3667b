# devbox/sandbox/file_sync.py
"""
File Synchronizer

Pushes the authoritative project files into the sandbox workspace.
Sync is one-directional: files that only exist in the sandbox are left alone.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from devbox.core.exceptions import ExecFailure, SyncFailure
from devbox.core.logging import log
from devbox.lib.file_store import FileRecord, FileStore
from devbox.lib.monitoring import record_files_synced
from devbox.sandbox.executor import RemoteExecutor


@dataclass
class SyncResult:
    has_changes: bool
    changed_count: int
    written: List[str] = field(default_factory=list)

    def to_dict(self):
        return {"hasChanges": self.has_changes, "changedCount": self.changed_count}


class FileSynchronizer:
    def __init__(self, store: FileStore, executor: RemoteExecutor, registry=None):
        self.store = store
        self.executor = executor
        self.registry = registry

    async def _write_all(self, project_id: str, files: List[FileRecord]) -> List[str]:
        """Write every file, attempting all of them before reporting failures."""
        written, failed = [], []
        for record in files:
            try:
                await self.executor.write_file(project_id, record.path, record.content)
                written.append(record.path)
            except (ExecFailure, ValueError) as e:
                log("SYNC", f"Failed to write {record.path}: {e}", project_id=project_id)
                failed.append(record.path)

        record_files_synced(len(written))
        if failed:
            raise SyncFailure(project_id, failed, written=len(written))
        return written

    async def sync_all(self, project_id: str) -> SyncResult:
        files = await self.store.list_files(project_id)
        log("SYNC", f"Full sync of {len(files)} file(s)", project_id=project_id)
        written = await self._write_all(project_id, files)
        return SyncResult(has_changes=bool(written), changed_count=len(written), written=written)

    async def sync_smart(self, project_id: str) -> SyncResult:
        """Write only files whose content hash differs from the sandbox copy."""
        files = await self.store.list_files(project_id)
        if not files:
            return SyncResult(has_changes=False, changed_count=0)

        remote = await self.executor.file_digests(project_id, [f.path for f in files])
        changed = [f for f in files if remote.get(f.path) != f.content_hash]

        if not changed:
            log("SYNC", "Sandbox already up to date", project_id=project_id)
            return SyncResult(has_changes=False, changed_count=0)

        log("SYNC", f"{len(changed)}/{len(files)} file(s) changed", project_id=project_id)
        written = await self._write_all(project_id, changed)
        return SyncResult(has_changes=True, changed_count=len(written), written=written)

    async def push_file(self, project_id: str, path: str, content: str, registry: Optional[object] = None) -> None:
        """Write one editor-pushed file and record it for subscribers."""
        await self.executor.write_file(project_id, path, content)
        record_files_synced(1)
        registry = registry or self.registry
        if registry is not None:
            await registry.record_file(project_id, path, content)
