# devbox/lib/file_store.py
"""
File store collaborator.

The orchestrator only reads project files through the FileStore protocol.
BeanieFileStore is the MongoDB-backed implementation used by the service.
"""
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from devbox.core.exceptions import StoreUnavailable
from devbox.core.logging import log
from devbox import db


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class FileRecord:
    path: str
    content: str
    content_hash: str = field(default="")

    def __post_init__(self):
        if not self.content_hash:
            object.__setattr__(self, "content_hash", content_hash(self.content))


class FileStore(Protocol):
    async def list_files(self, project_id: str) -> List[FileRecord]: ...

    async def get_file(self, project_id: str, path: str) -> Optional[FileRecord]: ...

    async def save_file(self, project_id: str, path: str, content: str) -> FileRecord: ...

    async def delete_file(self, project_id: str, path: str) -> bool: ...


class BeanieFileStore:
    """FileStore over the project_files collection."""

    def _require_db(self):
        if not db.is_connected():
            raise StoreUnavailable(
                "File store is not connected",
                {"error": db.get_connection_error()},
            )

    async def list_files(self, project_id: str) -> List[FileRecord]:
        from devbox.models import ProjectFile

        self._require_db()
        docs = await ProjectFile.find(ProjectFile.project_id == project_id).sort("path").to_list()
        return [FileRecord(path=d.path, content=d.content) for d in docs]

    async def get_file(self, project_id: str, path: str) -> Optional[FileRecord]:
        from devbox.models import ProjectFile

        self._require_db()
        doc = await ProjectFile.find_one(ProjectFile.project_id == project_id, ProjectFile.path == path)
        return FileRecord(path=doc.path, content=doc.content) if doc else None

    async def save_file(self, project_id: str, path: str, content: str) -> FileRecord:
        from devbox.models import ProjectFile

        self._require_db()
        doc = await ProjectFile.find_one(ProjectFile.project_id == project_id, ProjectFile.path == path)
        if doc is None:
            doc = ProjectFile(project_id=project_id, path=path, content=content)
            await doc.insert()
        else:
            doc.content = content
            doc.updated_at = datetime.now(timezone.utc)
            await doc.save()
        log("STORE", f"Saved {path}", project_id=project_id)
        return FileRecord(path=path, content=content)

    async def delete_file(self, project_id: str, path: str) -> bool:
        from devbox.models import ProjectFile

        self._require_db()
        doc = await ProjectFile.find_one(ProjectFile.project_id == project_id, ProjectFile.path == path)
        if doc is None:
            return False
        await doc.delete()
        return True
