# devbox/models/project_file.py
from datetime import datetime, timezone

import pymongo
from beanie import Document, Indexed
from pydantic import Field


class ProjectFile(Document):
    """Authoritative copy of one project file."""
    project_id: Indexed(str)
    path: str
    content: str = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "project_files"
        indexes = [
            pymongo.IndexModel(
                [("project_id", pymongo.ASCENDING), ("path", pymongo.ASCENDING)],
                unique=True,
            ),
        ]
