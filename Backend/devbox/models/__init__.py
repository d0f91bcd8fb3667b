# devbox/models/__init__.py
from devbox.models.project_file import ProjectFile

__all__ = ["ProjectFile"]
