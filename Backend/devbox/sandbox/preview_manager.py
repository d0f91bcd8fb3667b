"""
Preview Manager
Public preview URLs for sandboxes and preview-updated notifications.
"""

from typing import Dict

from devbox.core.logging import log
from devbox.sandbox.endpoints import endpoint_url


class PreviewManager:
    """Tracks which projects have a live preview and announces them."""

    def __init__(self, registry):
        self.registry = registry
        self.active_previews: Dict[str, str] = {}

    def preview_url(self, project_id: str) -> str:
        return endpoint_url(project_id)

    async def publish(self, project_id: str) -> str:
        url = self.preview_url(project_id)
        self.active_previews[project_id] = url
        log("PREVIEW", f"Preview ready: {url}", project_id=project_id)
        await self.registry.notify_preview(project_id, url)
        return url

    def stop_preview(self, project_id: str) -> bool:
        return self.active_previews.pop(project_id, None) is not None
