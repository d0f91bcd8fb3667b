"""
Log Streamer
Tail of the code-runner container's output.
"""

from typing import Optional

from devbox.core.config import settings
from devbox.sandbox.kube import KubeBackend
from devbox.sandbox.sandbox_config import pod_name

DEFAULT_TAIL_LINES = 100
MAX_TAIL_LINES = 5000


class LogStreamer:
    def __init__(self, backend: KubeBackend, container: Optional[str] = None):
        self.backend = backend
        self.container = container or settings.sandbox.container_name

    async def tail(self, project_id: str, tail_lines: int = DEFAULT_TAIL_LINES) -> str:
        tail_lines = max(1, min(int(tail_lines or DEFAULT_TAIL_LINES), MAX_TAIL_LINES))
        return await self.backend.read_pod_logs(pod_name(project_id), self.container, tail_lines) or ""
