"""
Health Monitor
Waits for a sandbox pod to reach Running and optionally probes its HTTP endpoint.
"""

import asyncio
import time
from typing import Optional

import httpx

from devbox.core.config import settings
from devbox.core.exceptions import StartupTimeout
from devbox.core.logging import log
from devbox.sandbox.endpoints import endpoint_url


class HealthMonitor:
    """Readiness checks for sandbox pods, polled through the resource controller."""

    def __init__(self, resources, clock=time.monotonic):
        self.resources = resources
        self._clock = clock

    async def wait_for_running(
        self,
        project_id: str,
        timeout: Optional[float] = None,
        poll: Optional[float] = None,
    ) -> str:
        """
        Poll pod phase until Running.

        Raises StartupTimeout with the last observed phase when the bound is hit.
        """
        timeout = settings.sandbox.ready_timeout_seconds if timeout is None else timeout
        poll = settings.sandbox.ready_poll_seconds if poll is None else poll
        deadline = self._clock() + timeout
        phase = None

        while True:
            state = await self.resources.get_sandbox_status(project_id)
            phase = state.phase
            if phase == "Running":
                log("HEALTH", "Pod is Running", project_id=project_id)
                return phase
            if self._clock() >= deadline:
                raise StartupTimeout(project_id, timeout, phase)
            log("HEALTH", f"Pod phase {phase}, waiting", project_id=project_id)
            await asyncio.sleep(poll)

    async def probe_http(self, project_id: str, retries: int = 5, delay: float = 2.0) -> bool:
        """GET the project's endpoint until it answers. Any HTTP status counts as up."""
        url = endpoint_url(project_id)
        for attempt in range(retries):
            try:
                async with httpx.AsyncClient(timeout=3.0) as client:
                    response = await client.get(url)
                    log("HEALTH", f"{url} answered {response.status_code}", project_id=project_id)
                    return True
            except httpx.ConnectError:
                log("HEALTH", f"Attempt {attempt+1}/{retries}: Connection refused to {url}", project_id=project_id)
            except httpx.TimeoutException:
                log("HEALTH", f"Attempt {attempt+1}/{retries}: Timeout connecting to {url}", project_id=project_id)
            except httpx.HTTPError as e:
                log("HEALTH", f"Attempt {attempt+1}/{retries}: Error: {e}", project_id=project_id)

            if attempt < retries - 1:
                await asyncio.sleep(delay)

        return False
