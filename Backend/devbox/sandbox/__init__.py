# devbox/sandbox/__init__.py
"""
devbox - Kubernetes Sandbox Orchestrator
One pod per project, file sync, in-sandbox restarts and live status events
"""

from .orchestrator import SandboxOrchestrator
from .sandbox_config import SandboxConfig
from .health_monitor import HealthMonitor
from .log_streamer import LogStreamer
from .preview_manager import PreviewManager
from .status import StatusRegistry

# Lazy initialization - only create when first accessed
_orchestrator_instance = None


def get_orchestrator() -> SandboxOrchestrator:
    """Get the orchestrator singleton (lazy initialization)."""
    global _orchestrator_instance
    if _orchestrator_instance is None:
        from devbox.lib.file_store import BeanieFileStore
        from .kube import KubeBackend

        _orchestrator_instance = SandboxOrchestrator(KubeBackend(), BeanieFileStore())
    return _orchestrator_instance


def set_orchestrator(orchestrator: SandboxOrchestrator) -> None:
    """Replace the singleton (tests, embedding)."""
    global _orchestrator_instance
    _orchestrator_instance = orchestrator


__all__ = [
    "SandboxOrchestrator",
    "SandboxConfig",
    "HealthMonitor",
    "LogStreamer",
    "PreviewManager",
    "StatusRegistry",
    "get_orchestrator",
    "set_orchestrator",
]
