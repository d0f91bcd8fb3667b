# devbox/core/logging.py
import os
import sys
from datetime import datetime
from typing import Any, Optional


# Scopes shown at INFO level. Everything else is gated behind DEVBOX_DEBUG.
INFO_SCOPES = {
    "SANDBOX",   # Lifecycle operations
    "SYNC",      # File synchronization
    "RESTART",   # In-sandbox app restarts
    "STATUS",    # Status transitions
    "API",       # Route-level failures
    "STORE",     # File store connectivity
}

# DEBUG-only scopes (hidden by default)
DEBUG_SCOPES = {
    "K8S",
    "EXEC",
    "HEALTH",
    "PREVIEW",
    "MONITORING",
}

DEBUG_MODE = os.getenv("DEVBOX_DEBUG", "false").lower() == "true"


def log(scope: str, message: str, data: Any = None, project_id: Optional[str] = None) -> None:
    """
    Unified logging function for devbox.

    Only INFO_SCOPES are shown by default.
    Set DEVBOX_DEBUG=true to see all scopes.
    """
    if not DEBUG_MODE and scope not in INFO_SCOPES:
        return

    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = f"[{timestamp}] [{scope}]"

    if project_id:
        prefix += f" [{project_id[:8]}]"

    print(f"{prefix} {message}")

    if data:
        print(f"  Data: {data}")

    sys.stdout.flush()


def log_section(scope: str, title: str, project_id: Optional[str] = None) -> None:
    """
    Log a section header with visual separator.
    """
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"\n{'='*60}")
    if project_id:
        print(f"[{timestamp}] [{scope}] [{project_id[:8]}] {title}")
    else:
        print(f"[{timestamp}] [{scope}] {title}")
    print(f"{'='*60}")
    sys.stdout.flush()
