# devbox/core/config.py
"""
Application configuration - single source of truth for all settings.
"""
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class KubernetesSettings:
    """Kubernetes backend configuration."""
    namespace: str = field(default_factory=lambda: os.getenv("DEVBOX_NAMESPACE", "default"))
    # "local" -> NodePort services + kubeconfig, "production" -> ClusterIP + Ingress + in-cluster config
    profile: str = field(default_factory=lambda: os.getenv("DEVBOX_PROFILE", "local"))
    in_cluster: bool = field(default_factory=lambda: _env_bool("DEVBOX_IN_CLUSTER"))

    @property
    def is_production(self) -> bool:
        return self.profile == "production"


@dataclass
class SandboxSettings:
    """Sandbox pod and timing configuration.

    The *_seconds values are fixed waits standing in for real readiness
    signals. Each is a candidate for replacement by polling.
    """
    container_name: str = "code-runner"
    working_dir: str = "/workspace"
    scripts_dir: str = "/scripts"
    app_port: int = 3000
    default_runtime: str = "node"
    npm_registry: str = field(default_factory=lambda: os.getenv("DEVBOX_NPM_REGISTRY", "official"))

    # Wait after deleting a failed pod before recreating it
    recreate_grace_seconds: float = 2.0
    # Wait after signalling the app process so the supervisor can relaunch it
    restart_grace_seconds: float = 3.0
    # Delay before the background post-start sequence begins
    post_start_delay_seconds: float = 1.0
    # Bound for the pod to reach Running during the post-start sequence
    ready_timeout_seconds: float = 120.0
    ready_poll_seconds: float = 2.0
    # Optional HTTP probe of the endpoint once files are synced
    http_probe: bool = field(default_factory=lambda: _env_bool("DEVBOX_HTTP_PROBE"))
    # Startup script: wait for project markers, then supervisor backoff
    startup_wait_seconds: int = 300
    supervisor_backoff_seconds: int = 2


@dataclass
class EndpointSettings:
    """Network endpoint allocation."""
    port_base: int = 30000
    port_range: int = 2768
    base_domain: str = field(default_factory=lambda: os.getenv("DEVBOX_BASE_DOMAIN", "preview.devbox.dev"))
    node_host: str = field(default_factory=lambda: os.getenv("DEVBOX_NODE_HOST", "localhost"))
    ingress_class: str = field(default_factory=lambda: os.getenv("DEVBOX_INGRESS_CLASS", "nginx"))


@dataclass
class StatusSettings:
    """In-memory status registry."""
    expiry_seconds: int = 24 * 60 * 60
    sweep_interval_seconds: int = 10 * 60


@dataclass
class DatabaseSettings:
    """File store (MongoDB) configuration."""
    mongodb_url: str = field(default_factory=lambda: os.getenv("MONGODB_URL", "mongodb://localhost:27017"))
    database_name: str = field(default_factory=lambda: os.getenv("MONGODB_DB", "devbox"))


@dataclass
class Settings:
    """Main application settings."""
    kubernetes: KubernetesSettings = field(default_factory=KubernetesSettings)
    sandbox: SandboxSettings = field(default_factory=SandboxSettings)
    endpoints: EndpointSettings = field(default_factory=EndpointSettings)
    status: StatusSettings = field(default_factory=StatusSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    port: int = field(default_factory=lambda: int(os.getenv("PORT", 8000)))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG"))
    cors_origins: List[str] = field(default_factory=lambda: (
        ["*"] if os.getenv("CORS_ORIGINS", "*") == "*" else os.getenv("CORS_ORIGINS", "").split(",")
    ))
    rate_limit: str = field(default_factory=lambda: os.getenv("RATE_LIMIT", "100/minute"))


# Singleton instance
settings = Settings()
