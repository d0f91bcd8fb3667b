"""
Sandbox Configuration
Images, resources, resource naming and package registries for sandbox pods
"""

import hashlib
import re
from dataclasses import dataclass, field
from typing import Dict, List


RUNTIME_IMAGES: Dict[str, str] = {
    "node": "node:18-alpine",
    "python": "python:3.11-alpine",
    "java": "eclipse-temurin:17-jdk-alpine",
    "go": "golang:1.21-alpine",
    "php": "php:8.1-apache",
    "ruby": "ruby:3.1-alpine",
}

DEFAULT_RUNTIME = "node"


@dataclass(frozen=True)
class RegistryConfig:
    name: str
    url: str
    description: str
    location: str


NPM_REGISTRIES: List[RegistryConfig] = [
    RegistryConfig("taobao", "https://registry.npmmirror.com/", "npmmirror (Taobao) mirror", "china"),
    RegistryConfig("cnpm", "https://r.cnpmjs.org/", "CNPM mirror", "china"),
    RegistryConfig("tencent", "https://mirrors.cloud.tencent.com/npm/", "Tencent Cloud mirror", "china"),
    RegistryConfig("huawei", "https://repo.huaweicloud.com/repository/npm/", "Huawei Cloud mirror", "china"),
    RegistryConfig("official", "https://registry.npmjs.org/", "Official npm registry", "global"),
]


def get_registry(name: str) -> RegistryConfig:
    """Registry by name, falling back to the official one."""
    for registry in NPM_REGISTRIES:
        if registry.name == name:
            return registry
    return NPM_REGISTRIES[-1]


def normalize_runtime(runtime: str) -> str:
    runtime = (runtime or "").strip().lower()
    return runtime if runtime in RUNTIME_IMAGES else DEFAULT_RUNTIME


def image_for(runtime: str) -> str:
    return RUNTIME_IMAGES[normalize_runtime(runtime)]


# Room left for the longest prefix ("code-editor-ingress-") in a 63-char name
MAX_SLUG_LENGTH = 43


def safe_name(project_id: str) -> str:
    """
    Project id as a DNS-1123 label fragment.

    Ids that are already valid and short enough are used as-is. Anything that
    had to be rewritten or shortened gets a digest of the raw id appended, so
    distinct ids never share resources.
    """
    name = re.sub(r"[^a-z0-9-]", "-", project_id.lower()).strip("-")
    if name == project_id and len(name) <= MAX_SLUG_LENGTH:
        return name
    digest = hashlib.sha256(project_id.encode("utf-8")).hexdigest()[:8]
    name = name[:MAX_SLUG_LENGTH - len(digest) - 1].rstrip("-")
    return f"{name}-{digest}" if name else digest


def pod_name(project_id: str) -> str:
    return f"code-editor-{safe_name(project_id)}"


def service_name(project_id: str) -> str:
    return f"code-editor-service-{safe_name(project_id)}"


def ingress_name(project_id: str) -> str:
    return f"code-editor-ingress-{safe_name(project_id)}"


def config_map_name(project_id: str) -> str:
    return f"startup-script-{safe_name(project_id)}"


def labels_for(project_id: str, runtime: str = None) -> Dict[str, str]:
    labels = {"app": "code-editor", "projectId": safe_name(project_id)}
    if runtime:
        labels["runtime"] = normalize_runtime(runtime)
    return labels


@dataclass
class SandboxConfig:
    """Pod-level configuration for a sandbox"""

    # Resource requests/limits
    memory_request: str = "256Mi"
    cpu_request: str = "200m"
    memory_limit: str = "512Mi"
    cpu_limit: str = "500m"

    # Container layout
    app_port: int = 3000
    working_dir: str = "/workspace"
    scripts_dir: str = "/scripts"
    script_name: str = "startup.sh"
    container_name: str = "code-runner"
    restart_policy: str = "Always"

    # Environment variables
    env: Dict[str, str] = field(default_factory=lambda: {"NODE_ENV": "development"})

    @property
    def script_path(self) -> str:
        return f"{self.scripts_dir}/{self.script_name}"

    @classmethod
    def from_settings(cls) -> "SandboxConfig":
        from devbox.core.config import settings

        return cls(
            app_port=settings.sandbox.app_port,
            working_dir=settings.sandbox.working_dir,
            scripts_dir=settings.sandbox.scripts_dir,
            container_name=settings.sandbox.container_name,
        )
