# devbox/sandbox/resources.py
"""
Resource Lifecycle Controller

Idempotent get-or-create and tolerant delete for the four per-project
backend resources: the sandbox pod, its service, its ingress (production
profile only) and the startup-script config map.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from kubernetes import client

from devbox.core.config import settings
from devbox.core.exceptions import ConflictError, DevboxError, NotFoundError
from devbox.core.logging import log
from devbox.sandbox.endpoints import host_for, port_for
from devbox.sandbox.kube import KubeBackend
from devbox.sandbox.sandbox_config import (
    SandboxConfig,
    config_map_name,
    image_for,
    ingress_name,
    labels_for,
    normalize_runtime,
    pod_name,
    service_name,
)
from devbox.sandbox.startup_script import generate_startup_script


LIVE_PHASES = ("Pending", "Running")


@dataclass
class SandboxHandle:
    name: str
    phase: str
    runtime: str
    created: bool = False
    raw: Any = None


@dataclass
class SandboxState:
    phase: str
    logical: str
    message: str = ""
    ready: bool = False
    runtime: Optional[str] = None


def pod_phase(pod) -> str:
    return (getattr(pod.status, "phase", None) if pod.status else None) or "Unknown"


def is_terminating(pod) -> bool:
    return bool(pod.metadata and pod.metadata.deletion_timestamp)


def pod_runtime(pod) -> Optional[str]:
    labels = (pod.metadata.labels or {}) if pod.metadata else {}
    return labels.get("runtime")


def _is_ready(pod) -> bool:
    for condition in (pod.status.conditions or []) if pod.status else []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


def describe_pod(pod) -> Tuple[str, str]:
    """Map a pod to (logical status, human message)."""
    phase = pod_phase(pod)

    if phase == "Pending":
        status, message = "creating", "Container is starting"
    elif phase == "Running":
        if _is_ready(pod):
            status, message = "running", "Container is running"
        else:
            status, message = "creating", "Container is running but not ready"
    elif phase in ("Failed", "Unknown"):
        status, message = "error", f"Container is in {phase} state"
    else:
        status, message = "stopped", f"Container is {phase}"

    container_statuses = (pod.status.container_statuses or []) if pod.status else []
    if container_statuses:
        state = container_statuses[0].state
        waiting = getattr(state, "waiting", None) if state else None
        if waiting is not None and waiting.reason:
            message = f"{message}: {waiting.reason}"

    return status, message


# =============================================================================
# BODY BUILDERS
# =============================================================================

def build_config_map(project_id: str, runtime: str) -> client.V1ConfigMap:
    return client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=client.V1ObjectMeta(name=config_map_name(project_id), labels=labels_for(project_id)),
        data={"startup.sh": generate_startup_script(runtime)},
    )


def build_pod(project_id: str, runtime: str, sandbox_config: Optional[SandboxConfig] = None) -> client.V1Pod:
    cfg = sandbox_config or SandboxConfig.from_settings()
    runtime = normalize_runtime(runtime)

    env = {
        "PROJECT_ID": project_id,
        **cfg.env,
        "PORT": str(cfg.app_port),
        "HOST": "0.0.0.0",
    }

    container = client.V1Container(
        name=cfg.container_name,
        image=image_for(runtime),
        command=["sh", cfg.script_path],
        working_dir=cfg.working_dir,
        ports=[client.V1ContainerPort(container_port=cfg.app_port, name="http")],
        env=[client.V1EnvVar(name=k, value=v) for k, v in env.items()],
        volume_mounts=[
            client.V1VolumeMount(name="workspace", mount_path=cfg.working_dir),
            client.V1VolumeMount(name="startup-script", mount_path=cfg.scripts_dir, read_only=True),
        ],
        resources=client.V1ResourceRequirements(
            requests={"memory": cfg.memory_request, "cpu": cfg.cpu_request},
            limits={"memory": cfg.memory_limit, "cpu": cfg.cpu_limit},
        ),
    )

    spec = client.V1PodSpec(
        containers=[container],
        restart_policy=cfg.restart_policy,
        volumes=[
            client.V1Volume(name="workspace", empty_dir=client.V1EmptyDirVolumeSource()),
            client.V1Volume(
                name="startup-script",
                config_map=client.V1ConfigMapVolumeSource(
                    name=config_map_name(project_id),
                    default_mode=0o755,
                ),
            ),
        ],
    )

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(name=pod_name(project_id), labels=labels_for(project_id, runtime)),
        spec=spec,
    )


def build_service(project_id: str, production: Optional[bool] = None) -> client.V1Service:
    if production is None:
        production = settings.kubernetes.is_production
    app_port = settings.sandbox.app_port

    port = client.V1ServicePort(name="http", port=app_port, target_port=app_port, protocol="TCP")
    if production:
        service_type = "ClusterIP"
    else:
        service_type = "NodePort"
        port.node_port = port_for(project_id)

    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(name=service_name(project_id), labels=labels_for(project_id)),
        spec=client.V1ServiceSpec(
            type=service_type,
            selector={"app": "code-editor", "projectId": labels_for(project_id)["projectId"]},
            ports=[port],
        ),
    )


def build_ingress(project_id: str) -> client.V1Ingress:
    backend = client.V1IngressBackend(
        service=client.V1IngressServiceBackend(
            name=service_name(project_id),
            port=client.V1ServiceBackendPort(number=settings.sandbox.app_port),
        )
    )
    rule = client.V1IngressRule(
        host=host_for(project_id),
        http=client.V1HTTPIngressRuleValue(
            paths=[client.V1HTTPIngressPath(path="/", path_type="Prefix", backend=backend)]
        ),
    )
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=client.V1ObjectMeta(
            name=ingress_name(project_id),
            labels=labels_for(project_id),
            annotations={"nginx.ingress.kubernetes.io/proxy-read-timeout": "3600"},
        ),
        spec=client.V1IngressSpec(ingress_class_name=settings.endpoints.ingress_class, rules=[rule]),
    )


# =============================================================================
# CONTROLLER
# =============================================================================

class ResourceController:
    def __init__(self, backend: KubeBackend, sandbox_config: Optional[SandboxConfig] = None):
        self.backend = backend
        self.sandbox_config = sandbox_config or SandboxConfig.from_settings()

    async def _get_or_create(self, read, create, body, kind: str):
        """Read, else create; a Conflict on create means someone else won."""
        try:
            return await read(), False
        except NotFoundError:
            pass
        try:
            return await create(body), True
        except ConflictError:
            log("K8S", f"{kind} {body.metadata.name} created concurrently, using existing")
            return await read(), False

    async def _delete(self, delete, name: str) -> bool:
        try:
            await delete(name)
            return True
        except NotFoundError:
            return False

    # -------------------------------------------------------------------------
    # Sandbox
    # -------------------------------------------------------------------------

    async def ensure_sandbox(self, project_id: str, runtime: str = None) -> SandboxHandle:
        """
        Get or create the project's sandbox pod.

        A live pod (Pending/Running) is returned untouched. A terminal pod is
        deleted and recreated once.
        """
        runtime = normalize_runtime(runtime or settings.sandbox.default_runtime)
        name = pod_name(project_id)

        try:
            pod = await self.backend.read_pod(name)
        except NotFoundError:
            pod = None

        if pod is not None and is_terminating(pod):
            log("SANDBOX", f"Pod {name} is terminating, waiting for it to go away", project_id=project_id)
            await self._wait_gone(name)
            pod = None

        if pod is not None:
            phase = pod_phase(pod)
            if phase in LIVE_PHASES:
                log("SANDBOX", f"Reusing pod {name} ({phase})", project_id=project_id)
                return SandboxHandle(name, phase, pod_runtime(pod) or runtime, created=False, raw=pod)

            log("SANDBOX", f"Pod {name} is {phase}, recreating", project_id=project_id)
            await self._delete(self.backend.delete_pod, name)
            await asyncio.sleep(settings.sandbox.recreate_grace_seconds)

        await self.ensure_startup_config(project_id, runtime)

        body = build_pod(project_id, runtime, self.sandbox_config)
        try:
            pod = await self.backend.create_pod(body)
            created = True
            log("SANDBOX", f"Created pod {name} ({runtime})", project_id=project_id)
        except ConflictError:
            log("SANDBOX", f"Pod {name} already exists, using existing", project_id=project_id)
            pod = await self.backend.read_pod(name)
            created = False

        return SandboxHandle(name, pod_phase(pod), pod_runtime(pod) or runtime, created=created, raw=pod)

    async def _wait_gone(self, name: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.sandbox.ready_timeout_seconds
        while loop.time() < deadline:
            try:
                await self.backend.read_pod(name)
            except NotFoundError:
                return
            await asyncio.sleep(settings.sandbox.ready_poll_seconds)

    async def delete_sandbox(self, project_id: str) -> bool:
        deleted = await self._delete(self.backend.delete_pod, pod_name(project_id))
        log("SANDBOX", f"Pod {'deleted' if deleted else 'already absent'}", project_id=project_id)
        return deleted

    async def get_sandbox_status(self, project_id: str) -> SandboxState:
        try:
            pod = await self.backend.read_pod(pod_name(project_id))
        except NotFoundError:
            return SandboxState(phase="NotFound", logical="stopped", message="Container not found")

        if is_terminating(pod):
            return SandboxState(phase=pod_phase(pod), logical="stopped", message="Container is terminating")

        logical, message = describe_pod(pod)
        return SandboxState(
            phase=pod_phase(pod),
            logical=logical,
            message=message,
            ready=_is_ready(pod),
            runtime=pod_runtime(pod),
        )

    # -------------------------------------------------------------------------
    # Network endpoint / public route
    # -------------------------------------------------------------------------

    async def ensure_network_endpoint(self, project_id: str):
        service, created = await self._get_or_create(
            lambda: self.backend.read_service(service_name(project_id)),
            self.backend.create_service,
            build_service(project_id),
            "service",
        )
        if created:
            log("SANDBOX", f"Created service {service_name(project_id)}", project_id=project_id)
        return service

    async def delete_network_endpoint(self, project_id: str) -> bool:
        return await self._delete(self.backend.delete_service, service_name(project_id))

    async def ensure_public_route(self, project_id: str):
        if not settings.kubernetes.is_production:
            return None
        ingress, created = await self._get_or_create(
            lambda: self.backend.read_ingress(ingress_name(project_id)),
            self.backend.create_ingress,
            build_ingress(project_id),
            "ingress",
        )
        if created:
            log("SANDBOX", f"Created ingress for {host_for(project_id)}", project_id=project_id)
        return ingress

    async def delete_public_route(self, project_id: str) -> bool:
        return await self._delete(self.backend.delete_ingress, ingress_name(project_id))

    # -------------------------------------------------------------------------
    # Startup config
    # -------------------------------------------------------------------------

    async def ensure_startup_config(self, project_id: str, runtime: str = None):
        # Never updated in place; a stale script only changes on recreate.
        config_map, _ = await self._get_or_create(
            lambda: self.backend.read_config_map(config_map_name(project_id)),
            self.backend.create_config_map,
            build_config_map(project_id, normalize_runtime(runtime)),
            "configmap",
        )
        return config_map

    async def delete_startup_config(self, project_id: str) -> bool:
        return await self._delete(self.backend.delete_config_map, config_map_name(project_id))

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    async def cleanup(self, project_id: str) -> Dict[str, Dict[str, Any]]:
        """Best-effort removal of every project resource. Never raises."""
        steps = [
            ("pod", self.delete_sandbox),
            ("service", self.delete_network_endpoint),
            ("configmap", self.delete_startup_config),
            ("ingress", self.delete_public_route),
        ]
        results: Dict[str, Dict[str, Any]] = {}
        for kind, step in steps:
            try:
                deleted = await step(project_id)
                results[kind] = {"deleted": deleted}
            except DevboxError as e:
                log("SANDBOX", f"Failed to delete {kind}: {e.message}", project_id=project_id)
                results[kind] = {"deleted": False, "error": e.message}
        return results
