# devbox/sandbox/kube.py
"""
Kubernetes boundary.

Thin async wrapper over the official (synchronous) kubernetes client. Every
call is offloaded with asyncio.to_thread and every backend failure is mapped
into the devbox error taxonomy by translate_api_error, so nothing above this
module ever sees an ApiException.
"""
import asyncio
import json
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream as k8s_stream
from kubernetes.stream.ws_client import ERROR_CHANNEL

from devbox.core.config import settings
from devbox.core.exceptions import (
    BackendError,
    ConflictError,
    DevboxError,
    NotFoundError,
)
from devbox.core.logging import log


def translate_api_error(exc: BaseException, kind: str = "resource", name: str = "") -> DevboxError:
    """
    Map any backend failure into the error taxonomy.

    404 -> NotFoundError, 409 -> ConflictError, everything else -> BackendError.
    """
    if isinstance(exc, DevboxError):
        return exc
    if isinstance(exc, ApiException):
        if exc.status == 404:
            return NotFoundError(kind, name)
        if exc.status == 409:
            return ConflictError(kind, name)
        message = _api_error_message(exc)
        return BackendError(
            f"Kubernetes API error on {kind} {name}: {message}",
            status=exc.status,
            reason=exc.reason,
        )
    return BackendError(f"Kubernetes backend unreachable ({kind} {name}): {exc!r}")


def _api_error_message(exc: ApiException) -> str:
    try:
        body = json.loads(exc.body or "{}")
        return body.get("message") or exc.reason or str(exc.status)
    except (TypeError, ValueError):
        return exc.reason or str(exc.status)


@dataclass
class ExecResult:
    output: str
    success: bool
    message: str = ""
    exit_code: Optional[int] = None


def parse_exec_status(raw: str) -> ExecResult:
    """Parse the exec error channel payload (a metav1.Status document)."""
    if not raw:
        return ExecResult(output="", success=True)
    try:
        status = json.loads(raw)
    except ValueError:
        return ExecResult(output="", success=False, message=raw.strip())

    if status.get("status") == "Success":
        return ExecResult(output="", success=True)

    exit_code = None
    for cause in (status.get("details") or {}).get("causes") or []:
        if cause.get("reason") == "ExitCode":
            try:
                exit_code = int(cause.get("message"))
            except (TypeError, ValueError):
                pass
    return ExecResult(
        output="",
        success=False,
        message=status.get("message") or status.get("reason") or "command failed",
        exit_code=exit_code,
    )


class KubeBackend:
    """Async facade over CoreV1Api / NetworkingV1Api for one namespace."""

    def __init__(
        self,
        namespace: Optional[str] = None,
        core_api: Optional[client.CoreV1Api] = None,
        networking_api: Optional[client.NetworkingV1Api] = None,
    ) -> None:
        self.namespace = namespace or settings.kubernetes.namespace
        self._core = core_api
        self._networking = networking_api
        self._init_lock = threading.Lock()

    # =========================================================================
    # CLIENT SETUP
    # =========================================================================

    def _ensure_clients(self) -> None:
        if self._core is not None and self._networking is not None:
            return
        with self._init_lock:
            if self._core is not None and self._networking is not None:
                return
            if settings.kubernetes.in_cluster or settings.kubernetes.is_production:
                try:
                    config.load_incluster_config()
                    log("K8S", "Loaded in-cluster Kubernetes configuration")
                except config.ConfigException:
                    config.load_kube_config()
                    log("K8S", "Loaded kubeconfig from default location")
            else:
                try:
                    config.load_kube_config()
                    log("K8S", "Loaded kubeconfig from default location")
                except config.ConfigException:
                    config.load_incluster_config()
                    log("K8S", "Loaded in-cluster Kubernetes configuration")
            self._core = self._core or client.CoreV1Api()
            self._networking = self._networking or client.NetworkingV1Api()

    @property
    def core(self) -> client.CoreV1Api:
        self._ensure_clients()
        return self._core

    @property
    def networking(self) -> client.NetworkingV1Api:
        self._ensure_clients()
        return self._networking

    async def _call(self, kind: str, name: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        def run():
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                raise translate_api_error(e, kind, name) from e

        return await asyncio.to_thread(run)

    # =========================================================================
    # PODS
    # =========================================================================

    async def read_pod(self, name: str) -> client.V1Pod:
        return await self._call("pod", name, lambda: self.core.read_namespaced_pod(name=name, namespace=self.namespace))

    async def create_pod(self, body: client.V1Pod) -> client.V1Pod:
        name = body.metadata.name
        log("K8S", f"Creating pod {name}")
        return await self._call("pod", name, lambda: self.core.create_namespaced_pod(namespace=self.namespace, body=body))

    async def delete_pod(self, name: str) -> None:
        log("K8S", f"Deleting pod {name}")
        await self._call("pod", name, lambda: self.core.delete_namespaced_pod(name=name, namespace=self.namespace))

    async def read_pod_logs(self, name: str, container: str, tail_lines: int) -> str:
        return await self._call(
            "pod", name,
            lambda: self.core.read_namespaced_pod_log(
                name=name, namespace=self.namespace, container=container, tail_lines=tail_lines,
            ),
        )

    async def exec_in_pod(self, name: str, container: str, command: List[str]) -> ExecResult:
        """Run a command in a pod container, returning combined output and exit status."""

        def run() -> ExecResult:
            ws = k8s_stream(
                self.core.connect_get_namespaced_pod_exec,
                name,
                self.namespace,
                container=container,
                command=command,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
            try:
                ws.run_forever()
                output = ws.read_all() or ""
                result = parse_exec_status(ws.read_channel(ERROR_CHANNEL))
            finally:
                ws.close()
            result.output = output
            return result

        return await self._call("pod", name, run)

    # =========================================================================
    # SERVICES
    # =========================================================================

    async def read_service(self, name: str) -> client.V1Service:
        return await self._call("service", name, lambda: self.core.read_namespaced_service(name=name, namespace=self.namespace))

    async def create_service(self, body: client.V1Service) -> client.V1Service:
        name = body.metadata.name
        log("K8S", f"Creating service {name}")
        return await self._call("service", name, lambda: self.core.create_namespaced_service(namespace=self.namespace, body=body))

    async def delete_service(self, name: str) -> None:
        log("K8S", f"Deleting service {name}")
        await self._call("service", name, lambda: self.core.delete_namespaced_service(name=name, namespace=self.namespace))

    # =========================================================================
    # CONFIG MAPS
    # =========================================================================

    async def read_config_map(self, name: str) -> client.V1ConfigMap:
        return await self._call("configmap", name, lambda: self.core.read_namespaced_config_map(name=name, namespace=self.namespace))

    async def create_config_map(self, body: client.V1ConfigMap) -> client.V1ConfigMap:
        name = body.metadata.name
        log("K8S", f"Creating configmap {name}")
        return await self._call("configmap", name, lambda: self.core.create_namespaced_config_map(namespace=self.namespace, body=body))

    async def delete_config_map(self, name: str) -> None:
        log("K8S", f"Deleting configmap {name}")
        await self._call("configmap", name, lambda: self.core.delete_namespaced_config_map(name=name, namespace=self.namespace))

    # =========================================================================
    # INGRESSES
    # =========================================================================

    async def read_ingress(self, name: str) -> client.V1Ingress:
        return await self._call("ingress", name, lambda: self.networking.read_namespaced_ingress(name=name, namespace=self.namespace))

    async def create_ingress(self, body: client.V1Ingress) -> client.V1Ingress:
        name = body.metadata.name
        log("K8S", f"Creating ingress {name}")
        return await self._call("ingress", name, lambda: self.networking.create_namespaced_ingress(namespace=self.namespace, body=body))

    async def delete_ingress(self, name: str) -> None:
        log("K8S", f"Deleting ingress {name}")
        await self._call("ingress", name, lambda: self.networking.delete_namespaced_ingress(name=name, namespace=self.namespace))

    # =========================================================================
    # CLUSTER
    # =========================================================================

    async def ping(self) -> Dict[str, Any]:
        """Check cluster reachability."""
        try:
            version = await self._call("cluster", self.namespace, lambda: client.VersionApi(self.core.api_client).get_code())
            return {"reachable": True, "version": getattr(version, "git_version", None)}
        except DevboxError as e:
            log("K8S", f"Cluster unreachable: {e.message}")
            return {"reachable": False, "error": e.message}
