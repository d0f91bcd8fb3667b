# devbox/lib/monitoring.py
from fastapi import FastAPI
from prometheus_client.registry import CollectorRegistry as Registry
from prometheus_client import Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator
from devbox.core.logging import log

# Separate registry so tests can build many apps in one process
registry = Registry()

active_subscribers = Gauge(
    'devbox_active_subscribers',
    'Number of connected status subscribers',
    registry=registry
)

tracked_projects = Gauge(
    'devbox_tracked_projects',
    'Number of projects with an in-memory status record',
    registry=registry
)

sandbox_operations = Counter(
    'devbox_sandbox_operations_total',
    'Sandbox lifecycle operations by outcome',
    ['operation', 'outcome'],
    registry=registry
)

files_synced = Counter(
    'devbox_files_synced_total',
    'Files written into sandboxes by sync',
    registry=registry
)


def set_active_subscribers(n: int):
    active_subscribers.set(n)


def set_tracked_projects(n: int):
    tracked_projects.set(n)


def record_operation(operation: str, outcome: str):
    sandbox_operations.labels(operation=operation, outcome=outcome).inc()


def record_files_synced(count: int):
    if count:
        files_synced.inc(count)


def register_monitoring(app: FastAPI):
    """Registers Prometheus monitoring on the FastAPI app and exposes /metrics."""
    instrumentator = Instrumentator(
        excluded_handlers=["/metrics"],
        registry=registry
    ).instrument(app)

    instrumentator.expose(app, include_in_schema=False, should_gzip=True)

    log("MONITORING", "Prometheus instrumentation registered at /metrics.")
