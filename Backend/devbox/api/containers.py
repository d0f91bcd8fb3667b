# devbox/api/containers.py
"""
Container lifecycle routes.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from devbox.core.exceptions import DevboxError
from devbox.core.logging import log
from devbox.sandbox import get_orchestrator
from devbox.sandbox.log_streamer import DEFAULT_TAIL_LINES

router = APIRouter(prefix="/api/containers", tags=["Containers"])


class ContainerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId", min_length=1)
    runtime: Optional[str] = None


def to_http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, DevboxError):
        log("API", f"{action} failed: {e.message}")
        return HTTPException(status_code=e.status_code, detail=e.message)
    log("API", f"{action} failed unexpectedly: {e!r}")
    return HTTPException(status_code=500, detail=str(e))


@router.post("/start")
async def start_container(data: ContainerRequest):
    """Create (or reuse) the project's sandbox and begin the post-start sync."""
    try:
        result = await get_orchestrator().start(data.project_id, data.runtime or "node")
        return {"success": True, "data": {"projectId": data.project_id, **result}}
    except Exception as e:
        raise to_http_error(e, "start")


@router.post("/stop")
async def stop_container(data: ContainerRequest):
    try:
        result = await get_orchestrator().stop(data.project_id)
        return {"success": True, "data": {"projectId": data.project_id, **result}}
    except Exception as e:
        raise to_http_error(e, "stop")


@router.post("/restart")
async def restart_container(data: ContainerRequest):
    try:
        result = await get_orchestrator().restart(data.project_id, data.runtime)
        return {"success": True, "data": {"projectId": data.project_id, **result}}
    except Exception as e:
        raise to_http_error(e, "restart")


@router.post("/sync")
async def sync_container(data: ContainerRequest):
    """Push changed files into the running sandbox."""
    try:
        result = await get_orchestrator().sync(data.project_id)
        return {"success": True, "data": {"projectId": data.project_id, **result}}
    except Exception as e:
        raise to_http_error(e, "sync")


@router.post("/cleanup")
async def cleanup_container(data: ContainerRequest):
    try:
        result = await get_orchestrator().cleanup(data.project_id)
        return {"success": True, "data": result}
    except Exception as e:
        raise to_http_error(e, "cleanup")


@router.get("/status")
async def container_status(project_id: str = Query(..., alias="projectId", min_length=1)):
    try:
        result = await get_orchestrator().status(project_id)
        return {"success": True, "data": {"projectId": project_id, **result}}
    except Exception as e:
        raise to_http_error(e, "status")


@router.get("/logs")
async def container_logs(
    project_id: str = Query(..., alias="projectId", min_length=1),
    tail_lines: int = Query(DEFAULT_TAIL_LINES, alias="tailLines", ge=1),
):
    try:
        logs = await get_orchestrator().logs(project_id, tail_lines)
        return {"success": True, "data": {"projectId": project_id, "logs": logs}}
    except Exception as e:
        raise to_http_error(e, "logs")


@router.get("/url")
async def container_url(project_id: str = Query(..., alias="projectId", min_length=1)):
    return {"success": True, "data": {"projectId": project_id, "url": get_orchestrator().url(project_id)}}
