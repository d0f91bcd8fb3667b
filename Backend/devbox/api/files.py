# devbox/api/files.py
"""
Editor file push route.
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from devbox.api.containers import to_http_error
from devbox.sandbox import get_orchestrator

router = APIRouter(prefix="/api/files", tags=["Files"])


class FilePushRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId", min_length=1)
    filename: str = Field(min_length=1)
    content: str = ""


@router.post("/sync")
async def push_file(data: FilePushRequest):
    """Store one file and write it into the sandbox if it is running."""
    try:
        result = await get_orchestrator().push_file(data.project_id, data.filename, data.content)
        return {"success": True, "data": result}
    except ValueError as e:
        # Path outside the project workspace
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise to_http_error(e, "file push")
