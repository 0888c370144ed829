"""
Sheet source API routes.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import structlog

from models.source import (
    SheetSourceCreate,
    SheetSourceUpdate,
    SheetSourceResponse,
)
from services.source_service import get_source_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/workspaces/{workspace_id}/sources",
    tags=["sources"]
)


def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


@router.get("", response_model=list[SheetSourceResponse])
async def list_sources(workspace_id: str):
    """List the sources of a workspace with their last-run metadata."""
    try:
        return get_source_service().list_sources(workspace_id)
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=SheetSourceResponse, status_code=201)
async def create_source(workspace_id: str, data: SheetSourceCreate):
    """
    Register a spreadsheet source.

    Raises:
        422: Spreadsheet reference is neither an id nor a sheet URL
    """
    try:
        return get_source_service().create(workspace_id, data)
    except Exception as e:
        return handle_error(e)


@router.get("/{source_id}", response_model=SheetSourceResponse)
async def get_source(workspace_id: str, source_id: str):
    """
    Get a single source.

    Raises:
        404: Source not found
    """
    try:
        return get_source_service().get_by_id(workspace_id, source_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/{source_id}", response_model=SheetSourceResponse)
async def update_source(workspace_id: str, source_id: str, data: SheetSourceUpdate):
    """
    Update name, location, sheet name or active flag.

    Raises:
        404: Source not found
        422: Spreadsheet reference invalid
    """
    try:
        return get_source_service().update(workspace_id, source_id, data)
    except Exception as e:
        return handle_error(e)
