"""
Order API routes.

Manual status edits lock the status against sync until the override is
cleared.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import structlog

from models.order import OrderResponse, OrderStatusUpdate
from services.order_service import get_order_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/workspaces/{workspace_id}/orders",
    tags=["orders"]
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


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(workspace_id: str, order_id: str):
    """
    Get a single order.

    Raises:
        404: Order not found
    """
    try:
        return get_order_service().get_by_id(workspace_id, order_id)
    except Exception as e:
        return handle_error(e)


@router.put("/{order_id}/status", response_model=OrderResponse)
async def set_order_status(workspace_id: str, order_id: str, data: OrderStatusUpdate):
    """
    Set the status by hand.

    Accepts canonical statuses and custom labels. Sync will not change the
    status again until the override is cleared.
    """
    try:
        return get_order_service().set_status_manually(workspace_id, order_id, data)
    except Exception as e:
        return handle_error(e)


@router.delete("/{order_id}/status-override", response_model=OrderResponse)
async def clear_status_override(workspace_id: str, order_id: str):
    """Let the next sync overwrite the status again."""
    try:
        return get_order_service().clear_manual_override(workspace_id, order_id)
    except Exception as e:
        return handle_error(e)
