"""
Order service - reads and manual status edits on reconciled orders.

Any status written outside the sync must set status_modified_manually,
otherwise the next sync reverts it. This service is the one place that does
so.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from exceptions import DatabaseError, OrderNotFoundError
from models.order import OrderResponse, OrderStatusUpdate

logger = structlog.get_logger(__name__)


# Text columns the sync may leave NULL on older rows.
_TEXT_FIELDS = (
    "external_order_id", "client_name", "client_phone", "city",
    "address", "product", "notes",
)


class OrderService:
    """Service for order reads and manual status changes."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "orders"

    def _row_to_response(self, row: dict) -> OrderResponse:
        data = dict(row)
        for name in _TEXT_FIELDS:
            if data.get(name) is None:
                data[name] = ""
        data["tags"] = data.get("tags") or []
        data["raw_data"] = data.get("raw_data") or {}
        if data.get("quantity") is None:
            data["quantity"] = 1
        if data.get("price") is None:
            data["price"] = 0
        return OrderResponse(**data)

    def get_by_id(self, workspace_id: str, order_id: str) -> OrderResponse:
        """
        Get a single order of a workspace.

        Raises:
            OrderNotFoundError: If the order does not exist in this workspace
        """
        try:
            result = self.db.table(self.table).select("*").eq(
                "workspace_id", workspace_id
            ).eq("id", order_id).limit(1).execute()

        except Exception as e:
            logger.error("get_order_failed", order_id=order_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise OrderNotFoundError(order_id)

        return self._row_to_response(result.data[0])

    def _update(self, workspace_id: str, order_id: str, update_data: dict) -> OrderResponse:
        self.get_by_id(workspace_id, order_id)

        update_data["updated_at"] = datetime.now(timezone.utc).isoformat()

        try:
            result = self.db.table(self.table).update(update_data).eq(
                "workspace_id", workspace_id
            ).eq("id", order_id).execute()

        except Exception as e:
            logger.error("update_order_failed", order_id=order_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise OrderNotFoundError(order_id)

        return self._row_to_response(result.data[0])

    def set_status_manually(
        self,
        workspace_id: str,
        order_id: str,
        data: OrderStatusUpdate
    ) -> OrderResponse:
        """
        Set a status by hand and lock it against sync.

        Accepts canonical statuses and custom labels.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = self._update(workspace_id, order_id, {
            "status": data.status,
            "status_modified_manually": True,
            "status_modified_at": datetime.now(timezone.utc).isoformat(),
        })

        logger.info(
            "order_status_set_manually",
            workspace_id=workspace_id,
            order_id=order_id,
            status=data.status
        )
        return order

    def clear_manual_override(self, workspace_id: str, order_id: str) -> OrderResponse:
        """
        Hand the status back to sync.

        The next run overwrites the status with the sheet value.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = self._update(workspace_id, order_id, {
            "status_modified_manually": False,
        })

        logger.info("order_manual_override_cleared", workspace_id=workspace_id, order_id=order_id)
        return order


# Singleton instance
_order_service: Optional[OrderService] = None


def get_order_service() -> OrderService:
    """Get or create OrderService singleton."""
    global _order_service
    if _order_service is None:
        _order_service = OrderService()
    return _order_service
