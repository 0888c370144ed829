"""
Canonical order schemas for validation and serialization.
"""

from pydantic import Field, field_validator
from typing import Any, Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema, TimestampMixin


class OrderStatus(str, Enum):
    """Canonical order lifecycle states."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    UNREACHABLE = "unreachable"
    CALLED = "called"
    POSTPONED = "postponed"


class OrderOrigin(str, Enum):
    """Where an order record came from."""
    GOOGLE_SHEETS = "google_sheets"
    MANUAL = "manual"


# ===================
# REQUEST SCHEMAS
# ===================

class OrderStatusUpdate(BaseSchema):
    """
    Manual status change by an operator or downstream consumer.

    Accepts the canonical statuses and arbitrary custom labels.
    Always sets the manual-override flag.
    """

    status: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Canonical status or custom label"
    )

    @field_validator("status")
    @classmethod
    def canonical_lowercase(cls, v: str) -> str:
        """Canonical values are stored lowercase; custom labels are kept as typed."""
        lowered = v.lower()
        if lowered in {s.value for s in OrderStatus}:
            return lowered
        return v


# ===================
# RESPONSE SCHEMAS
# ===================

class OrderResponse(BaseSchema, TimestampMixin):
    """Reconciled order record."""

    id: str = Field(..., description="Order UUID")
    workspace_id: str
    source_id: Optional[str] = None
    identity_key: str = Field(..., description="Upsert identity within the workspace")
    row_key: Optional[str] = Field(None, description="Synthetic source+row identity")
    external_order_id: str = Field(default="", description="Order number from the sheet or placeholder")
    order_date: Optional[datetime] = None
    client_name: str = ""
    client_phone: str = ""
    city: str = ""
    address: str = ""
    product: str = ""
    quantity: int = 1
    price: float = 0
    status: str = OrderStatus.PENDING.value
    notes: str = ""
    tags: list[str] = Field(default_factory=list)
    raw_data: dict[str, Any] = Field(default_factory=dict)
    origin: OrderOrigin = OrderOrigin.GOOGLE_SHEETS
    status_modified_manually: bool = False
    status_modified_at: Optional[datetime] = None
