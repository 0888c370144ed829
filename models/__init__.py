"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
)
from models.sheet import (
    Cell,
    SheetGrid,
)
from models.order import (
    OrderStatus,
    OrderOrigin,
    OrderStatusUpdate,
    OrderResponse,
)
from models.source import (
    SheetSourceCreate,
    SheetSourceUpdate,
    SheetSourceResponse,
)
from models.sync import (
    SyncState,
    SyncLock,
    ProgressEvent,
    PartialDataWarning,
    SyncRunResult,
    SyncStartResponse,
    SyncAbortResponse,
    is_valid_state_transition,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",

    # Sheet
    "Cell",
    "SheetGrid",

    # Order
    "OrderStatus",
    "OrderOrigin",
    "OrderStatusUpdate",
    "OrderResponse",

    # Source
    "SheetSourceCreate",
    "SheetSourceUpdate",
    "SheetSourceResponse",

    # Sync
    "SyncState",
    "SyncLock",
    "ProgressEvent",
    "PartialDataWarning",
    "SyncRunResult",
    "SyncStartResponse",
    "SyncAbortResponse",
    "is_valid_state_transition",
]
