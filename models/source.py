"""
Sheet source schemas.

A source is a registered spreadsheet tab belonging to a workspace.
"""

from pydantic import Field
from typing import Optional
from datetime import datetime

from models.base import BaseSchema, TimestampMixin


class SheetSourceCreate(BaseSchema):
    """Register a new spreadsheet source."""

    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    spreadsheet_id: str = Field(
        ...,
        min_length=1,
        description="Spreadsheet id or full Google Sheets URL"
    )
    sheet_name: str = Field(default="Sheet1", min_length=1, max_length=100)
    is_active: bool = True


class SheetSourceUpdate(BaseSchema):
    """Update a source. All fields optional."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    spreadsheet_id: Optional[str] = Field(None, min_length=1)
    sheet_name: Optional[str] = Field(None, min_length=1, max_length=100)
    is_active: Optional[bool] = None


class SheetSourceResponse(BaseSchema, TimestampMixin):
    """Source with its last-run metadata."""

    id: str
    workspace_id: str
    name: str
    spreadsheet_id: str
    sheet_name: str = "Sheet1"
    is_active: bool = True

    # Written back by the orchestrator after each run. Informational only,
    # the column map is re-inferred on every run.
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
    detected_headers: list[str] = Field(default_factory=list)
    detected_columns: dict[str, int] = Field(default_factory=dict)
    last_content_hash: Optional[str] = None
