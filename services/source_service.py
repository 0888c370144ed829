"""
Sheet source service - registry of spreadsheet sources per workspace.

Sources are created and edited by operators. The sync orchestrator writes
last-run metadata back after every run.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from exceptions import (
    DatabaseError,
    InvalidSourceReferenceError,
    SourceNotFoundError,
)
from integrations.google_sheets import extract_spreadsheet_id
from models.source import (
    SheetSourceCreate,
    SheetSourceUpdate,
    SheetSourceResponse,
)

logger = structlog.get_logger(__name__)


class SheetSourceService:
    """Service for sheet source operations."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "sheet_sources"

    def _row_to_response(self, row: dict) -> SheetSourceResponse:
        return SheetSourceResponse(
            **{
                **row,
                "detected_headers": row.get("detected_headers") or [],
                "detected_columns": row.get("detected_columns") or {},
            }
        )

    # ===================
    # READ OPERATIONS
    # ===================

    def list_sources(self, workspace_id: str) -> list[SheetSourceResponse]:
        """
        Get all sources of a workspace, oldest first.

        Args:
            workspace_id: Workspace UUID

        Returns:
            List of SheetSourceResponse
        """
        logger.debug("listing_sources", workspace_id=workspace_id)

        try:
            result = self.db.table(self.table).select("*").eq(
                "workspace_id", workspace_id
            ).order("created_at").execute()

            return [self._row_to_response(row) for row in result.data]

        except Exception as e:
            logger.error("list_sources_failed", workspace_id=workspace_id, error=str(e))
            raise DatabaseError("select", str(e))

    def list_active_sources(self) -> list[SheetSourceResponse]:
        """Get active sources across all workspaces (periodic sync)."""
        try:
            result = self.db.table(self.table).select("*").eq(
                "is_active", True
            ).execute()

            return [self._row_to_response(row) for row in result.data]

        except Exception as e:
            logger.error("list_active_sources_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, workspace_id: str, source_id: str) -> SheetSourceResponse:
        """
        Get a single source of a workspace.

        Raises:
            SourceNotFoundError: If the source does not exist in this workspace
        """
        try:
            result = self.db.table(self.table).select("*").eq(
                "workspace_id", workspace_id
            ).eq("id", source_id).limit(1).execute()

        except Exception as e:
            logger.error(
                "get_source_failed",
                workspace_id=workspace_id,
                source_id=source_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            raise SourceNotFoundError(source_id)

        return self._row_to_response(result.data[0])

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(self, workspace_id: str, data: SheetSourceCreate) -> SheetSourceResponse:
        """
        Register a new source.

        Raises:
            InvalidSourceReferenceError: If the spreadsheet reference is unusable
        """
        if extract_spreadsheet_id(data.spreadsheet_id) is None:
            raise InvalidSourceReferenceError(data.spreadsheet_id)

        logger.info("creating_source", workspace_id=workspace_id, name=data.name)

        try:
            result = self.db.table(self.table).insert({
                "workspace_id": workspace_id,
                "name": data.name,
                "spreadsheet_id": data.spreadsheet_id,
                "sheet_name": data.sheet_name,
                "is_active": data.is_active,
            }).execute()

        except Exception as e:
            logger.error("create_source_failed", workspace_id=workspace_id, error=str(e))
            raise DatabaseError("insert", str(e))

        source = self._row_to_response(result.data[0])
        logger.info("source_created", workspace_id=workspace_id, source_id=source.id)
        return source

    def update(
        self,
        workspace_id: str,
        source_id: str,
        data: SheetSourceUpdate
    ) -> SheetSourceResponse:
        """
        Update name, location, sheet name or active flag.

        Raises:
            SourceNotFoundError: If the source does not exist
            InvalidSourceReferenceError: If the new spreadsheet reference is unusable
        """
        self.get_by_id(workspace_id, source_id)

        update_data = data.model_dump(exclude_unset=True)
        if "spreadsheet_id" in update_data and extract_spreadsheet_id(update_data["spreadsheet_id"]) is None:
            raise InvalidSourceReferenceError(update_data["spreadsheet_id"])

        if not update_data:
            return self.get_by_id(workspace_id, source_id)

        update_data["updated_at"] = datetime.now(timezone.utc).isoformat()

        try:
            result = self.db.table(self.table).update(update_data).eq(
                "workspace_id", workspace_id
            ).eq("id", source_id).execute()

        except Exception as e:
            logger.error("update_source_failed", source_id=source_id, error=str(e))
            raise DatabaseError("update", str(e))

        logger.info("source_updated", source_id=source_id, fields=list(update_data.keys()))
        return self._row_to_response(result.data[0])

    def record_sync(
        self,
        workspace_id: str,
        source_id: str,
        status: str,
        error: Optional[str] = None,
        headers: Optional[list[str]] = None,
        column_map: Optional[dict[str, int]] = None,
        content_hash: Optional[str] = None,
    ) -> None:
        """
        Persist last-run metadata on the source.

        Headers, column map and hash are only overwritten when given, so a
        failed fetch keeps the previous schema hint.
        """
        now = datetime.now(timezone.utc).isoformat()
        update_data: dict = {
            "last_sync_at": now,
            "last_sync_status": status,
            "last_sync_error": error,
            "updated_at": now,
        }
        if headers is not None:
            update_data["detected_headers"] = [h for h in headers if h]
        if column_map is not None:
            update_data["detected_columns"] = column_map
        if content_hash is not None:
            update_data["last_content_hash"] = content_hash

        try:
            self.db.table(self.table).update(update_data).eq(
                "workspace_id", workspace_id
            ).eq("id", source_id).execute()

        except Exception as e:
            logger.error("record_sync_failed", source_id=source_id, error=str(e))
            raise DatabaseError("update", str(e))

        logger.debug("source_sync_recorded", source_id=source_id, status=status)


# Singleton instance
_source_service: Optional[SheetSourceService] = None


def get_source_service() -> SheetSourceService:
    """Get or create SheetSourceService singleton."""
    global _source_service
    if _source_service is None:
        _source_service = SheetSourceService()
    return _source_service
