"""
Reconciliation writer - idempotent batched upsert of synced orders.

All rows of a run are written at the end in one logical batch keyed on
(workspace_id, identity_key). Re-running against identical sheet data
inserts nothing and overwrites every matched row with itself.

Manual status edits outrank sync: when the existing record has
status_modified_manually set, the payload carries the stored status instead
of the sheet's. Every document has the same keys, so the whole run goes out
as one upsert request and commits or fails as a unit.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from exceptions import DatabaseError
from models.order import OrderOrigin
from parsers.order_row_parser import ParsedOrderRow
from services.identity_resolver import ResolvedIdentity

logger = structlog.get_logger(__name__)


UPSERT_CONFLICT_COLUMNS = "workspace_id,identity_key"


@dataclass
class PendingWrite:
    """One order document queued for the batch."""
    document: dict
    identity: ResolvedIdentity
    is_update: bool
    status_preserved: bool = False


@dataclass
class WriteResult:
    """Counts reported by a batch write."""
    inserted: int = 0
    updated: int = 0
    manual_status_preserved: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated


def build_order_document(
    workspace_id: str,
    source_id: str,
    source_name: str,
    row: ParsedOrderRow,
    identity: ResolvedIdentity,
    existing: Optional[dict],
) -> tuple[dict, bool]:
    """
    Build the upsert payload for one row.

    Args:
        workspace_id: Workspace UUID
        source_id: Source UUID
        source_name: Source display name (tag)
        row: Parsed row
        identity: Resolved identity
        existing: Existing record found for the row, if any

    Returns:
        (document, status_preserved)
    """
    document = {
        "workspace_id": workspace_id,
        "source_id": source_id,
        "identity_key": identity.identity_key,
        "row_key": identity.row_key,
        "external_order_id": identity.external_order_id,
        "order_date": row.order_date.isoformat(),
        "client_name": row.client_name,
        "client_phone": row.client_phone,
        "city": row.city,
        "address": row.address,
        "product": row.product,
        "quantity": row.quantity,
        "price": row.price,
        "status": row.status,
        "notes": row.notes,
        "tags": [source_name],
        "raw_data": row.raw_data,
        "origin": OrderOrigin.GOOGLE_SHEETS.value,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }

    status_preserved = bool(existing and existing.get("status_modified_manually"))
    if status_preserved:
        document["status"] = existing.get("status")

    return document, status_preserved


class ReconciliationWriter:
    """Writes a run's order documents to the orders table."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "orders"

    def write_batch(self, workspace_id: str, writes: list[PendingWrite]) -> WriteResult:
        """
        Upsert all documents of a run in a single request.

        Args:
            workspace_id: Workspace UUID (logging)
            writes: Queued documents

        Returns:
            WriteResult with inserted / updated counts

        Raises:
            DatabaseError: If the upsert fails
        """
        result = WriteResult()
        if not writes:
            return result

        documents = [write.document for write in writes]
        try:
            self.db.table(self.table).upsert(
                documents,
                on_conflict=UPSERT_CONFLICT_COLUMNS
            ).execute()
        except Exception as e:
            logger.error(
                "order_upsert_failed",
                workspace_id=workspace_id,
                documents=len(documents),
                error=str(e)
            )
            raise DatabaseError("upsert", str(e))

        for write in writes:
            if write.is_update:
                result.updated += 1
            else:
                result.inserted += 1
            if write.status_preserved:
                result.manual_status_preserved += 1

        logger.info(
            "orders_upserted",
            workspace_id=workspace_id,
            inserted=result.inserted,
            updated=result.updated,
            manual_status_preserved=result.manual_status_preserved
        )
        return result


# Singleton instance
_reconciliation_writer: Optional[ReconciliationWriter] = None


def get_reconciliation_writer() -> ReconciliationWriter:
    """Get or create ReconciliationWriter singleton."""
    global _reconciliation_writer
    if _reconciliation_writer is None:
        _reconciliation_writer = ReconciliationWriter()
    return _reconciliation_writer
