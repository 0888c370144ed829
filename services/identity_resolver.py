"""
Identity resolution for synced rows.

Every row gets a synthetic row key (source + sheet line) and an external
order id (the sheet's order number, or a placeholder). The upsert identity is
the real order number when the sheet has one, else the row key:

    identity_key = "ext:<order number>"  |  "row:<row key>"

Existing orders are indexed both ways before the write so a row is
recognised even when its identity moved since the last run.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional
import structlog

from config import get_supabase_client
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


PAGE_SIZE = 1000
INDEX_COLUMNS = "id, identity_key, row_key, external_order_id, status, status_modified_manually"


def build_row_key(source_id: str, line_number: int) -> str:
    """Synthetic identity of a sheet line within a source."""
    return f"source_{source_id}_row_{line_number}"


def row_key_prefix(source_id: str) -> str:
    return f"source_{source_id}_row_"


def placeholder_external_id(source_name: str, line_number: int) -> str:
    """External id used when the sheet has no order number for a row."""
    return f"#{source_name}_{line_number}"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class ResolvedIdentity:
    """Identity decisions for one row."""
    row_key: str
    external_order_id: str
    has_order_number: bool

    @property
    def identity_key(self) -> str:
        if self.has_order_number:
            return f"ext:{self.external_order_id}"
        return f"row:{self.row_key}"


def resolve_identity(
    source_id: str,
    source_name: str,
    line_number: int,
    order_number: str,
) -> ResolvedIdentity:
    """
    Resolve row key, external id and filter key for one row.

    Args:
        source_id: Source UUID
        source_name: Source display name (placeholder ids)
        line_number: Sheet line of the row
        order_number: Value of the order id column ("" when absent)

    Returns:
        ResolvedIdentity
    """
    order_number = (order_number or "").strip()
    has_order_number = bool(order_number)
    return ResolvedIdentity(
        row_key=build_row_key(source_id, line_number),
        external_order_id=order_number if has_order_number else placeholder_external_id(source_name, line_number),
        has_order_number=has_order_number,
    )


@dataclass
class ExistingOrderIndex:
    """Existing orders keyed by row key and by external id."""
    by_row_key: dict[str, dict] = field(default_factory=dict)
    by_external_id: dict[str, dict] = field(default_factory=dict)
    identity_keys: set[str] = field(default_factory=set)

    def add_row_keyed(self, record: dict) -> None:
        if record.get("row_key"):
            self.by_row_key[record["row_key"]] = record
        if record.get("identity_key"):
            self.identity_keys.add(record["identity_key"])

    def add_external(self, record: dict) -> None:
        if record.get("external_order_id"):
            self.by_external_id[record["external_order_id"]] = record
        if record.get("identity_key"):
            self.identity_keys.add(record["identity_key"])

    def find(self, identity: ResolvedIdentity) -> Optional[dict]:
        """
        Existing record for a row.

        The index matching the row's filter key is tried first, then the
        other one, so a row whose identity moved is still recognised.
        """
        by_row = self.by_row_key.get(identity.row_key)
        by_ext = self.by_external_id.get(identity.external_order_id)
        if identity.has_order_number:
            return by_ext or by_row
        return by_row or by_ext

    def is_known(self, identity: ResolvedIdentity) -> bool:
        """True when the upsert for this identity will update, not insert."""
        return identity.identity_key in self.identity_keys

    def __len__(self) -> int:
        return len(self.identity_keys)


class DedupGuard:
    """
    Per-run guard against two sheet lines collapsing onto one external id.

    The first occurrence wins; later ones are dropped and counted.
    """

    def __init__(self):
        self._seen: set[str] = set()
        self.duplicates: list[tuple[str, int]] = []

    def admit(self, external_order_id: str, line_number: int) -> bool:
        if external_order_id in self._seen:
            self.duplicates.append((external_order_id, line_number))
            return False
        self._seen.add(external_order_id)
        return True

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


class IdentityResolver:
    """Loads the existing-order indexes for a run."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "orders"

    def _fetch_all(self, build_query: Callable) -> list[dict]:
        rows: list[dict] = []
        offset = 0
        while True:
            result = build_query().range(offset, offset + PAGE_SIZE - 1).execute()
            batch = result.data or []
            rows.extend(batch)
            if len(batch) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    def load_existing(self, workspace_id: str, source_id: str) -> ExistingOrderIndex:
        """
        Load existing orders of this source (by row key prefix) and all orders
        of the workspace carrying an external id.

        Raises:
            DatabaseError: If either lookup fails
        """
        pattern = escape_like(row_key_prefix(source_id)) + "%"

        try:
            by_row = self._fetch_all(
                lambda: self.db.table(self.table).select(INDEX_COLUMNS).eq(
                    "workspace_id", workspace_id
                ).like("row_key", pattern).order("id")
            )
            by_ext = self._fetch_all(
                lambda: self.db.table(self.table).select(INDEX_COLUMNS).eq(
                    "workspace_id", workspace_id
                ).neq("external_order_id", "").order("id")
            )
        except Exception as e:
            logger.error(
                "existing_orders_load_failed",
                workspace_id=workspace_id,
                source_id=source_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        index = ExistingOrderIndex()
        for record in by_row:
            index.add_row_keyed(record)
        for record in by_ext:
            index.add_external(record)

        logger.info(
            "existing_orders_loaded",
            workspace_id=workspace_id,
            source_id=source_id,
            by_row_key=len(index.by_row_key),
            by_external_id=len(index.by_external_id)
        )
        return index


# Singleton instance
_identity_resolver: Optional[IdentityResolver] = None


def get_identity_resolver() -> IdentityResolver:
    """Get or create IdentityResolver singleton."""
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver()
    return _identity_resolver
