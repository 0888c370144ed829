"""
Sync lock service - one run at a time per (workspace, source).

Locks live in the sync_locks table keyed by lock_key. Acquire is a
conditional insert: expired locks for the key are deleted first, then the
insert either succeeds or hits the primary key (SQLSTATE 23505) because a
live run holds it. Release only deletes the caller's own lock.

    Free ──acquire──> Held ──release──> Free
                       │
                       └──expires_at passes──> Expired (treated as Free)
"""

from datetime import datetime, timedelta, timezone
from math import ceil
from typing import Optional
import structlog

from postgrest.exceptions import APIError

from config import get_supabase_client, settings
from exceptions import DatabaseError, SyncAlreadyRunningError
from models.sync import SyncLock

logger = structlog.get_logger(__name__)


UNIQUE_VIOLATION = "23505"


def build_lock_key(workspace_id: str, source_id: str) -> str:
    return f"sync_lock_{workspace_id}_{source_id}"


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncLease:
    """A held lock. Release is idempotent."""

    def __init__(self, manager: "SyncLockManager", lock: SyncLock):
        self._manager = manager
        self.lock = lock
        self.released = False

    @property
    def holder(self) -> str:
        return self.lock.holder

    @property
    def expires_at(self) -> datetime:
        return self.lock.expires_at

    def release(self) -> bool:
        if self.released:
            return False
        self.released = True
        return self._manager.release(self.lock.workspace_id, self.lock.source_id, self.lock.holder)


class SyncLockManager:
    """Acquires and releases sync locks."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.db = get_supabase_client()
        self.table = "sync_locks"
        self.ttl_seconds = ttl_seconds or settings.sync_lock_ttl_seconds

    def get_lock(self, workspace_id: str, source_id: str) -> Optional[SyncLock]:
        """Current lock row for the key, expired or not."""
        try:
            result = self.db.table(self.table).select("*").eq(
                "lock_key", build_lock_key(workspace_id, source_id)
            ).limit(1).execute()
        except Exception as e:
            logger.error("get_lock_failed", source_id=source_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            return None

        row = result.data[0]
        return SyncLock(
            lock_key=row["lock_key"],
            workspace_id=row["workspace_id"],
            source_id=row["source_id"],
            holder=row["holder"],
            created_at=_parse_timestamp(row["created_at"]),
            expires_at=_parse_timestamp(row["expires_at"]),
        )

    def _delete_expired(self, lock_key: str, now: datetime) -> None:
        self.db.table(self.table).delete().eq(
            "lock_key", lock_key
        ).lt("expires_at", now.isoformat()).execute()

    def acquire(self, workspace_id: str, source_id: str, holder: str) -> SyncLease:
        """
        Take the lock for a run.

        Args:
            workspace_id: Workspace UUID
            source_id: Source UUID
            holder: Run id

        Returns:
            SyncLease for the held lock

        Raises:
            SyncAlreadyRunningError: If a live lock exists (with retry_after)
            DatabaseError: If the lock table cannot be written
        """
        lock_key = build_lock_key(workspace_id, source_id)

        # Two attempts: the conflicting lock may expire or be released
        # between the failed insert and the read.
        for _ in range(2):
            now = datetime.now(timezone.utc)
            expires_at = now + timedelta(seconds=self.ttl_seconds)

            try:
                self._delete_expired(lock_key, now)
                self.db.table(self.table).insert({
                    "lock_key": lock_key,
                    "workspace_id": workspace_id,
                    "source_id": source_id,
                    "holder": holder,
                    "created_at": now.isoformat(),
                    "expires_at": expires_at.isoformat(),
                }).execute()

            except APIError as e:
                if e.code != UNIQUE_VIOLATION:
                    logger.error("lock_acquire_failed", lock_key=lock_key, error=str(e))
                    raise DatabaseError("insert", str(e))

                current = self.get_lock(workspace_id, source_id)
                if current is None or current.is_expired():
                    continue

                retry_after = max(1, ceil(current.remaining_seconds()))
                logger.info(
                    "sync_lock_busy",
                    lock_key=lock_key,
                    holder=current.holder,
                    retry_after=retry_after
                )
                raise SyncAlreadyRunningError(workspace_id, source_id, retry_after)

            except Exception as e:
                logger.error("lock_acquire_failed", lock_key=lock_key, error=str(e))
                raise DatabaseError("insert", str(e))

            logger.info(
                "sync_lock_acquired",
                lock_key=lock_key,
                holder=holder,
                expires_at=expires_at.isoformat()
            )
            return SyncLease(self, SyncLock(
                lock_key=lock_key,
                workspace_id=workspace_id,
                source_id=source_id,
                holder=holder,
                created_at=now,
                expires_at=expires_at,
            ))

        # Lock kept flapping; report busy with the minimum backoff.
        raise SyncAlreadyRunningError(workspace_id, source_id, 1)

    def release(self, workspace_id: str, source_id: str, holder: str) -> bool:
        """
        Delete the lock if it is still held by holder.

        The holder filter makes the delete conditional, so a lock reclaimed
        by a newer run is never removed by an older caller.

        Returns:
            True if a lock row was deleted
        """
        lock_key = build_lock_key(workspace_id, source_id)

        try:
            result = self.db.table(self.table).delete().eq(
                "lock_key", lock_key
            ).eq("holder", holder).execute()
        except Exception as e:
            logger.error("lock_release_failed", lock_key=lock_key, error=str(e))
            raise DatabaseError("delete", str(e))

        released = bool(result.data)
        logger.info("sync_lock_released", lock_key=lock_key, holder=holder, released=released)
        return released


# Singleton instance
_lock_manager: Optional[SyncLockManager] = None


def get_lock_manager() -> SyncLockManager:
    """Get or create SyncLockManager singleton."""
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = SyncLockManager()
    return _lock_manager
