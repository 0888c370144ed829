"""
Sync run schemas: lock records, progress events and run results.
"""

from pydantic import BaseModel, Field
from typing import Any, Optional, Literal
from enum import Enum
from datetime import datetime, timezone


class SyncState(str, Enum):
    """Orchestrator states for one run."""
    IDLE = "idle"
    LOCK_PENDING = "lock_pending"
    FETCHING = "fetching"
    PARSING = "parsing"
    WRITING = "writing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES = {SyncState.DONE, SyncState.FAILED, SyncState.ABORTED}

# Allowed transitions; Aborted is reachable from any non-terminal state and
# Failed only from the stages that touch the sheet or the store.
STATE_TRANSITIONS = {
    SyncState.IDLE: {SyncState.LOCK_PENDING, SyncState.ABORTED},
    SyncState.LOCK_PENDING: {SyncState.FETCHING, SyncState.ABORTED},
    SyncState.FETCHING: {SyncState.PARSING, SyncState.FAILED, SyncState.ABORTED},
    SyncState.PARSING: {SyncState.WRITING, SyncState.FINALIZING, SyncState.FAILED, SyncState.ABORTED},
    SyncState.WRITING: {SyncState.FINALIZING, SyncState.FAILED, SyncState.ABORTED},
    SyncState.FINALIZING: {SyncState.DONE, SyncState.FAILED, SyncState.ABORTED},
    SyncState.DONE: set(),
    SyncState.FAILED: set(),
    SyncState.ABORTED: set(),
}


def is_valid_state_transition(current: SyncState, new: SyncState) -> bool:
    """Check if a run may move from current to new."""
    return new in STATE_TRANSITIONS[current]


class SyncLock(BaseModel):
    """Held lock for one (workspace, source)."""

    lock_key: str
    workspace_id: str
    source_id: str
    holder: str = Field(..., description="Run id holding the lock")
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.expires_at - now).total_seconds())


class ProgressEvent(BaseModel):
    """
    One progress milestone of a run.

    Transient: broadcast to live subscribers, never persisted.
    """

    run_id: str
    workspace_id: str
    source_id: str
    current: int = Field(ge=0)
    total: int = 100
    percentage: int = Field(ge=0, le=100)
    status: str = Field(..., description="Human-readable phase label")
    state: SyncState
    completed: bool = False
    result: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PartialDataWarning(BaseModel):
    """Non-fatal data problem surfaced on the run result."""

    kind: str
    message: str
    values: list[str] = Field(default_factory=list)


class SyncRunResult(BaseModel):
    """Outcome of one run."""

    run_id: str
    workspace_id: str
    source_id: str
    source_name: str = ""
    state: SyncState
    inserted: int = 0
    updated: int = 0
    rows_seen: int = 0
    blank_rows: int = 0
    duplicates_skipped: int = 0
    manual_status_preserved: int = 0
    skipped_unchanged: bool = False
    status_counts: dict[str, int] = Field(default_factory=dict)
    unrecognized_statuses: list[str] = Field(default_factory=list)
    column_map: dict[str, int] = Field(default_factory=dict)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def message(self) -> str:
        if self.state == SyncState.DONE:
            return f"Sync complete: {self.inserted} new orders, {self.updated} updated"
        if self.state == SyncState.ABORTED:
            return "Sync cancelled"
        return f"Sync failed: {self.error}"


class SyncStartResponse(BaseModel):
    """Acceptance of a sync trigger."""

    status: Literal["started"] = "started"
    run_id: str
    workspace_id: str
    source_id: str
    lock_expires_at: datetime


class SyncAbortResponse(BaseModel):
    """Result of an abort request."""

    workspace_id: str
    source_id: str
    run_signalled: bool = Field(..., description="A live run in this process was signalled")
    lock_released: bool = Field(..., description="The lock was released by this request")
