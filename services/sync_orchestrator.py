"""
Sync orchestrator - one run of sheet ingestion and reconciliation.

    Idle -> LockPending -> Fetching -> Parsing -> Writing -> Finalizing -> Done

    Any non-terminal state -> Aborted (cancellation checkpoint)
    Fetching / Parsing / Writing / Finalizing -> Failed

A run is split in two so callers can answer before the work starts:
prepare_run() validates the source and takes the lock (raising on bad input
or a busy source), execute() does the work and never raises.

Cancellation is cooperative and checked only at run start, right before the
sheet fetch and right before the batch write. Past the last checkpoint a run
completes. The lock is released on every exit path.
"""

from dataclasses import dataclass, field
from datetime import datetime
from math import ceil
from typing import Callable, Optional
import hashlib
import json
import threading
import time
import uuid
import structlog

from exceptions import (
    AppError,
    InvalidSourceReferenceError,
    SourceInactiveError,
    SyncCancelledError,
)
from integrations.google_sheets import (
    GoogleSheetsClient,
    extract_spreadsheet_id,
    get_sheets_client,
)
from models.sheet import SheetGrid
from models.source import SheetSourceResponse
from models.sync import (
    PartialDataWarning,
    ProgressEvent,
    SyncAbortResponse,
    SyncRunResult,
    SyncState,
    is_valid_state_transition,
)
from parsers.cell_extractor import is_blank_row
from parsers.order_row_parser import parse_order_row
from parsers.sheet_schema import HeaderLayout, infer_column_map, resolve_headers
from parsers.status_classifier import StatusTally
from services.identity_resolver import (
    DedupGuard,
    ExistingOrderIndex,
    IdentityResolver,
    get_identity_resolver,
    resolve_identity,
)
from services.progress_broadcaster import ProgressBroadcaster, get_progress_broadcaster
from services.reconciliation_writer import (
    PendingWrite,
    ReconciliationWriter,
    build_order_document,
    get_reconciliation_writer,
)
from services.source_service import SheetSourceService, get_source_service
from services.sync_lock_service import SyncLease, SyncLockManager, get_lock_manager

logger = structlog.get_logger(__name__)


# Progress milestones (percent)
PROGRESS_LOCKED = 4
PROGRESS_CONNECTING = 8
PROGRESS_FETCHING = 20
PROGRESS_LOADING_EXISTING = 30
PROGRESS_PROCESSING = 35
PROGRESS_PROCESSING_SPAN = 40
PROGRESS_WRITING = 80
PROGRESS_FINALIZING = 95
PROGRESS_COMPLETE = 100

# Row progress is reported every 5% of the rows.
ROW_PROGRESS_STEPS = 20


class CancellationToken:
    """Abort signal shared between a run and whoever may cancel it."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "abort_requested") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def checkpoint(self, run_id: str, name: str) -> None:
        """Raise SyncCancelledError if the run was cancelled."""
        if self._event.is_set():
            raise SyncCancelledError(run_id, name)


@dataclass
class SyncRunContext:
    """Everything one run carries between its stages."""
    run_id: str
    workspace_id: str
    source: SheetSourceResponse
    spreadsheet_id: str
    lease: SyncLease
    token: CancellationToken = field(default_factory=CancellationToken)
    skip_if_unchanged: bool = False
    state: SyncState = SyncState.IDLE
    last_percentage: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def source_id(self) -> str:
        return self.source.id

    @property
    def key(self) -> tuple[str, str]:
        return (self.workspace_id, self.source.id)


def compute_content_hash(headers: list[str], rows: list[list]) -> str:
    """SHA-256 of header labels and data cells."""
    payload = {
        "headers": headers,
        "rows": [
            [None if cell is None else [cell.value, cell.formatted] for cell in row]
            for row in rows
        ],
    }
    encoded = json.dumps(payload, default=str, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class SyncOrchestrator:
    """Runs sheet syncs and tracks the ones live in this process."""

    def __init__(
        self,
        sources: Optional[SheetSourceService] = None,
        sheets: Optional[GoogleSheetsClient] = None,
        resolver: Optional[IdentityResolver] = None,
        writer: Optional[ReconciliationWriter] = None,
        locks: Optional[SyncLockManager] = None,
        broadcaster: Optional[ProgressBroadcaster] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.sources = sources or get_source_service()
        self.sheets = sheets or get_sheets_client()
        self.resolver = resolver or get_identity_resolver()
        self.writer = writer or get_reconciliation_writer()
        self.locks = locks or get_lock_manager()
        self.broadcaster = broadcaster or get_progress_broadcaster()
        self.now = now
        self._active: dict[tuple[str, str], SyncRunContext] = {}
        self._active_lock = threading.Lock()

    # ===================
    # RUN LIFECYCLE
    # ===================

    def prepare_run(
        self,
        workspace_id: str,
        source_id: str,
        skip_if_unchanged: bool = False,
    ) -> SyncRunContext:
        """
        Validate the source and take the lock.

        Args:
            workspace_id: Workspace UUID
            source_id: Source UUID
            skip_if_unchanged: Finish without writing when the sheet content
                hash matches the last run

        Returns:
            SyncRunContext holding the lock

        Raises:
            SourceNotFoundError: Unknown source (no lock taken)
            SourceInactiveError: Source disabled (no lock taken)
            InvalidSourceReferenceError: Unusable spreadsheet reference (no lock taken)
            SyncAlreadyRunningError: Another run holds the lock
        """
        source = self.sources.get_by_id(workspace_id, source_id)
        if not source.is_active:
            raise SourceInactiveError(source_id)

        spreadsheet_id = extract_spreadsheet_id(source.spreadsheet_id)
        if spreadsheet_id is None:
            raise InvalidSourceReferenceError(source.spreadsheet_id)

        run_id = uuid.uuid4().hex
        lease = self.locks.acquire(workspace_id, source_id, run_id)

        context = SyncRunContext(
            run_id=run_id,
            workspace_id=workspace_id,
            source=source,
            spreadsheet_id=spreadsheet_id,
            lease=lease,
            skip_if_unchanged=skip_if_unchanged,
        )
        context.state = SyncState.LOCK_PENDING

        with self._active_lock:
            self._active[context.key] = context

        logger.info(
            "sync_run_prepared",
            run_id=run_id,
            workspace_id=workspace_id,
            source_id=source_id,
            source_name=source.name
        )
        self._emit(context, PROGRESS_LOCKED, "Lock acquired")
        return context

    def execute(self, context: SyncRunContext) -> SyncRunResult:
        """
        Run a prepared sync to a terminal state.

        Never raises: failures and cancellation end up on the result and in
        the final progress event.
        """
        log = logger.bind(
            run_id=context.run_id,
            workspace_id=context.workspace_id,
            source_id=context.source_id
        )
        result = SyncRunResult(
            run_id=context.run_id,
            workspace_id=context.workspace_id,
            source_id=context.source_id,
            source_name=context.source.name,
            state=context.state,
        )
        layout: Optional[HeaderLayout] = None
        content_hash: Optional[str] = None

        log.info("sync_run_started", skip_if_unchanged=context.skip_if_unchanged)

        try:
            context.token.checkpoint(context.run_id, "run_start")
            self._transition(context, SyncState.FETCHING, PROGRESS_CONNECTING, "Connecting to Google Sheets")

            context.token.checkpoint(context.run_id, "before_fetch")
            self._emit(context, PROGRESS_FETCHING, "Fetching sheet data")
            grid = self.sheets.fetch_grid(context.spreadsheet_id, context.source.sheet_name)

            self._transition(context, SyncState.PARSING, PROGRESS_LOADING_EXISTING, "Loading existing orders")
            layout = resolve_headers(grid)
            column_map = infer_column_map(layout.headers)
            result.column_map = column_map
            data_rows = grid.rows[layout.data_start:]
            content_hash = compute_content_hash(layout.headers, data_rows)

            if context.skip_if_unchanged and content_hash == context.source.last_content_hash:
                result.skipped_unchanged = True
                log.info("sync_skipped_unchanged", content_hash=content_hash)
            else:
                index = self.resolver.load_existing(context.workspace_id, context.source_id)
                writes = self._build_writes(context, grid, layout, column_map, index, result)

                context.token.checkpoint(context.run_id, "before_write")
                if writes:
                    self._transition(context, SyncState.WRITING, PROGRESS_WRITING, "Saving orders")
                    written = self.writer.write_batch(context.workspace_id, writes)
                    result.inserted = written.inserted
                    result.updated = written.updated
                    result.manual_status_preserved = written.manual_status_preserved

            self._transition(context, SyncState.FINALIZING, PROGRESS_FINALIZING, "Finalizing sync")
            self.sources.record_sync(
                context.workspace_id,
                context.source_id,
                status=SyncState.DONE.value,
                headers=layout.headers,
                column_map=result.column_map,
                content_hash=content_hash,
            )
            self._set_state(context, SyncState.DONE)

        except SyncCancelledError as e:
            self._set_state(context, SyncState.ABORTED)
            log.info("sync_run_cancelled", checkpoint=e.checkpoint)

        except Exception as e:
            self._set_state(context, SyncState.FAILED)
            result.error = e.message if isinstance(e, AppError) else str(e)
            log.error("sync_run_failed", error=result.error, error_type=type(e).__name__)
            self._record_failure(context, result.error, layout, result.column_map)

        finally:
            self._release(context)
            with self._active_lock:
                if self._active.get(context.key) is context:
                    del self._active[context.key]

        result.state = context.state
        result.duration_seconds = round(time.monotonic() - context.started_at, 3)

        log.info(
            "sync_run_finished",
            state=result.state.value,
            inserted=result.inserted,
            updated=result.updated,
            duplicates_skipped=result.duplicates_skipped,
            unrecognized_statuses=len(result.unrecognized_statuses),
            duration_seconds=result.duration_seconds
        )

        self._emit(
            context,
            PROGRESS_COMPLETE,
            result.message,
            completed=True,
            result=result.model_dump(mode="json"),
        )
        return result

    def run_sync(
        self,
        workspace_id: str,
        source_id: str,
        skip_if_unchanged: bool = False,
    ) -> SyncRunResult:
        """Prepare and execute a run in the calling thread."""
        context = self.prepare_run(workspace_id, source_id, skip_if_unchanged=skip_if_unchanged)
        return self.execute(context)

    def abort(self, workspace_id: str, source_id: str) -> SyncAbortResponse:
        """
        Best-effort abort of the run for (workspace, source).

        A run live in this process is signalled and releases its own lock at
        its next checkpoint (or when it completes). Otherwise the lock seen
        now is deleted, conditional on its holder, so a run in another
        process or a crashed run no longer blocks the source while a lock
        taken by a newer run in the meantime is left alone.
        """
        with self._active_lock:
            context = self._active.get((workspace_id, source_id))

        if context is not None:
            context.token.cancel()
            logger.info(
                "sync_abort_signalled",
                run_id=context.run_id,
                workspace_id=workspace_id,
                source_id=source_id
            )
            return SyncAbortResponse(
                workspace_id=workspace_id,
                source_id=source_id,
                run_signalled=True,
                lock_released=False,
            )

        observed = self.locks.get_lock(workspace_id, source_id)
        released = False
        if observed is not None:
            released = self.locks.release(workspace_id, source_id, observed.holder)
        logger.info(
            "sync_abort_released_lock",
            workspace_id=workspace_id,
            source_id=source_id,
            holder=observed.holder if observed else None,
            released=released
        )
        return SyncAbortResponse(
            workspace_id=workspace_id,
            source_id=source_id,
            run_signalled=False,
            lock_released=released,
        )

    def is_running(self, workspace_id: str, source_id: str) -> bool:
        with self._active_lock:
            return (workspace_id, source_id) in self._active

    # ===================
    # ROW PROCESSING
    # ===================

    def _build_writes(
        self,
        context: SyncRunContext,
        grid: SheetGrid,
        layout: HeaderLayout,
        column_map: dict[str, int],
        index: ExistingOrderIndex,
        result: SyncRunResult,
    ) -> list[PendingWrite]:
        """Parse, classify and resolve every data row, in sheet order."""
        self._emit(context, PROGRESS_PROCESSING, "Processing orders")

        tally = StatusTally()
        dedup = DedupGuard()
        writes: list[PendingWrite] = []

        total = grid.row_count - layout.data_start
        step = max(1, ceil(total / ROW_PROGRESS_STEPS))
        result.rows_seen = total

        for offset, row in enumerate(grid.rows[layout.data_start:]):
            if offset % step == 0:
                percentage = PROGRESS_PROCESSING + (offset * PROGRESS_PROCESSING_SPAN) // total
                self._emit(context, percentage, f"Processing orders {offset + 1}/{total}")

            if is_blank_row(row):
                result.blank_rows += 1
                continue

            parsed = parse_order_row(
                row,
                layout.data_start + offset,
                layout.headers,
                column_map,
                tally,
                now=self.now,
            )
            identity = resolve_identity(
                context.source_id,
                context.source.name,
                parsed.line_number,
                parsed.order_number,
            )

            if not dedup.admit(identity.external_order_id, parsed.line_number):
                logger.warning(
                    "duplicate_order_in_sheet",
                    run_id=context.run_id,
                    external_order_id=identity.external_order_id,
                    line=parsed.line_number
                )
                continue

            existing = index.find(identity)
            document, preserved = build_order_document(
                context.workspace_id,
                context.source_id,
                context.source.name,
                parsed,
                identity,
                existing,
            )
            writes.append(PendingWrite(
                document=document,
                identity=identity,
                is_update=index.is_known(identity),
                status_preserved=preserved,
            ))

        result.duplicates_skipped = dedup.duplicate_count
        result.status_counts = dict(tally.counts)
        result.unrecognized_statuses = list(tally.unrecognized)
        result.warnings = [w.model_dump() for w in self._collect_warnings(layout, column_map, tally, dedup)]

        logger.info(
            "sync_rows_processed",
            run_id=context.run_id,
            rows=total,
            queued=len(writes),
            blank_rows=result.blank_rows,
            duplicates=dedup.duplicate_count,
            status_counts=tally.counts,
            unrecognized=tally.unrecognized
        )
        return writes

    def _collect_warnings(
        self,
        layout: HeaderLayout,
        column_map: dict[str, int],
        tally: StatusTally,
        dedup: DedupGuard,
    ) -> list[PartialDataWarning]:
        warnings = []

        if tally.unrecognized:
            warnings.append(PartialDataWarning(
                kind="unrecognized_status",
                message=f"{tally.unrecognized_count} rows had an unrecognized status and were set to pending",
                values=list(tally.unrecognized),
            ))

        claimed = set(column_map.values())
        unmapped = [h for i, h in enumerate(layout.headers) if h and i not in claimed]
        if unmapped:
            warnings.append(PartialDataWarning(
                kind="unmapped_columns",
                message="Columns not mapped to an order field are kept in raw_data",
                values=unmapped,
            ))

        if dedup.duplicates:
            warnings.append(PartialDataWarning(
                kind="duplicate_order_ids",
                message=f"{dedup.duplicate_count} rows repeated an order id already seen in this sheet",
                values=[f"{ext} (line {line})" for ext, line in dedup.duplicates],
            ))

        return warnings

    # ===================
    # HELPERS
    # ===================

    def _set_state(self, context: SyncRunContext, new_state: SyncState) -> None:
        if not is_valid_state_transition(context.state, new_state):
            logger.warning(
                "unexpected_state_transition",
                run_id=context.run_id,
                current=context.state.value,
                new=new_state.value
            )
        context.state = new_state

    def _transition(self, context: SyncRunContext, new_state: SyncState, percentage: int, label: str) -> None:
        self._set_state(context, new_state)
        self._emit(context, percentage, label)

    def _emit(
        self,
        context: SyncRunContext,
        percentage: int,
        label: str,
        completed: bool = False,
        result: Optional[dict] = None,
    ) -> None:
        # Percentages never go backwards within a run.
        percentage = max(context.last_percentage, min(percentage, PROGRESS_COMPLETE))
        context.last_percentage = percentage
        self.broadcaster.publish(ProgressEvent(
            run_id=context.run_id,
            workspace_id=context.workspace_id,
            source_id=context.source_id,
            current=percentage,
            percentage=percentage,
            status=label,
            state=context.state,
            completed=completed,
            result=result,
        ))

    def _record_failure(
        self,
        context: SyncRunContext,
        error: str,
        layout: Optional[HeaderLayout],
        column_map: dict[str, int],
    ) -> None:
        try:
            self.sources.record_sync(
                context.workspace_id,
                context.source_id,
                status=SyncState.FAILED.value,
                error=error,
                headers=layout.headers if layout else None,
                column_map=column_map if layout else None,
            )
        except AppError as e:
            logger.error("sync_failure_not_recorded", run_id=context.run_id, error=e.message)

    def _release(self, context: SyncRunContext) -> None:
        try:
            context.lease.release()
        except AppError as e:
            # The lock expires on its own after the TTL.
            logger.error("sync_lock_release_failed", run_id=context.run_id, error=e.message)


# Singleton instance
_orchestrator: Optional[SyncOrchestrator] = None


def get_sync_orchestrator() -> SyncOrchestrator:
    """Get or create SyncOrchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SyncOrchestrator()
    return _orchestrator
