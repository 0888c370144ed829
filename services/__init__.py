"""
Business logic services.

Each service handles one part of the sheet sync pipeline.
"""

from services.source_service import SheetSourceService, get_source_service
from services.order_service import OrderService, get_order_service
from services.identity_resolver import (
    IdentityResolver,
    get_identity_resolver,
    ExistingOrderIndex,
    DedupGuard,
    ResolvedIdentity,
    resolve_identity,
)
from services.reconciliation_writer import (
    ReconciliationWriter,
    get_reconciliation_writer,
    WriteResult,
)
from services.sync_lock_service import SyncLockManager, SyncLease, get_lock_manager
from services.progress_broadcaster import ProgressBroadcaster, get_progress_broadcaster
from services.sync_orchestrator import (
    SyncOrchestrator,
    SyncRunContext,
    CancellationToken,
    get_sync_orchestrator,
)
from services.auto_sync_service import AutoSyncService, get_auto_sync_service

__all__ = [
    "SheetSourceService",
    "get_source_service",
    "OrderService",
    "get_order_service",
    "IdentityResolver",
    "get_identity_resolver",
    "ExistingOrderIndex",
    "DedupGuard",
    "ResolvedIdentity",
    "resolve_identity",
    "ReconciliationWriter",
    "get_reconciliation_writer",
    "WriteResult",
    "SyncLockManager",
    "SyncLease",
    "get_lock_manager",
    "ProgressBroadcaster",
    "get_progress_broadcaster",
    "SyncOrchestrator",
    "SyncRunContext",
    "CancellationToken",
    "get_sync_orchestrator",
    "AutoSyncService",
    "get_auto_sync_service",
]
