"""
Auto sync service - periodic sync of every active source.

One APScheduler interval job walks the active sources and runs each one
through the orchestrator with skip_if_unchanged, so a sheet whose content
hash did not move finishes without writing. A source already running is
skipped until the next pass.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from exceptions import AppError, SyncAlreadyRunningError
from models.sync import SyncState
from services.source_service import SheetSourceService, get_source_service
from services.sync_orchestrator import SyncOrchestrator, get_sync_orchestrator

logger = structlog.get_logger(__name__)


JOB_ID = "auto_sync_sources"


class AutoSyncService:
    """Schedules and runs periodic sync passes."""

    def __init__(
        self,
        orchestrator: Optional[SyncOrchestrator] = None,
        sources: Optional[SheetSourceService] = None,
        interval_minutes: Optional[int] = None,
    ):
        self.orchestrator = orchestrator or get_sync_orchestrator()
        self.sources = sources or get_source_service()
        self.interval_minutes = interval_minutes or settings.auto_sync_interval_minutes
        self.scheduler: Optional[BackgroundScheduler] = None
        self.last_pass_at: Optional[datetime] = None
        self.last_pass_summary: dict[str, int] = {}

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        """Start the interval job. No-op if already started."""
        if self.running:
            return

        self.scheduler = BackgroundScheduler(daemon=True)
        self.scheduler.add_job(
            self.run_once,
            "interval",
            minutes=self.interval_minutes,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("auto_sync_started", interval_minutes=self.interval_minutes)

    def stop(self) -> None:
        if self.scheduler is None:
            return
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("auto_sync_stopped")

    def run_once(self) -> dict[str, int]:
        """
        Sync every active source once.

        Returns:
            Counts per outcome: done, unchanged, failed, aborted, busy, rejected
        """
        summary = {"done": 0, "unchanged": 0, "failed": 0, "aborted": 0, "busy": 0, "rejected": 0}

        try:
            sources = self.sources.list_active_sources()
        except AppError as e:
            logger.error("auto_sync_list_failed", error=e.message)
            return summary

        logger.info("auto_sync_pass_started", sources=len(sources))

        for source in sources:
            try:
                result = self.orchestrator.run_sync(
                    source.workspace_id,
                    source.id,
                    skip_if_unchanged=True,
                )
            except SyncAlreadyRunningError as e:
                summary["busy"] += 1
                logger.info("auto_sync_source_busy", source_id=source.id, retry_after=e.retry_after)
                continue
            except AppError as e:
                summary["rejected"] += 1
                logger.warning("auto_sync_source_rejected", source_id=source.id, code=e.code, error=e.message)
                continue

            if result.state == SyncState.DONE:
                summary["unchanged" if result.skipped_unchanged else "done"] += 1
            elif result.state == SyncState.ABORTED:
                summary["aborted"] += 1
            else:
                summary["failed"] += 1

        self.last_pass_at = datetime.now(timezone.utc)
        self.last_pass_summary = summary
        logger.info("auto_sync_pass_finished", **summary)
        return summary

    def status(self) -> dict:
        return {
            "enabled": self.running,
            "interval_minutes": self.interval_minutes,
            "last_pass_at": self.last_pass_at.isoformat() if self.last_pass_at else None,
            "last_pass_summary": self.last_pass_summary,
        }


# Singleton instance
_auto_sync_service: Optional[AutoSyncService] = None


def get_auto_sync_service() -> AutoSyncService:
    """Get or create AutoSyncService singleton."""
    global _auto_sync_service
    if _auto_sync_service is None:
        _auto_sync_service = AutoSyncService()
    return _auto_sync_service
