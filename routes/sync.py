"""
Sync API routes.

Trigger, progress stream and abort for one (workspace, source). The run
itself executes as a background task after the trigger has answered.
"""

from fastapi import APIRouter, BackgroundTasks
from fastapi.responses import JSONResponse, StreamingResponse
import structlog

from models.sync import ProgressEvent, SyncAbortResponse, SyncStartResponse
from services.auto_sync_service import get_auto_sync_service
from services.progress_broadcaster import get_progress_broadcaster
from services.sync_orchestrator import get_sync_orchestrator
from exceptions import AppError, SyncAlreadyRunningError

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["sync"]
)


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, SyncAlreadyRunningError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict(),
            headers={"Retry-After": str(e.retry_after)}
        )
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def format_sse(event: ProgressEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"


SSE_KEEPALIVE = ": keepalive\n\n"


# ===================
# ROUTES
# ===================

@router.post(
    "/workspaces/{workspace_id}/sources/{source_id}/sync",
    response_model=SyncStartResponse,
    status_code=202
)
async def start_sync(workspace_id: str, source_id: str, background_tasks: BackgroundTasks):
    """
    Start a sync run for a source.

    Answers immediately; follow the run on the progress stream.

    Raises:
        404: Source not found
        409: A run is already in progress (Retry-After header set)
        422: Source inactive or spreadsheet reference invalid
    """
    try:
        orchestrator = get_sync_orchestrator()
        context = orchestrator.prepare_run(workspace_id, source_id)
        background_tasks.add_task(orchestrator.execute, context)

        return SyncStartResponse(
            run_id=context.run_id,
            workspace_id=workspace_id,
            source_id=source_id,
            lock_expires_at=context.lease.expires_at,
        )

    except Exception as e:
        return handle_error(e)


@router.get("/workspaces/{workspace_id}/sources/{source_id}/sync/progress")
async def stream_sync_progress(workspace_id: str, source_id: str):
    """
    Server-sent events with the progress of the current run.

    Sends the latest known event on connect, a keepalive comment when idle,
    and closes after the completion event or the subscription timeout.
    Disconnecting does not affect the run.
    """
    subscription = get_progress_broadcaster().subscribe(workspace_id, source_id)

    async def event_stream():
        async for event in subscription.events():
            if event is None:
                yield SSE_KEEPALIVE
            else:
                yield format_sse(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        }
    )


@router.post(
    "/workspaces/{workspace_id}/sources/{source_id}/sync/abort",
    response_model=SyncAbortResponse
)
async def abort_sync(workspace_id: str, source_id: str):
    """
    Abort the run for a source.

    Best effort: a run past its last checkpoint completes. The lock is
    always released, by the run itself or by this request.
    """
    try:
        return get_sync_orchestrator().abort(workspace_id, source_id)
    except Exception as e:
        return handle_error(e)


@router.get("/auto-sync/status")
async def auto_sync_status():
    """State of the periodic sync job."""
    return get_auto_sync_service().status()
