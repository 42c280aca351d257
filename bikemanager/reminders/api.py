import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from .pipeline import ReminderPipeline
from .schemas import CronStatus, QueueStats

logger = logging.getLogger(__name__)

router = APIRouter()


def _pipeline(request: Request) -> ReminderPipeline:
    pipeline = getattr(request.app.state, "reminders", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Reminder pipeline not running")
    return pipeline


def _run_scan(pipeline: ReminderPipeline) -> None:
    try:
        pipeline.scanner.trigger_manual_scan()
    except Exception:
        logger.exception("❌ [ReminderAPI] Manual scan failed")


@router.get("/queue/stats", response_model=QueueStats)
def queue_stats(request: Request):
    try:
        return _pipeline(request).queue.get_queue_stats()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ [ReminderAPI] Error getting queue stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to get queue stats")


@router.post("/queue/clean")
def clean_queue(request: Request):
    _pipeline(request).queue.clean_queue()
    return {"message": "Queue cleaned"}


@router.get("/cron/status", response_model=CronStatus)
def cron_status(request: Request):
    pipeline = _pipeline(request)
    return CronStatus(
        is_scanning=pipeline.scanner.is_scanning(),
        next_run=pipeline.scanner.get_next_run_time(),
        enabled=pipeline.settings.ENABLED,
        cron_expression=pipeline.settings.CRON,
        timezone=pipeline.settings.TIMEZONE,
        backend=pipeline.queue.backend_name,
    )


@router.post("/cron/trigger", status_code=202)
def trigger_scan(request: Request, background_tasks: BackgroundTasks):
    pipeline = _pipeline(request)
    if pipeline.scanner.is_scanning():
        raise HTTPException(status_code=409, detail="Maintenance reminder scan is already running")
    background_tasks.add_task(_run_scan, pipeline)
    return {"message": "Maintenance reminder scan triggered"}


@router.get("/health")
def health_check():
    return {"status": "healthy", "service": "maintenance-reminders"}
