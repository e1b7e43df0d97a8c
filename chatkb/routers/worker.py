import time
from fastapi import APIRouter, Depends
from chatkb.core.config import Settings
from chatkb.core.logging import get_logger
from chatkb.middlewares.worker_auth import require_cron_secret
from chatkb.routers.deps import get_scheduler, get_settings
from chatkb.schemas.source import WorkerRunOut, WorkerStatusOut
from chatkb.services.queue import JobScheduler

logger = get_logger(__name__)

router = APIRouter(prefix="/worker", tags=["worker"], dependencies=[Depends(require_cron_secret)])

@router.post("", response_model=WorkerRunOut)
async def run_worker(
    scheduler: JobScheduler = Depends(get_scheduler),
    settings: Settings = Depends(get_settings),
):
    """Tick del cron: procesa un lote chico de fuentes pendientes."""
    started = time.monotonic()
    processed = await scheduler.process_pending_jobs(settings.worker_batch_limit)
    duration_ms = int((time.monotonic() - started) * 1000)
    stats = await scheduler.get_queue_stats()
    logger.info("worker_run", processed=processed, duration_ms=duration_ms, **stats.as_dict())
    return WorkerRunOut(processed=processed, duration_ms=duration_ms, stats=stats.as_dict())

@router.get("", response_model=WorkerStatusOut)
async def worker_status(scheduler: JobScheduler = Depends(get_scheduler)):
    stats = await scheduler.get_queue_stats()
    return WorkerStatusOut(stats=stats.as_dict())
