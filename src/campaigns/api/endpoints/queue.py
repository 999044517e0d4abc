from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from campaigns.api.deps import get_db, get_queue_runner, get_settings, verify_cron_secret
from campaigns.api.schemas import DrainRequest
from campaigns.config import Settings
from campaigns.jobs.queue import QueueRunner, QueueService
from campaigns.jobs.tasks import dispatch

router = APIRouter(prefix="/queue", tags=["Queue"], dependencies=[Depends(verify_cron_secret)])


@router.post("/drain")
def drain_queue(
    body: Optional[DrainRequest] = Body(default=None),
    runner: QueueRunner = Depends(get_queue_runner),
    settings: Settings = Depends(get_settings),
):
    body = body or DrainRequest()
    stats = runner.drain(
        dispatch,
        body.type,
        max_jobs=body.max_jobs or settings.queue.max_jobs,
        inter_run_delay=settings.queue.inter_run_delay_seconds,
    )
    return {"success": True, **stats}


@router.get("")
def queue_counts(db: Session = Depends(get_db)):
    return {"success": True, "counts": QueueService.counts(db)}
