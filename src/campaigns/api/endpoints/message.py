"""SMS / chat worker trigger."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campaigns.api.deps import get_db, get_delivery_worker, verify_cron_secret
from campaigns.db.models import MESSAGE_CHANNELS
from campaigns.jobs.delivery import DeliveryWorker
from campaigns.services.campaign_jobs import CampaignJobService

router = APIRouter(prefix="/message", tags=["Message"], dependencies=[Depends(verify_cron_secret)])


@router.post("/worker")
def run_message_worker(worker: DeliveryWorker = Depends(get_delivery_worker)):
    result = worker.process_next(list(MESSAGE_CHANNELS))
    return {"success": True, **result.to_dict()}


@router.get("/worker")
def next_message_job(db: Session = Depends(get_db)):
    job = CampaignJobService.next_pending(db, list(MESSAGE_CHANNELS))
    return {"success": True, "job": CampaignJobService.summarize(job) if job else None}
