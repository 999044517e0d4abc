"""E-mail triggers: scheduler sweep, explicit job runs and the e-mail worker."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from campaigns.api.deps import get_db, get_delivery_worker, get_scheduler, verify_cron_secret
from campaigns.api.schemas import RunJobRequest
from campaigns.jobs.delivery import DeliveryWorker
from campaigns.jobs.scheduler import Scheduler
from campaigns.services.automations import AutomationService
from campaigns.services.campaign_jobs import CampaignJobService

router = APIRouter(prefix="/mail", tags=["Mail"])

EMAIL_CHANNELS = ["email"]


@router.post("/scheduler", dependencies=[Depends(verify_cron_secret)])
def run_scheduler(scheduler: Scheduler = Depends(get_scheduler)):
    result = scheduler.run()
    return {"success": True, **result.to_dict()}


@router.get("/scheduler", dependencies=[Depends(verify_cron_secret)])
def scheduler_status(db: Session = Depends(get_db)):
    return {"success": True, **AutomationService.schedule_stats(db)}


@router.post("/run-job")
def run_job(body: RunJobRequest, worker: DeliveryWorker = Depends(get_delivery_worker)):
    """Run one pending job now (operator "send" button)."""
    result = worker.run_job(body.job_id)
    return {"success": True, **result.to_dict()}


@router.get("/run-job")
def job_status(job_id: int = Query(..., alias="jobId"), db: Session = Depends(get_db)):
    job = CampaignJobService.get_job(db, job_id)
    return {"success": True, "job": CampaignJobService.summarize(job)}


@router.post("/worker", dependencies=[Depends(verify_cron_secret)])
def run_email_worker(worker: DeliveryWorker = Depends(get_delivery_worker)):
    result = worker.process_next(EMAIL_CHANNELS)
    return {"success": True, **result.to_dict()}


@router.get("/worker", dependencies=[Depends(verify_cron_secret)])
def next_email_job(db: Session = Depends(get_db)):
    job = CampaignJobService.next_pending(db, EMAIL_CHANNELS)
    return {"success": True, "job": CampaignJobService.summarize(job) if job else None}
