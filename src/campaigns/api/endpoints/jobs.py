"""Operator actions on campaign jobs and automation triggers."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from campaigns.api.deps import get_db, verify_cron_secret
from campaigns.api.schemas import CreateJobRequest, FailJobRequest, RetryJobRequest, TriggerRequest
from campaigns.services.automations import AutomationService
from campaigns.services.campaign_jobs import CampaignJobService
from campaigns.services.segmentation import SegmentationService

router = APIRouter(tags=["Jobs"], dependencies=[Depends(verify_cron_secret)])


@router.post("/jobs", status_code=201)
def create_job(body: CreateJobRequest, db: Session = Depends(get_db)):
    job = CampaignJobService.create_job(
        db,
        event_id=body.event_id,
        template_id=body.template_id,
        channel=body.channel,
        segmentation=body.segmentation,
    )
    return {"success": True, "jobId": job.id, "totalCount": job.total_count}


@router.get("/jobs/{job_id}/logs")
def job_logs(job_id: int, status: Optional[str] = Query(default=None), db: Session = Depends(get_db)):
    CampaignJobService.get_job(db, job_id)
    logs = CampaignJobService.get_logs(db, job_id, status)
    return {
        "success": True,
        "logs": [
            {
                "participantId": log.participant_id,
                "address": log.address,
                "status": log.status,
                "error": log.error_message,
                "sentAt": log.sent_at.isoformat() if log.sent_at else None,
            }
            for log in logs
        ],
    }


@router.post("/jobs/{job_id}/stop")
def stop_job(job_id: int, db: Session = Depends(get_db)):
    job = CampaignJobService.stop_job(db, job_id)
    return {"success": True, "job": CampaignJobService.summarize(job)}


@router.post("/jobs/{job_id}/fail")
def fail_job(job_id: int, body: Optional[FailJobRequest] = None, db: Session = Depends(get_db)):
    job = CampaignJobService.mark_failed_manual(db, job_id, body.reason if body else None)
    return {"success": True, "job": CampaignJobService.summarize(job)}


@router.post("/jobs/{job_id}/retry", status_code=201)
def retry_job(job_id: int, body: Optional[RetryJobRequest] = None, db: Session = Depends(get_db)):
    mode = body.mode if body else "failed_only"
    job = CampaignJobService.retry_job(db, job_id, mode)
    return {"success": True, "jobId": job.id, "totalCount": job.total_count}


@router.get("/events/{event_id}/segments/count")
def segment_count(event_id: int, rule: str = Query(default="all"), db: Session = Depends(get_db)):
    count = SegmentationService.count(db, event_id, {"rules": [{"type": rule}]})
    return {"success": True, "count": count}


@router.get("/events/{event_id}/companies")
def event_companies(event_id: int, db: Session = Depends(get_db)):
    return {"success": True, "companies": SegmentationService.list_companies(db, event_id)}


@router.post("/automations/trigger")
def fire_trigger(body: TriggerRequest, db: Session = Depends(get_db)):
    jobs = AutomationService.fire_trigger(
        db,
        event_id=body.event_id,
        trigger_kind=body.trigger_kind,
        participant_id=body.participant_id,
    )
    return {"success": True, "createdJobs": [job.id for job in jobs]}
