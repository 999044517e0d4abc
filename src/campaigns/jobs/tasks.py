"""Queue task handlers, keyed by queue job type."""
from __future__ import annotations

from typing import Dict, Optional

from loguru import logger
from sqlalchemy.orm import Session

from campaigns.errors import CampaignError
from campaigns.jobs.queue import Handler, QueuedTask, TaskResult
from campaigns.services.campaign_jobs import CampaignJobService
from campaigns.services.follow_ups import FollowUpService

ARM_FOLLOW_UPS = "follow_ups.arm"
RETRY_CAMPAIGN = "campaign.retry"


def arm_follow_ups(session: Session, task: QueuedTask) -> TaskResult:
    job_id = task.payload.get("job_id")
    if job_id is None:
        return TaskResult(success=False, error="payload.job_id is required")
    armed = FollowUpService.arm_for_base_job(session, int(job_id))
    return TaskResult(success=True, data={"armed": armed})


def retry_campaign(session: Session, task: QueuedTask) -> TaskResult:
    job_id = task.payload.get("job_id")
    if job_id is None:
        return TaskResult(success=False, error="payload.job_id is required")
    try:
        retry = CampaignJobService.retry_job(session, int(job_id), task.payload.get("mode", "failed_only"))
    except CampaignError as exc:
        logger.warning(f"[TASK] Retry of job {job_id} rejected: {exc.message}")
        return TaskResult(success=False, error=exc.message)
    return TaskResult(success=True, data={"job_id": retry.id})


HANDLERS: Dict[str, Handler] = {
    ARM_FOLLOW_UPS: arm_follow_ups,
    RETRY_CAMPAIGN: retry_campaign,
}


def get_handler(job_type: str) -> Optional[Handler]:
    return HANDLERS.get(job_type)


def dispatch(session: Session, task: QueuedTask) -> TaskResult:
    """Handler that routes any claimed task to its registered handler."""
    handler = get_handler(task.type)
    if handler is None:
        return TaskResult(success=False, error=f"No handler registered for '{task.type}'")
    return handler(session, task)
