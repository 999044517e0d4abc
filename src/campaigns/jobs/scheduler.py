"""Scheduler sweep: turns due automations and follow-ups into campaign jobs."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from campaigns.db.base import SessionLocal
from campaigns.db.models import Automation, Event, FollowUp
from campaigns.errors import EventNotFoundError, JobNotFoundError
from campaigns.services.automations import AutomationService, compute_next_run
from campaigns.services.campaign_jobs import CampaignJobService
from campaigns.services.follow_ups import FollowUpService
from campaigns.services.segmentation import SegmentationConfig
from campaigns.utils import utcnow


@dataclass
class SchedulerResult:
    processed: int = 0
    followups_processed: int = 0
    created_jobs: List[int] = field(default_factory=list)
    followup_jobs: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "createdJobs": self.created_jobs,
            "followupsProcessed": self.followups_processed,
            "followupJobs": self.followup_jobs,
            "errors": self.errors,
            "message": (
                f"Processed {self.processed} automations, {self.followups_processed} follow-ups, "
                f"created {len(self.created_jobs) + len(self.followup_jobs)} jobs"
            ),
        }


class Scheduler:
    """One sweep per invocation. Each automation / follow-up is isolated."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def run(self, now: Optional[datetime] = None) -> SchedulerResult:
        now = now or utcnow()
        result = SchedulerResult()
        session = self.session_factory()
        try:
            automation_ids = [a.id for a in AutomationService.get_due(session, now)]
            if automation_ids:
                logger.info(f"[SCHEDULER] {len(automation_ids)} automation(s) due at {now.isoformat()}")
            for automation_id in automation_ids:
                try:
                    job_id = self._run_automation(session, automation_id, now)
                except Exception as exc:
                    session.rollback()
                    logger.exception(f"[SCHEDULER] Automation {automation_id} failed")
                    result.errors.append(f"automation {automation_id}: {exc}")
                    continue
                result.processed += 1
                result.created_jobs.append(job_id)

            # Base jobs that finished since the last sweep arm their follow-ups here
            try:
                FollowUpService.arm_finished(session, now)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("[SCHEDULER] Arming follow-ups failed")
                result.errors.append(f"follow-up arming: {exc}")

            follow_up_ids = [f.id for f in FollowUpService.get_due(session, now)]
            if follow_up_ids:
                logger.info(f"[SCHEDULER] {len(follow_up_ids)} follow-up(s) due")
            for follow_up_id in follow_up_ids:
                try:
                    job_id = self._run_follow_up(session, follow_up_id, now)
                except Exception as exc:
                    session.rollback()
                    logger.exception(f"[SCHEDULER] Follow-up {follow_up_id} failed")
                    result.errors.append(f"follow-up {follow_up_id}: {exc}")
                    continue
                result.followups_processed += 1
                if job_id is not None:
                    result.followup_jobs.append(job_id)
        finally:
            session.close()

        logger.info(f"[SCHEDULER] {result.to_dict()['message']}")
        return result

    def _run_automation(self, session, automation_id: int, now: datetime) -> int:
        automation = session.get(Automation, automation_id)
        event = session.get(Event, automation.event_id)
        if event is None:
            raise EventNotFoundError(f"Event {automation.event_id} not found")

        job = CampaignJobService.create_job(
            session,
            event_id=automation.event_id,
            template_id=automation.template_id,
            channel=automation.channel,
            segmentation=SegmentationConfig.from_raw(automation.segmentation),
            source="automation",
            commit=False,
        )
        next_run = compute_next_run(automation, event, now)
        AutomationService.record_run(session, automation, now, next_run)
        logger.info(f"[SCHEDULER] Automation {automation_id} -> job {job.id}, next run {next_run}")
        return job.id

    def _run_follow_up(self, session, follow_up_id: int, now: datetime) -> Optional[int]:
        follow_up = session.get(FollowUp, follow_up_id)
        base_job = follow_up.base_job
        if base_job is None:
            raise JobNotFoundError(f"Base job {follow_up.base_job_id} not found", job_id=follow_up.base_job_id)

        targets = FollowUpService.resolve_targets(session, follow_up)
        if not targets:
            logger.info(f"[SCHEDULER] Follow-up {follow_up_id} has no targets, skipping")
            FollowUpService.record_run(session, follow_up, now)
            return None

        job = CampaignJobService.create_job(
            session,
            event_id=follow_up.event_id,
            template_id=follow_up.template_id,
            channel=base_job.channel,
            segmentation=SegmentationConfig.custom(targets),
            source="follow_up",
            commit=False,
        )
        FollowUpService.record_run(session, follow_up, now)
        logger.info(f"[SCHEDULER] Follow-up {follow_up_id} -> job {job.id} ({len(targets)} recipients)")
        return job.id
