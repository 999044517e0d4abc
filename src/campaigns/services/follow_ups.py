"""Follow-up rules attached to earlier campaign jobs."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from campaigns.db.models import CampaignJob, FollowUp, JobStatus, LogStatus
from campaigns.services.campaign_jobs import CampaignJobService
from campaigns.services.segmentation import SegmentationService
from campaigns.utils import as_utc, utcnow

TRIGGER_TYPES = ("on_fail", "on_success", "after_hours")

# Base job outcomes that allow a follow-up to fire
ARMING_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


def compute_follow_up_run(follow_up: FollowUp, base_job: Optional[CampaignJob], now: datetime) -> Optional[datetime]:
    """When a follow-up should fire once its base job has finished.

    Outcome triggers fire right away. ``after_hours`` fires ``delay_hours``
    after the base job was created, or right away if that moment has passed.
    """
    if not follow_up.is_active or base_job is None:
        return None
    if base_job.status not in ARMING_STATUSES:
        return None

    if follow_up.trigger_type in ("on_fail", "on_success"):
        return now

    if follow_up.trigger_type == "after_hours":
        created = as_utc(base_job.created_at) or now
        target = created + timedelta(hours=follow_up.delay_hours or 0)
        return target if target > now else now

    return None


class FollowUpService:

    @staticmethod
    def create_follow_up(session: Session, **fields: Any) -> FollowUp:
        follow_up = FollowUp(**fields)
        session.add(follow_up)
        session.flush()
        base_job = session.get(CampaignJob, follow_up.base_job_id)
        follow_up.next_run_at = compute_follow_up_run(follow_up, base_job, utcnow())
        session.commit()
        return follow_up

    @staticmethod
    def arm_for_base_job(session: Session, base_job_id: int, now: Optional[datetime] = None) -> int:
        """Schedule the never-run follow-ups of a finished job. Returns how many were armed."""
        now = now or utcnow()
        base_job = session.get(CampaignJob, base_job_id)
        if base_job is None or base_job.status not in ARMING_STATUSES:
            return 0

        stmt = select(FollowUp).where(
            FollowUp.base_job_id == base_job_id,
            FollowUp.is_active.is_(True),
            FollowUp.last_run_at.is_(None),
            FollowUp.next_run_at.is_(None),
        )
        armed = 0
        for follow_up in session.execute(stmt).scalars().all():
            next_run = compute_follow_up_run(follow_up, base_job, now)
            if next_run is not None:
                follow_up.next_run_at = next_run
                armed += 1
        session.commit()
        if armed:
            logger.info(f"[FOLLOWUP] Armed {armed} follow-up(s) for job {base_job_id}")
        return armed

    @staticmethod
    def arm_finished(session: Session, now: Optional[datetime] = None) -> int:
        """Arm every never-run follow-up whose base job has already finished."""
        now = now or utcnow()
        stmt = (
            select(FollowUp, CampaignJob)
            .join(CampaignJob, FollowUp.base_job_id == CampaignJob.id)
            .where(
                FollowUp.is_active.is_(True),
                FollowUp.last_run_at.is_(None),
                FollowUp.next_run_at.is_(None),
                CampaignJob.status.in_(ARMING_STATUSES),
            )
            .order_by(FollowUp.id)
        )
        armed = 0
        for follow_up, base_job in session.execute(stmt).all():
            next_run = compute_follow_up_run(follow_up, base_job, now)
            if next_run is not None:
                follow_up.next_run_at = next_run
                armed += 1
        session.commit()
        if armed:
            logger.info(f"[FOLLOWUP] Armed {armed} follow-up(s) of finished jobs")
        return armed

    @staticmethod
    def get_due(session: Session, now: datetime) -> List[FollowUp]:
        stmt = (
            select(FollowUp)
            .where(
                FollowUp.is_active.is_(True),
                FollowUp.next_run_at.is_not(None),
                FollowUp.next_run_at <= now,
            )
            .order_by(FollowUp.next_run_at, FollowUp.id)
        )
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def resolve_targets(session: Session, follow_up: FollowUp) -> List[int]:
        """Participant ids a follow-up should reach."""
        if follow_up.trigger_type == "on_fail":
            return CampaignJobService.participant_ids_with_status(session, follow_up.base_job_id, LogStatus.FAILED)
        if follow_up.trigger_type == "on_success":
            return CampaignJobService.participant_ids_with_status(session, follow_up.base_job_id, LogStatus.SUCCESS)
        if follow_up.trigger_type == "after_hours":
            participants = SegmentationService.resolve(session, follow_up.event_id, follow_up.segmentation)
            return [p.id for p in participants]
        logger.warning(f"[FOLLOWUP] Unknown trigger type '{follow_up.trigger_type}' on follow-up {follow_up.id}")
        return []

    @staticmethod
    def record_run(session: Session, follow_up: FollowUp, now: datetime) -> None:
        # Follow-ups are one-shot
        follow_up.last_run_at = now
        follow_up.next_run_at = None
        session.commit()
