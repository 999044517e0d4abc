"""Service for managing campaign jobs and their delivery logs."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from campaigns.db.models import CHANNELS, CampaignJob, DeliveryLog, JobStatus, LogStatus
from campaigns.errors import CampaignError, JobNotFoundError, JobStateError
from campaigns.services.segmentation import SegmentationConfig, SegmentationService
from campaigns.utils import utcnow

RETRY_MODES = ("failed_only", "full")


class CampaignJobService:
    """Persistence and state transitions for CampaignJob rows."""

    @staticmethod
    def create_job(
        session: Session,
        *,
        event_id: int,
        template_id: int,
        channel: str = "email",
        segmentation: Any = None,
        source: str = "manual",
        commit: bool = True,
    ) -> CampaignJob:
        """Create a pending job. ``total_count`` starts as the segment size.

        With ``commit=False`` the row is only flushed so callers can persist it
        together with their own changes.
        """
        if channel not in CHANNELS:
            raise CampaignError(f"Unsupported channel '{channel}'", code="INVALID_CHANNEL")

        config = SegmentationConfig.from_raw(segmentation)
        job = CampaignJob(
            event_id=event_id,
            template_id=template_id,
            channel=channel,
            segmentation=config.to_dict(),
            status=JobStatus.PENDING,
            source=source,
            total_count=SegmentationService.count(session, event_id, config),
        )
        session.add(job)
        if commit:
            session.commit()
            session.refresh(job)
        else:
            session.flush()
        logger.info(f"[JOBS] Created {channel} job {job.id} for event {event_id} ({job.total_count} recipients, source={source})")
        return job

    @staticmethod
    def get_job(session: Session, job_id: int) -> CampaignJob:
        job = session.get(CampaignJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", job_id=job_id)
        return job

    @staticmethod
    def list_jobs(session: Session, event_id: int, status: Optional[str] = None) -> List[CampaignJob]:
        stmt = select(CampaignJob).where(CampaignJob.event_id == event_id)
        if status:
            stmt = stmt.where(CampaignJob.status == status)
        stmt = stmt.order_by(CampaignJob.created_at.desc(), CampaignJob.id.desc())
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def next_pending(session: Session, channels: Optional[Sequence[str]] = None) -> Optional[CampaignJob]:
        """Oldest pending job, optionally restricted to a set of channels."""
        stmt = select(CampaignJob).where(CampaignJob.status == JobStatus.PENDING)
        if channels:
            stmt = stmt.where(CampaignJob.channel.in_(list(channels)))
        stmt = stmt.order_by(CampaignJob.created_at, CampaignJob.id).limit(1)
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def claim_job(session: Session, job_id: int) -> bool:
        """Move a job pending -> processing. False if another worker got there first."""
        result = session.execute(
            update(CampaignJob)
            .where(CampaignJob.id == job_id, CampaignJob.status == JobStatus.PENDING)
            .values(status=JobStatus.PROCESSING, started_at=utcnow(), error_message=None)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount == 1

    @staticmethod
    def save_progress(session: Session, job_id: int, *, processed: int, success: int, fail: int) -> None:
        session.execute(
            update(CampaignJob)
            .where(CampaignJob.id == job_id)
            .values(processed_count=processed, success_count=success, fail_count=fail)
            .execution_options(synchronize_session=False)
        )
        session.commit()

    @staticmethod
    def set_total(session: Session, job_id: int, total: int) -> None:
        session.execute(
            update(CampaignJob)
            .where(CampaignJob.id == job_id)
            .values(total_count=total)
            .execution_options(synchronize_session=False)
        )
        session.commit()

    @staticmethod
    def finish_job(
        session: Session,
        job_id: int,
        status: str,
        *,
        processed: int,
        success: int,
        fail: int,
        error_message: Optional[str] = None,
    ) -> None:
        session.execute(
            update(CampaignJob)
            .where(CampaignJob.id == job_id)
            .values(
                status=status,
                processed_count=processed,
                success_count=success,
                fail_count=fail,
                error_message=error_message,
                completed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()

    @staticmethod
    def mark_failed(session: Session, job_id: int, error_message: str) -> None:
        """Terminal failure before any send (validation)."""
        session.execute(
            update(CampaignJob)
            .where(CampaignJob.id == job_id)
            .values(status=JobStatus.FAILED, error_message=error_message[:1000], completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()

    @staticmethod
    def write_log(
        session: Session,
        *,
        job_id: int,
        participant_id: int,
        address: Optional[str],
        success: bool,
        error_message: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> DeliveryLog:
        log = DeliveryLog(
            job_id=job_id,
            participant_id=participant_id,
            address=address,
            status=LogStatus.SUCCESS if success else LogStatus.FAILED,
            provider_message_id=provider_message_id,
            error_message=None if success else (error_message or "Unknown error")[:1000],
            sent_at=utcnow() if success else None,
        )
        session.add(log)
        session.commit()
        return log

    @staticmethod
    def get_logs(session: Session, job_id: int, status: Optional[str] = None) -> List[DeliveryLog]:
        stmt = select(DeliveryLog).where(DeliveryLog.job_id == job_id)
        if status:
            stmt = stmt.where(DeliveryLog.status == status)
        return list(session.execute(stmt.order_by(DeliveryLog.id)).scalars().all())

    @staticmethod
    def participant_ids_with_status(session: Session, job_id: int, status: str) -> List[int]:
        stmt = (
            select(DeliveryLog.participant_id)
            .where(DeliveryLog.job_id == job_id, DeliveryLog.status == status)
            .distinct()
            .order_by(DeliveryLog.participant_id)
        )
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def stop_job(session: Session, job_id: int) -> CampaignJob:
        """Administrative stop. Only a processing job can be stopped."""
        job = CampaignJobService.get_job(session, job_id)
        result = session.execute(
            update(CampaignJob)
            .where(CampaignJob.id == job_id, CampaignJob.status == JobStatus.PROCESSING)
            .values(status=JobStatus.STOPPED, completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount != 1:
            raise JobStateError(f"Job {job_id} is not processing", job_id=job_id)
        session.refresh(job)
        logger.warning(f"[JOBS] Job {job_id} stopped by operator")
        return job

    @staticmethod
    def mark_failed_manual(session: Session, job_id: int, reason: Optional[str] = None) -> CampaignJob:
        job = CampaignJobService.get_job(session, job_id)
        result = session.execute(
            update(CampaignJob)
            .where(
                CampaignJob.id == job_id,
                CampaignJob.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]),
            )
            .values(
                status=JobStatus.FAILED_MANUAL,
                error_message=reason or "Marked failed by operator",
                completed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount != 1:
            raise JobStateError(f"Job {job_id} is already finished", job_id=job_id)
        session.refresh(job)
        return job

    @staticmethod
    def retry_job(session: Session, job_id: int, mode: str = "failed_only") -> CampaignJob:
        """Create a new job re-sending a finished one.

        ``failed_only`` targets the recipients whose delivery failed,
        ``full`` re-uses the original segmentation.
        """
        if mode not in RETRY_MODES:
            raise CampaignError(f"Unknown retry mode '{mode}'", code="INVALID_RETRY_MODE")

        job = CampaignJobService.get_job(session, job_id)
        if job.status in (JobStatus.PENDING, JobStatus.PROCESSING):
            raise JobStateError(f"Job {job_id} is still {job.status}", job_id=job_id)

        if mode == "failed_only":
            failed_ids = CampaignJobService.participant_ids_with_status(session, job_id, LogStatus.FAILED)
            if not failed_ids:
                raise JobStateError(f"Job {job_id} has no failed recipients to retry", job_id=job_id)
            segmentation = SegmentationConfig.custom(failed_ids)
        else:
            segmentation = SegmentationConfig.from_raw(job.segmentation)

        retry = CampaignJobService.create_job(
            session,
            event_id=job.event_id,
            template_id=job.template_id,
            channel=job.channel,
            segmentation=segmentation,
            source="retry",
        )
        logger.info(f"[JOBS] Job {job_id} retried ({mode}) as job {retry.id}")
        return retry

    @staticmethod
    def summarize(job: CampaignJob) -> Dict[str, Any]:
        processed = job.processed_count or 0
        return {
            "id": job.id,
            "event_id": job.event_id,
            "channel": job.channel,
            "status": job.status,
            "total": job.total_count,
            "processed": processed,
            "success": job.success_count,
            "failed": job.fail_count,
            "success_rate": round(job.success_count / processed, 4) if processed else None,
            "error": job.error_message,
        }
