"""Delivery worker: sends one campaign job to its recipients."""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional, Sequence

from dotenv import load_dotenv
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

# Load env immediately to ensure DATABASE_URL is set for DB base
load_dotenv()

from campaigns.config import Settings, load_settings
from campaigns.db.base import SessionLocal
from campaigns.db.models import MESSAGE_CHANNELS, CampaignJob, Event, JobStatus, Participant, Template
from campaigns.errors import (
    CampaignError,
    EventNotFoundError,
    JobStateError,
    RecipientLoadError,
    TemplateNotFoundError,
)
from campaigns.jobs.queue import QueueService
from campaigns.jobs.tasks import ARM_FOLLOW_UPS
from campaigns.senders.base import EmailSender, MessageSender, SendResult
from campaigns.senders.gateway import MessageGateway, build_email_sender
from campaigns.services.campaign_jobs import CampaignJobService
from campaigns.services.merge import (
    MergedContent,
    build_merge_variables,
    lookup_table_name,
    merge_template,
)
from campaigns.services.segmentation import SegmentationService
from campaigns.utils import mask_address

HTML_TAG = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class RecipientOutcome:
    participant_id: int
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class DeliveryTally:
    """Running counters of a job run. Each outcome produces a new tally."""

    processed: int = 0
    success: int = 0
    fail: int = 0
    consecutive_failures: int = 0

    def record(self, outcome: RecipientOutcome) -> "DeliveryTally":
        if outcome.success:
            return replace(
                self,
                processed=self.processed + 1,
                success=self.success + 1,
                consecutive_failures=0,
            )
        return replace(
            self,
            processed=self.processed + 1,
            fail=self.fail + 1,
            consecutive_failures=self.consecutive_failures + 1,
        )

    def tripped(self, threshold: int) -> bool:
        return self.consecutive_failures >= threshold

    def final_status(self, total: int) -> str:
        if total > 0 and self.fail == total:
            return JobStatus.FAILED
        return JobStatus.COMPLETED

    def counters(self) -> Dict[str, int]:
        return {"processed": self.processed, "success": self.success, "fail": self.fail}


@dataclass
class DeliveryResult:
    status: str
    job_id: Optional[int] = None
    total: int = 0
    processed: int = 0
    success: int = 0
    fail: int = 0
    tripped: bool = False
    error: Optional[str] = None

    @classmethod
    def from_tally(cls, job_id: int, status: str, total: int, tally: DeliveryTally, **extra: Any) -> "DeliveryResult":
        return cls(
            status=status,
            job_id=job_id,
            total=total,
            processed=tally.processed,
            success=tally.success,
            fail=tally.fail,
            **extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "successCount": self.success,
            "failCount": self.fail,
            "circuitBreakerTripped": self.tripped,
            "error": self.error,
        }


def recipient_address(participant: Participant, channel: str) -> Optional[str]:
    value = participant.email if channel == "email" else participant.phone
    if value is None:
        return None
    return value.strip() or None


def html_to_text(html: str) -> str:
    return " ".join(HTML_TAG.sub(" ", html or "").split())


class DeliveryWorker:
    """Sends a campaign job to each recipient in turn, pausing between sends.

    A run stops early once too many sends in a row have failed.
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        settings: Optional[Settings] = None,
        email_sender: Optional[EmailSender] = None,
        message_sender: Optional[MessageSender] = None,
        sleep=time.sleep,
    ):
        self.session_factory = session_factory
        self.settings = settings or load_settings()
        self.email_sender = email_sender or build_email_sender(self.settings)
        self.message_sender = message_sender or MessageGateway.from_settings(self.settings)
        self.sleep = sleep

    def process_next(self, channels: Optional[Sequence[str]] = None) -> DeliveryResult:
        """Claim and run the oldest pending job (optionally limited to ``channels``)."""
        session = self.session_factory()
        try:
            job = CampaignJobService.next_pending(session, channels)
            if job is None:
                logger.info("[WORKER] No pending jobs found.")
                return DeliveryResult(status="idle")

            job_id = job.id
            if not CampaignJobService.claim_job(session, job_id):
                logger.info(f"[WORKER] Job {job_id} was claimed by another worker")
                return DeliveryResult(status="skipped", job_id=job_id)

            try:
                return self._deliver(session, job_id)
            except CampaignError as exc:
                return DeliveryResult(status=JobStatus.FAILED, job_id=job_id, error=exc.message)
        finally:
            session.close()

    def run_job(self, job_id: int) -> DeliveryResult:
        """Run a specific job. It must still be pending."""
        session = self.session_factory()
        try:
            job = CampaignJobService.get_job(session, job_id)
            if not CampaignJobService.claim_job(session, job_id):
                raise JobStateError(f"Job {job_id} is {job.status}, only pending jobs can be run", job_id=job_id)
            return self._deliver(session, job_id)
        finally:
            session.close()

    def _load(self, session, job: CampaignJob):
        template = session.get(Template, job.template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {job.template_id} not found", job_id=job.id)

        event = session.get(Event, job.event_id)
        if event is None:
            raise EventNotFoundError(f"Event {job.event_id} not found", job_id=job.id)

        try:
            participants = SegmentationService.resolve(session, job.event_id, job.segmentation)
        except SQLAlchemyError as exc:
            session.rollback()
            raise RecipientLoadError(f"Failed to load recipients: {exc}", job_id=job.id) from exc

        recipients = [p for p in participants if recipient_address(p, job.channel)]
        skipped = len(participants) - len(recipients)
        if skipped:
            logger.info(f"[WORKER] Job {job.id}: {skipped} recipient(s) without {job.channel} address skipped")
        return template, event, recipients

    def _deliver(self, session, job_id: int) -> DeliveryResult:
        job = session.get(CampaignJob, job_id)
        channel = job.channel
        try:
            template, event, recipients = self._load(session, job)
        except CampaignError as exc:
            logger.error(f"[WORKER] Job {job_id} failed validation: {exc.message}")
            CampaignJobService.mark_failed(session, job_id, exc.message)
            self._request_follow_ups(session, job_id)
            raise

        total = len(recipients)
        CampaignJobService.set_total(session, job_id, total)
        logger.info(f"[WORKER] Starting {channel} job {job_id}: {total} recipient(s)")

        delivery = self.settings.delivery
        delay = self.settings.delay_for_channel(channel)
        tally = DeliveryTally()

        try:
            for outcome in self._outcomes(session, job_id, channel, template, event, recipients):
                tally = tally.record(outcome)

                if not outcome.success or tally.processed % delivery.checkpoint_every == 0:
                    CampaignJobService.save_progress(session, job_id, **tally.counters())

                if tally.tripped(delivery.failure_threshold):
                    message = f"Circuit breaker tripped after {tally.consecutive_failures} consecutive failures"
                    logger.error(f"[WORKER] Job {job_id}: {message}")
                    CampaignJobService.finish_job(
                        session, job_id, JobStatus.FAILED, error_message=message, **tally.counters()
                    )
                    self._request_follow_ups(session, job_id)
                    return DeliveryResult.from_tally(
                        job_id, JobStatus.FAILED, total, tally, tripped=True, error=message
                    )

                if tally.processed < total and delay > 0:
                    self.sleep(delay)
        except Exception as exc:
            logger.exception(f"[WORKER] System error in job {job_id}")
            session.rollback()
            CampaignJobService.finish_job(
                session, job_id, JobStatus.FAILED, error_message=str(exc)[:1000], **tally.counters()
            )
            raise

        status = tally.final_status(total)
        CampaignJobService.finish_job(session, job_id, status, **tally.counters())
        self._request_follow_ups(session, job_id)
        if status == JobStatus.COMPLETED:
            logger.success(f"[WORKER] Job {job_id} completed: {tally.success} sent, {tally.fail} failed")
        else:
            logger.error(f"[WORKER] Job {job_id} failed: all {total} sends failed")
        return DeliveryResult.from_tally(job_id, status, total, tally)

    def _outcomes(
        self,
        session,
        job_id: int,
        channel: str,
        template: Template,
        event: Event,
        recipients: List[Participant],
    ) -> Iterator[RecipientOutcome]:
        for participant in recipients:
            yield self._attempt(session, job_id, channel, template, event, participant)

    def _attempt(self, session, job_id, channel, template, event, participant) -> RecipientOutcome:
        participant_id = participant.id
        address = recipient_address(participant, channel)
        try:
            table_name = lookup_table_name(session, event.id, participant_id)
            variables = build_merge_variables(participant, event, table_name, self.settings.public_base_url)
            content = merge_template(template, variables)
            result = self._send(channel, address, content)
        except Exception as exc:
            logger.exception(f"[WORKER] Job {job_id}: error handling participant {participant_id}")
            session.rollback()
            result = SendResult.failed(str(exc) or exc.__class__.__name__)

        if not result.success:
            logger.warning(f"[SEND] Job {job_id}: {channel} to {mask_address(address)} failed: {result.error}")

        CampaignJobService.write_log(
            session,
            job_id=job_id,
            participant_id=participant_id,
            address=address,
            success=result.success,
            error_message=result.error,
            provider_message_id=result.message_id,
        )
        return RecipientOutcome(participant_id=participant_id, success=result.success, error=result.error)

    def _send(self, channel: str, address: str, content: MergedContent) -> SendResult:
        if channel == "email":
            return self.email_sender.send_email(address, content.subject, content.html, content.text)
        if channel in MESSAGE_CHANNELS:
            body = content.text or html_to_text(content.html)
            return self.message_sender.send_message(channel, address, body)
        return SendResult.failed(f"Unsupported channel: {channel}")

    def _request_follow_ups(self, session, job_id: int) -> None:
        try:
            QueueService.enqueue(
                session,
                ARM_FOLLOW_UPS,
                {"job_id": job_id},
                idempotency_key=f"follow-ups:{job_id}",
                max_retries=self.settings.queue.max_retries,
            )
        except SQLAlchemyError:
            session.rollback()
            logger.exception(f"[WORKER] Could not queue follow-up arming for job {job_id}")
