"""Generic durable job queue backed by the worker_jobs table."""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campaigns.db.models import QueueJob, QueueStatus
from campaigns.utils import utcnow

TIMEOUT_ERROR = "Job processing timeout"


@dataclass(frozen=True)
class QueuedTask:
    """Detached snapshot of a claimed queue row handed to a handler."""

    id: int
    type: str
    payload: Dict[str, Any]
    retry_count: int = 0
    max_retries: int = 3


@dataclass
class TaskResult:
    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[Session, QueuedTask], TaskResult]


class QueueService:
    """Enqueue / claim / complete operations. All take an open session."""

    @staticmethod
    def _find_live(session: Session, idempotency_key: str) -> Optional[QueueJob]:
        stmt = (
            select(QueueJob)
            .where(
                QueueJob.idempotency_key == idempotency_key,
                QueueJob.status.in_([QueueStatus.QUEUED, QueueStatus.PROCESSING]),
            )
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def enqueue(
        session: Session,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        idempotency_key: Optional[str] = None,
        max_retries: int = 3,
    ) -> int:
        """Insert a queued job, or return the id of the live job holding ``idempotency_key``."""
        if idempotency_key:
            existing = QueueService._find_live(session, idempotency_key)
            if existing is not None:
                logger.debug(f"[QUEUE] Reusing job {existing.id} for key {idempotency_key}")
                return existing.id

        job = QueueJob(
            type=job_type,
            payload=payload or {},
            status=QueueStatus.QUEUED,
            idempotency_key=idempotency_key,
            max_retries=max_retries,
        )
        session.add(job)
        try:
            session.commit()
        except IntegrityError:
            # Lost an insert race against the same key
            session.rollback()
            existing = QueueService._find_live(session, idempotency_key) if idempotency_key else None
            if existing is None:
                raise
            return existing.id

        logger.info(f"[QUEUE] Enqueued {job_type} job {job.id}")
        return job.id

    @staticmethod
    def claim_next(session: Session, job_type: Optional[str] = None) -> Optional[QueuedTask]:
        """Claim the oldest queued job. None when nothing is queued or the claim was lost."""
        stmt = select(QueueJob.id).where(QueueJob.status == QueueStatus.QUEUED)
        if job_type:
            stmt = stmt.where(QueueJob.type == job_type)
        stmt = stmt.order_by(QueueJob.created_at, QueueJob.id).limit(1)

        candidate_id = session.execute(stmt).scalar_one_or_none()
        if candidate_id is None:
            return None
        return QueueService.try_claim(session, candidate_id)

    @staticmethod
    def try_claim(session: Session, job_id: int) -> Optional[QueuedTask]:
        result = session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status == QueueStatus.QUEUED)
            .values(status=QueueStatus.PROCESSING, started_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount != 1:
            logger.debug(f"[QUEUE] Job {job_id} was claimed by another worker")
            return None

        job = session.get(QueueJob, job_id)
        return QueuedTask(
            id=job.id,
            type=job.type,
            payload=dict(job.payload or {}),
            retry_count=job.retry_count,
            max_retries=job.max_retries,
        )

    @staticmethod
    def mark_done(session: Session, job_id: int) -> None:
        session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id)
            .values(status=QueueStatus.DONE, error_message=None, completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()

    @staticmethod
    def mark_failed(session: Session, job_id: int, error: str) -> str:
        """Requeue while retries remain, otherwise fail for good. Returns the new status."""
        job = session.get(QueueJob, job_id)
        if job is None:
            raise ValueError(f"Queue job {job_id} not found")

        if job.retry_count < job.max_retries:
            job.retry_count += 1
            job.status = QueueStatus.QUEUED
            job.error_message = error
            job.started_at = None
            logger.warning(f"[QUEUE] Job {job_id} failed ({error}), retry {job.retry_count}/{job.max_retries}")
        else:
            job.status = QueueStatus.FAILED
            job.error_message = error
            job.completed_at = utcnow()
            logger.error(f"[QUEUE] Job {job_id} failed permanently: {error}")
        session.commit()
        return job.status

    @staticmethod
    def counts(session: Session) -> Dict[str, int]:
        rows = session.execute(
            select(QueueJob.status, func.count(QueueJob.id)).group_by(QueueJob.status)
        ).all()
        stats = {status: 0 for status in (QueueStatus.QUEUED, QueueStatus.PROCESSING, QueueStatus.DONE, QueueStatus.FAILED)}
        stats.update({status: count for status, count in rows})
        return stats


class QueueRunner:
    """Claims queue jobs and runs their handlers under a timeout."""

    def __init__(self, session_factory, *, timeout_seconds: float = 300.0, sleep=time.sleep):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.sleep = sleep

    def _invoke(self, handler: Handler, task: QueuedTask) -> TaskResult:
        session = self.session_factory()
        try:
            return handler(session, task)
        finally:
            session.close()

    def run_with_timeout(self, handler: Handler, task: QueuedTask, timeout: Optional[float] = None) -> TaskResult:
        """Run ``handler`` in a worker thread, giving up after ``timeout`` seconds.

        A timed-out handler is abandoned, not killed; its thread finishes on its own.
        """
        timeout = self.timeout_seconds if timeout is None else timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"queue-{task.id}")
        future = executor.submit(self._invoke, handler, task)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.error(f"[QUEUE] Job {task.id} ({task.type}) exceeded {timeout}s")
            return TaskResult(success=False, error=TIMEOUT_ERROR)
        except Exception as exc:
            logger.exception(f"[QUEUE] Handler for job {task.id} ({task.type}) raised")
            return TaskResult(success=False, error=str(exc) or exc.__class__.__name__)
        finally:
            executor.shutdown(wait=False)

        if not isinstance(result, TaskResult):
            return TaskResult(success=False, error=f"Handler returned {type(result).__name__}, expected TaskResult")
        return result

    def process_one(self, handler: Handler, job_type: Optional[str] = None) -> Optional[TaskResult]:
        """Claim one job and run it. None when there was nothing to claim."""
        session = self.session_factory()
        try:
            task = QueueService.claim_next(session, job_type)
            if task is None:
                return None

            logger.info(f"[QUEUE] Running job {task.id} ({task.type}), attempt {task.retry_count + 1}")
            result = self.run_with_timeout(handler, task)
            if result.success:
                QueueService.mark_done(session, task.id)
                logger.success(f"[QUEUE] Job {task.id} done")
            else:
                QueueService.mark_failed(session, task.id, result.error or "Unknown error")
            return result
        finally:
            session.close()

    def drain(
        self,
        handler: Handler,
        job_type: Optional[str] = None,
        *,
        max_jobs: int = 10,
        inter_run_delay: float = 0.1,
    ) -> Dict[str, int]:
        stats = {"processed": 0, "succeeded": 0, "failed": 0}
        for index in range(max_jobs):
            if index > 0 and inter_run_delay > 0:
                self.sleep(inter_run_delay)
            result = self.process_one(handler, job_type)
            if result is None:
                break
            stats["processed"] += 1
            if result.success:
                stats["succeeded"] += 1
            else:
                stats["failed"] += 1

        if stats["processed"]:
            logger.info(f"[QUEUE] Drain finished: {stats}")
        return stats
