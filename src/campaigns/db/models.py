"""ORM models for the campaign delivery pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campaigns.db.base import Base, TimestampMixin
from campaigns.utils import utcnow

# Utility for cross-dialect JSON support (JSONB on Postgres, JSON on SQLite)
JSON_VARIANT = JSON().with_variant(JSONB, "postgresql")

CHANNELS = ("email", "sms", "chat")
MESSAGE_CHANNELS = ("sms", "chat")


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    FAILED_MANUAL = "failed_manual"
    STOPPED = "stopped"

    TERMINAL = (COMPLETED, FAILED, FAILED_MANUAL, STOPPED)


class QueueStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class LogStatus:
    SUCCESS = "success"
    FAILED = "failed"


# --- Context tables (owned by the event console) ---


class Event(TimestampMixin, Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    participants: Mapped[List["Participant"]] = relationship(back_populates="event")


class Participant(TimestampMixin, Base):
    """A person registered (or invited) to an event."""

    __tablename__ = "participants"
    __table_args__ = (
        Index("idx_participants_event_active", "event_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="invited", nullable=False)  # invited, registered, cancelled, completed
    is_vip: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    event: Mapped["Event"] = relationship(back_populates="participants")


class EventTable(TimestampMixin, Base):
    __tablename__ = "event_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class TableAssignment(TimestampMixin, Base):
    """Seat of a participant. Draft rows are not yet published to guests."""

    __tablename__ = "table_assignments"
    __table_args__ = (
        Index("idx_table_assignments_participant", "event_id", "participant_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False)
    table_id: Mapped[int] = mapped_column(ForeignKey("event_tables.id"), nullable=False)
    is_draft: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    table: Mapped["EventTable"] = relationship()


class Template(TimestampMixin, Base):
    __tablename__ = "message_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), default="email", nullable=False)
    subject: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    body_html: Mapped[str] = mapped_column(Text, default="", nullable=False)
    body_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# --- Pipeline tables ---


class CampaignJob(TimestampMixin, Base):
    """One bulk send of a template to a resolved segment on one channel."""

    __tablename__ = "campaign_jobs"
    __table_args__ = (
        Index("idx_campaign_jobs_status_created", "status", "created_at"),
        Index("idx_campaign_jobs_event", "event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    template_id: Mapped[int] = mapped_column(Integer, nullable=False)
    channel: Mapped[str] = mapped_column(String(20), default="email", nullable=False)
    segmentation: Mapped[dict] = mapped_column(JSON_VARIANT, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(30), default=JobStatus.PENDING, nullable=False)
    source: Mapped[str] = mapped_column(String(30), default="manual", nullable=False)  # manual, automation, follow_up, retry

    total_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fail_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    logs: Mapped[List["DeliveryLog"]] = relationship(back_populates="job", order_by="DeliveryLog.id")


class DeliveryLog(Base):
    """Append-only record of one attempted recipient within a job run."""

    __tablename__ = "delivery_logs"
    __table_args__ = (
        Index("idx_delivery_logs_job_status", "job_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("campaign_jobs.id"), nullable=False)
    participant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    job: Mapped["CampaignJob"] = relationship(back_populates="logs")


class Automation(TimestampMixin, Base):
    """Declarative rule that creates campaign jobs on a schedule or trigger."""

    __tablename__ = "automations"
    __table_args__ = (
        Index("idx_automations_due", "is_active", "next_run_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    template_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    channel: Mapped[str] = mapped_column(String(20), default="email", nullable=False)
    kind: Mapped[str] = mapped_column(String(30), default="time_based", nullable=False)  # time_based, event_based
    time_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # absolute, relative
    send_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    relative_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    trigger_kind: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    segmentation: Mapped[Optional[dict]] = mapped_column(JSON_VARIANT, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class FollowUp(TimestampMixin, Base):
    """Re-send rule attached to an earlier campaign job."""

    __tablename__ = "follow_ups"
    __table_args__ = (
        Index("idx_follow_ups_due", "is_active", "next_run_at"),
        Index("idx_follow_ups_base_job", "base_job_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    template_id: Mapped[int] = mapped_column(Integer, nullable=False)
    base_job_id: Mapped[int] = mapped_column(ForeignKey("campaign_jobs.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)  # on_fail, on_success, after_hours
    delay_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    segmentation: Mapped[Optional[dict]] = mapped_column(JSON_VARIANT, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    base_job: Mapped["CampaignJob"] = relationship()


class QueueJob(TimestampMixin, Base):
    """Row of the generic background job queue."""

    __tablename__ = "worker_jobs"
    __table_args__ = (
        Index("idx_worker_jobs_status_type_created", "status", "type", "created_at"),
        # At most one live job per idempotency key
        Index(
            "uq_worker_jobs_live_idempotency_key",
            "idempotency_key",
            unique=True,
            postgresql_where=text("status IN ('queued', 'processing')"),
            sqlite_where=text("status IN ('queued', 'processing')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON_VARIANT, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), default=QueueStatus.QUEUED, nullable=False)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
