"""Automation rules: next-run computation, due queries and event triggers."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from campaigns.db.models import Automation, CampaignJob, Event
from campaigns.services.campaign_jobs import CampaignJobService
from campaigns.services.segmentation import SegmentationConfig
from campaigns.utils import as_utc, utcnow

TRIGGER_KINDS = ("on_registration_completed", "on_table_assigned")


def compute_next_run(automation: Automation, event: Optional[Event], now: datetime) -> Optional[datetime]:
    """Next firing time strictly after ``now``, or None when there is none."""
    if automation.kind != "time_based" or not automation.is_active:
        return None

    if automation.time_type == "absolute":
        send_at = as_utc(automation.send_at)
        if send_at is not None and send_at > now:
            return send_at
        return None

    if automation.time_type == "relative":
        if event is None or event.start_date is None or automation.relative_days is None:
            return None
        candidate = as_utc(event.start_date) + timedelta(days=automation.relative_days)
        if candidate > now:
            return candidate
        return None

    return None


class AutomationService:
    """Static helpers around the automations table."""

    @staticmethod
    def create_automation(session: Session, **fields: Any) -> Automation:
        automation = Automation(**fields)
        session.add(automation)
        session.flush()
        AutomationService.arm(session, automation)
        return automation

    @staticmethod
    def arm(session: Session, automation: Automation, now: Optional[datetime] = None) -> Optional[datetime]:
        """Recompute ``next_run_at`` after a save or (de)activation."""
        now = now or utcnow()
        event = session.get(Event, automation.event_id)
        automation.next_run_at = compute_next_run(automation, event, now)
        session.commit()
        logger.debug(f"[AUTOMATION] Automation {automation.id} armed for {automation.next_run_at}")
        return automation.next_run_at

    @staticmethod
    def get_due(session: Session, now: datetime) -> List[Automation]:
        stmt = (
            select(Automation)
            .where(
                Automation.is_active.is_(True),
                Automation.next_run_at.is_not(None),
                Automation.next_run_at <= now,
            )
            .order_by(Automation.next_run_at, Automation.id)
        )
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def record_run(session: Session, automation: Automation, now: datetime, next_run: Optional[datetime]) -> None:
        automation.last_run_at = now
        automation.next_run_at = next_run
        session.commit()

    @staticmethod
    def schedule_stats(session: Session) -> Dict[str, Any]:
        active, min_next, max_next = session.execute(
            select(
                func.count(Automation.id),
                func.min(Automation.next_run_at),
                func.max(Automation.next_run_at),
            ).where(Automation.is_active.is_(True))
        ).one()
        return {
            "activeAutomations": active,
            "minNextRun": as_utc(min_next).isoformat() if min_next else None,
            "maxNextRun": as_utc(max_next).isoformat() if max_next else None,
        }

    @staticmethod
    def fire_trigger(
        session: Session,
        *,
        event_id: int,
        trigger_kind: str,
        participant_id: int,
    ) -> List[CampaignJob]:
        """Create one job per active event-based automation listening for ``trigger_kind``."""
        stmt = (
            select(Automation)
            .where(
                Automation.event_id == event_id,
                Automation.kind == "event_based",
                Automation.trigger_kind == trigger_kind,
                Automation.is_active.is_(True),
            )
            .order_by(Automation.id)
        )
        jobs = []
        for automation in session.execute(stmt).scalars().all():
            job = CampaignJobService.create_job(
                session,
                event_id=event_id,
                template_id=automation.template_id,
                channel=automation.channel,
                segmentation=SegmentationConfig.custom([participant_id]),
                source="automation",
            )
            automation.last_run_at = utcnow()
            session.commit()
            jobs.append(job)
        if jobs:
            logger.info(f"[AUTOMATION] {trigger_kind} for participant {participant_id} created {len(jobs)} job(s)")
        return jobs
