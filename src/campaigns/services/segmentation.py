"""Resolve a segmentation config into the participants of an event."""
from __future__ import annotations

from typing import Any, List, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from campaigns.db.models import Participant

RULE_TYPES = (
    "all",
    "registered_only",
    "invited_only",
    "vip_only",
    "company",
    "language",
    "custom",
)


class SegmentationRule(BaseModel):
    type: str = "all"
    values: Optional[List[str]] = None

    @field_validator("values", mode="before")
    @classmethod
    def _stringify_values(cls, value):
        # Recipient ids are often stored as numbers
        if isinstance(value, list):
            return [str(v) for v in value if v is not None]
        return value


class SegmentationConfig(BaseModel):
    """Wire format: ``{"rules": [{"type": ..., "values": [...]}]}``."""

    rules: List[SegmentationRule] = []

    @classmethod
    def all(cls) -> "SegmentationConfig":
        return cls(rules=[SegmentationRule(type="all")])

    @classmethod
    def custom(cls, participant_ids) -> "SegmentationConfig":
        return cls(rules=[SegmentationRule(type="custom", values=[str(pid) for pid in participant_ids])])

    @classmethod
    def from_raw(cls, raw: Any) -> "SegmentationConfig":
        """Parse stored JSON. Anything unparseable targets the whole event."""
        if raw is None:
            return cls.all()
        if isinstance(raw, cls):
            return raw
        try:
            config = cls.model_validate(raw)
        except ValidationError:
            logger.warning(f"[SEGMENT] Malformed segmentation {raw!r}, falling back to 'all'")
            return cls.all()
        return config

    def primary_rule(self) -> SegmentationRule:
        if not self.rules:
            return SegmentationRule(type="all")
        if len(self.rules) > 1:
            logger.debug(f"[SEGMENT] {len(self.rules) - 1} extra rule(s) ignored, first rule applies")
        return self.rules[0]

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


def _parse_ids(values: Optional[List[str]]) -> List[int]:
    ids = []
    for value in values or []:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            logger.warning(f"[SEGMENT] Ignoring non-numeric recipient id {value!r}")
    return ids


def build_segment_query(event_id: int, config: SegmentationConfig) -> Select:
    stmt = select(Participant).where(
        Participant.event_id == event_id,
        Participant.is_active.is_(True),
    )
    rule = config.primary_rule()
    values = [v for v in (rule.values or []) if v]

    if rule.type == "registered_only":
        stmt = stmt.where(Participant.status == "registered")
    elif rule.type == "invited_only":
        stmt = stmt.where(Participant.status == "invited")
    elif rule.type == "vip_only":
        stmt = stmt.where(Participant.is_vip.is_(True))
    elif rule.type == "company":
        if values:
            stmt = stmt.where(Participant.company.in_(values))
    elif rule.type == "language":
        if values:
            stmt = stmt.where(Participant.language.in_(values))
    elif rule.type == "custom":
        # An empty custom list selects nobody
        stmt = stmt.where(Participant.id.in_(_parse_ids(values)))
    elif rule.type != "all":
        logger.warning(f"[SEGMENT] Unknown rule type '{rule.type}', treating as 'all'")

    return stmt


class SegmentationService:
    """Read-only queries against the participant table."""

    @staticmethod
    def resolve(session: Session, event_id: int, config: Any) -> List[Participant]:
        """Return the active participants of ``event_id`` selected by ``config``."""
        config = SegmentationConfig.from_raw(config)
        stmt = build_segment_query(event_id, config).order_by(Participant.id)
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def count(session: Session, event_id: int, config: Any) -> int:
        config = SegmentationConfig.from_raw(config)
        subq = build_segment_query(event_id, config).subquery()
        return session.execute(select(func.count()).select_from(subq)).scalar_one()

    @staticmethod
    def list_companies(session: Session, event_id: int) -> List[str]:
        stmt = (
            select(Participant.company)
            .where(
                Participant.event_id == event_id,
                Participant.is_active.is_(True),
                Participant.company.is_not(None),
                Participant.company != "",
            )
            .distinct()
            .order_by(Participant.company)
        )
        return list(session.execute(stmt).scalars().all())
