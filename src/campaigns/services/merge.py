"""Template merge-variable substitution and deep-link building."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaigns.config import DEFAULT_PUBLIC_BASE_URL
from campaigns.db.models import Event, Participant, TableAssignment, Template

MERGE_TOKEN = re.compile(r"\{\{(\w+)\}\}")

UNASSIGNED_TABLE = "Unassigned"

KNOWN_VARIABLES = (
    "name",
    "email",
    "company",
    "phone",
    "event_title",
    "event_code",
    "tableName",
    "myTableUrl",
    "qr_url",
    "participant_id",
)


@dataclass(frozen=True)
class MergedContent:
    subject: str
    html: str
    text: Optional[str] = None


def apply_merge_variables(text: Optional[str], variables: Mapping[str, Any]) -> str:
    """Replace ``{{key}}`` tokens. Missing or None values leave the token as-is."""
    if not text:
        return text or ""

    def _sub(match: re.Match) -> str:
        value = variables.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return MERGE_TOKEN.sub(_sub, text)


def extract_merge_variables(text: Optional[str]) -> List[str]:
    """Unique variable names in order of first appearance."""
    seen: List[str] = []
    for name in MERGE_TOKEN.findall(text or ""):
        if name not in seen:
            seen.append(name)
    return seen


def validate_merge_variables(text: Optional[str], variables: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    missing = [name for name in extract_merge_variables(text) if variables.get(name) is None]
    return not missing, missing


def merge_template(template: Template, variables: Mapping[str, Any]) -> MergedContent:
    return MergedContent(
        subject=apply_merge_variables(template.subject, variables),
        html=apply_merge_variables(template.body_html, variables),
        text=apply_merge_variables(template.body_text, variables) if template.body_text else None,
    )


def build_my_table_link(event_code: str, participant_id: int, base_url: Optional[str] = None) -> str:
    base = (base_url or DEFAULT_PUBLIC_BASE_URL).rstrip("/")
    return f"{base}/events/{event_code}/my-table?pid={participant_id}"


def lookup_table_name(session: Session, event_id: int, participant_id: int) -> Optional[str]:
    """Name of the participant's confirmed (non-draft) table, if any."""
    stmt = (
        select(TableAssignment)
        .where(
            TableAssignment.event_id == event_id,
            TableAssignment.participant_id == participant_id,
            TableAssignment.is_draft.is_(False),
        )
        .order_by(TableAssignment.id.desc())
        .limit(1)
    )
    assignment = session.execute(stmt).scalar_one_or_none()
    if assignment is None or assignment.table is None:
        return None
    return assignment.table.name


def build_merge_variables(
    participant: Participant,
    event: Event,
    table_name: Optional[str] = None,
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    link = build_my_table_link(event.code, participant.id, base_url)
    return {
        "name": participant.name,
        "email": participant.email,
        "phone": participant.phone,
        "company": participant.company,
        "event_title": event.title,
        "event_code": event.code,
        "tableName": table_name or UNASSIGNED_TABLE,
        "myTableUrl": link,
        "qr_url": link,
        "participant_id": participant.id,
    }
