"""Small helpers shared across services and jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a stored timestamp to an aware UTC datetime.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; those are stored as UTC so they just get the tzinfo attached.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def mask_address(address: Optional[str]) -> str:
    """Mask an e-mail address or phone number for log output."""
    if not address:
        return "<none>"
    if "@" in address:
        local, _, domain = address.partition("@")
        return f"{local[:2]}***@{domain}"
    digits = address.strip()
    if len(digits) <= 4:
        return "***"
    return f"{digits[:3]}****{digits[-4:]}"
