from __future__ import annotations

import secrets
from typing import Generator, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from campaigns.config import Settings, load_settings
from campaigns.db.base import SessionLocal
from campaigns.jobs.delivery import DeliveryWorker
from campaigns.jobs.queue import QueueRunner
from campaigns.jobs.scheduler import Scheduler


def get_settings() -> Settings:
    return load_settings()


def get_session_factory():
    """Factory used by workers that open their own sessions."""
    return SessionLocal


def get_db() -> Generator:
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


bearer_scheme = HTTPBearer(auto_error=False)


def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    """Bearer-token guard for trigger endpoints. Open when CRON_SECRET is unset."""
    if not settings.cron_secret:
        return
    token = credentials.credentials if credentials else ""
    if not secrets.compare_digest(token.encode(), settings.cron_secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_delivery_worker(
    settings: Settings = Depends(get_settings),
    session_factory=Depends(get_session_factory),
) -> DeliveryWorker:
    return DeliveryWorker(session_factory=session_factory, settings=settings)


def get_scheduler(session_factory=Depends(get_session_factory)) -> Scheduler:
    return Scheduler(session_factory=session_factory)


def get_queue_runner(
    settings: Settings = Depends(get_settings),
    session_factory=Depends(get_session_factory),
) -> QueueRunner:
    return QueueRunner(session_factory, timeout_seconds=settings.queue.timeout_seconds)
