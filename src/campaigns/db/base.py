"""Database configuration and session management."""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Dict

from dotenv import load_dotenv
from sqlalchemy import DateTime, MetaData, create_engine, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from campaigns.utils import utcnow

# Load environment variables
load_dotenv()


class Base(DeclarativeBase):
    """Shared base for all models."""

    metadata = MetaData()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///campaigns.db")


def engine_options(database_url: str) -> Dict[str, Any]:
    """create_engine() keyword arguments for a Postgres or SQLite URL."""
    options: Dict[str, Any] = {
        "echo": os.getenv("DB_ECHO", "").lower() in ("1", "true", "yes"),
        "future": True,
    }
    if database_url.startswith("postgresql"):
        options.update({
            "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "3600")),
            "pool_pre_ping": True,
        })
        ssl_mode = os.getenv("DB_SSL_MODE", "prefer")  # 'require' for managed hosts
        if ssl_mode:
            options["connect_args"] = {"sslmode": ssl_mode}
    else:
        # Queue handler threads and API worker threads share sqlite connections
        options["connect_args"] = {"check_same_thread": False}
    return options


def build_engine(database_url: str = DATABASE_URL) -> Engine:
    return create_engine(database_url, **engine_options(database_url))


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
