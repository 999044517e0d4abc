"""Configuration models for the campaign delivery pipeline."""

from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

# Load .env automatically on import (local dev)
load_dotenv()

DEFAULT_PUBLIC_BASE_URL = "https://events.anders.kr"


class EmailProviderConfig(BaseModel):
    """Transactional e-mail provider (Resend)."""

    api_key: Optional[str] = None
    from_address: str = "Event OS <no-reply@example.com>"
    api_url: str = "https://api.resend.com/emails"


class SolapiConfig(BaseModel):
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    from_number: Optional[str] = None
    api_url: str = "https://api.solapi.com/messages/v4/send"


class TwilioConfig(BaseModel):
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None


class KakaoConfig(BaseModel):
    """Chat-bot messaging (Kakao BizMessage)."""

    api_key: Optional[str] = None
    sender_key: Optional[str] = None
    template_id: Optional[str] = None
    api_url: str = "https://kapi.kakao.com/v2/api/talk/message/send"


class DeliveryConfig(BaseModel):
    """Pacing and circuit-breaker knobs for the delivery worker."""

    email_delay_seconds: float = Field(default=0.15, ge=0)
    message_delay_seconds: float = Field(default=0.5, ge=0)
    failure_threshold: int = Field(default=20, ge=1)
    checkpoint_every: int = Field(default=10, ge=1)


class QueueConfig(BaseModel):
    timeout_seconds: float = Field(default=300.0, gt=0)
    inter_run_delay_seconds: float = Field(default=0.1, ge=0)
    max_jobs: int = Field(default=10, ge=1)
    max_retries: int = Field(default=3, ge=0)


class Settings(BaseModel):
    """Global settings for the campaign pipeline."""

    cron_secret: Optional[str] = None
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL
    sms_provider: Literal["solapi", "twilio"] = "solapi"
    provider_timeout_seconds: float = Field(default=15.0, gt=0)

    email: EmailProviderConfig = EmailProviderConfig()
    solapi: SolapiConfig = SolapiConfig()
    twilio: TwilioConfig = TwilioConfig()
    kakao: KakaoConfig = KakaoConfig()
    delivery: DeliveryConfig = DeliveryConfig()
    queue: QueueConfig = QueueConfig()

    def delay_for_channel(self, channel: str) -> float:
        if channel == "email":
            return self.delivery.email_delay_seconds
        return self.delivery.message_delay_seconds


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_ms(name: str, default_ms: int) -> float:
    return int(os.getenv(name, str(default_ms))) / 1000.0


def load_settings() -> Settings:
    """Build Settings from environment variables (.env for local dev)."""
    try:
        return Settings(
            cron_secret=_env_str("CRON_SECRET"),
            public_base_url=(
                _env_str("PUBLIC_BASE_URL")
                or _env_str("NEXT_PUBLIC_BASE_URL")
                or DEFAULT_PUBLIC_BASE_URL
            ),
            sms_provider=os.getenv("SMS_PROVIDER", "solapi").lower(),
            provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "15")),
            email=EmailProviderConfig(
                api_key=_env_str("RESEND_API_KEY"),
                from_address=os.getenv("MAIL_FROM_ADDRESS", "Event OS <no-reply@example.com>"),
            ),
            solapi=SolapiConfig(
                api_key=_env_str("SOLAPI_API_KEY"),
                api_secret=_env_str("SOLAPI_API_SECRET"),
                from_number=_env_str("SOLAPI_FROM_NUMBER"),
            ),
            twilio=TwilioConfig(
                account_sid=_env_str("TWILIO_ACCOUNT_SID"),
                auth_token=_env_str("TWILIO_AUTH_TOKEN"),
                from_number=_env_str("TWILIO_FROM_NUMBER"),
            ),
            kakao=KakaoConfig(
                api_key=_env_str("KAKAO_API_KEY"),
                sender_key=_env_str("KAKAO_SENDER_KEY"),
                template_id=_env_str("KAKAO_TEMPLATE_ID"),
            ),
            delivery=DeliveryConfig(
                email_delay_seconds=_env_ms("EMAIL_RATE_LIMIT_MS", 150),
                message_delay_seconds=_env_ms("MESSAGE_RATE_LIMIT_MS", 500),
                failure_threshold=int(os.getenv("CONSECUTIVE_FAILURE_THRESHOLD", "20")),
                checkpoint_every=int(os.getenv("PROGRESS_CHECKPOINT_EVERY", "10")),
            ),
            queue=QueueConfig(
                timeout_seconds=float(os.getenv("QUEUE_TIMEOUT_SECONDS", "300")),
                inter_run_delay_seconds=_env_ms("QUEUE_RATE_LIMIT_MS", 100),
                max_jobs=int(os.getenv("QUEUE_MAX_JOBS", "10")),
            ),
        )
    except ValidationError as exc:
        raise RuntimeError(f"Invalid settings: {exc}") from exc
    except ValueError as exc:
        # int()/float() on a malformed env value
        raise RuntimeError(f"Invalid settings: {exc}") from exc
