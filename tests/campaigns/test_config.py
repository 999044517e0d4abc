import pytest

from campaigns.config import DEFAULT_PUBLIC_BASE_URL, Settings, load_settings

ENV_VARS = (
    "CRON_SECRET",
    "PUBLIC_BASE_URL",
    "NEXT_PUBLIC_BASE_URL",
    "SMS_PROVIDER",
    "RESEND_API_KEY",
    "EMAIL_RATE_LIMIT_MS",
    "MESSAGE_RATE_LIMIT_MS",
    "CONSECUTIVE_FAILURE_THRESHOLD",
    "QUEUE_MAX_JOBS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings()

    assert settings.cron_secret is None
    assert settings.public_base_url == DEFAULT_PUBLIC_BASE_URL
    assert settings.delivery.email_delay_seconds == 0.15
    assert settings.delivery.message_delay_seconds == 0.5
    assert settings.delivery.failure_threshold == 20
    assert settings.queue.max_jobs == 10


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    monkeypatch.setenv("NEXT_PUBLIC_BASE_URL", "https://fallback.example.com")
    monkeypatch.setenv("SMS_PROVIDER", "Twilio")
    monkeypatch.setenv("EMAIL_RATE_LIMIT_MS", "250")
    monkeypatch.setenv("RESEND_API_KEY", "   ")

    settings = load_settings()

    assert settings.cron_secret == "s3cret"
    assert settings.public_base_url == "https://fallback.example.com"
    assert settings.sms_provider == "twilio"
    assert settings.delivery.email_delay_seconds == 0.25
    assert settings.email.api_key is None


@pytest.mark.parametrize("name,value", [
    ("SMS_PROVIDER", "pigeon"),
    ("CONSECUTIVE_FAILURE_THRESHOLD", "0"),
    ("QUEUE_MAX_JOBS", "many"),
])
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(RuntimeError, match="Invalid settings"):
        load_settings()


def test_delay_for_channel():
    settings = Settings()

    assert settings.delay_for_channel("email") == 0.15
    assert settings.delay_for_channel("sms") == settings.delay_for_channel("chat") == 0.5
