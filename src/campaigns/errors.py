"""Exception types raised by the campaign services and jobs."""

from __future__ import annotations

from typing import Optional


class CampaignError(Exception):
    """Base error for the delivery pipeline.

    ``code`` is a stable machine-readable tag, ``status_code`` the HTTP status
    the API layer answers with.
    """

    status_code = 500
    default_code = "CAMPAIGN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, job_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.job_id = job_id


class JobNotFoundError(CampaignError):
    status_code = 404
    default_code = "JOB_NOT_FOUND"


class JobStateError(CampaignError):
    """The job is not in a state that allows the requested transition."""

    status_code = 409
    default_code = "JOB_STATE_CONFLICT"


class TemplateNotFoundError(CampaignError):
    status_code = 404
    default_code = "TEMPLATE_NOT_FOUND"


class EventNotFoundError(CampaignError):
    status_code = 404
    default_code = "EVENT_NOT_FOUND"


class RecipientLoadError(CampaignError):
    default_code = "RECIPIENT_LOAD_FAILED"


class ConfigurationError(CampaignError):
    default_code = "NOT_CONFIGURED"
