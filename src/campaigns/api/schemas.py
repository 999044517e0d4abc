"""Request bodies for the HTTP triggers."""
from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: int = Field(alias="jobId")


class DrainRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[str] = None
    max_jobs: Optional[int] = Field(default=None, alias="maxJobs", ge=1, le=100)


class CreateJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: int = Field(alias="eventId")
    template_id: int = Field(alias="templateId")
    channel: Literal["email", "sms", "chat"] = "email"
    segmentation: Optional[Dict[str, Any]] = None


class RetryJobRequest(BaseModel):
    mode: Literal["failed_only", "full"] = "failed_only"


class FailJobRequest(BaseModel):
    reason: Optional[str] = None


class TriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: int = Field(alias="eventId")
    trigger_kind: str = Field(alias="triggerKind")
    participant_id: int = Field(alias="participantId")
