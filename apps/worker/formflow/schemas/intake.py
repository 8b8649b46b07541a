"""Schemas for form submissions and intake control requests."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

JOTFORM_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

ClientTypeLiteral = Literal["buyer", "seller"]


def parse_submission_time(value: Any) -> datetime:
    """Parse a submission timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        try:
            parsed = datetime.strptime(raw, JOTFORM_TIME_FORMAT)
        except ValueError:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_submission_time(value: datetime) -> str:
    """Format a datetime the way the form service filters expect."""
    return value.astimezone(timezone.utc).strftime(JOTFORM_TIME_FORMAT)


class Submission(BaseModel):
    """One completed form, read-only. answers: {field_key: {"answer": value, ...}}."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    form_id: str
    created_at: datetime
    answers: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "form_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, value: Any) -> datetime:
        return parse_submission_time(value)

    @field_validator("answers", mode="before")
    @classmethod
    def _coerce_answers(cls, value: Any) -> dict[str, Any]:
        # The form service returns [] instead of {} for empty answer sets
        if not value:
            return {}
        return dict(value)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict, used for dead letters and workflow attachments."""
        return {
            "id": self.id,
            "form_id": self.form_id,
            "created_at": self.created_at.isoformat(),
            "answers": self.answers,
        }


class ClientIdentity(BaseModel):
    email: str | None = None
    name: str | None = None
    phone: str | None = None


class TrackedForm(BaseModel):
    model_config = ConfigDict(frozen=True)

    form_id: str
    client_type: ClientTypeLiteral


class ManualSubmissionRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    form_type: ClientTypeLiteral = "buyer"


class OnboardingRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    client_type: ClientTypeLiteral = "buyer"
    phone: str | None = None
    agent_id: str | None = None
