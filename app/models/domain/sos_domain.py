from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SOSStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Location(BaseModel):
    """A single position reading as reported by the device."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    address: str | None = None

    def maps_link(self) -> str:
        return f"https://maps.google.com/?q={self.lat},{self.lng}"


class UserProfileSnapshot(BaseModel):
    """Profile snapshot the device sends along with the trigger."""

    first_name: str
    last_name: str
    phone: str | None = None
    emergency_contacts: list[dict[str, Any]] | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "your contact"


class SOSEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    group_id: str | None = None
    status: SOSStatus = SOSStatus.ACTIVE
    trigger_location: dict[str, Any] | None = None
    address: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == SOSStatus.ACTIVE


class SOSLocation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    event_id: str
    lat: float
    lng: float
    accuracy: float | None = None
    address: str | None = None
    recorded_at: datetime | None = None


class SOSAcknowledgement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    event_id: str
    family_user_id: str
    message: str
    acknowledged_at: datetime | None = None


class CallAttemptStatus(str, Enum):
    QUEUED = "queued"
    RINGING = "ringing"
    ANSWERED = "answered"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    FAILED = "failed"
    CANCELED = "canceled"
    SIMULATED = "simulated"


class CallAttempt(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    event_id: str
    attempt_order: int
    contact_id: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    call_sid: str | None = None
    status: CallAttemptStatus = CallAttemptStatus.QUEUED
    error: str | None = None
    answered_at: datetime | None = None
    created_at: datetime | None = None
