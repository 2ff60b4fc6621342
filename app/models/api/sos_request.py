# app/models/api/sos_request.py
from typing import Any

from pydantic import BaseModel, Field

from app.models.domain.sos_domain import Location, UserProfileSnapshot


class SOSTriggerRequest(BaseModel):
    """Request body for POST /sos/trigger."""

    location: Location
    user_profile: UserProfileSnapshot
    metadata: dict[str, Any] | None = Field(default=None, description="Free-form device context")

    @property
    def is_test(self) -> bool:
        return bool((self.metadata or {}).get("is_test"))


class AcknowledgeRequest(BaseModel):
    """Request body for POST /sos/events/{event_id}/acknowledge."""

    message: str | None = Field(default=None, max_length=500)
