# app/models/api/sos_response.py
from pydantic import BaseModel

from app.models.domain.sos_domain import CallAttempt, SOSAcknowledgement, SOSEvent, SOSLocation


class SOSTriggerResponse(BaseModel):
    """Response for POST /sos/trigger. Counts are attempted, not delivered."""

    success: bool
    event_id: str
    family_alerts_sent: int
    call_only_contacts: int
    email_notifications: int
    real_time_enabled: bool


class SOSErrorResponse(BaseModel):
    success: bool = False
    error: str


class AcknowledgeResponse(BaseModel):
    success: bool
    message: str | None = None
    already_acknowledged: bool = False
    acknowledgement: SOSAcknowledgement
    call_sequence_paused: bool


class ResolveResponse(BaseModel):
    success: bool
    event_id: str
    status: str


class SOSEventDetailResponse(BaseModel):
    """Response for GET /sos/events/{event_id} (polling recovery for offline members)."""

    event: SOSEvent
    locations: list[SOSLocation]
    acknowledgements: list[SOSAcknowledgement]
    call_attempts: list[CallAttempt] = []
