# app/models/api/contact_request.py
from pydantic import BaseModel, Field, model_validator

from app.models.domain.profile_domain import ContactType, EmergencyContact


class EmergencyContactCreateRequest(BaseModel):
    """Request body for POST /contacts."""

    name: str = Field(..., min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=32)
    email: str | None = Field(default=None, max_length=254)
    relationship: str | None = Field(default=None, max_length=50)
    priority: int = Field(default=1, ge=1)
    type: ContactType = ContactType.BOTH

    @model_validator(mode="after")
    def _reachable(self):
        if self.type == ContactType.CALL_ONLY and not self.phone:
            raise ValueError("call_only contacts need a phone number")
        if self.type == ContactType.EMAIL_ONLY and not self.email:
            raise ValueError("email_only contacts need an email address")
        if not (self.phone or self.email):
            raise ValueError("a contact needs a phone number or an email address")
        return self


class EmergencyContactListResponse(BaseModel):
    contacts: list[EmergencyContact]
