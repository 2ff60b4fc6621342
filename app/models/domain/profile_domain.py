from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ContactType(str, Enum):
    CALL_ONLY = "call_only"
    EMAIL_ONLY = "email_only"
    BOTH = "both"


class MembershipStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REMOVED = "removed"


class BillingStatus(str, Enum):
    ACTIVE = "active"
    GRACE = "grace"
    PAST_DUE = "past_due"


class Profile(BaseModel):
    """One row of `profiles`. Updated in place, never deleted."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    location_sharing_enabled: bool = True
    subscription_regions: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class EmergencyContact(BaseModel):
    """Emergency contact owned by exactly one profile."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    name: str
    phone: str | None = None
    email: str | None = None
    relationship: str | None = None
    priority: int = 1
    type: ContactType = ContactType.BOTH


class FamilyGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    owner_user_id: str
    seat_quota: int = 0


class FamilyMember(BaseModel):
    """A family_memberships row joined with the member's profile name."""

    model_config = ConfigDict(extra="ignore")

    id: str
    group_id: str
    user_id: str
    status: MembershipStatus
    billing_status: BillingStatus = BillingStatus.ACTIVE
    first_name: str | None = None
    last_name: str | None = None

    @property
    def sharing_permitted(self) -> bool:
        # past_due pauses location sharing until billing recovers
        return self.billing_status != BillingStatus.PAST_DUE
