from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Higher priority is sent sooner
DEFAULT_PRIORITY = 5
URGENT_PRIORITY = 10


class EmailQueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class EmailQueueItemCreate(BaseModel):
    """What a caller hands to enqueue()."""

    recipient_email: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    text_content: str | None = None
    sender_email: str | None = None
    priority: int | None = None
    scheduled_at: datetime | None = None
    event_id: str | None = None

    @field_validator("recipient_email", "subject", "body")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class EmailQueueItem(BaseModel):
    """One row of `email_queue`."""

    model_config = ConfigDict(extra="ignore")

    id: str
    recipient_email: str
    sender_email: str | None = None
    subject: str
    body: str
    text_content: str | None = None
    status: EmailQueueStatus
    priority: int = DEFAULT_PRIORITY
    scheduled_at: datetime
    retry_count: int = 0
    error_message: str | None = None
    provider_message_id: str | None = None
    sent_at: datetime | None = None
    event_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
