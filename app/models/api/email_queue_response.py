# app/models/api/email_queue_response.py
from pydantic import BaseModel

from app.models.domain.email_queue_domain import EmailQueueItem


class ProcessQueueResponse(BaseModel):
    success: bool
    processed: int
    sent: int
    failed: int


class SendSingleResponse(BaseModel):
    success: bool
    email_id: str
    message_id: str | None = None


class RetryFailedResponse(BaseModel):
    success: bool
    retried: int
    succeeded: int


class ExhaustedEmailsResponse(BaseModel):
    """Failed rows past the retry cap, for operator follow-up."""

    count: int
    emails: list[EmailQueueItem]
