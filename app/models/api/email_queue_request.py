# app/models/api/email_queue_request.py
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class EmailProcessorRequest(BaseModel):
    """Request body for POST /email-processor."""

    action: Literal["process_queue", "send_single", "retry_failed"]
    email_id: str | None = None
    max_emails: int = Field(default=10, ge=1, le=100)

    @model_validator(mode="after")
    def _email_id_for_single(self):
        if self.action == "send_single" and not self.email_id:
            raise ValueError("email_id is required for send_single action")
        return self
