"""
Emergency emails to contacts.

Every contact with an address gets one, whatever their contact type. Each
email goes through the queue at top priority, so a failed immediate send is
left as a failed row that retry_failed will pick up later.
"""

import asyncio
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.models.domain.email_queue_domain import URGENT_PRIORITY, EmailQueueItemCreate
from app.models.domain.profile_domain import EmergencyContact
from app.models.domain.sos_domain import Location, UserProfileSnapshot
from app.services.email_queue_processor import EmailQueueError, EmailQueueProcessor
from app.services.sos.templates import render_emergency_email

logger = get_logger(__name__)


class EmergencyEmailNotifier:
    def __init__(self, processor: EmailQueueProcessor, sender: str | None = None):
        self.processor = processor
        self.sender = sender

    async def _send_to(self, event_id: str, contact: EmergencyContact, rendered) -> str:
        item = await self.processor.enqueue(
            EmailQueueItemCreate(
                recipient_email=contact.email,
                sender_email=self.sender,
                subject=rendered.subject,
                body=rendered.html,
                text_content=rendered.text,
                priority=URGENT_PRIORITY,
                event_id=event_id,
            )
        )
        try:
            await self.processor.send_single(item.id)
        except EmailQueueError:
            # A concurrent queue sweep claimed the row first and is delivering it
            return "deferred"
        return "sent"

    async def notify(
        self,
        event_id: str,
        contacts: list[EmergencyContact],
        user_profile: UserProfileSnapshot,
        location: Location | None,
        *,
        is_test: bool = False,
    ) -> dict[str, Any]:
        with_email = [c for c in contacts if c.email]
        skipped = len(contacts) - len(with_email)
        rendered = render_emergency_email(user_profile.full_name, location, is_test=is_test)

        outcomes = await asyncio.gather(
            *(self._send_to(event_id, contact, rendered) for contact in with_email),
            return_exceptions=True,
        )

        sent = failed = deferred = 0
        for contact, outcome in zip(with_email, outcomes):
            if isinstance(outcome, BaseException):
                failed += 1
                logger.warning(
                    "Emergency email failed",
                    event_id=event_id,
                    contact_id=contact.id,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
            elif outcome == "deferred":
                deferred += 1
            else:
                sent += 1

        logger.info(
            "Emergency emails processed",
            event_id=event_id,
            emails_attempted=len(with_email),
            emails_sent=sent,
            emails_failed=failed,
            skipped_no_email=skipped,
            is_test=is_test,
        )
        return {
            "emails_attempted": len(with_email),
            "emails_sent": sent,
            "emails_failed": failed,
            "emails_deferred": deferred,
            "skipped_no_email": skipped,
        }
