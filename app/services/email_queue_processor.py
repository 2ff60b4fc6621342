"""
Email queue processor.

Drains the email_queue table through the email provider. Three entry points
mirror how the queue is driven:

- process_queue: the periodic sweep of due pending rows
- send_single: immediate delivery of one just-enqueued row
- retry_failed: give failed rows another go, up to max_retries

Rows move pending -> processing -> sent|failed. The pending -> processing
step is a conditional claim, so a row can only ever be delivered by one
processor at a time even when the worker and a request race for it. A claim
is a lease: rows left in processing longer than claim_lease_seconds (a crash
mid-send, an outcome that could not be written) are moved to failed by
recover_stale_claims so retry_failed picks them up.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from app.db.helpers import DatabaseError, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.email_queue_domain import (
    DEFAULT_PRIORITY,
    EmailQueueItem,
    EmailQueueItemCreate,
)
from app.repositories.email_queue_repository import EmailQueueRepository
from app.services.providers.resend_email_provider import EmailProviderError, ResendEmailProvider

logger = get_logger(__name__)


class EmailQueueError(Exception):
    """Request against the queue that cannot be honoured (unknown row, wrong state)."""

    def __init__(self, message: str, status_code: int = 409):
        super().__init__(message)
        self.status_code = status_code


class QueueDeliveryError(Exception):
    """Delivery of a claimed row failed; the failure is already recorded on the row."""

    def __init__(self, message: str, email_id: str, terminal: bool = False):
        super().__init__(message)
        self.email_id = email_id
        self.terminal = terminal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmailQueueProcessor:
    def __init__(
        self,
        repository: EmailQueueRepository,
        provider: ResendEmailProvider,
        *,
        max_retries: int = 3,
        default_priority: int = DEFAULT_PRIORITY,
        claim_lease_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.provider = provider
        self.max_retries = max_retries
        self.default_priority = default_priority
        self.claim_lease_seconds = claim_lease_seconds
        self.clock = clock

    async def enqueue(self, item: EmailQueueItemCreate) -> EmailQueueItem:
        queued = await self.repository.insert(
            recipient_email=item.recipient_email,
            sender_email=item.sender_email,
            subject=item.subject,
            body=item.body,
            text_content=item.text_content,
            priority=item.priority if item.priority is not None else self.default_priority,
            scheduled_at=item.scheduled_at or self.clock(),
            event_id=item.event_id,
        )
        logger.info(
            "Email enqueued",
            email_id=queued.id,
            priority=queued.priority,
            event_id=queued.event_id,
        )
        return queued

    @with_db_retry(max_retries=3)
    async def _record_failed(self, email_id: str, error_message: str) -> None:
        await self.repository.mark_failed(email_id, error_message)

    @with_db_retry(max_retries=3)
    async def _record_sent(self, email_id: str, message_id: str | None) -> None:
        await self.repository.mark_sent(email_id, message_id)

    async def _deliver(self, item: EmailQueueItem) -> str | None:
        """
        Send a claimed row and record the outcome. Returns the provider message id.

        Any send error, not only EmailProviderError, moves the row to failed so
        a claimed row never stays in processing. If the outcome cannot be
        written even after retries, the row is left for recover_stale_claims.
        """
        try:
            result = await self.provider.send(
                to=item.recipient_email,
                subject=item.subject,
                html=item.body,
                text=item.text_content,
                sender=item.sender_email,
            )
        except Exception as e:
            if isinstance(e, EmailProviderError):
                provider_response = e.response_data or {"error": str(e)}
            else:
                provider_response = {"error": str(e), "error_type": type(e).__name__}

            await self._record_failed(item.id, str(e))
            await self.repository.log_delivery(
                item,
                "failed",
                provider_response=provider_response,
                error_message=str(e),
            )

            terminal = item.retry_count >= self.max_retries
            if terminal:
                logger.error(
                    "Email permanently failed, retries exhausted",
                    email_id=item.id,
                    retry_count=item.retry_count,
                    event_id=item.event_id,
                    error=str(e),
                )
            else:
                logger.warning(
                    "Email delivery failed",
                    email_id=item.id,
                    retry_count=item.retry_count,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            raise QueueDeliveryError(str(e), email_id=item.id, terminal=terminal) from e

        try:
            await self._record_sent(item.id, result.message_id)
        except DatabaseError as e:
            # Already delivered; the lease sweep will surface the row as failed
            logger.error(
                "Email sent but not recorded",
                email_id=item.id,
                message_id=result.message_id,
                event_id=item.event_id,
                error=str(e),
            )
        await self.repository.log_delivery(
            item,
            "sent",
            provider_message_id=result.message_id,
            provider_response=result.response,
        )
        logger.info("Email sent", email_id=item.id, message_id=result.message_id, event_id=item.event_id)
        return result.message_id

    async def process_queue(self, max_items: int = 10) -> dict[str, int]:
        due = await self.repository.list_due_pending(self.clock(), max_items)
        if not due:
            logger.debug("No pending emails to process")
            return {"processed": 0, "sent": 0, "failed": 0}

        processed = sent = failed = 0
        for candidate in due:
            claimed = await self.repository.claim(candidate.id)
            if claimed is None:
                logger.debug("Email claimed elsewhere, skipping", email_id=candidate.id)
                continue

            processed += 1
            try:
                await self._deliver(claimed)
                sent += 1
            except QueueDeliveryError:
                failed += 1
            except DatabaseError as e:
                failed += 1
                logger.error("Could not record email outcome", email_id=claimed.id, error=str(e))

        logger.info("Email queue processed", processed=processed, sent=sent, failed=failed)
        return {"processed": processed, "sent": sent, "failed": failed}

    async def send_single(self, email_id: str) -> dict[str, Any]:
        claimed = await self.repository.claim(email_id)
        if claimed is None:
            existing = await self.repository.get(email_id)
            if existing is None:
                raise EmailQueueError(f"Email not found: {email_id}", status_code=404)
            raise EmailQueueError(
                f"Email {email_id} is {existing.status.value}, not pending", status_code=409
            )

        message_id = await self._deliver(claimed)
        return {"success": True, "email_id": email_id, "message_id": message_id}

    async def retry_failed(self, max_items: int = 10) -> dict[str, int]:
        candidates = await self.repository.list_retryable(self.max_retries, max_items)
        if not candidates:
            return {"retried": 0, "succeeded": 0}

        retried = succeeded = 0
        for candidate in candidates:
            reset = await self.repository.reset_for_retry(candidate.id, self.max_retries)
            if reset is None:
                continue
            retried += 1

            claimed = await self.repository.claim(reset.id)
            if claimed is None:
                # Picked up by a concurrent sweep after the reset; it owns delivery now
                continue
            try:
                await self._deliver(claimed)
                succeeded += 1
            except QueueDeliveryError:
                continue
            except DatabaseError as e:
                logger.error("Could not record email outcome", email_id=claimed.id, error=str(e))

        logger.info("Failed emails retried", retried=retried, succeeded=succeeded)
        return {"retried": retried, "succeeded": succeeded}

    async def list_exhausted(self, limit: int = 50) -> list[EmailQueueItem]:
        return await self.repository.list_exhausted(self.max_retries, limit)

    async def recover_stale_claims(self) -> int:
        """Fail rows whose processing claim outlived the lease. Returns how many."""
        recovered = await self.repository.release_stale_claims(self.claim_lease_seconds)
        for email_id in recovered:
            logger.warning(
                "Email claim expired, marked failed",
                email_id=email_id,
                lease_seconds=self.claim_lease_seconds,
            )
        return len(recovered)
