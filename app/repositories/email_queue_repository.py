"""
Persistence for the outbound email queue and its delivery log.

Every state transition is a conditional UPDATE ... RETURNING so two
processors racing for the same row can never both win it.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from app.db.pool import DatabasePoolManager
from app.infrastructure.observability.logging import get_logger
from app.models.domain.email_queue_domain import EmailQueueItem

logger = get_logger(__name__)


class EmailQueueRepositoryError(DatabaseError):
    """More specific exception for email queue persistence failures."""


class EmailQueueRepository:
    COLUMNS = """
        id, recipient_email, sender_email, subject, body, text_content, status,
        priority, scheduled_at, retry_count, error_message, provider_message_id,
        sent_at, event_id, created_at, updated_at
    """

    def __init__(self, db: DatabasePoolManager):
        self.db = db

    @staticmethod
    def _row_to_item(row: dict | None) -> EmailQueueItem | None:
        if not row:
            return None
        data = dict(row)
        data["id"] = str(data["id"])
        if data.get("event_id") is not None:
            data["event_id"] = str(data["event_id"])
        return EmailQueueItem(**data)

    async def insert(
        self,
        *,
        recipient_email: str,
        sender_email: str | None,
        subject: str,
        body: str,
        text_content: str | None,
        priority: int,
        scheduled_at: datetime,
        event_id: str | None,
    ) -> EmailQueueItem:
        row = await fetch_one(
            self.db,
            f"""
            INSERT INTO email_queue (
                recipient_email, sender_email, subject, body, text_content,
                status, priority, scheduled_at, retry_count, event_id
            )
            VALUES (%s, %s, %s, %s, %s, 'pending', %s, %s, 0, %s)
            RETURNING {self.COLUMNS}
            """,
            (recipient_email, sender_email, subject, body, text_content, priority, scheduled_at, event_id),
        )
        if not row:
            raise EmailQueueRepositoryError("Insert returned no row", operation="insert")
        return self._row_to_item(row)

    async def get(self, email_id: str) -> EmailQueueItem | None:
        row = await fetch_one(self.db, f"SELECT {self.COLUMNS} FROM email_queue WHERE id = %s", (email_id,))
        return self._row_to_item(row)

    async def list_due_pending(self, now: datetime, limit: int) -> list[EmailQueueItem]:
        rows = await fetch_all(
            self.db,
            f"""
            SELECT {self.COLUMNS}
            FROM email_queue
            WHERE status = 'pending' AND scheduled_at <= %s
            ORDER BY priority DESC, scheduled_at ASC
            LIMIT %s
            """,
            (now, limit),
        )
        return [self._row_to_item(row) for row in rows]

    async def claim(self, email_id: str) -> EmailQueueItem | None:
        """pending -> processing. None if another processor got there first."""
        row = await fetch_one(
            self.db,
            f"""
            UPDATE email_queue
            SET status = 'processing',
                updated_at = NOW()
            WHERE id = %s AND status = 'pending'
            RETURNING {self.COLUMNS}
            """,
            (email_id,),
        )
        return self._row_to_item(row)

    async def mark_sent(self, email_id: str, provider_message_id: str | None) -> None:
        await execute_query(
            self.db,
            """
            UPDATE email_queue
            SET status = 'sent',
                sent_at = NOW(),
                provider_message_id = %s,
                error_message = NULL,
                updated_at = NOW()
            WHERE id = %s AND status = 'processing'
            """,
            (provider_message_id, email_id),
        )

    async def mark_failed(self, email_id: str, error_message: str) -> None:
        await execute_query(
            self.db,
            """
            UPDATE email_queue
            SET status = 'failed',
                error_message = %s,
                updated_at = NOW()
            WHERE id = %s AND status = 'processing'
            """,
            ((error_message or "unknown error")[:1000], email_id),
        )

    async def release_stale_claims(self, lease_seconds: int) -> list[str]:
        """processing -> failed for claims older than the lease. Returns the ids."""
        rows = await fetch_all(
            self.db,
            """
            UPDATE email_queue
            SET status = 'failed',
                error_message = 'Processing claim expired before the outcome was recorded',
                updated_at = NOW()
            WHERE status = 'processing'
              AND updated_at < NOW() - make_interval(secs => %s)
            RETURNING id
            """,
            (lease_seconds,),
        )
        return [str(row["id"]) for row in rows]

    async def list_retryable(self, max_retries: int, limit: int) -> list[EmailQueueItem]:
        rows = await fetch_all(
            self.db,
            f"""
            SELECT {self.COLUMNS}
            FROM email_queue
            WHERE status = 'failed' AND retry_count < %s
            ORDER BY created_at ASC
            LIMIT %s
            """,
            (max_retries, limit),
        )
        return [self._row_to_item(row) for row in rows]

    async def reset_for_retry(self, email_id: str, max_retries: int) -> EmailQueueItem | None:
        """failed -> pending with retry_count + 1, never past the cap."""
        row = await fetch_one(
            self.db,
            f"""
            UPDATE email_queue
            SET status = 'pending',
                retry_count = retry_count + 1,
                error_message = NULL,
                updated_at = NOW()
            WHERE id = %s AND status = 'failed' AND retry_count < %s
            RETURNING {self.COLUMNS}
            """,
            (email_id, max_retries),
        )
        return self._row_to_item(row)

    async def list_exhausted(self, max_retries: int, limit: int) -> list[EmailQueueItem]:
        rows = await fetch_all(
            self.db,
            f"""
            SELECT {self.COLUMNS}
            FROM email_queue
            WHERE status = 'failed' AND retry_count >= %s
            ORDER BY updated_at DESC
            LIMIT %s
            """,
            (max_retries, limit),
        )
        return [self._row_to_item(row) for row in rows]

    async def log_delivery(
        self,
        item: EmailQueueItem,
        delivery_status: str,
        *,
        provider_message_id: str | None = None,
        provider_response: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        """Append to email_delivery_log. Best-effort: failures are only logged."""
        try:
            await execute_query(
                self.db,
                """
                INSERT INTO email_delivery_log (
                    email_queue_id, recipient_email, delivery_status,
                    provider_message_id, provider_response, error_message
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    item.id,
                    item.recipient_email,
                    delivery_status,
                    provider_message_id,
                    Jsonb(provider_response or {}),
                    error_message,
                ),
            )
        except DatabaseError as e:
            logger.warning("Failed to write email delivery log", email_id=item.id, error=str(e))
