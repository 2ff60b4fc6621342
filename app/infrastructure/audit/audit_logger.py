"""
AuditLogger - audit trail for emergency actions.

Who triggered, acknowledged or resolved which SOS, and from where. Every
entry goes to the structured logs first and then to the audit_logs table.

Usage:
    await container.audit_logger.log(
        user_id=user_id,
        action="sos_triggered",
        resource_type="sos_event",
        resource_id=event_id,
        ip_address=request.state.ip_address,
        request_id=request.state.request_id,
    )

Design Principles:
- Write to both database (immutable) and structured logs (searchable)
- Never fail the request if audit logging fails
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from psycopg.types.json import Jsonb

from app.db.pool import DatabasePoolManager
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit logging service.

    Logs emergency actions to:
    1. Structured logs (stdout) - Real-time monitoring
    2. Database (audit_logs table) - Immutable, queryable
    """

    def __init__(self, db: DatabasePoolManager):
        self.db = db

    async def log(
        self,
        user_id: str | UUID,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Log an audit event to structured logs and the database.

        Returns:
            True if logged successfully, False if the database write failed (never raises)
        """
        if isinstance(user_id, UUID):
            user_id = str(user_id)

        logger.info(
            "Audit event",
            audit_action=action,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip_address,
            request_id=request_id,
        )

        try:
            async with self.db.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO audit_logs (
                        user_id, action, resource_type, resource_id,
                        ip_address, user_agent, request_id, metadata, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user_id,
                        action,
                        resource_type,
                        resource_id,
                        ip_address,
                        user_agent,
                        request_id,
                        Jsonb(metadata or {}),
                        datetime.now(timezone.utc),
                    ),
                )
            return True

        except Exception as e:
            # Never fail the request because of the audit trail
            logger.error(
                "Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                audit_action=action,
                user_id=user_id,
                fallback_data={
                    "user_id": user_id,
                    "action": action,
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "ip_address": ip_address,
                    "request_id": request_id,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
            return False
