"""
Persistence for SOS events and everything hanging off them.

Events are append-only apart from their status/acknowledgement/resolution
columns; locations, acknowledgements, call attempts and stored family alerts
are insert-only (call attempts also take provider status updates).
"""

from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.db.pool import DatabasePoolManager
from app.infrastructure.observability.logging import get_logger
from app.models.domain.sos_domain import (
    CallAttempt,
    Location,
    SOSAcknowledgement,
    SOSEvent,
    SOSLocation,
)

logger = get_logger(__name__)


class SOSRepositoryError(DatabaseError):
    """More specific exception for SOS persistence failures."""


class SOSEventRepository:
    EVENT_COLUMNS = """
        id, user_id, group_id, status, trigger_location, address, metadata,
        acknowledged_at, acknowledged_by, resolved_at, created_at
    """
    ATTEMPT_COLUMNS = """
        id, event_id, attempt_order, contact_id, contact_name, contact_phone,
        call_sid, status, error, answered_at, created_at
    """

    def __init__(self, db: DatabasePoolManager):
        self.db = db

    @staticmethod
    def _row_to_event(row: dict | None) -> SOSEvent | None:
        if not row:
            return None
        return SOSEvent(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            group_id=str(row["group_id"]) if row.get("group_id") else None,
            status=row["status"],
            trigger_location=row.get("trigger_location"),
            address=row.get("address"),
            metadata=row.get("metadata") or {},
            acknowledged_at=row.get("acknowledged_at"),
            acknowledged_by=str(row["acknowledged_by"]) if row.get("acknowledged_by") else None,
            resolved_at=row.get("resolved_at"),
            created_at=row.get("created_at"),
        )

    @staticmethod
    def _row_to_attempt(row: dict) -> CallAttempt:
        data = dict(row)
        for key in ("id", "event_id", "contact_id"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        return CallAttempt(**data)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def create_event(
        self,
        user_id: str,
        group_id: str | None,
        location: Location,
        metadata: dict[str, Any] | None = None,
    ) -> SOSEvent:
        row = await fetch_one(
            self.db,
            f"""
            INSERT INTO sos_events (user_id, group_id, status, trigger_location, address, metadata)
            VALUES (%s, %s, 'active', %s, %s, %s)
            RETURNING {self.EVENT_COLUMNS}
            """,
            (
                user_id,
                group_id,
                Jsonb(location.model_dump()),
                location.address,
                Jsonb(metadata or {}),
            ),
        )
        if not row:
            raise SOSRepositoryError("Insert returned no row", operation="create_event")

        event = self._row_to_event(row)
        logger.info("SOS event created", event_id=event.id, user_id=user_id, group_id=group_id)
        return event

    @with_db_retry(max_retries=2)
    async def get_event(self, event_id: str) -> SOSEvent | None:
        row = await fetch_one(
            self.db,
            f"SELECT {self.EVENT_COLUMNS} FROM sos_events WHERE id = %s",
            (event_id,),
        )
        return self._row_to_event(row)

    async def mark_acknowledged(self, event_id: str, user_id: str, *, connection=None) -> bool:
        """Move an active event to acknowledged. False if it was not active."""
        updated = await execute_query(
            self.db,
            """
            UPDATE sos_events
            SET status = 'acknowledged',
                acknowledged_at = NOW(),
                acknowledged_by = %s
            WHERE id = %s AND status = 'active'
            """,
            (user_id, event_id),
            connection=connection,
        )
        return updated > 0

    async def mark_resolved(self, event_id: str) -> bool:
        updated = await execute_query(
            self.db,
            """
            UPDATE sos_events
            SET status = 'resolved',
                resolved_at = NOW()
            WHERE id = %s AND status <> 'resolved'
            """,
            (event_id,),
        )
        if updated:
            logger.info("SOS event resolved", event_id=event_id)
        return updated > 0

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def add_location(self, event_id: str, location: Location) -> SOSLocation:
        row = await fetch_one(
            self.db,
            """
            INSERT INTO sos_locations (event_id, lat, lng, accuracy, address)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id, event_id, lat, lng, accuracy, address, recorded_at
            """,
            (event_id, location.lat, location.lng, location.accuracy, location.address),
        )
        if not row:
            raise SOSRepositoryError("Insert returned no row", operation="add_location")
        row["id"] = str(row["id"])
        row["event_id"] = str(row["event_id"])
        return SOSLocation(**row)

    async def list_locations(self, event_id: str) -> list[SOSLocation]:
        rows = await fetch_all(
            self.db,
            """
            SELECT id, event_id, lat, lng, accuracy, address, recorded_at
            FROM sos_locations
            WHERE event_id = %s
            ORDER BY recorded_at ASC
            """,
            (event_id,),
        )
        return [SOSLocation(**{**row, "id": str(row["id"]), "event_id": str(row["event_id"])}) for row in rows]

    # ------------------------------------------------------------------
    # Acknowledgements
    # ------------------------------------------------------------------

    async def get_acknowledgement(self, event_id: str, user_id: str) -> SOSAcknowledgement | None:
        row = await fetch_one(
            self.db,
            """
            SELECT id, event_id, family_user_id, message, acknowledged_at
            FROM sos_acknowledgements
            WHERE event_id = %s AND family_user_id = %s
            """,
            (event_id, user_id),
        )
        if not row:
            return None
        return SOSAcknowledgement(
            id=str(row["id"]),
            event_id=str(row["event_id"]),
            family_user_id=str(row["family_user_id"]),
            message=row["message"],
            acknowledged_at=row.get("acknowledged_at"),
        )

    async def list_acknowledgements(self, event_id: str) -> list[SOSAcknowledgement]:
        rows = await fetch_all(
            self.db,
            """
            SELECT id, event_id, family_user_id, message, acknowledged_at
            FROM sos_acknowledgements
            WHERE event_id = %s
            ORDER BY acknowledged_at ASC
            """,
            (event_id,),
        )
        return [
            SOSAcknowledgement(
                id=str(row["id"]),
                event_id=str(row["event_id"]),
                family_user_id=str(row["family_user_id"]),
                message=row["message"],
                acknowledged_at=row.get("acknowledged_at"),
            )
            for row in rows
        ]

    async def create_acknowledgement(
        self, event_id: str, user_id: str, message: str, *, connection=None
    ) -> SOSAcknowledgement:
        # ON CONFLICT keeps a double tap from two devices down to one row
        row = await fetch_one(
            self.db,
            """
            INSERT INTO sos_acknowledgements (event_id, family_user_id, message)
            VALUES (%s, %s, %s)
            ON CONFLICT (event_id, family_user_id) DO UPDATE
                SET message = sos_acknowledgements.message
            RETURNING id, event_id, family_user_id, message, acknowledged_at
            """,
            (event_id, user_id, message),
            connection=connection,
        )
        if not row:
            raise SOSRepositoryError("Insert returned no row", operation="create_acknowledgement")
        return SOSAcknowledgement(
            id=str(row["id"]),
            event_id=str(row["event_id"]),
            family_user_id=str(row["family_user_id"]),
            message=row["message"],
            acknowledged_at=row.get("acknowledged_at"),
        )

    async def acknowledge(self, event_id: str, user_id: str, message: str) -> tuple[SOSAcknowledgement, bool]:
        """
        Store the acknowledgement and move the event out of active in one
        transaction. The bool is False when the event was no longer active.
        """
        try:
            async with self.db.transaction() as conn:
                acknowledgement = await self.create_acknowledgement(
                    event_id, user_id, message, connection=conn
                )
                first = await self.mark_acknowledged(event_id, user_id, connection=conn)
        except psycopg.Error as e:
            raise SOSRepositoryError(f"Acknowledgement failed: {e}", operation="acknowledge") from e
        return acknowledgement, first

    # ------------------------------------------------------------------
    # Call attempts
    # ------------------------------------------------------------------

    async def record_call_attempt(
        self,
        event_id: str,
        *,
        attempt_order: int,
        contact_id: str | None,
        contact_name: str | None,
        contact_phone: str | None,
        status: str,
        call_sid: str | None = None,
        error: str | None = None,
    ) -> CallAttempt:
        row = await fetch_one(
            self.db,
            f"""
            INSERT INTO sos_call_attempts (
                event_id, attempt_order, contact_id, contact_name, contact_phone,
                call_sid, status, error
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.ATTEMPT_COLUMNS}
            """,
            (
                event_id,
                attempt_order,
                contact_id,
                contact_name,
                contact_phone,
                call_sid,
                status,
                (error or "")[:500] or None,
            ),
        )
        if not row:
            raise SOSRepositoryError("Insert returned no row", operation="record_call_attempt")
        return self._row_to_attempt(row)

    async def update_call_status_by_sid(self, call_sid: str, status: str, *, answered: bool = False) -> bool:
        """Apply a provider status callback. answered_at is only ever set once."""
        updated = await execute_query(
            self.db,
            """
            UPDATE sos_call_attempts
            SET status = %s,
                answered_at = CASE WHEN %s AND answered_at IS NULL THEN NOW() ELSE answered_at END
            WHERE call_sid = %s
            """,
            (status, answered, call_sid),
        )
        return updated > 0

    async def is_call_answered(self, attempt_id: str) -> bool:
        row = await fetch_one(
            self.db,
            "SELECT answered_at FROM sos_call_attempts WHERE id = %s",
            (attempt_id,),
        )
        return bool(row and row.get("answered_at"))

    async def list_call_attempts(self, event_id: str) -> list[CallAttempt]:
        rows = await fetch_all(
            self.db,
            f"""
            SELECT {self.ATTEMPT_COLUMNS}
            FROM sos_call_attempts
            WHERE event_id = %s
            ORDER BY attempt_order ASC
            """,
            (event_id,),
        )
        return [self._row_to_attempt(row) for row in rows]

    # ------------------------------------------------------------------
    # Stored family alerts (offline copy of realtime pushes)
    # ------------------------------------------------------------------

    async def store_family_alert(
        self,
        event_id: str,
        family_user_id: str,
        alert_type: str,
        alert_data: dict[str, Any],
        status: str = "sent",
    ) -> None:
        await execute_query(
            self.db,
            """
            INSERT INTO family_alerts (event_id, family_user_id, alert_type, alert_data, status, sent_at)
            VALUES (%s, %s, %s, %s, %s, NOW())
            """,
            (event_id, family_user_id, alert_type, Jsonb(alert_data), status),
        )
