"""In-memory stand-ins for the repositories, providers, dialer and Twilio calls resource."""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from app.db.helpers import DatabaseError
from app.models.domain.email_queue_domain import EmailQueueItem, EmailQueueStatus
from app.models.domain.profile_domain import (
    BillingStatus,
    ContactType,
    EmergencyContact,
    FamilyMember,
    MembershipStatus,
    Profile,
)
from app.models.domain.sos_domain import (
    CallAttempt,
    Location,
    SOSAcknowledgement,
    SOSEvent,
    SOSLocation,
    SOSStatus,
)
from app.services.infrastructure.redis_client import RedisPublishError
from app.services.providers.resend_email_provider import EmailProviderError, EmailSendResult
from app.services.providers.twilio_dialer import DialOutcome

USER_ID = "user-123"


def _new_id() -> str:
    return str(uuid.uuid4())


def make_contact(
    contact_id: str,
    *,
    priority: int = 1,
    contact_type: ContactType = ContactType.BOTH,
    phone: str | None = "+15555550100",
    email: str | None = None,
    user_id: str = USER_ID,
) -> EmergencyContact:
    return EmergencyContact(
        id=contact_id,
        user_id=user_id,
        name=f"Contact {contact_id}",
        phone=phone,
        email=email,
        priority=priority,
        type=contact_type,
    )


def make_member(
    user_id: str,
    *,
    group_id: str = "group-1",
    billing_status: BillingStatus = BillingStatus.ACTIVE,
) -> FamilyMember:
    return FamilyMember(
        id=f"membership-{user_id}",
        group_id=group_id,
        user_id=user_id,
        status=MembershipStatus.ACTIVE,
        billing_status=billing_status,
        first_name="Fam",
        last_name=user_id,
    )


class FakeRedis:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: dict) -> int:
        if self.fail:
            raise RedisPublishError("connection refused", channel=channel)
        self.published.append((channel, message))
        return 1

    async def ping(self) -> bool:
        return not self.fail


class FakeEmailQueueRepository:
    """Mirrors the conditional state transitions of EmailQueueRepository."""

    def __init__(self):
        self.rows: dict[str, EmailQueueItem] = {}
        self.delivery_log: list[dict] = []
        self.fail_reads = False
        # Raised, in order, by the next mark_sent/mark_failed calls
        self.mark_errors: list[Exception] = []

    def add(self, **fields) -> EmailQueueItem:
        now = datetime.now(timezone.utc)
        data = {
            "id": _new_id(),
            "recipient_email": "someone@example.com",
            "subject": "Subject",
            "body": "<p>Body</p>",
            "status": EmailQueueStatus.PENDING,
            "scheduled_at": now,
            "created_at": now,
            "updated_at": now,
        }
        data.update(fields)
        item = EmailQueueItem(**data)
        self.rows[item.id] = item
        return item

    def _update(self, email_id: str, **changes) -> EmailQueueItem:
        changes["updated_at"] = datetime.now(timezone.utc)
        row = self.rows[email_id].model_copy(update=changes)
        self.rows[email_id] = row
        return row

    def _raise_mark_error(self) -> None:
        if self.mark_errors:
            raise self.mark_errors.pop(0)

    async def insert(self, **fields) -> EmailQueueItem:
        return self.add(**fields)

    async def get(self, email_id: str) -> EmailQueueItem | None:
        return self.rows.get(email_id)

    async def list_due_pending(self, now: datetime, limit: int) -> list[EmailQueueItem]:
        if self.fail_reads:
            raise DatabaseError("connection lost", operation="fetch_all")
        due = [r for r in self.rows.values() if r.status == EmailQueueStatus.PENDING and r.scheduled_at <= now]
        due.sort(key=lambda r: r.scheduled_at)
        due.sort(key=lambda r: r.priority, reverse=True)
        return due[:limit]

    async def claim(self, email_id: str) -> EmailQueueItem | None:
        row = self.rows.get(email_id)
        if row is None or row.status != EmailQueueStatus.PENDING:
            return None
        return self._update(email_id, status=EmailQueueStatus.PROCESSING)

    async def mark_sent(self, email_id: str, provider_message_id: str | None) -> None:
        self._raise_mark_error()
        if self.rows[email_id].status == EmailQueueStatus.PROCESSING:
            self._update(
                email_id,
                status=EmailQueueStatus.SENT,
                sent_at=datetime.now(timezone.utc),
                provider_message_id=provider_message_id,
                error_message=None,
            )

    async def mark_failed(self, email_id: str, error_message: str) -> None:
        self._raise_mark_error()
        if self.rows[email_id].status == EmailQueueStatus.PROCESSING:
            self._update(email_id, status=EmailQueueStatus.FAILED, error_message=error_message)

    async def release_stale_claims(self, lease_seconds: int) -> list[str]:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=lease_seconds)
        stale = [
            r.id for r in self.rows.values() if r.status == EmailQueueStatus.PROCESSING and r.updated_at < cutoff
        ]
        for email_id in stale:
            self._update(email_id, status=EmailQueueStatus.FAILED, error_message="Processing claim expired")
        return stale

    async def list_retryable(self, max_retries: int, limit: int) -> list[EmailQueueItem]:
        rows = [r for r in self.rows.values() if r.status == EmailQueueStatus.FAILED and r.retry_count < max_retries]
        rows.sort(key=lambda r: r.created_at)
        return rows[:limit]

    async def reset_for_retry(self, email_id: str, max_retries: int) -> EmailQueueItem | None:
        row = self.rows.get(email_id)
        if row is None or row.status != EmailQueueStatus.FAILED or row.retry_count >= max_retries:
            return None
        return self._update(
            email_id,
            status=EmailQueueStatus.PENDING,
            retry_count=row.retry_count + 1,
            error_message=None,
        )

    async def list_exhausted(self, max_retries: int, limit: int) -> list[EmailQueueItem]:
        rows = [r for r in self.rows.values() if r.status == EmailQueueStatus.FAILED and r.retry_count >= max_retries]
        return rows[:limit]

    async def log_delivery(self, item, delivery_status, *, provider_message_id=None, provider_response=None, error_message=None):
        self.delivery_log.append(
            {
                "email_id": item.id,
                "delivery_status": delivery_status,
                "provider_message_id": provider_message_id,
                "error_message": error_message,
            }
        )


class FakeEmailProvider:
    """Succeeds unless the recipient is listed in fail_for (or fail_all is set)."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()
        self.fail_all = False
        self.error: Exception | None = None

    async def send(self, *, to, subject, html, text=None, sender=None) -> EmailSendResult:
        if self.error is not None:
            raise self.error
        if self.fail_all or to in self.fail_for:
            raise EmailProviderError("Resend error: 500 upstream unavailable", status_code=500)
        message_id = f"msg-{len(self.sent) + 1}"
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text, "sender": sender})
        return EmailSendResult(message_id=message_id, response={"id": message_id})

    async def health_check(self) -> dict:
        return {"healthy": True, "service": "resend", "status_code": 200}

    async def close(self) -> None:
        return None


class FakeSOSRepository:
    def __init__(self):
        self.events: dict[str, SOSEvent] = {}
        self.locations: list[SOSLocation] = []
        self.acknowledgements: dict[tuple[str, str], SOSAcknowledgement] = {}
        self.call_attempts: list[CallAttempt] = []
        self.answered: set[str] = set()
        self.family_alerts: list[dict] = []
        self.fail_create = False
        self.fail_add_location = False

    def add_event(self, event_id: str = "event-1", *, user_id: str = USER_ID, group_id: str | None = "group-1",
                  status: SOSStatus = SOSStatus.ACTIVE) -> SOSEvent:
        event = SOSEvent(id=event_id, user_id=user_id, group_id=group_id, status=status)
        self.events[event_id] = event
        return event

    async def create_event(self, user_id, group_id, location, metadata=None) -> SOSEvent:
        if self.fail_create:
            raise DatabaseError("insert failed", operation="create_event")
        event = SOSEvent(
            id=_new_id(),
            user_id=user_id,
            group_id=group_id,
            trigger_location=location.model_dump(),
            address=location.address,
            metadata=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
        self.events[event.id] = event
        return event

    async def get_event(self, event_id: str) -> SOSEvent | None:
        return self.events.get(event_id)

    async def mark_acknowledged(self, event_id: str, user_id: str) -> bool:
        event = self.events.get(event_id)
        if event is None or event.status != SOSStatus.ACTIVE:
            return False
        self.events[event_id] = event.model_copy(
            update={"status": SOSStatus.ACKNOWLEDGED, "acknowledged_by": user_id,
                    "acknowledged_at": datetime.now(timezone.utc)}
        )
        return True

    async def mark_resolved(self, event_id: str) -> bool:
        event = self.events.get(event_id)
        if event is None or event.status == SOSStatus.RESOLVED:
            return False
        self.events[event_id] = event.model_copy(
            update={"status": SOSStatus.RESOLVED, "resolved_at": datetime.now(timezone.utc)}
        )
        return True

    async def add_location(self, event_id: str, location: Location) -> SOSLocation:
        if self.fail_add_location:
            raise DatabaseError("insert failed", operation="add_location")
        row = SOSLocation(id=_new_id(), event_id=event_id, **location.model_dump())
        self.locations.append(row)
        return row

    async def list_locations(self, event_id: str) -> list[SOSLocation]:
        return [loc for loc in self.locations if loc.event_id == event_id]

    async def get_acknowledgement(self, event_id: str, user_id: str) -> SOSAcknowledgement | None:
        return self.acknowledgements.get((event_id, user_id))

    async def list_acknowledgements(self, event_id: str) -> list[SOSAcknowledgement]:
        return [a for (eid, _), a in self.acknowledgements.items() if eid == event_id]

    async def create_acknowledgement(self, event_id: str, user_id: str, message: str) -> SOSAcknowledgement:
        ack = SOSAcknowledgement(
            id=_new_id(),
            event_id=event_id,
            family_user_id=user_id,
            message=message,
            acknowledged_at=datetime.now(timezone.utc),
        )
        self.acknowledgements[(event_id, user_id)] = ack
        return ack

    async def acknowledge(self, event_id: str, user_id: str, message: str):
        ack = await self.create_acknowledgement(event_id, user_id, message)
        return ack, await self.mark_acknowledged(event_id, user_id)

    async def record_call_attempt(self, event_id, *, attempt_order, contact_id, contact_name, contact_phone,
                                  status, call_sid=None, error=None) -> CallAttempt:
        attempt = CallAttempt(
            id=_new_id(),
            event_id=event_id,
            attempt_order=attempt_order,
            contact_id=contact_id,
            contact_name=contact_name,
            contact_phone=contact_phone,
            call_sid=call_sid,
            status=status,
            error=error,
        )
        self.call_attempts.append(attempt)
        return attempt

    async def update_call_status_by_sid(self, call_sid: str, status: str, *, answered: bool = False) -> bool:
        for i, attempt in enumerate(self.call_attempts):
            if attempt.call_sid == call_sid:
                self.call_attempts[i] = attempt.model_copy(update={"status": status})
                if answered:
                    self.answered.add(attempt.id)
                return True
        return False

    async def is_call_answered(self, attempt_id: str) -> bool:
        return attempt_id in self.answered

    async def list_call_attempts(self, event_id: str) -> list[CallAttempt]:
        return [a for a in self.call_attempts if a.event_id == event_id]

    async def store_family_alert(self, event_id, family_user_id, alert_type, alert_data, status="sent") -> None:
        self.family_alerts.append(
            {"event_id": event_id, "family_user_id": family_user_id, "alert_type": alert_type, "alert_data": alert_data,
             "status": status}
        )


class FakeProfileRepository:
    def __init__(self):
        self.profiles: dict[str, Profile] = {}
        self.contacts: dict[str, list[EmergencyContact]] = {}
        self.groups: dict[str, str] = {}
        self.members: dict[str, list[FamilyMember]] = {}
        self.owners: dict[str, FamilyMember] = {}
        self.fail_contacts = False

    async def get_profile(self, user_id: str) -> Profile | None:
        return self.profiles.get(user_id)

    async def list_emergency_contacts(self, user_id: str) -> list[EmergencyContact]:
        if self.fail_contacts:
            raise DatabaseError("query failed", operation="list_emergency_contacts")
        return sorted(self.contacts.get(user_id, []), key=lambda c: (c.priority, c.id))

    async def create_emergency_contact(self, user_id, *, name, phone, email, relationship, priority, contact_type):
        contact = EmergencyContact(
            id=_new_id(),
            user_id=user_id,
            name=name,
            phone=phone,
            email=email,
            relationship=relationship,
            priority=priority,
            type=contact_type,
        )
        self.contacts.setdefault(user_id, []).append(contact)
        return contact

    async def delete_emergency_contact(self, user_id: str, contact_id: str) -> bool:
        before = self.contacts.get(user_id, [])
        after = [c for c in before if c.id != contact_id]
        self.contacts[user_id] = after
        return len(after) != len(before)

    async def resolve_family_group(self, user_id: str) -> str | None:
        return self.groups.get(user_id)

    async def list_active_members(self, group_id: str) -> list[FamilyMember]:
        return list(self.members.get(group_id, []))

    async def get_group_owner(self, group_id: str) -> FamilyMember | None:
        return self.owners.get(group_id)

    async def get_active_membership(self, group_id: str, user_id: str) -> FamilyMember | None:
        for member in self.members.get(group_id, []):
            if member.user_id == user_id:
                return member
        return None


class ScriptedDialer:
    """Returns a scripted outcome (or raises a scripted error) per contact id."""

    def __init__(self, script: dict | None = None, on_dial=None):
        self.script = script or {}
        self.on_dial = on_dial
        self.calls: list[dict] = []

    async def dial(self, event_id, contact, *, attempt_order, user_name, location, timeout):
        self.calls.append(
            {"event_id": event_id, "contact_id": contact.id, "attempt_order": attempt_order,
             "user_name": user_name, "timeout": timeout}
        )
        if self.on_dial:
            await self.on_dial(contact)
        outcome = self.script.get(contact.id, DialOutcome.TIMEOUT)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome



class FakeCalls:
    """Stands in for the Twilio client's calls resource: replays a sid or raises, per call."""

    def __init__(self, *results):
        self.results = list(results)
        self.requests: list[dict] = []

    async def create_async(self, **kwargs):
        self.requests.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(sid=result)
