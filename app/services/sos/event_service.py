"""
What happens to an SOS after it was triggered: family members acknowledge
it, the owner resolves it, and anyone entitled to see it can poll it.

The first acknowledgement moves the event out of `active`, which is what
the running call sequence checks before each dial. Later responders are
still recorded (one row per person) until the event is resolved.
"""

from app.infrastructure.audit import AuditLogger
from app.infrastructure.observability.logging import get_logger
from app.models.api.sos_response import AcknowledgeResponse, ResolveResponse, SOSEventDetailResponse
from app.models.domain.sos_domain import SOSEvent, SOSStatus
from app.repositories.profile_repository import ProfileRepository
from app.repositories.sos_repository import SOSEventRepository
from app.services.sos.exceptions import AcknowledgementError
from app.services.sos.family_notifier import FamilyRealtimeNotifier

logger = get_logger(__name__)

DEFAULT_ACK_MESSAGE = "Received & On It"


class SOSEventService:
    def __init__(
        self,
        *,
        profiles: ProfileRepository,
        events: SOSEventRepository,
        family_notifier: FamilyRealtimeNotifier,
        audit_logger: AuditLogger | None = None,
    ):
        self.profiles = profiles
        self.events = events
        self.family_notifier = family_notifier
        self.audit_logger = audit_logger

    async def _is_in_group(self, group_id: str, user_id: str) -> bool:
        if await self.profiles.get_active_membership(group_id, user_id) is not None:
            return True
        owner = await self.profiles.get_group_owner(group_id)
        return owner is not None and owner.user_id == user_id

    async def _load_for_member(self, event_id: str, user_id: str) -> SOSEvent:
        """The event, if user_id owns or actively belongs to its family group."""
        event = await self.events.get_event(event_id)
        if event is None or not event.group_id:
            raise AcknowledgementError("SOS event not found or user not authorized", status_code=404)

        if not await self._is_in_group(event.group_id, user_id):
            raise AcknowledgementError("SOS event not found or user not authorized", status_code=404)
        return event

    async def acknowledge(self, event_id: str, user_id: str, message: str | None = None) -> AcknowledgeResponse:
        event = await self._load_for_member(event_id, user_id)

        existing = await self.events.get_acknowledgement(event_id, user_id)
        if existing:
            return AcknowledgeResponse(
                success=True,
                message="Already acknowledged",
                already_acknowledged=True,
                acknowledgement=existing,
                call_sequence_paused=event.status != SOSStatus.RESOLVED,
            )

        if event.status == SOSStatus.RESOLVED:
            raise AcknowledgementError("SOS event is no longer active", status_code=409)

        acknowledgement, first = await self.events.acknowledge(
            event_id, user_id, (message or "").strip() or DEFAULT_ACK_MESSAGE
        )
        logger.info(
            "SOS acknowledged",
            event_id=event_id,
            user_id=user_id,
            acknowledgement_id=acknowledgement.id,
            first_acknowledgement=first,
        )

        await self.family_notifier.notify_acknowledgement(event_id, event.group_id, acknowledgement)
        if event.user_id != user_id:
            await self.family_notifier.notify_originator(event, acknowledgement)

        if self.audit_logger:
            await self.audit_logger.log(
                user_id=user_id,
                action="sos_acknowledged",
                resource_type="sos_event",
                resource_id=event_id,
                metadata={"first_acknowledgement": first},
            )

        return AcknowledgeResponse(
            success=True,
            acknowledgement=acknowledgement,
            call_sequence_paused=True,
        )
    async def resolve(self, event_id: str, user_id: str) -> ResolveResponse:
        event = await self.events.get_event(event_id)
        if event is None:
            raise AcknowledgementError("SOS event not found", status_code=404)
        if event.user_id != user_id:
            raise AcknowledgementError("Only the person who raised the SOS can resolve it", status_code=403)

        if event.status != SOSStatus.RESOLVED:
            await self.events.mark_resolved(event_id)
            if self.audit_logger:
                await self.audit_logger.log(
                    user_id=user_id,
                    action="sos_resolved",
                    resource_type="sos_event",
                    resource_id=event_id,
                )

        return ResolveResponse(success=True, event_id=event_id, status=SOSStatus.RESOLVED.value)

    async def get_event_detail(self, event_id: str, user_id: str) -> SOSEventDetailResponse:
        event = await self.events.get_event(event_id)
        if event is None or event.user_id != user_id:
            event = await self._load_for_member(event_id, user_id)

        locations = await self.events.list_locations(event_id)
        acknowledgements = await self.events.list_acknowledgements(event_id)
        call_attempts = await self.events.list_call_attempts(event_id)
        return SOSEventDetailResponse(
            event=event,
            locations=locations,
            acknowledgements=acknowledgements,
            call_attempts=call_attempts,
        )
