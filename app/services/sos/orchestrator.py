"""
SOS trigger orchestration.

Writes the event, then fans out to the three notification channels:

- realtime push to active family members (awaited)
- sequential calls to call_only contacts (background task, takes minutes)
- emails to every contact with an address (awaited)

Only the event insert is fatal. Every channel failure is logged and the
caller still gets a success response with the attempted counts, so the
response says nothing about actual delivery.
"""

from collections.abc import Awaitable
from typing import Any

from app.db.helpers import DatabaseError
from app.infrastructure.audit import AuditLogger
from app.infrastructure.observability.logging import get_logger
from app.models.api.sos_request import SOSTriggerRequest
from app.models.api.sos_response import SOSTriggerResponse
from app.models.domain.profile_domain import EmergencyContact, FamilyMember
from app.models.domain.sos_domain import Location, UserProfileSnapshot
from app.repositories.profile_repository import ProfileRepository
from app.repositories.sos_repository import SOSEventRepository
from app.services.background_tasks import BackgroundTaskRunner
from app.services.sos.call_sequencer import EmergencyCallSequencer, select_call_contacts
from app.services.sos.email_notifier import EmergencyEmailNotifier
from app.services.sos.exceptions import DownstreamChannelError, SOSEventCreationError
from app.services.sos.family_notifier import FamilyRealtimeNotifier

logger = get_logger(__name__)


class SOSTriggerService:
    def __init__(
        self,
        *,
        profiles: ProfileRepository,
        events: SOSEventRepository,
        family_notifier: FamilyRealtimeNotifier,
        call_sequencer: EmergencyCallSequencer,
        email_notifier: EmergencyEmailNotifier,
        task_runner: BackgroundTaskRunner,
        audit_logger: AuditLogger | None = None,
    ):
        self.profiles = profiles
        self.events = events
        self.family_notifier = family_notifier
        self.call_sequencer = call_sequencer
        self.email_notifier = email_notifier
        self.task_runner = task_runner
        self.audit_logger = audit_logger

    async def _fire(self, channel: str, event_id: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as e:
            logger.warning(
                "SOS notification channel failed",
                channel=channel,
                event_id=event_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _run_call_sequence(
        self,
        event_id: str,
        contacts: list[EmergencyContact],
        user_profile: UserProfileSnapshot,
        location: Location,
    ) -> dict[str, Any]:
        try:
            result = await self.call_sequencer.run(event_id, contacts, user_profile, location)
        except Exception as e:
            raise DownstreamChannelError(f"Call sequence crashed: {e}", channel="call_sequence") from e

        logger.info("Call sequence finished", event_id=event_id, **result.to_dict())
        return result.to_dict()

    async def _call_sequence_task(
        self,
        event_id: str,
        contacts: list[EmergencyContact],
        user_profile: UserProfileSnapshot,
        location: Location,
    ) -> dict[str, Any] | None:
        """Background entry point; a crashed sequence is a channel failure like any other."""
        return await self._fire(
            "call_sequence", event_id, self._run_call_sequence(event_id, contacts, user_profile, location)
        )

    async def _load_contacts(self, user_id: str) -> list[EmergencyContact]:
        try:
            return await self.profiles.list_emergency_contacts(user_id)
        except DatabaseError as e:
            logger.warning("Could not load emergency contacts", user_id=user_id, error=str(e))
            return []

    async def _resolve_user_profile(self, user_id: str, snapshot: UserProfileSnapshot) -> UserProfileSnapshot:
        """Fill a nameless device snapshot from the stored profile."""
        if snapshot.first_name.strip() or snapshot.last_name.strip():
            return snapshot
        try:
            profile = await self.profiles.get_profile(user_id)
        except DatabaseError as e:
            logger.warning("Could not load profile", user_id=user_id, error=str(e))
            return snapshot
        if profile is None:
            return snapshot
        return snapshot.model_copy(
            update={
                "first_name": profile.first_name or "",
                "last_name": profile.last_name or "",
                "phone": snapshot.phone or profile.phone,
            }
        )

    async def _load_members(self, group_id: str | None, user_id: str) -> list[FamilyMember]:
        """Everyone in the group who should hear about the SOS, owner included, minus the caller."""
        if not group_id:
            return []
        try:
            members = await self.profiles.list_active_members(group_id)
            owner = await self.profiles.get_group_owner(group_id)
        except DatabaseError as e:
            logger.warning("Could not load family members", group_id=group_id, error=str(e))
            return []
        if owner and all(m.user_id != owner.user_id for m in members):
            members.insert(0, owner)
        return [m for m in members if m.user_id != user_id]

    async def trigger(
        self,
        user_id: str,
        request: SOSTriggerRequest,
        *,
        request_id: str | None = None,
        ip_address: str | None = None,
    ) -> SOSTriggerResponse:
        logger.info("SOS triggered", user_id=user_id, is_test=request.is_test)

        try:
            group_id = await self.profiles.resolve_family_group(user_id)
        except DatabaseError as e:
            logger.warning("Could not resolve family group", user_id=user_id, error=str(e))
            group_id = None

        try:
            event = await self.events.create_event(user_id, group_id, request.location, request.metadata)
        except DatabaseError as e:
            logger.error("Failed to create SOS event", user_id=user_id, error=str(e))
            raise SOSEventCreationError(f"Failed to create SOS event: {e}", operation="create_event") from e

        # Not transactional with the event insert: a lost location row is logged, the event stands
        try:
            await self.events.add_location(event.id, request.location)
        except DatabaseError as e:
            logger.warning("Failed to record SOS location", event_id=event.id, error=str(e))

        user_profile = await self._resolve_user_profile(user_id, request.user_profile)
        contacts = await self._load_contacts(user_id)
        members = await self._load_members(group_id, user_id)
        call_only = select_call_contacts(contacts)

        if members:
            await self._fire(
                "realtime",
                event.id,
                self.family_notifier.notify(event.id, group_id, members, request.location, user_profile),
            )

        if call_only:
            try:
                self.task_runner.spawn(
                    self._call_sequence_task(event.id, call_only, user_profile, request.location),
                    name=f"sos-call-sequence:{event.id}",
                )
            except RuntimeError as e:
                logger.warning("Could not start call sequence", event_id=event.id, error=str(e))

        if contacts:
            await self._fire(
                "email",
                event.id,
                self.email_notifier.notify(
                    event.id, contacts, user_profile, request.location, is_test=request.is_test
                ),
            )

        if self.audit_logger:
            await self.audit_logger.log(
                user_id=user_id,
                action="sos_triggered",
                resource_type="sos_event",
                resource_id=event.id,
                ip_address=ip_address,
                request_id=request_id,
                metadata={"group_id": group_id, "is_test": request.is_test},
            )

        response = SOSTriggerResponse(
            success=True,
            event_id=event.id,
            family_alerts_sent=len(members),
            call_only_contacts=len(call_only),
            email_notifications=len(contacts),
            real_time_enabled=len(members) > 0,
        )
        logger.info("SOS fan-out issued", user_id=user_id, **response.model_dump())
        return response
