"""
Emergency call sequence.

Dials call_only contacts one at a time in priority order, giving each the
configured interval to answer, and stops at the first answer. The sequence
is also stopped before the next dial once a family member acknowledges or the
user resolves the event.

    IDLE -> DIALING(c1) -> REACHED
                        -> DIALING(c2) -> ... -> EXHAUSTED
    DIALING(ci) -> ABANDONED   (provider unusable)
    DIALING(ci) -> HALTED      (event no longer active)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import ContactType, EmergencyContact
from app.models.domain.sos_domain import Location, UserProfileSnapshot
from app.repositories.sos_repository import SOSEventRepository
from app.services.providers.twilio_dialer import (
    Dialer,
    DialerError,
    DialerUnavailableError,
    DialOutcome,
)

logger = get_logger(__name__)


class CallSequenceState(str, Enum):
    IDLE = "idle"
    DIALING = "dialing"
    REACHED = "reached"
    EXHAUSTED = "exhausted"
    ABANDONED = "abandoned"
    HALTED = "halted"


@dataclass
class CallSequenceResult:
    state: CallSequenceState
    dialed: list[str] = field(default_factory=list)
    reached_contact_id: str | None = None
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "dialed": list(self.dialed),
            "reached_contact_id": self.reached_contact_id,
            "failed": list(self.failed),
        }


def select_call_contacts(contacts: list[EmergencyContact]) -> list[EmergencyContact]:
    """call_only contacts, lowest priority number first. sorted() is stable."""
    return sorted(
        (c for c in contacts if c.type == ContactType.CALL_ONLY),
        key=lambda c: c.priority,
    )


class EmergencyCallSequencer:
    def __init__(self, dialer: Dialer, repository: SOSEventRepository, interval_seconds: float = 15.0):
        self.dialer = dialer
        self.repository = repository
        self.interval_seconds = interval_seconds

    async def _event_still_active(self, event_id: str) -> bool:
        try:
            event = await self.repository.get_event(event_id)
        except DatabaseError as e:
            # Unknown status never halts the sequence
            logger.warning("Could not check SOS event status", event_id=event_id, error=str(e))
            return True
        return event is None or event.is_active

    async def run(
        self,
        event_id: str,
        contacts: list[EmergencyContact],
        user_profile: UserProfileSnapshot,
        location: Location | None,
    ) -> CallSequenceResult:
        queue = select_call_contacts(contacts)
        result = CallSequenceResult(state=CallSequenceState.IDLE)

        logger.info("Call sequence started", event_id=event_id, contacts=len(queue))

        for order, contact in enumerate(queue, start=1):
            if not await self._event_still_active(event_id):
                result.state = CallSequenceState.HALTED
                logger.info("Call sequence halted", event_id=event_id, dialed=len(result.dialed))
                return result

            result.state = CallSequenceState.DIALING
            result.dialed.append(contact.id)
            logger.info("Dialing emergency contact", event_id=event_id, contact_id=contact.id, attempt_order=order)

            try:
                outcome = await self.dialer.dial(
                    event_id,
                    contact,
                    attempt_order=order,
                    user_name=user_profile.full_name,
                    location=location,
                    timeout=self.interval_seconds,
                )
            except DialerUnavailableError as e:
                result.state = CallSequenceState.ABANDONED
                logger.error(
                    "Call sequence abandoned, dialer unavailable",
                    event_id=event_id,
                    contact_id=contact.id,
                    dialed=len(result.dialed),
                    error=str(e),
                )
                return result
            except (DialerError, DatabaseError) as e:
                result.failed.append(contact.id)
                logger.warning(
                    "Emergency call failed, moving to next contact",
                    event_id=event_id,
                    contact_id=contact.id,
                    error=str(e),
                )
                continue

            if outcome == DialOutcome.REACHED:
                result.state = CallSequenceState.REACHED
                result.reached_contact_id = contact.id
                logger.info("Emergency contact reached", event_id=event_id, contact_id=contact.id)
                return result

        result.state = CallSequenceState.EXHAUSTED
        logger.info("Call sequence exhausted", event_id=event_id, dialed=len(result.dialed))
        return result
