"""
Outbound emergency calls.

TwilioDialer places a voice call through the Twilio REST client, records the
attempt, then waits for the status webhook to mark it answered. When Twilio
is not configured the SimulatedDialer records the attempt and lets the
interval elapse without anyone answering.

Bookkeeping writes are best-effort here: once a call is placed, a failed
attempt insert or answer poll must not end the sequence, so a poll error
reads as "not answered yet".
"""

import asyncio
from enum import Enum
from typing import Protocol

from twilio.base.exceptions import TwilioRestException
from twilio.http.async_http_client import AsyncTwilioHttpClient
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import EmergencyContact
from app.models.domain.sos_domain import CallAttempt, CallAttemptStatus, Location
from app.repositories.sos_repository import SOSEventRepository

logger = get_logger(__name__)

REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 2
BACKOFF_FACTOR = 2
STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]

# Twilio rejects the destination itself with a 400 (invalid / unverified
# number); anything else means the provider is not usable right now
PER_CONTACT_STATUS_CODES = {400, 404, 422}


class DialOutcome(str, Enum):
    REACHED = "reached"
    TIMEOUT = "timeout"


class DialerError(Exception):
    """A single call could not be placed. The sequence moves on."""

    def __init__(self, message: str, status_code: int | None = None, response_data: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class DialerUnavailableError(DialerError):
    """The provider itself is unreachable or refusing us. The sequence stops."""


class Dialer(Protocol):
    async def dial(
        self,
        event_id: str,
        contact: EmergencyContact,
        *,
        attempt_order: int,
        user_name: str,
        location: Location | None,
        timeout: float,
    ) -> DialOutcome: ...


def build_twiml(user_name: str, location: Location | None) -> str:
    if location is None:
        where = "unknown"
    elif location.address:
        where = location.address
    else:
        where = f"coordinates latitude {location.lat:.4f}, longitude {location.lng:.4f}"

    response = VoiceResponse()
    response.say(
        f"Emergency alert! This is an urgent message for {user_name}. "
        "They have activated their emergency S.O.S. system. "
        f"Their last known location is: {where}. "
        "Please check on them immediately or call them back. "
        "If you cannot reach them, consider contacting emergency services.",
        voice="Polly.Joanna",
    )
    response.pause(length=3)
    response.say(f"Repeating: Emergency alert for {user_name}. Check their location and contact them immediately.")
    return str(response)


class TwilioDialer:
    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        status_callback_url: str,
        repository: SOSEventRepository,
        poll_interval: float = 1.0,
        client: Client | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.status_callback_url = status_callback_url
        self.repository = repository
        self.poll_interval = poll_interval
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = Client(
                self.account_sid,
                self.auth_token,
                http_client=AsyncTwilioHttpClient(timeout=REQUEST_TIMEOUT),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.http_client.close()
            self._client = None

    async def _create_call(self, to_number: str, twiml: str) -> str:
        """Place the call and return its sid."""
        client = self._get_client()
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                call = await client.calls.create_async(
                    to=to_number,
                    from_=self.from_number,
                    twiml=twiml,
                    status_callback=self.status_callback_url,
                    status_callback_method="POST",
                    status_callback_event=STATUS_CALLBACK_EVENTS,
                )
                return call.sid

            except TwilioRestException as exc:
                details = {"status": exc.status, "code": exc.code, "message": exc.msg}
                if exc.status in PER_CONTACT_STATUS_CODES:
                    raise DialerError(
                        f"Twilio call error: {exc.status} {exc.msg}",
                        status_code=exc.status,
                        response_data=details,
                    ) from exc

                if exc.status >= 500 and attempt < MAX_RETRIES:
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning("Twilio server error, retrying", attempt=attempt, status=exc.status)
                    await asyncio.sleep(wait_time)
                    continue

                raise DialerUnavailableError(
                    f"Twilio call error: {exc.status} {exc.msg}",
                    status_code=exc.status,
                    response_data=details,
                ) from exc

            except Exception as exc:
                # Transport level: DNS, connection refused, timeouts
                if attempt == MAX_RETRIES:
                    raise DialerUnavailableError(f"Twilio unreachable: {exc}") from exc
                wait_time = BACKOFF_FACTOR**attempt
                logger.warning("Twilio request error, retrying", attempt=attempt, wait_time=wait_time, error=str(exc))
                await asyncio.sleep(wait_time)

        raise DialerUnavailableError("Twilio call failed: retries exhausted")

    async def _record(self, event_id: str, contact: EmergencyContact, attempt_order: int, **fields) -> CallAttempt | None:
        try:
            return await self.repository.record_call_attempt(
                event_id,
                attempt_order=attempt_order,
                contact_id=contact.id,
                contact_name=contact.name,
                contact_phone=contact.phone,
                **fields,
            )
        except DatabaseError as e:
            logger.warning(
                "Could not record call attempt",
                event_id=event_id,
                contact_id=contact.id,
                call_sid=fields.get("call_sid"),
                error=str(e),
            )
            return None

    async def _is_answered(self, attempt: CallAttempt) -> bool:
        try:
            return await self.repository.is_call_answered(attempt.id)
        except DatabaseError as e:
            logger.warning("Answer poll failed", attempt_id=attempt.id, call_sid=attempt.call_sid, error=str(e))
            return False

    async def dial(
        self,
        event_id: str,
        contact: EmergencyContact,
        *,
        attempt_order: int,
        user_name: str,
        location: Location | None,
        timeout: float,
    ) -> DialOutcome:
        if not contact.phone:
            raise DialerError("Contact has no phone number")

        try:
            call_sid = await self._create_call(contact.phone, build_twiml(user_name, location))
        except DialerError as e:
            await self._record(event_id, contact, attempt_order, status=CallAttemptStatus.FAILED.value, error=str(e))
            raise

        logger.info("Emergency call placed", event_id=event_id, contact_id=contact.id, call_sid=call_sid)
        attempt = await self._record(
            event_id, contact, attempt_order, status=CallAttemptStatus.QUEUED.value, call_sid=call_sid
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            # Without a stored attempt the webhook has nothing to mark; wait out the interval
            if attempt is not None and await self._is_answered(attempt):
                return DialOutcome.REACHED
            remaining = deadline - loop.time()
            if remaining <= 0:
                return DialOutcome.TIMEOUT
            await asyncio.sleep(min(self.poll_interval, remaining))


class SimulatedDialer:
    """Stand-in used when no telephony credentials are configured."""

    def __init__(self, repository: SOSEventRepository):
        self.repository = repository

    async def dial(
        self,
        event_id: str,
        contact: EmergencyContact,
        *,
        attempt_order: int,
        user_name: str,
        location: Location | None,
        timeout: float,
    ) -> DialOutcome:
        logger.warning("Twilio not configured, simulating call", event_id=event_id, contact_id=contact.id)
        try:
            await self.repository.record_call_attempt(
                event_id,
                attempt_order=attempt_order,
                contact_id=contact.id,
                contact_name=contact.name,
                contact_phone=contact.phone,
                status=CallAttemptStatus.SIMULATED.value,
            )
        except DatabaseError as e:
            logger.warning("Could not record call attempt", event_id=event_id, contact_id=contact.id, error=str(e))
        await asyncio.sleep(timeout)
        return DialOutcome.TIMEOUT
