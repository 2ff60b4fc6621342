"""
Realtime fan-out to family members.

One message per recipient, the group owner and each active member, on the
group's channel. Subscribers pick out the messages addressed to them via
recipient_user_id; the same payload is stored in family_alerts so a member
who was offline can catch up by polling.
Delivery is best-effort: no acknowledgement tracking and no retry.
"""

from datetime import datetime, timezone
from typing import Any

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import FamilyMember
from app.models.domain.sos_domain import Location, SOSAcknowledgement, SOSEvent, UserProfileSnapshot
from app.repositories.sos_repository import SOSEventRepository
from app.services.infrastructure.redis_client import RedisClient, RedisPublishError
from app.services.sos.templates import family_alert_message

logger = get_logger(__name__)


def family_channel(group_id: str) -> str:
    return f"family_group:{group_id}"


class FamilyRealtimeNotifier:
    def __init__(self, redis_client: RedisClient | None, repository: SOSEventRepository):
        self.redis = redis_client
        self.repository = repository

    async def _publish(self, channel: str, payload: dict[str, Any]) -> None:
        if self.redis is None:
            raise RedisPublishError("Realtime channel not configured", channel=channel)
        await self.redis.publish(channel, payload)

    async def notify(
        self,
        event_id: str,
        group_id: str,
        members: list[FamilyMember],
        location: Location,
        user_profile: UserProfileSnapshot,
    ) -> dict[str, Any]:
        channel = family_channel(group_id)
        alerts_sent = 0
        alert_results = []

        for member in members:
            sharing_paused = not member.sharing_permitted
            payload = {
                "type": "sos_alert",
                "event_id": event_id,
                "recipient_user_id": member.user_id,
                "location": None if sharing_paused else location.model_dump(),
                "location_sharing_paused": sharing_paused,
                "user_profile": user_profile.model_dump(exclude={"emergency_contacts"}),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "message": family_alert_message(
                    user_profile.full_name, location, sharing_paused=sharing_paused
                ),
            }

            try:
                await self._publish(channel, payload)
            except RedisPublishError as e:
                logger.warning(
                    "Family alert publish failed",
                    event_id=event_id,
                    member_id=member.user_id,
                    channel=channel,
                    error=str(e),
                )
                alert_results.append({"member_id": member.user_id, "status": "failed", "error": str(e)})
                continue

            alerts_sent += 1
            alert_results.append(
                {"member_id": member.user_id, "status": "sent", "location_sharing_paused": sharing_paused}
            )

            try:
                await self.repository.store_family_alert(event_id, member.user_id, "sos_alert", payload)
            except DatabaseError as e:
                logger.warning(
                    "Failed to store family alert", event_id=event_id, member_id=member.user_id, error=str(e)
                )

        logger.info(
            "Family alerts sent",
            event_id=event_id,
            channel=channel,
            alerts_sent=alerts_sent,
            total_family_members=len(members),
        )
        return {
            "alerts_sent": alerts_sent,
            "total_family_members": len(members),
            "alert_results": alert_results,
        }

    async def notify_acknowledgement(
        self, event_id: str, group_id: str, acknowledgement: SOSAcknowledgement
    ) -> bool:
        channel = family_channel(group_id)
        payload = {
            "type": "acknowledgement_received",
            "event_id": event_id,
            "acknowledgement_id": acknowledgement.id,
            "family_user_id": acknowledgement.family_user_id,
            "message": acknowledgement.message,
            "acknowledged_at": acknowledgement.acknowledged_at,
        }
        try:
            await self._publish(channel, payload)
        except RedisPublishError as e:
            logger.warning("Acknowledgement broadcast failed", event_id=event_id, channel=channel, error=str(e))
            return False
        return True

    async def notify_originator(self, event: SOSEvent, acknowledgement: SOSAcknowledgement) -> bool:
        """Tell the person who raised the SOS that someone responded, live and in family_alerts."""
        channel = family_channel(event.group_id)
        payload = {
            "type": "acknowledgement",
            "event_id": event.id,
            "recipient_user_id": event.user_id,
            "family_user_id": acknowledgement.family_user_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": f"Family member responded: {acknowledgement.message}",
        }

        published = True
        try:
            await self._publish(channel, payload)
        except RedisPublishError as e:
            logger.warning("Originator notification failed", event_id=event.id, channel=channel, error=str(e))
            published = False

        try:
            await self.repository.store_family_alert(
                event.id, event.user_id, "acknowledgement", payload, status="sent" if published else "failed"
            )
        except DatabaseError as e:
            logger.warning("Failed to store family alert", event_id=event.id, member_id=event.user_id, error=str(e))
        return published
