"""
ServiceContainer - every process-level client, built once at startup.

The API lifespan and the worker both build one container and hand its
members to routes/jobs; nothing else constructs a pool or a provider client.
"""

from dataclasses import dataclass

from app.config import Settings
from app.db.pool import DatabasePoolManager
from app.infrastructure.audit import AuditLogger
from app.infrastructure.observability.logging import get_logger
from app.repositories.email_queue_repository import EmailQueueRepository
from app.repositories.profile_repository import ProfileRepository
from app.repositories.sos_repository import SOSEventRepository
from app.services.background_tasks import BackgroundTaskRunner
from app.services.email_queue_processor import EmailQueueProcessor
from app.services.infrastructure.redis_client import RedisClient
from app.services.providers.resend_email_provider import ResendEmailProvider
from app.services.providers.twilio_dialer import SimulatedDialer, TwilioDialer
from app.services.sos.call_sequencer import EmergencyCallSequencer
from app.services.sos.email_notifier import EmergencyEmailNotifier
from app.services.sos.event_service import SOSEventService
from app.services.sos.family_notifier import FamilyRealtimeNotifier
from app.services.sos.orchestrator import SOSTriggerService

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    db: DatabasePoolManager
    redis: RedisClient | None
    email_provider: ResendEmailProvider
    dialer: TwilioDialer | SimulatedDialer
    task_runner: BackgroundTaskRunner
    audit_logger: AuditLogger
    profiles: ProfileRepository
    events: SOSEventRepository
    email_queue: EmailQueueProcessor
    sos_trigger: SOSTriggerService
    sos_events: SOSEventService

    @classmethod
    def create(cls, settings: Settings) -> "ServiceContainer":
        """Wire everything without opening connections."""
        db = DatabasePoolManager(settings.SUPABASE_DB_URL, settings.get_db_pool_config())

        redis_url = settings.redis_url()
        redis_client = RedisClient(redis_url) if redis_url else None
        if redis_client is None:
            logger.warning("No Redis configured, realtime family alerts disabled")

        profiles = ProfileRepository(db)
        events = SOSEventRepository(db)
        queue_repository = EmailQueueRepository(db)

        email_provider = ResendEmailProvider(settings.RESEND_API_KEY, settings.EMAIL_FROM)
        if settings.twilio_configured():
            dialer = TwilioDialer(
                account_sid=settings.TWILIO_ACCOUNT_SID,
                auth_token=settings.TWILIO_AUTH_TOKEN,
                from_number=settings.TWILIO_PHONE_NUMBER,
                status_callback_url=settings.call_status_callback_url(),
                repository=events,
                poll_interval=settings.CALL_STATUS_POLL_SECONDS,
            )
        else:
            logger.warning("Twilio not configured, emergency calls will be simulated")
            dialer = SimulatedDialer(events)

        task_runner = BackgroundTaskRunner()
        audit_logger = AuditLogger(db)

        email_queue = EmailQueueProcessor(
            queue_repository,
            email_provider,
            max_retries=settings.EMAIL_QUEUE_MAX_RETRIES,
            default_priority=settings.EMAIL_QUEUE_DEFAULT_PRIORITY,
            claim_lease_seconds=settings.EMAIL_QUEUE_CLAIM_LEASE_SECONDS,
        )
        family_notifier = FamilyRealtimeNotifier(redis_client, events)
        call_sequencer = EmergencyCallSequencer(
            dialer, events, interval_seconds=settings.CALL_SEQUENCE_INTERVAL_SECONDS
        )
        email_notifier = EmergencyEmailNotifier(email_queue, sender=settings.EMAIL_FROM)

        sos_trigger = SOSTriggerService(
            profiles=profiles,
            events=events,
            family_notifier=family_notifier,
            call_sequencer=call_sequencer,
            email_notifier=email_notifier,
            task_runner=task_runner,
            audit_logger=audit_logger,
        )
        sos_events = SOSEventService(
            profiles=profiles,
            events=events,
            family_notifier=family_notifier,
            audit_logger=audit_logger,
        )

        return cls(
            settings=settings,
            db=db,
            redis=redis_client,
            email_provider=email_provider,
            dialer=dialer,
            task_runner=task_runner,
            audit_logger=audit_logger,
            profiles=profiles,
            events=events,
            email_queue=email_queue,
            sos_trigger=sos_trigger,
            sos_events=sos_events,
        )

    async def start(self) -> None:
        """Open the pool, then Redis. Undo the pool if Redis fails."""
        await self.db.initialize()
        if self.redis is None:
            return
        try:
            await self.redis.initialize()
        except Exception:
            await self.db.close()
            raise

    async def close(self) -> None:
        """Reverse order of start; running call sequences get a grace period first."""
        errors = []

        await self.task_runner.shutdown(timeout=10.0)

        for name, closer in (
            ("email_provider", self.email_provider.close),
            ("dialer", getattr(self.dialer, "close", None)),
            ("redis", self.redis.close if self.redis else None),
            ("database", self.db.close),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.error("Error closing service", service=name, error=str(e))
                errors.append(f"{name}: {e}")

        if errors:
            logger.warning("Some services had shutdown errors", errors=errors)
        else:
            logger.info("All services closed successfully")
