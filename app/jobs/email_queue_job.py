"""
Email Queue Job - periodic driver for the email queue.

Each cycle fails rows whose processing claim expired, delivers due pending
emails, then gives failed ones another attempt. Runs in the worker process
with its own service container.
"""

import asyncio
from datetime import datetime, timezone

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.services.email_queue_processor import EmailQueueProcessor

logger = get_logger(__name__)


class EmailQueueJobError(Exception):
    """Custom exception for email queue job operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class EmailQueueMetrics:
    """Metrics tracking for one job cycle."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(timezone.utc)
        self.processed = 0
        self.sent = 0
        self.failed = 0
        self.recovered = 0
        self.retried = 0
        self.retry_succeeded = 0
        self.total_duration_seconds = 0.0

    def record_process(self, counts: dict):
        self.processed += counts.get("processed", 0)
        self.sent += counts.get("sent", 0)
        self.failed += counts.get("failed", 0)

    def record_retry(self, counts: dict):
        self.retried += counts.get("retried", 0)
        self.retry_succeeded += counts.get("succeeded", 0)

    def finalize(self):
        """Finalize metrics and calculate totals."""
        self.total_duration_seconds = (datetime.now(timezone.utc) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        """Convert metrics to dictionary for logging."""
        return {
            "job_run": "email_queue",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "recovered": self.recovered,
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "retried": self.retried,
            "retry_succeeded": self.retry_succeeded,
        }


class EmailQueueJob:
    def __init__(self, processor: EmailQueueProcessor, *, batch_size: int = 10):
        self.processor = processor
        self.batch_size = batch_size
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = EmailQueueMetrics()

    async def run_once(self) -> dict:
        """
        Run a single cycle: expire stale claims, process_queue, then retry_failed.

        Raises:
            EmailQueueJobError: if the queue table could not be read at all
        """
        if self.is_running:
            logger.warning("Email queue job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            self.job_metrics.recovered = await self.processor.recover_stale_claims()
            self.job_metrics.record_process(await self.processor.process_queue(self.batch_size))
            self.job_metrics.record_retry(await self.processor.retry_failed(self.batch_size))

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(timezone.utc)
            return self.job_metrics.to_dict()

        except DatabaseError as e:
            logger.error("Email queue job failed", error=str(e), error_type=type(e).__name__)
            raise EmailQueueJobError(f"Email queue job failed: {e}", operation="run_once") from e

        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {
            "job_name": "email_queue",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "batch_size": self.batch_size,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }


async def run_email_queue_scheduler(job: EmailQueueJob, interval_seconds: float, error_backoff: float = 60.0):
    """Loop run_once forever; a failed cycle never stops the loop."""
    logger.info("Starting email queue scheduler", interval_seconds=interval_seconds)

    while True:
        try:
            metrics = await job.run_once()
            if not metrics.get("skipped", False) and (metrics["processed"] or metrics["retried"] or metrics["recovered"]):
                logger.info("Email queue cycle completed", **metrics)
            await asyncio.sleep(interval_seconds)

        except Exception as e:
            logger.error("Error in email queue scheduler", error=str(e), error_type=type(e).__name__)
            # Back off to avoid a tight error loop
            await asyncio.sleep(error_backoff)


async def start_email_queue_scheduler():
    """Worker entry point: own container, run until cancelled."""
    from app.config import settings
    from app.container import ServiceContainer

    container = ServiceContainer.create(settings)
    await container.db.initialize()
    try:
        job = EmailQueueJob(container.email_queue, batch_size=settings.EMAIL_QUEUE_BATCH_SIZE)
        await run_email_queue_scheduler(job, settings.EMAIL_QUEUE_POLL_INTERVAL_SECONDS)
    finally:
        await container.close()
