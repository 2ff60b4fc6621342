# app/main.py
"""
Family SOS API: application wiring and lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.container import ServiceContainer
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import contacts, email_processor, health, sos, webhooks

# Setup logging before creating the app
setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service container on startup, tear it down on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    container = ServiceContainer.create(settings)
    try:
        await container.start()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    app.state.container = container
    logger.info(
        "All services initialized successfully",
        redis=container.redis is not None,
        twilio=settings.twilio_configured(),
        resend=container.email_provider.configured,
    )

    yield

    logger.info("Application shutting down")
    app.state.container = None
    await container.close()


app = FastAPI(
    title="Family SOS",
    description="Emergency SOS fan-out: family alerts, call escalation and emergency email",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(sos.router)
app.include_router(contacts.router)
app.include_router(email_processor.router)
app.include_router(webhooks.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


# Outermost: request_id is bound before log_requests runs
app.add_middleware(RequestContextMiddleware)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
