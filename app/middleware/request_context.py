"""
RequestContext Middleware - request tracking for every call.

Adds to request.state:
- request_id: reuses a well-formed incoming X-Request-ID, otherwise a new UUID
- ip_address: client IP (X-Forwarded-For only from trusted proxies)
- user_agent: client user agent string

request_id is also bound into the structlog context so every log line
written while handling the request carries it, including the SOS fan-out.
"""

import re
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Add request context to all incoming requests.

    Also adds the X-Request-ID header to responses for client-side tracing.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("x-request-id")
        request_id = incoming if incoming and _REQUEST_ID_RE.match(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id

        ip_address = self._extract_client_ip(request)
        request.state.ip_address = ip_address
        request.state.user_agent = request.headers.get("user-agent")

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.debug(
            "Request started",
            method=request.method,
            path=request.url.path,
            ip_address=ip_address,
        )

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        Client IP with proxy spoofing protection.

        X-Forwarded-For is only trusted when TRUST_X_FORWARDED_FOR is on and
        the direct peer is one of TRUSTED_PROXY_IPS.
        """
        direct = request.client.host if request.client else None
        if not settings.TRUST_X_FORWARDED_FOR:
            return direct

        if direct and direct in settings.TRUSTED_PROXY_IPS:
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                # "client, proxy1, proxy2": first entry is the original client
                return forwarded_for.split(",")[0].strip()

        return direct
