"""
Resend email provider.

Thin async wrapper around the Resend HTTP API with the same retry/backoff
handling the other outbound HTTP clients use. One instance per process,
sharing one httpx.AsyncClient.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


class EmailProviderError(Exception):
    """Raised when the provider rejects or cannot accept a message."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}
        self.recoverable = recoverable


@dataclass
class EmailSendResult:
    message_id: str | None
    response: dict[str, Any] = field(default_factory=dict)


def strip_html(html: str) -> str:
    """Plain-text fallback for providers/clients that ignore the HTML part."""
    return _SPACE_RE.sub(" ", _TAG_RE.sub(" ", html or "")).strip()


class ResendEmailProvider:
    def __init__(self, api_key: str | None, default_sender: str, client: httpx.AsyncClient | None = None):
        self.api_key = api_key
        self.default_sender = default_sender
        self._client = client
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post_with_retry(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        client = self._get_client()

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await client.post(RESEND_API_URL, json=payload, headers=headers)

                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Resend transient status",
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                return response

            except httpx.RequestError as exc:
                if attempt == MAX_RETRIES:
                    raise

                wait_time = BACKOFF_FACTOR**attempt
                logger.warning(
                    "Resend request error, retrying",
                    attempt=attempt,
                    wait_time=wait_time,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                await asyncio.sleep(wait_time)

        raise EmailProviderError("Resend send failed: retries exhausted")

    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        sender: str | None = None,
    ) -> EmailSendResult:
        if not self.api_key:
            raise EmailProviderError("Resend API key not configured", recoverable=False)

        payload = {
            "from": sender or self.default_sender,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text or strip_html(html),
        }

        try:
            response = await self._post_with_retry(payload)
        except httpx.RequestError as e:
            raise EmailProviderError(f"Network error sending email: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text[:500]}

        if not response.is_success:
            logger.warning(
                "Resend rejected email",
                status_code=response.status_code,
                error=data.get("message") if isinstance(data, dict) else None,
            )
            raise EmailProviderError(
                f"Resend error: {response.status_code} {data}",
                status_code=response.status_code,
                response_data=data if isinstance(data, dict) else {},
                recoverable=response.status_code in RETRY_STATUS_CODES,
            )

        return EmailSendResult(message_id=data.get("id"), response=data)

    async def health_check(self) -> dict[str, Any]:
        """Reachability of the provider endpoint; does not send anything."""
        if not self.api_key:
            return {"healthy": False, "service": "resend", "error": "RESEND_API_KEY not configured"}

        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            response = await self._get_client().get(
                "https://api.resend.com/domains",
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=5.0,
            )
        except httpx.RequestError as e:
            return {"healthy": False, "service": "resend", "error": f"error_{type(e).__name__}"}

        return {
            "healthy": response.status_code < 500,
            "service": "resend",
            "status_code": response.status_code,
            "latency_ms": round((loop.time() - start) * 1000, 2),
        }
