"""
X-Twilio-Signature validation for inbound telephony webhooks.

Twilio signs the full callback URL plus every POST parameter with the account
auth token; the SDK's RequestValidator recomputes and compares it.
"""

from collections.abc import Iterable

from twilio.request_validator import RequestValidator

__all__ = ["validate_signature"]


def validate_signature(
    auth_token: str | None,
    url: str,
    params: Iterable[tuple[str, str]],
    signature: str | None,
) -> bool:
    if not auth_token or not signature:
        return False
    return RequestValidator(auth_token).validate(url, dict(params), signature)
