"""
verify.py
---------
Purpose:
    Caller authentication for the SOS API.

Notes:
    - User tokens are Supabase JWTs verified against the project JWKS (ES256).
    - Keys are fetched from Supabase and cached by PyJWKClient.
    - `auth_dependency` protects user routes; `service_role_dependency`
      protects the routes a scheduler calls with the service-role key.
"""

import hmac

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings

SUPABASE_AUDIENCE = "authenticated"

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer(auto_error=False)


class AuthenticationError(Exception):
    """Missing or invalid caller token. Fatal to the request."""


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],  # Supabase now uses ES256
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
    except jwt.PyJWTError as e:
        raise AuthenticationError(f"Invalid authentication token: {e}") from e

    if not decoded.get("sub"):
        raise AuthenticationError("Token has no subject")
    return decoded


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def auth_dependency(credentials: HTTPAuthorizationCredentials | None = Depends(_security)) -> dict:
    if credentials is None:
        raise _unauthorized("Missing bearer token")
    try:
        return verify_jwt(credentials.credentials)
    except AuthenticationError as e:
        raise _unauthorized(str(e)) from e


def service_role_dependency(credentials: HTTPAuthorizationCredentials | None = Depends(_security)) -> None:
    """Only callers holding the service-role key (the scheduler, operators)."""
    if credentials is None:
        raise _unauthorized("Missing bearer token")
    if not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), settings.SUPABASE_SERVICE_ROLE_KEY.encode("utf-8")
    ):
        raise _unauthorized("Service role key required")
