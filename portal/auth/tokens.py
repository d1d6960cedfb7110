"""
Access tokens

The platform auth service signs a JWT at login. The portal only verifies it
and reads the principal out of the claims:

    sub          user id (string, per JWT)
    tenant_id    tenant the session was opened for
    role_id      role identifier (may be null)
    permissions  ["resource:action", ...]

Tokens arrive as `Authorization: Bearer <jwt>` or in the `access_token`
cookie.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from portal.config import settings
from portal.exceptions import AuthenticationError
from portal.plugins.models import Permission, User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"

if settings.secret_key == "your_secret_key":
    logger.warning("Using default SECRET_KEY. This is insecure and should be changed in production!")


def get_auth_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer ") :].strip() or None
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Sign a token; used by tooling and tests, the portal never issues sessions itself."""
    if "sub" not in data:
        raise ValueError("Missing 'sub' claim in token data.")
    to_encode = dict(data)
    to_encode["sub"] = str(to_encode["sub"])
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> User:
    """
    Verify a token and build the User it describes.

    Raises:
        AuthenticationError: expired, badly signed or incomplete token.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except JWTError as e:
        logger.warning("JWT verification failed: %s", e)
        raise AuthenticationError("Invalid token") from e

    subject = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not subject or not tenant_id:
        raise AuthenticationError("Token is missing the user or tenant claim")

    try:
        user_id = int(subject)
        role_id = payload.get("role_id")
        permissions = frozenset(Permission.parse(p) for p in payload.get("permissions") or ())
        return User(
            id=user_id,
            tenant_id=str(tenant_id),
            role_id=int(role_id) if role_id is not None else 0,
            permissions=permissions,
        )
    except (TypeError, ValueError) as e:
        raise AuthenticationError("Token claims are malformed") from e
