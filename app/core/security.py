# app/core/security.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from app.core.config import settings

# Agent bearer tokens are issued by the external auth provider (HS256 with
# the shared JWT_SECRET). This service only verifies them; the minting
# helper below follows the provider's claim layout for seeding and tests.

ACCESS_TOKEN_TYPE = "access"


class InvalidTokenError(Exception):
    """Raised when a bearer token is missing, expired or carries bad claims."""


def create_access_token(
    *,
    subject: str,                # the agent's user id (UUID as str)
    email: Optional[str] = None,
    role: Optional[str] = None,  # "admin" | "supervisor" | "agent"
    expires_minutes: Optional[int] = None,
) -> str:
    issued = datetime.now(timezone.utc)
    expires = issued + timedelta(minutes=expires_minutes or settings.ACCESS_EXPIRES_MIN)
    claims: Dict[str, Any] = {
        "sub": subject,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(issued.timestamp()),
        "exp": int(expires.timestamp()),
        "jti": uuid.uuid4().hex,
    }
    if email:
        claims["email"] = email
    if role:
        claims["role"] = role
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify signature and expiry; raise InvalidTokenError otherwise.
    """
    if not token:
        raise InvalidTokenError("missing_token")
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise InvalidTokenError("token_expired") from exc
    except JWTError as exc:
        raise InvalidTokenError("invalid_token") from exc

    if "sub" not in payload or "type" not in payload:
        raise InvalidTokenError("invalid_claims")
    return payload


def is_access_token(payload: Dict[str, Any]) -> bool:
    return payload.get("type") == ACCESS_TOKEN_TYPE
