"""Security utilities for session tokens and shared-secret checks."""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from helpdesk.core.config import settings


SESSION_TTL_HOURS = 8


@dataclass(frozen=True)
class ActorSession:
    """Authenticated agent identity extracted from a session token."""

    agent_id: int
    role: str


# =============================================================================
# Session Token (JWT)
# =============================================================================

def create_session_token(agent_id: int, role: str = "agent") -> str:
    """
    Create signed session JWT.

    Always signs with the current secret (JWT_SECRET).
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(agent_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=SESSION_TTL_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Shared secrets
# =============================================================================

def secret_matches(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison; an unconfigured secret never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
