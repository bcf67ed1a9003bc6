"""FastAPI dependencies for authentication and database access."""

from typing import Generator

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.errors import UnauthorizedError
from helpdesk.core.security import ActorSession, decode_session_token, secret_matches
from helpdesk.db.session import SessionLocal


COOKIE_NAME = "helpdesk_session"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(COOKIE_NAME)


def get_current_session(request: Request, db: Session = Depends(get_db)) -> ActorSession:
    """
    Resolve the acting agent from the session token.

    Raises:
        UnauthorizedError: token missing, invalid, or agent unknown
    """
    from helpdesk.db.models import Agent

    token = _extract_token(request)
    if not token:
        raise UnauthorizedError("Not authenticated")
    try:
        payload = decode_session_token(token)
        agent_id = int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
        raise UnauthorizedError("Invalid session")

    agent = db.get(Agent, agent_id)
    if agent is None or not agent.is_active:
        raise UnauthorizedError("Agent not found or inactive")
    return ActorSession(agent_id=agent.id, role=payload.get("role", "agent"))


def verify_webhook_secret(x_webhook_secret: str | None = Header(default=None)) -> None:
    if not secret_matches(x_webhook_secret, settings.INBOUND_WEBHOOK_SECRET):
        raise UnauthorizedError("Invalid webhook secret")


def verify_internal_secret(x_internal_secret: str | None = Header(default=None)) -> None:
    if not secret_matches(x_internal_secret, settings.INTERNAL_SECRET):
        raise UnauthorizedError("Invalid internal secret")
