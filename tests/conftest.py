"""
Test configuration and fixtures.

Provides:
- Fresh database schema per test (in-memory SQLite unless TEST_DATABASE_URL)
- JWT token minting for authenticated tests
- HTTPX AsyncClient with the app's get_db dependency overridden
- In-memory mailbox provider fake
"""
import os
from dataclasses import dataclass, field
from typing import AsyncGenerator, Generator

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("NOTIFY_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from helpdesk.core.deps import get_db
from helpdesk.core.security import create_session_token
from helpdesk.db.base import Base
from helpdesk.db.enums import TicketChannel
from helpdesk.db.models import Agent, Organization, OrganizationDomain
from helpdesk.main import app
from helpdesk.services.mailbox_providers.base import AttachmentContent, MailboxItem


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    url = os.getenv("TEST_DATABASE_URL")
    if url:
        test_engine = create_engine(url)
    else:
        test_engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    """Session on a fresh schema; app code may commit freely."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def fallback_org(db: Session) -> Organization:
    org = Organization(name="Unclassified", is_fallback=True)
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def org(db: Session) -> Organization:
    """Organization owning acme.com."""
    org = Organization(name="Acme Corp")
    org.domains.append(OrganizationDomain(domain="acme.com"))
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def agent(db: Session) -> Agent:
    agent = Agent(name="Alice Agent", email="alice@support.example")
    db.add(agent)
    db.commit()
    return agent


@pytest.fixture(scope="function")
def other_agent(db: Session) -> Agent:
    agent = Agent(name="Bob Agent", email="bob@support.example")
    db.add(agent)
    db.commit()
    return agent


# =============================================================================
# Auth Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def auth_headers(agent: Agent) -> dict[str, str]:
    token = create_session_token(agent.id, role="agent")
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for public endpoints."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    auth_headers: dict[str, str],
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient carrying a Bearer session token for `agent`."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=auth_headers,
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Mailbox provider fake
# =============================================================================

@dataclass
class FakeMailboxProvider:
    """In-memory MailboxProvider; consumed refs stop being returned."""

    channel: TicketChannel = TicketChannel.EMAIL_IMAP
    items: list[MailboxItem] = field(default_factory=list)
    consumed: list[str] = field(default_factory=list)
    attachments: dict[str, AttachmentContent] = field(default_factory=dict)
    fail_fetch: bool = False

    def fetch_pending(self, limit: int) -> list[MailboxItem]:
        if self.fail_fetch:
            from helpdesk.core.errors import ExternalProviderError

            raise ExternalProviderError("mailbox unavailable")
        pending = [item for item in self.items if item.ref not in self.consumed]
        return pending[:limit]

    def mark_consumed(self, item: MailboxItem) -> None:
        self.consumed.append(item.ref)

    def fetch_attachment(self, reference: str) -> AttachmentContent | None:
        return self.attachments.get(reference)


@pytest.fixture(scope="function")
def fake_provider() -> FakeMailboxProvider:
    return FakeMailboxProvider()
