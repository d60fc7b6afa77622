"""Shared test fixtures."""
import os
from datetime import datetime
from typing import Any, Dict, List

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["SLA_MONITOR_INTERVAL_SECONDS"] = "0"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from src.accounts.domain import UserAccount
from src.accounts.infrastructure import BcryptCredentialVerifier, SQLAlchemyUserRepository
from src.audit.application import AuditQuery, AuditService
from src.audit.infrastructure.repositories import SQLAlchemyAuditRepository
from src.config import Role, settings
from src.core import Origin, Principal
from src.infrastructure.database import build_engine, build_session_maker, create_tables, utcnow
from src.main import app
from src.shared.api.dependencies import get_session_factory
from src.sla.application import INotifier, SLAMonitor
from src.sla.domain import SLAConfig, StaticSLAConfigProvider
from src.tickets.application import TicketService
from src.tickets.infrastructure import SQLAlchemyTicketRepository, TicketNumberAllocator


PASSWORD = "Correct-Horse-42!"

# Low bcrypt cost keeps the suite fast
verifier = BcryptCredentialVerifier(rounds=4)


class RecordingNotifier(INotifier):
    """Notifier double that remembers what it was asked to send."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent: List[Dict[str, Any]] = []

    async def notify(self, recipient_id: str, event: str, payload: Dict[str, Any]) -> bool:
        self.sent.append({"recipient_id": recipient_id, "event": event, "payload": payload})
        return self.deliver


def as_principal(account: UserAccount) -> Principal:
    return Principal(user_id=account.id, role=account.role)


def auth_headers(account: UserAccount) -> Dict[str, str]:
    return {"X-User-Id": account.id, "X-User-Role": account.role.value}


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def audit_entries(session_factory, **filters) -> list:
    async with session_factory() as session:
        items, _ = await SQLAlchemyAuditRepository(session).list(AuditQuery(limit=200, **filters))
    return items


@pytest.fixture
def origin():
    return Origin(ip_address="10.0.0.7", user_agent="pytest")


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_maker(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_service(session_factory):
    return AuditService(session_factory)


@pytest.fixture
def sla_config_provider():
    return StaticSLAConfigProvider(SLAConfig())


@pytest.fixture
def allocator():
    return TicketNumberAllocator()


@pytest.fixture
def make_ticket_service(audit_service, allocator, sla_config_provider):
    """Build a TicketService bound to the given session."""

    def factory(session, ticket_repository=None) -> TicketService:
        return TicketService(
            session=session,
            ticket_repository=ticket_repository or SQLAlchemyTicketRepository(session),
            user_repository=SQLAlchemyUserRepository(session),
            audit_service=audit_service,
            number_allocator=allocator,
            sla_config_provider=sla_config_provider,
            settings=settings,
        )

    return factory


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sla_monitor(session_factory, audit_service, notifier, sla_config_provider):
    return SLAMonitor(session_factory, audit_service, notifier, sla_config_provider)


async def _create_user(session_factory, username: str, role: Role) -> UserAccount:
    account = UserAccount(
        id=f"user-{username}",
        username=username,
        email=f"{username}@helpdesk.test",
        role=role,
        password_hash=verifier.hash_password(PASSWORD),
        created_at=utcnow(),
    )
    async with session_factory() as session:
        await SQLAlchemyUserRepository(session).add(account)
        await session.commit()
    return account


@pytest_asyncio.fixture
async def alice(session_factory):
    """Customer"""
    return await _create_user(session_factory, "alice", Role.CUSTOMER)


@pytest_asyncio.fixture
async def mallory(session_factory):
    """Second customer"""
    return await _create_user(session_factory, "mallory", Role.CUSTOMER)


@pytest_asyncio.fixture
async def bob(session_factory):
    """Tier-1 agent"""
    return await _create_user(session_factory, "bob", Role.AGENT_TIER1)


@pytest_asyncio.fixture
async def carol(session_factory):
    """Tier-2 agent"""
    return await _create_user(session_factory, "carol", Role.AGENT_TIER2)


@pytest_asyncio.fixture
async def sam(session_factory):
    """Supervisor"""
    return await _create_user(session_factory, "sam", Role.SUPERVISOR)


@pytest_asyncio.fixture
async def ada(session_factory):
    """Administrator"""
    return await _create_user(session_factory, "ada", Role.ADMINISTRATOR)


@pytest_asyncio.fixture
async def alice_ticket(session_factory, make_ticket_service, alice, origin):
    """Medium-priority ticket opened by alice."""
    async with session_factory() as session:
        return await make_ticket_service(session).create_ticket(
            title="Printer offline",
            description="Third floor printer does not respond",
            category="functional_support",
            priority="medium",
            principal=as_principal(alice),
            origin=origin,
        )


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden session factory"""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.ticket_allocator = TicketNumberAllocator()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.ticket_allocator = None
    app.state.notifier = None
