"""Audit ledger immutability, scoping and statistics tests."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import DBAPIError, OperationalError

from src.audit.application import AuditQuery, AuditService
from src.audit.infrastructure.models import AuditLogModel
from src.audit.infrastructure.repositories import SQLAlchemyAuditRepository
from src.config import AuditAction, AuditResource, Role
from src.core import (
    AppendOnlyViolationException,
    PermissionDeniedException,
    Principal,
    ResourceNotFoundException,
)
from tests.conftest import audit_entries


def test_inverted_window_rejected():
    with pytest.raises(ValueError):
        AuditQuery(
            start=datetime(2025, 2, 1, tzinfo=timezone.utc),
            end=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )


SUPERVISOR = Principal(user_id="user-sam", role=Role.SUPERVISOR)
AGENT = Principal(user_id="user-bob", role=Role.AGENT_TIER1)
CUSTOMER = Principal(user_id="user-alice", role=Role.CUSTOMER)


async def seed(audit_service, origin):
    await audit_service.record("user-bob", AuditAction.TICKET_UPDATED, AuditResource.TICKET, "t-1", origin=origin)
    await audit_service.record("user-sam", AuditAction.TICKET_REASSIGNED, AuditResource.TICKET, "t-1", origin=origin)
    await audit_service.record(
        None, AuditAction.LOGIN_FAILED, AuditResource.USER, origin=origin,
        success=False, error_message="Unknown user",
    )


@pytest.mark.asyncio
class TestRecord:
    async def test_record_stores_every_field(self, audit_service, session_factory, origin):
        stored = await audit_service.record(
            "user-bob", AuditAction.TICKET_UPDATED, AuditResource.TICKET, "t-1",
            details={"changes": [{"field": "status"}]}, origin=origin,
        )
        assert stored is not None

        entries = await audit_entries(session_factory)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == "ticket_updated"
        assert entry.resource_type == "ticket"
        assert entry.details == {"changes": [{"field": "status"}]}
        assert entry.ip_address == "10.0.0.7"
        assert entry.user_agent == "pytest"
        assert entry.success is True
        assert entry.timestamp.tzinfo is not None

    async def test_missing_origin_recorded_as_unknown(self, audit_service, session_factory):
        await audit_service.record(None, AuditAction.TICKET_ESCALATED_SLA, AuditResource.TICKET, "t-1")
        entries = await audit_entries(session_factory)
        assert entries[0].ip_address == "unknown"
        assert entries[0].actor_id is None

    async def test_failed_write_is_swallowed(self, session_factory, origin):
        class BrokenRepository(SQLAlchemyAuditRepository):
            async def add(self, entry):
                raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

        service = AuditService(session_factory, repository_factory=BrokenRepository)
        result = await service.record("user-bob", AuditAction.LOGIN_SUCCESS, AuditResource.USER, origin=origin)

        assert result is None
        assert await audit_entries(session_factory) == []


@pytest.mark.asyncio
class TestAppendOnly:
    async def test_orm_update_rejected(self, audit_service, session_factory, origin):
        await seed(audit_service, origin)

        async with session_factory() as session:
            row = (await session.execute(select(AuditLogModel).limit(1))).scalars().first()
            row.error_message = "tampered"
            with pytest.raises(AppendOnlyViolationException):
                await session.flush()
            await session.rollback()

    async def test_orm_delete_rejected(self, audit_service, session_factory, origin):
        await seed(audit_service, origin)

        async with session_factory() as session:
            row = (await session.execute(select(AuditLogModel).limit(1))).scalars().first()
            await session.delete(row)
            with pytest.raises(AppendOnlyViolationException):
                await session.flush()
            await session.rollback()

        assert len(await audit_entries(session_factory)) == 3

    async def test_bulk_statements_rejected(self, audit_service, session_factory, origin):
        await seed(audit_service, origin)

        async with session_factory() as session:
            with pytest.raises(AppendOnlyViolationException):
                await session.execute(update(AuditLogModel).values(success=True))
            with pytest.raises(AppendOnlyViolationException):
                await session.execute(delete(AuditLogModel))
            await session.rollback()

    async def test_raw_sql_rejected_by_trigger(self, audit_service, session_factory, origin):
        await seed(audit_service, origin)
        before = await audit_entries(session_factory, sort_order="asc")

        async with session_factory() as session:
            with pytest.raises(DBAPIError):
                await session.execute(text("UPDATE audit_logs SET success = 1"))
            await session.rollback()
        async with session_factory() as session:
            with pytest.raises(DBAPIError):
                await session.execute(text("DELETE FROM audit_logs"))
            await session.rollback()

        assert await audit_entries(session_factory, sort_order="asc") == before


@pytest.mark.asyncio
class TestQueries:
    async def test_supervisor_sees_everything(self, audit_service, origin):
        await seed(audit_service, origin)
        result = await audit_service.list_entries(AuditQuery(), SUPERVISOR, origin)
        assert result["pagination"]["total"] == 3

    async def test_agent_pinned_to_own_entries(self, audit_service, origin):
        await seed(audit_service, origin)
        result = await audit_service.list_entries(AuditQuery(actor_id="user-sam"), AGENT, origin)
        assert result["pagination"]["total"] == 1
        assert result["items"][0].actor_id == "user-bob"

    async def test_agent_cannot_fetch_foreign_entry(self, audit_service, origin):
        await seed(audit_service, origin)
        foreign = await audit_service.record("user-sam", AuditAction.TICKET_CLOSED, AuditResource.TICKET, "t-2")

        with pytest.raises(ResourceNotFoundException):
            await audit_service.get_entry(foreign.id, AGENT, origin)
        assert (await audit_service.get_entry(foreign.id, SUPERVISOR, origin)).id == foreign.id

    async def test_customer_denied_and_denial_audited(self, audit_service, session_factory, origin):
        with pytest.raises(PermissionDeniedException):
            await audit_service.list_entries(AuditQuery(), CUSTOMER, origin)

        denials = await audit_entries(session_factory, action="permission_denied")
        assert len(denials) == 1
        assert denials[0].resource_type == "audit_log"
        assert denials[0].actor_id == "user-alice"
        assert denials[0].success is False

    async def test_pagination_newest_first(self, audit_service, origin):
        await seed(audit_service, origin)
        page1 = await audit_service.list_entries(AuditQuery(limit=2), SUPERVISOR, origin)
        page2 = await audit_service.list_entries(AuditQuery(limit=2, page=2), SUPERVISOR, origin)

        assert page1["pagination"]["pages"] == 2
        assert [e.action for e in page1["items"]] == ["login_failed", "ticket_reassigned"]
        assert [e.action for e in page2["items"]] == ["ticket_updated"]

    async def test_filter_by_outcome(self, audit_service, origin):
        await seed(audit_service, origin)
        result = await audit_service.list_entries(AuditQuery(success=False), SUPERVISOR, origin)
        assert [e.action for e in result["items"]] == ["login_failed"]


@pytest.mark.asyncio
class TestStatistics:
    async def test_grouped_counts(self, audit_service, origin):
        await seed(audit_service, origin)
        stats = await audit_service.statistics(SUPERVISOR, origin=origin)

        assert stats.total == 3
        assert stats.failed == 1
        assert stats.success_rate == pytest.approx(66.67)
        assert stats.by_resource == {"ticket": 2, "user": 1}
        assert stats.by_actor == {"user-bob": 1, "user-sam": 1, "system": 1}
        assert stats.by_success == {"success": 2, "failed": 1}

    async def test_agent_statistics_are_own(self, audit_service, origin):
        await seed(audit_service, origin)
        stats = await audit_service.statistics(AGENT, origin=origin)
        assert stats.total == 1
        assert stats.by_action == {"ticket_updated": 1}

    async def test_empty_window(self, audit_service, origin):
        stats = await audit_service.statistics(SUPERVISOR, origin=origin)
        assert stats.total == 0
        assert stats.success_rate == 100.0
