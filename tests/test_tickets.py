"""Ticket lifecycle, history and numbering tests."""
import asyncio
import re
from datetime import timedelta

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, OperationalError

from src.config import HistoryAction, Priority, TicketCategory, TicketStatus
from src.core import (
    AppendOnlyViolationException,
    PermissionDeniedException,
    PersistenceException,
    ResourceNotFoundException,
    ValidationException,
)
from src.infrastructure.database import utcnow
from src.tickets.domain import Ticket, next_priority, sanitize_filename
from src.tickets.infrastructure import SQLAlchemyTicketRepository, TicketHistoryModel
from tests.conftest import as_principal, audit_entries


CHECKSUM = "ab" * 32


async def call(session_factory, make_ticket_service, method, *args, **kwargs):
    """Run one service operation in its own session, like one request."""
    async with session_factory() as session:
        return await getattr(make_ticket_service(session), method)(*args, **kwargs)


async def reload(session_factory, ticket_id):
    async with session_factory() as session:
        return await SQLAlchemyTicketRepository(session).get(ticket_id)


def open_ticket(**overrides):
    now = utcnow()
    fields = dict(
        id="t-1",
        ticket_number="TKT-000001",
        creator_id="alice",
        title="VPN down",
        description="Cannot reach the VPN gateway",
        category="incident",
        priority="high",
        sla_deadline=now + timedelta(hours=8),
        ip_address="10.0.0.7",
        now=now,
    )
    fields.update(overrides)
    return Ticket.open(**fields)


class TestTicketDomain:
    def test_open_writes_first_history_entry(self):
        ticket = open_ticket()
        assert ticket.status == TicketStatus.OPEN
        assert len(ticket.history) == 1
        entry = ticket.history[0]
        assert entry.action == HistoryAction.CREATE
        assert (entry.field, entry.old_value, entry.new_value) == ("status", None, "open")
        assert entry.actor_id == "alice"
        assert entry.ip_address == "10.0.0.7"

    def test_title_is_sanitized_and_bounded(self):
        assert open_ticket(title="  <b>VPN</b> down ").title == "bVPN/b down"
        with pytest.raises(ValidationException):
            open_ticket(title="<>")
        with pytest.raises(ValidationException):
            open_ticket(title="x" * 201)

    def test_multi_field_update_writes_one_entry_per_field(self):
        ticket = open_ticket()
        changes = ticket.apply_update(
            {"priority": "critical", "status": "in_progress", "title": "VPN down"},
            "sam", "10.0.0.8", utcnow(),
        )
        assert [c.field for c in changes] == ["priority", "status"]
        assert len(ticket.history) == 3
        assert ticket.history[1].old_value == "high"
        assert ticket.history[2].new_value == "in_progress"
        assert ticket.dirty_fields == {"priority", "status", "updated_at"}

    def test_unknown_field_rejected_before_any_change(self):
        ticket = open_ticket()
        with pytest.raises(ValidationException):
            ticket.apply_update({"priority": "low", "creator_id": "mallory"}, "sam", "ip", utcnow())
        assert ticket.priority == Priority.HIGH
        assert len(ticket.history) == 1

    def test_resolve_and_close_stamp_timestamps(self):
        ticket = open_ticket()
        ticket.apply_update({"status": "resolved"}, "sam", "ip", utcnow())
        assert ticket.resolved_at is not None
        assert ticket.closed_at is None
        ticket.apply_update({"status": "closed"}, "sam", "ip", utcnow())
        assert ticket.closed_at is not None
        assert ticket.is_terminal

    def test_escalate_twice_rejected(self):
        ticket = open_ticket()
        ticket.escalate("carol", "ip", utcnow(), "Customer is blocked")
        assert ticket.status == TicketStatus.ESCALATED
        with pytest.raises(ValidationException):
            ticket.escalate("carol", "ip", utcnow())
        assert len(ticket.history) == 2

    def test_history_is_read_only(self):
        ticket = open_ticket()
        with pytest.raises(AttributeError):
            ticket.history.append(None)
        with pytest.raises(AttributeError):
            ticket.history[0].new_value = "closed"

    def test_priority_ladder(self):
        assert next_priority(Priority.LOW) == Priority.MEDIUM
        assert next_priority(Priority.MEDIUM) == Priority.HIGH
        assert next_priority(Priority.HIGH) == Priority.CRITICAL
        assert next_priority(Priority.CRITICAL) == Priority.CRITICAL

    def test_attachment_metadata(self):
        ticket = open_ticket()
        attachment = ticket.add_attachment(
            "a-1", "../../etc/pass wd.pdf", "application/pdf", 10, CHECKSUM.upper(), "alice", "ip", utcnow()
        )
        assert attachment.filename == sanitize_filename("../../etc/pass wd.pdf")
        assert "/" not in attachment.filename and not attachment.filename.startswith(".")
        assert attachment.checksum == CHECKSUM
        with pytest.raises(ValidationException):
            ticket.add_attachment("a-2", "x.pdf", "application/pdf", 10, "not-a-digest", "alice", "ip", utcnow())


@pytest.mark.asyncio
class TestTicketCreation:
    async def test_critical_ticket_scenario(self, session_factory, make_ticket_service, alice, origin):
        ticket = await call(
            session_factory, make_ticket_service, "create_ticket",
            title="VPN down",
            description="Cannot reach the VPN gateway",
            category="incident",
            priority="critical",
            principal=as_principal(alice),
            origin=origin,
        )

        assert ticket.sla_deadline - ticket.created_at == timedelta(hours=2)
        assert ticket.status == TicketStatus.OPEN
        assert re.fullmatch(r"TKT-\d{6}", ticket.ticket_number)

        stored = await reload(session_factory, ticket.id)
        first = stored.history[0]
        assert (first.action, first.field, first.old_value, first.new_value) == ("create", "status", None, "open")
        assert stored.sla_deadline == ticket.sla_deadline

        entries = await audit_entries(session_factory, action="ticket_created")
        assert entries[0].resource_id == ticket.id
        assert entries[0].actor_id == alice.id

    async def test_medium_deadline_is_24_hours(self, alice_ticket):
        assert alice_ticket.sla_deadline - alice_ticket.created_at == timedelta(hours=24)

    async def test_concurrent_numbers_are_contiguous(self, session_factory, make_ticket_service, alice, origin):
        async def create(i):
            ticket = await call(
                session_factory, make_ticket_service, "create_ticket",
                title=f"Ticket {i}",
                description="Load",
                category="incident",
                priority="low",
                principal=as_principal(alice),
                origin=origin,
            )
            return ticket.ticket_number

        numbers = await asyncio.gather(*(create(i) for i in range(10)))
        assert sorted(numbers) == [f"TKT-{n:06d}" for n in range(1, 11)]

    async def test_legacy_values_accepted(self, session_factory, make_ticket_service, alice, origin):
        ticket = await call(
            session_factory, make_ticket_service, "create_ticket",
            "VPN down", "Cannot reach the VPN gateway", "incidente", "critica",
            as_principal(alice), origin,
        )
        assert ticket.priority == Priority.CRITICAL
        assert ticket.category == TicketCategory.INCIDENT
        assert ticket.sla_deadline - ticket.created_at == timedelta(hours=2)

    async def test_unknown_priority_rejected(self, session_factory, make_ticket_service, allocator, alice, origin):
        with pytest.raises(ValidationException) as exc_info:
            await call(
                session_factory, make_ticket_service, "create_ticket",
                "VPN down", "Cannot reach the VPN gateway", "incident", "urgent",
                as_principal(alice), origin,
            )
        assert exc_info.value.details["field"] == "priority"

        # No number is consumed by the rejected request
        ticket = await call(
            session_factory, make_ticket_service, "create_ticket",
            "Kept", "Stored", "incident", "low", as_principal(alice), origin,
        )
        assert ticket.ticket_number == "TKT-000001"
        async with session_factory() as session:
            assert await allocator.current(session) == 1

    async def test_failed_creation_does_not_burn_a_number(
        self, session_factory, make_ticket_service, allocator, alice, origin
    ):
        class FailingAddRepository(SQLAlchemyTicketRepository):
            async def add(self, ticket):
                await super().add(ticket)
                raise OperationalError("INSERT INTO tickets", {}, Exception("disk I/O error"))

        async with session_factory() as session:
            service = make_ticket_service(session, FailingAddRepository(session))
            with pytest.raises(PersistenceException):
                await service.create_ticket(
                    "Lost", "Never stored", "incident", "low", as_principal(alice), origin
                )
            assert await allocator.current(session) == 0

        ticket = await call(
            session_factory, make_ticket_service, "create_ticket",
            "Kept", "Stored", "incident", "low", as_principal(alice), origin,
        )
        assert ticket.ticket_number == "TKT-000001"
        async with session_factory() as session:
            assert await allocator.current(session) == 1


@pytest.mark.asyncio
class TestTicketAuthorization:
    async def test_unassigned_agent_update_is_denied_and_audited(
        self, session_factory, make_ticket_service, alice_ticket, bob, origin
    ):
        with pytest.raises(PermissionDeniedException):
            await call(
                session_factory, make_ticket_service, "update_ticket",
                alice_ticket.id, {"status": "in_progress"}, as_principal(bob), origin,
            )

        stored = await reload(session_factory, alice_ticket.id)
        assert len(stored.history) == 1
        assert stored.status == TicketStatus.OPEN

        denials = await audit_entries(session_factory, action="permission_denied")
        assert len(denials) == 1
        assert denials[0].success is False
        assert denials[0].actor_id == bob.id
        assert denials[0].resource_id == alice_ticket.id
        assert denials[0].details["attempted_action"] == "update_assigned"

    async def test_other_customer_cannot_read(self, session_factory, make_ticket_service, alice_ticket, mallory, origin):
        with pytest.raises(PermissionDeniedException):
            await call(session_factory, make_ticket_service, "get_ticket", alice_ticket.id, as_principal(mallory), origin)

    async def test_missing_ticket(self, session_factory, make_ticket_service, sam, origin):
        with pytest.raises(ResourceNotFoundException):
            await call(session_factory, make_ticket_service, "get_ticket", "missing", as_principal(sam), origin)

    async def test_listing_is_scoped(
        self, session_factory, make_ticket_service, alice_ticket, mallory, bob, sam, origin
    ):
        async def visible(account):
            page = await call(session_factory, make_ticket_service, "list_tickets", as_principal(account))
            return page.total

        assert await visible(mallory) == 0
        assert await visible(bob) == 0
        assert await visible(sam) == 1

    async def test_customer_comments_only_on_own_ticket(
        self, session_factory, make_ticket_service, alice_ticket, alice, mallory, origin
    ):
        comment = await call(
            session_factory, make_ticket_service, "add_comment",
            alice_ticket.id, "Any update?", as_principal(alice), origin,
        )
        assert comment.text == "Any update?"

        with pytest.raises(PermissionDeniedException):
            await call(
                session_factory, make_ticket_service, "add_comment",
                alice_ticket.id, "Me too", as_principal(mallory), origin,
            )

        stored = await reload(session_factory, alice_ticket.id)
        assert len(stored.comments) == 1
        assert stored.history[-1].action == "comment"


@pytest.mark.asyncio
class TestTicketWorkflow:
    async def test_reassign_then_update(self, session_factory, make_ticket_service, alice_ticket, bob, sam, origin):
        await call(
            session_factory, make_ticket_service, "reassign_ticket",
            alice_ticket.id, bob.id, as_principal(sam), origin,
        )
        ticket = await call(
            session_factory, make_ticket_service, "update_ticket",
            alice_ticket.id, {"status": "in_progress", "priority": "high"}, as_principal(bob), origin,
        )
        assert ticket.status == TicketStatus.IN_PROGRESS
        assert ticket.priority == Priority.HIGH

        stored = await reload(session_factory, alice_ticket.id)
        assert [e.action for e in stored.history] == ["create", "reassign", "update", "update"]
        assert [e.sequence for e in stored.history] == [1, 2, 3, 4]

        assert len(await audit_entries(session_factory, action="ticket_reassigned")) == 1
        assert len(await audit_entries(session_factory, action="ticket_priority_changed")) == 1

    async def test_update_accepts_legacy_status(self, session_factory, make_ticket_service, alice_ticket, sam, origin):
        ticket = await call(
            session_factory, make_ticket_service, "update_ticket",
            alice_ticket.id, {"status": "en_progreso"}, as_principal(sam), origin,
        )
        assert ticket.status == TicketStatus.IN_PROGRESS

    async def test_update_with_unknown_priority(self, session_factory, make_ticket_service, alice_ticket, sam, origin):
        with pytest.raises(ValidationException):
            await call(
                session_factory, make_ticket_service, "update_ticket",
                alice_ticket.id, {"priority": "urgent", "title": "Changed"}, as_principal(sam), origin,
            )

        stored = await reload(session_factory, alice_ticket.id)
        assert stored.priority == Priority.MEDIUM
        assert stored.title == alice_ticket.title
        assert len(stored.history) == 1

    async def test_noop_update_writes_nothing(self, session_factory, make_ticket_service, alice_ticket, sam, origin):
        await call(
            session_factory, make_ticket_service, "update_ticket",
            alice_ticket.id, {"priority": "medium"}, as_principal(sam), origin,
        )
        stored = await reload(session_factory, alice_ticket.id)
        assert len(stored.history) == 1
        assert await audit_entries(session_factory, action="ticket_updated") == []

    async def test_only_agents_can_be_assigned(
        self, session_factory, make_ticket_service, alice_ticket, mallory, bob, sam, origin
    ):
        with pytest.raises(ValidationException):
            await call(
                session_factory, make_ticket_service, "reassign_ticket",
                alice_ticket.id, mallory.id, as_principal(sam), origin,
            )
        with pytest.raises(PermissionDeniedException):
            await call(
                session_factory, make_ticket_service, "reassign_ticket",
                alice_ticket.id, bob.id, as_principal(bob), origin,
            )

    async def test_escalation_requires_tier2(
        self, session_factory, make_ticket_service, alice_ticket, bob, carol, sam, origin
    ):
        await call(
            session_factory, make_ticket_service, "reassign_ticket",
            alice_ticket.id, bob.id, as_principal(sam), origin,
        )
        with pytest.raises(PermissionDeniedException):
            await call(
                session_factory, make_ticket_service, "escalate_ticket",
                alice_ticket.id, "Stuck", as_principal(bob), origin,
            )

        await call(
            session_factory, make_ticket_service, "reassign_ticket",
            alice_ticket.id, carol.id, as_principal(sam), origin,
        )
        ticket = await call(
            session_factory, make_ticket_service, "escalate_ticket",
            alice_ticket.id, "Stuck", as_principal(carol), origin,
        )
        assert ticket.status == TicketStatus.ESCALATED

        with pytest.raises(ValidationException):
            await call(
                session_factory, make_ticket_service, "escalate_ticket",
                alice_ticket.id, "Again", as_principal(carol), origin,
            )

        stored = await reload(session_factory, alice_ticket.id)
        assert stored.history[-1].reason == "Stuck"
        assert len(stored.history) == 4

    async def test_attachment_limits(self, session_factory, make_ticket_service, alice_ticket, alice, origin):
        attachment = await call(
            session_factory, make_ticket_service, "add_attachment",
            alice_ticket.id, "screenshot.png", "image/png", 2048, CHECKSUM, as_principal(alice), origin,
        )
        assert attachment.uploaded_by == alice.id

        with pytest.raises(ValidationException):
            await call(
                session_factory, make_ticket_service, "add_attachment",
                alice_ticket.id, "tool.exe", "application/x-msdownload", 2048, CHECKSUM, as_principal(alice), origin,
            )
        with pytest.raises(ValidationException):
            await call(
                session_factory, make_ticket_service, "add_attachment",
                alice_ticket.id, "huge.pdf", "application/pdf", 10**9, CHECKSUM, as_principal(alice), origin,
            )

        stored = await reload(session_factory, alice_ticket.id)
        assert len(stored.attachments) == 1

    async def test_history_pages(self, session_factory, make_ticket_service, alice_ticket, alice, sam, origin):
        for i in range(3):
            await call(
                session_factory, make_ticket_service, "add_comment",
                alice_ticket.id, f"Note {i}", as_principal(sam), origin,
            )
        page = await call(
            session_factory, make_ticket_service, "get_history",
            alice_ticket.id, as_principal(alice), origin, page=1, limit=2, ascending=False,
        )
        assert page.total == 4
        assert page.pages == 2
        assert [e.sequence for e in page.items] == [4, 3]


@pytest.mark.asyncio
class TestHistoryIntegrity:
    async def test_entries_never_change_on_reread(
        self, session_factory, make_ticket_service, alice_ticket, sam, origin
    ):
        before = (await reload(session_factory, alice_ticket.id)).history

        await call(
            session_factory, make_ticket_service, "update_ticket",
            alice_ticket.id, {"status": "resolved"}, as_principal(sam), origin,
        )
        after = (await reload(session_factory, alice_ticket.id)).history

        assert len(after) == len(before) + 1
        assert after[:len(before)] == before

    async def test_orm_update_of_history_rejected(self, session_factory, alice_ticket):
        async with session_factory() as session:
            row = (await session.execute(
                select(TicketHistoryModel).where(TicketHistoryModel.ticket_id == alice_ticket.id)
            )).scalars().first()
            row.new_value = "closed"
            with pytest.raises(AppendOnlyViolationException):
                await session.flush()
            await session.rollback()

        stored = await reload(session_factory, alice_ticket.id)
        assert stored.history[0].new_value == "open"

    async def test_raw_delete_of_history_rejected(self, session_factory, alice_ticket):
        async with session_factory() as session:
            with pytest.raises(DBAPIError):
                await session.execute(text("DELETE FROM ticket_history"))
            await session.rollback()

        assert len((await reload(session_factory, alice_ticket.id)).history) == 1

    async def test_update_survives_concurrent_history_append(
        self, session_factory, make_ticket_service, alice_ticket, alice, sam, origin
    ):
        class InterleavingRepository(SQLAlchemyTicketRepository):
            interleaved = False

            async def save(self, ticket):
                if not self.interleaved:
                    # Another request commits a history entry after our load
                    self.interleaved = True
                    await call(
                        session_factory, make_ticket_service, "add_comment",
                        alice_ticket.id, "Any news?", as_principal(alice), origin,
                    )
                await super().save(ticket)

        async with session_factory() as session:
            service = make_ticket_service(session, InterleavingRepository(session))
            ticket = await service.update_ticket(
                alice_ticket.id, {"status": "in_progress"}, as_principal(sam), origin
            )
        assert ticket.status == TicketStatus.IN_PROGRESS

        stored = await reload(session_factory, alice_ticket.id)
        assert [e.action for e in stored.history] == ["create", "comment", "update"]
        assert [e.sequence for e in stored.history] == [1, 2, 3]
        assert len(stored.comments) == 1
        assert await audit_entries(session_factory, action="ticket_update_failed") == []

    async def test_storage_failure_leaves_no_partial_history(
        self, session_factory, make_ticket_service, alice_ticket, sam, origin
    ):
        class FailingSaveRepository(SQLAlchemyTicketRepository):
            async def save(self, ticket):
                await super().save(ticket)
                raise OperationalError("UPDATE tickets", {}, Exception("disk I/O error"))

        async with session_factory() as session:
            service = make_ticket_service(session, FailingSaveRepository(session))
            with pytest.raises(PersistenceException) as exc_info:
                await service.update_ticket(
                    alice_ticket.id, {"title": "Changed"}, as_principal(sam), origin
                )
        assert "disk" not in exc_info.value.message

        stored = await reload(session_factory, alice_ticket.id)
        assert stored.title == "Printer offline"
        assert len(stored.history) == 1

        failures = await audit_entries(session_factory, action="ticket_update_failed")
        assert len(failures) == 1
        assert failures[0].success is False
