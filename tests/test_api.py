"""HTTP API tests."""
import re
from datetime import timedelta

import pytest

from src.core import (
    AccountLockedException,
    AppendOnlyViolationException,
    ConflictException,
    InvalidCredentialsException,
    PermissionDeniedException,
    PersistenceException,
    ResourceNotFoundException,
    ValidationException,
)
from src.shared.api.middleware import status_code_for
from tests.conftest import PASSWORD, auth_headers, parse_datetime


@pytest.mark.parametrize("exc, code", [
    (PermissionDeniedException("ticket", "read_own"), 403),
    (AccountLockedException(), 423),
    (InvalidCredentialsException(), 401),
    (ResourceNotFoundException("Ticket", "t-1"), 404),
    (ValidationException("bad"), 400),
    (ConflictException("taken"), 409),
    (AppendOnlyViolationException("audit_logs", "update"), 409),
    (PersistenceException("ticket update"), 500),
])
def test_status_code_mapping(exc, code):
    assert status_code_for(exc) == code


@pytest.mark.asyncio
class TestTicketsAPI:
    async def test_missing_principal_headers(self, client):
        response = await client.get("/tickets")
        assert response.status_code == 401

    async def test_unknown_role_header(self, client):
        response = await client.get("/tickets", headers={"X-User-Id": "x", "X-User-Role": "wizard"})
        assert response.status_code == 401

    async def test_create_critical_ticket(self, client, alice):
        response = await client.post(
            "/tickets",
            json={
                "title": "VPN down",
                "description": "Cannot reach the VPN gateway",
                "category": "incidente",
                "priority": "critica",
            },
            headers=auth_headers(alice),
        )
        assert response.status_code == 201
        data = response.json()

        assert re.fullmatch(r"TKT-\d{6}", data["ticket_number"])
        assert data["priority"] == "critical"
        assert data["category"] == "incident"
        assert data["status"] == "open"
        assert parse_datetime(data["sla_deadline"]) - parse_datetime(data["created_at"]) == timedelta(hours=2)

        first = data["history"][0]
        assert first["action"] == "create"
        assert first["field"] == "status"
        assert first["old_value"] is None
        assert first["new_value"] == "open"
        assert response.headers["X-Correlation-ID"]

    async def test_invalid_priority(self, client, alice):
        response = await client.post(
            "/tickets",
            json={"title": "x", "description": "y", "priority": "whenever"},
            headers=auth_headers(alice),
        )
        assert response.status_code == 422

    async def test_unknown_ticket(self, client, sam):
        response = await client.get("/tickets/does-not-exist", headers=auth_headers(sam))
        assert response.status_code == 404

    async def test_foreign_ticket_forbidden(self, client, alice_ticket, mallory):
        response = await client.get(f"/tickets/{alice_ticket.id}", headers=auth_headers(mallory))
        assert response.status_code == 403
        assert "details" in response.json()

    async def test_unassigned_agent_cannot_update(self, client, alice_ticket, bob):
        response = await client.patch(
            f"/tickets/{alice_ticket.id}",
            json={"status": "in_progress"},
            headers=auth_headers(bob),
        )
        assert response.status_code == 403

        history = await client.get(f"/tickets/{alice_ticket.id}/history", headers=auth_headers(bob))
        assert history.status_code == 403

    async def test_supervisor_workflow(self, client, alice_ticket, alice, carol, sam):
        reassigned = await client.post(
            f"/tickets/{alice_ticket.id}/reassign",
            json={"assignee_id": carol.id},
            headers=auth_headers(sam),
        )
        assert reassigned.status_code == 200
        assert reassigned.json()["assignee_id"] == carol.id

        escalated = await client.post(
            f"/tickets/{alice_ticket.id}/escalate",
            json={"reason": "Needs network team"},
            headers=auth_headers(carol),
        )
        assert escalated.status_code == 200
        assert escalated.json()["status"] == "escalated"

        comment = await client.post(
            f"/tickets/{alice_ticket.id}/comments",
            json={"text": "Thanks for the update"},
            headers=auth_headers(alice),
        )
        assert comment.status_code == 201

        history = await client.get(f"/tickets/{alice_ticket.id}/history", headers=auth_headers(alice))
        assert history.status_code == 200
        body = history.json()
        assert [e["action"] for e in body["items"]] == ["create", "reassign", "escalate", "comment"]
        assert body["pagination"]["total"] == 4

    async def test_attachment_metadata(self, client, alice_ticket, alice):
        response = await client.post(
            f"/tickets/{alice_ticket.id}/attachments",
            json={
                "filename": "error log.txt",
                "mime_type": "text/plain",
                "size_bytes": 512,
                "checksum": "0f" * 32,
            },
            headers=auth_headers(alice),
        )
        assert response.status_code == 201
        assert response.json()["filename"] == "error_log.txt"

        rejected = await client.post(
            f"/tickets/{alice_ticket.id}/attachments",
            json={"filename": "a.sh", "mime_type": "application/x-sh", "size_bytes": 1, "checksum": "0f" * 32},
            headers=auth_headers(alice),
        )
        assert rejected.status_code == 400

    async def test_listing_is_scoped(self, client, alice_ticket, alice, mallory):
        own = await client.get("/tickets", headers=auth_headers(alice))
        assert own.json()["pagination"]["total"] == 1

        other = await client.get("/tickets", headers=auth_headers(mallory))
        assert other.json()["pagination"]["total"] == 0


@pytest.mark.asyncio
class TestAuditAPI:
    async def test_customer_forbidden(self, client, alice):
        response = await client.get("/audit-logs", headers=auth_headers(alice))
        assert response.status_code == 403

    async def test_admin_lists_and_counts(self, client, alice_ticket, ada):
        response = await client.get(
            "/audit-logs", params={"action": "ticket_created"}, headers=auth_headers(ada)
        )
        assert response.status_code == 200
        items = response.json()["items"]
        assert len(items) == 1
        assert items[0]["resource_id"] == alice_ticket.id

        stats = await client.get("/audit-logs/stats", headers=auth_headers(ada))
        assert stats.status_code == 200
        assert stats.json()["by_action"]["ticket_created"] == 1

    async def test_no_write_routes(self, client, ada):
        for method in ("post", "put", "patch", "delete"):
            response = await getattr(client, method)("/audit-logs/some-id", headers=auth_headers(ada))
            assert response.status_code == 405


@pytest.mark.asyncio
class TestSLAAPI:
    async def test_ticket_sla_status(self, client, alice_ticket, alice):
        response = await client.get(f"/sla/tickets/{alice_ticket.id}", headers=auth_headers(alice))
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "on_track"
        assert data["is_breached"] is False

    async def test_manual_cycle_is_admin_only(self, client, bob, ada):
        denied = await client.post("/sla/run", headers=auth_headers(bob))
        assert denied.status_code == 403

        allowed = await client.post("/sla/run", headers=auth_headers(ada))
        assert allowed.status_code == 200
        assert allowed.json()["cancelled"] is False


@pytest.mark.asyncio
class TestAuthAPI:
    async def test_register_then_login(self, client):
        registered = await client.post(
            "/auth/register",
            json={"username": "newbie", "email": "newbie@helpdesk.test", "password": PASSWORD},
        )
        assert registered.status_code == 201
        assert registered.json()["role"] == "customer"

        duplicate = await client.post(
            "/auth/register",
            json={"username": "newbie", "email": "other@helpdesk.test", "password": PASSWORD},
        )
        assert duplicate.status_code == 409

        login = await client.post("/auth/login", json={"username": "newbie", "password": PASSWORD})
        assert login.status_code == 200
        assert login.json()["status"] == "authenticated"

    async def test_bad_password(self, client, alice):
        response = await client.post("/auth/login", json={"username": "alice", "password": "nope"})
        assert response.status_code == 401

    async def test_locked_account(self, client, alice):
        for _ in range(5):
            await client.post("/auth/login", json={"username": "alice", "password": "nope"})

        response = await client.post("/auth/login", json={"username": "alice", "password": PASSWORD})
        assert response.status_code == 423
