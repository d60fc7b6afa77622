"""
SLA Infrastructure Repositories
================================

SQLAlchemy implementation of the monitor's ticket access.

Marker changes are single conditional UPDATE statements whose WHERE
clause repeats the expected state; the affected row count tells the
caller whether it won.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import HistoryAction, NON_TERMINAL_STATUSES, Priority
from src.sla.application.services import ISLARepository, SLACandidate
from src.tickets.infrastructure.models import TicketHistoryModel, TicketModel

_OPEN_STATUSES = [s.value for s in NON_TERMINAL_STATUSES]


def _candidate(model: TicketModel) -> SLACandidate:
    return SLACandidate(
        ticket_id=model.id,
        ticket_number=model.ticket_number,
        priority=model.priority,
        status=model.status,
        assignee_id=model.assignee_id,
        sla_deadline=model.sla_deadline,
    )


class SQLAlchemySLARepository(ISLARepository):
    """SQLAlchemy implementation of the SLA monitor repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_breached(self, now: datetime, limit: int) -> List[SLACandidate]:
        result = await self._session.execute(
            select(TicketModel)
            .where(
                TicketModel.status.in_(_OPEN_STATUSES),
                TicketModel.sla_deadline < now,
                TicketModel.sla_escalated.is_(False),
            )
            .order_by(TicketModel.sla_deadline)
            .limit(limit)
        )
        return [_candidate(m) for m in result.scalars()]

    async def find_approaching(self, now: datetime, until: datetime, limit: int) -> List[SLACandidate]:
        result = await self._session.execute(
            select(TicketModel)
            .where(
                TicketModel.status.in_(_OPEN_STATUSES),
                TicketModel.sla_deadline >= now,
                TicketModel.sla_deadline <= until,
                TicketModel.sla_warning_sent.is_(False),
            )
            .order_by(TicketModel.sla_deadline)
            .limit(limit)
        )
        return [_candidate(m) for m in result.scalars()]

    async def _compare_and_set(self, conditions: list, values: dict) -> bool:
        result = await self._session.execute(
            update(TicketModel)
            .where(*conditions)
            .values(version=TicketModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_breach(
        self,
        ticket_id: str,
        observed_priority: Priority,
        new_priority: Priority,
        now: datetime
    ) -> bool:
        return await self._compare_and_set(
            [
                TicketModel.id == ticket_id,
                TicketModel.sla_escalated.is_(False),
                TicketModel.priority == Priority(observed_priority).value,
                TicketModel.status.in_(_OPEN_STATUSES),
            ],
            {
                "priority": Priority(new_priority).value,
                "sla_escalated": True,
                "sla_escalated_at": now,
                "updated_at": now,
            },
        )

    async def append_history(
        self,
        ticket_id: str,
        action: HistoryAction,
        field: str,
        old_value: Optional[str],
        new_value: Optional[str],
        now: datetime,
        reason: Optional[str] = None
    ) -> int:
        """Runs after a claim, so the ticket row is already write-locked."""
        last = await self._session.scalar(
            select(func.max(TicketHistoryModel.sequence))
            .where(TicketHistoryModel.ticket_id == ticket_id)
        )
        sequence = (last or 0) + 1

        self._session.add(TicketHistoryModel(
            ticket_id=ticket_id,
            sequence=sequence,
            action=HistoryAction(action).value,
            field=field,
            old_value=old_value,
            new_value=new_value,
            reason=reason,
            actor_id=None,
            timestamp=now,
            ip_address="system",
        ))
        await self._session.flush()
        return sequence

    async def claim_warning(self, ticket_id: str, now: datetime) -> bool:
        return await self._compare_and_set(
            [
                TicketModel.id == ticket_id,
                TicketModel.sla_warning_sent.is_(False),
                TicketModel.status.in_(_OPEN_STATUSES),
            ],
            {"sla_warning_sent": True, "sla_warning_sent_at": now},
        )

    async def release_warning(self, ticket_id: str, claimed_at: datetime) -> bool:
        return await self._compare_and_set(
            [
                TicketModel.id == ticket_id,
                TicketModel.sla_warning_sent.is_(True),
                TicketModel.sla_warning_sent_at == claimed_at,
            ],
            {"sla_warning_sent": False, "sla_warning_sent_at": None},
        )
