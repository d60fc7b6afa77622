"""
Ticket Number Allocation
========================

Gap-free, strictly increasing ticket numbers (TKT-000001, TKT-000002, ...).

A persisted counter row is incremented inside the creating transaction.
Within one process an asyncio lock is held from the increment until the
caller's transaction ends, so creations commit in number order and a
rolled-back creation returns its number. Across processes the row lock
taken by the UPDATE serializes writers on PostgreSQL.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.tickets.application.services import ITicketNumberAllocator
from src.tickets.domain import format_ticket_number
from src.tickets.infrastructure.models import TicketSequenceModel


class TicketNumberAllocator(ITicketNumberAllocator):
    """
    Single-writer ticket number allocator.

    Usage:
        async with allocator.reserve(session) as ticket_number:
            session.add(TicketModel(ticket_number=ticket_number, ...))
            await session.commit()
    """

    def __init__(self, sequence_name: str = "tickets", prefix: str = "TKT", width: int = 6):
        self._sequence_name = sequence_name
        self._prefix = prefix
        self._width = width
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def reserve(self, session: AsyncSession) -> AsyncIterator[str]:
        async with self._lock:
            value = await self._next_value(session)
            yield format_ticket_number(value, self._prefix, self._width)

    async def _next_value(self, session: AsyncSession) -> int:
        result = await session.execute(
            update(TicketSequenceModel)
            .where(TicketSequenceModel.name == self._sequence_name)
            .values(value=TicketSequenceModel.value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # First ticket ever
            session.add(TicketSequenceModel(name=self._sequence_name, value=1))
            await session.flush()
            return 1

        return await session.scalar(
            select(TicketSequenceModel.value)
            .where(TicketSequenceModel.name == self._sequence_name)
        )

    async def current(self, session: AsyncSession) -> int:
        """Last number handed out and committed; 0 when none."""
        value = await session.scalar(
            select(TicketSequenceModel.value)
            .where(TicketSequenceModel.name == self._sequence_name)
        )
        return value or 0
