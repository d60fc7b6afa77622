"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

- SLAMonitor: the background breach/warning cycle
- SLAService: per-ticket SLA status and the manual cycle trigger
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.access.domain import can_read_ticket
from src.audit.application import AuditService
from src.config import (
    AuditAction, AuditResource, HistoryAction, Priority, Role, TicketStatus,
)
from src.core import (
    Origin, Principal, SYSTEM_ORIGIN,
    ResourceNotFoundException,
)
from src.infrastructure.database import utcnow
from src.shared.infrastructure.logging import get_logger, log_latency
from src.sla.domain import (
    ISLAConfigProvider, NotificationEvent, SLACalculator, SLACycleReport, SLAStatus,
    UNASSIGNED_QUEUE,
)
from src.tickets.application import ITicketRepository
from src.tickets.domain import next_priority

logger = get_logger(__name__)

SLA_BREACH_REASON = "SLA breached"


# ========== Read Model ==========

@dataclass(frozen=True)
class SLACandidate:
    """Ticket fields the monitor reads before acting on a ticket."""
    ticket_id: str
    ticket_number: str
    priority: Priority
    status: TicketStatus
    assignee_id: Optional[str]
    sla_deadline: datetime


# ========== Interfaces (Dependency Inversion) ==========

class ISLARepository(ABC):
    """
    Ticket access for the monitor.

    The claim/release methods are compare-and-set updates: they return
    True only if this caller changed the row.
    """

    @abstractmethod
    async def find_breached(self, now: datetime, limit: int) -> List[SLACandidate]:
        """Non-terminal, not yet SLA-escalated tickets past their deadline."""

    @abstractmethod
    async def find_approaching(self, now: datetime, until: datetime, limit: int) -> List[SLACandidate]:
        """Non-terminal, not yet warned tickets with now <= deadline <= until."""

    @abstractmethod
    async def claim_breach(
        self,
        ticket_id: str,
        observed_priority: Priority,
        new_priority: Priority,
        now: datetime
    ) -> bool:
        """Step priority and set the breach marker if still unset."""

    @abstractmethod
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
        """Insert a system history entry; returns its sequence number."""

    @abstractmethod
    async def claim_warning(self, ticket_id: str, now: datetime) -> bool:
        """Set the warning marker if still unset."""

    @abstractmethod
    async def release_warning(self, ticket_id: str, claimed_at: datetime) -> bool:
        """Clear a warning marker set by `claim_warning` at `claimed_at`."""


class INotifier(ABC):
    """Outbound notification collaborator; delivery is external."""

    @abstractmethod
    async def notify(self, recipient_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """Returns True if the notification was accepted for delivery."""


# ========== SLA Monitor ==========

class SLAMonitor:
    """
    Periodic SLA scan.

    Each ticket is handled in its own session and transaction; a failure
    on one ticket is logged and counted and the cycle moves on. Markers
    are set with compare-and-set updates so overlapping cycles escalate
    and warn exactly once.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        audit_service: AuditService,
        notifier: INotifier,
        config_provider: ISLAConfigProvider,
        repository_factory: Optional[Callable[[AsyncSession], ISLARepository]] = None,
        batch_size: int = 500
    ):
        self._session_factory = session_factory
        self._audit = audit_service
        self._notifier = notifier
        self._config = config_provider
        if repository_factory is None:
            from src.sla.infrastructure.repositories import SQLAlchemySLARepository
            repository_factory = SQLAlchemySLARepository
        self._repository_factory = repository_factory
        self._batch_size = batch_size

    async def run_cycle(
        self,
        now: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> SLACycleReport:
        """
        Run one breach scan followed by one warning scan.

        Args:
            now: Evaluation time (defaults to the current UTC time)
            cancel_event: When set, the cycle stops before the next ticket

        Returns:
            SLACycleReport with per-scan counters
        """
        now = now or utcnow()
        report = SLACycleReport(started_at=now)

        with log_latency(logger, "sla_cycle"):
            try:
                await self._breach_scan(now, report, cancel_event)
                if not report.cancelled:
                    await self._warning_scan(now, report, cancel_event)
            finally:
                report.finished_at = utcnow()

        logger.info("SLA cycle finished", extra=report.to_dict())
        return report

    def _cancelled(self, cancel_event: Optional[asyncio.Event], report: SLACycleReport) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            report.cancelled = True
            logger.info("SLA cycle cancelled")
            return True
        return False

    # ========== Breach Scan ==========

    async def _breach_scan(
        self,
        now: datetime,
        report: SLACycleReport,
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        async with self._session_factory() as session:
            candidates = await self._repository_factory(session).find_breached(now, self._batch_size)

        report.breach_candidates = len(candidates)
        for candidate in candidates:
            if self._cancelled(cancel_event, report):
                return
            try:
                if await self._escalate(candidate, now):
                    report.escalated += 1
                else:
                    report.escalation_skipped += 1
            except Exception as e:
                report.record_failure(candidate.ticket_id)
                logger.error(
                    "SLA escalation failed",
                    extra={
                        "ticket_id": candidate.ticket_id,
                        "ticket_number": candidate.ticket_number,
                        "error_type": type(e).__name__,
                        "error": str(e),
                    }
                )

    async def _escalate(self, candidate: SLACandidate, now: datetime) -> bool:
        """Escalate one breached ticket; False if another writer got there first."""
        old_priority = Priority(candidate.priority)
        new_priority = next_priority(old_priority)

        async with self._session_factory() as session:
            repo = self._repository_factory(session)
            try:
                claimed = await repo.claim_breach(candidate.ticket_id, old_priority, new_priority, now)
                if not claimed:
                    await session.rollback()
                    return False

                await repo.append_history(
                    candidate.ticket_id,
                    HistoryAction.SLA_ESCALATE,
                    "priority",
                    old_priority.value,
                    new_priority.value,
                    now,
                    reason=SLA_BREACH_REASON,
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.warning(
            "Ticket escalated for SLA breach",
            extra={
                "ticket_id": candidate.ticket_id,
                "ticket_number": candidate.ticket_number,
                "old_priority": old_priority.value,
                "new_priority": new_priority.value,
            }
        )
        await self._audit.record(
            actor_id=None,
            action=AuditAction.TICKET_ESCALATED_SLA,
            resource_type=AuditResource.TICKET,
            resource_id=candidate.ticket_id,
            details={
                "ticket_number": candidate.ticket_number,
                "old_priority": old_priority.value,
                "new_priority": new_priority.value,
                "sla_deadline": candidate.sla_deadline.isoformat(),
                "reason": SLA_BREACH_REASON,
            },
            origin=SYSTEM_ORIGIN,
        )
        return True

    # ========== Warning Scan ==========

    async def _warning_scan(
        self,
        now: datetime,
        report: SLACycleReport,
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        until = now + self._config.get_config().warning_lookahead

        async with self._session_factory() as session:
            candidates = await self._repository_factory(session).find_approaching(now, until, self._batch_size)

        report.warning_candidates = len(candidates)
        for candidate in candidates:
            if self._cancelled(cancel_event, report):
                return
            try:
                if await self._warn(candidate, now):
                    report.warnings_sent += 1
                else:
                    report.warnings_skipped += 1
            except Exception as e:
                report.record_failure(candidate.ticket_id)
                logger.error(
                    "SLA warning failed",
                    extra={
                        "ticket_id": candidate.ticket_id,
                        "ticket_number": candidate.ticket_number,
                        "error_type": type(e).__name__,
                        "error": str(e),
                    }
                )

    async def _set_warning(self, ticket_id: str, now: datetime, release: bool = False) -> bool:
        async with self._session_factory() as session:
            repo = self._repository_factory(session)
            try:
                if release:
                    changed = await repo.release_warning(ticket_id, now)
                else:
                    changed = await repo.claim_warning(ticket_id, now)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return changed

    async def _warn(self, candidate: SLACandidate, now: datetime) -> bool:
        """
        Warn the assignee about an approaching deadline.

        The marker is claimed before sending; if delivery fails it is
        released so a later cycle retries.
        """
        if not await self._set_warning(candidate.ticket_id, now):
            return False

        recipient = candidate.assignee_id or UNASSIGNED_QUEUE
        seconds_left, _ = SLACalculator.time_remaining(candidate.sla_deadline, now)
        payload = {
            "ticket_id": candidate.ticket_id,
            "ticket_number": candidate.ticket_number,
            "priority": Priority(candidate.priority).value,
            "sla_deadline": candidate.sla_deadline.isoformat(),
            "minutes_remaining": round(seconds_left / 60, 1),
        }

        try:
            delivered = await self._notifier.notify(recipient, NotificationEvent.SLA_WARNING.value, payload)
        except Exception as e:
            logger.error(
                "Notifier raised",
                extra={"ticket_id": candidate.ticket_id, "error_type": type(e).__name__, "error": str(e)}
            )
            delivered = False

        if not delivered:
            await self._set_warning(candidate.ticket_id, now, release=True)
            raise RuntimeError(f"SLA warning for {candidate.ticket_number} was not delivered")

        await self._audit.record(
            actor_id=None,
            action=AuditAction.SLA_WARNING_SENT,
            resource_type=AuditResource.TICKET,
            resource_id=candidate.ticket_id,
            details={
                "ticket_number": candidate.ticket_number,
                "recipient_id": recipient,
                "sla_deadline": candidate.sla_deadline.isoformat(),
            },
            origin=SYSTEM_ORIGIN,
        )
        return True


# ========== SLA Service ==========

class SLAService:
    """
    Per-ticket SLA status and the administrator's manual cycle trigger.
    """

    def __init__(
        self,
        session: AsyncSession,
        ticket_repository: ITicketRepository,
        audit_service: AuditService,
        config_provider: ISLAConfigProvider,
        monitor: Optional[SLAMonitor] = None
    ):
        self._session = session
        self._tickets = ticket_repository
        self._audit = audit_service
        self._config = config_provider
        self._monitor = monitor

    async def ticket_sla_status(
        self,
        ticket_id: str,
        principal: Principal,
        origin: Optional[Origin] = None,
        now: Optional[datetime] = None
    ) -> SLAStatus:
        """Remaining time and state for a ticket the caller may read."""
        ticket = await self._tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if not can_read_ticket(ticket, principal):
            raise await self._audit.deny(
                principal, AuditResource.TICKET, "read_sla", origin, resource_id=ticket.id
            )

        now = now or utcnow()
        remaining, breached = SLACalculator.time_remaining(ticket.sla_deadline, now)
        state = SLACalculator.calculate_status(
            ticket.sla_deadline,
            now,
            self._config.get_config().warning_lookahead,
            met_at=ticket.resolved_at or ticket.closed_at,
        )

        return SLAStatus(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            priority=ticket.priority,
            deadline=ticket.sla_deadline,
            state=state,
            remaining_seconds=remaining,
            is_breached=breached,
            sla_escalated=ticket.sla_escalated,
            sla_warning_sent=ticket.sla_warning_sent,
        )

    async def trigger_cycle(self, principal: Principal, origin: Optional[Origin] = None) -> SLACycleReport:
        """Run a monitor cycle now; administrators only."""
        if principal.role != Role.ADMINISTRATOR:
            raise await self._audit.deny(principal, AuditResource.SYSTEM, "run_sla_cycle", origin)
        if self._monitor is None:
            raise RuntimeError("SLA monitor not configured")

        return await self._monitor.run_cycle()
