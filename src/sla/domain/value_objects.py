"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.config import DEFAULT_SLA_HOURS, PRIORITY_ALIASES, Priority


class SLAState(str, Enum):
    """Where a ticket stands against its deadline."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    MET = "met"


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA calculation logic in one place.
    """

    @staticmethod
    def calculate_deadline(created_at: datetime, hours: float) -> datetime:
        """
        Calculate SLA deadline for a ticket.

        Args:
            created_at: When ticket was created
            hours: SLA target for the ticket's priority

        Returns:
            The SLA deadline
        """
        return created_at + timedelta(hours=hours)

    @staticmethod
    def time_remaining(deadline: datetime, now: datetime) -> tuple[float, bool]:
        """
        Seconds left until the deadline.

        Returns:
            Tuple of (remaining_seconds, is_breached); remaining is never negative
        """
        remaining = (deadline - now).total_seconds()
        return max(0.0, remaining), remaining < 0

    @staticmethod
    def calculate_status(
        deadline: datetime,
        current_time: datetime,
        warning_lookahead: timedelta,
        met_at: Optional[datetime] = None
    ) -> SLAState:
        """
        Calculate current SLA state.

        Args:
            deadline: The SLA deadline
            current_time: Current time for evaluation
            warning_lookahead: Window before the deadline counted as at risk
            met_at: When the ticket was resolved or closed

        Returns:
            SLAState: Current SLA state
        """
        # Resolved in time
        if met_at and met_at <= deadline:
            return SLAState.MET

        if current_time > deadline:
            return SLAState.BREACHED
        if deadline - current_time <= warning_lookahead:
            return SLAState.AT_RISK
        return SLAState.ON_TRACK


class SLAConfig(BaseModel):
    """
    SLA Configuration loaded from YAML.

    Hours to resolve by priority, and how far ahead of a deadline the
    monitor warns the assignee.
    """
    model_config = ConfigDict(frozen=True)

    sla_hours: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_HOURS),
        description="Hours until the SLA deadline by priority"
    )
    warning_lookahead_minutes: int = Field(
        default=120,
        ge=1,
        description="Warn this many minutes before the deadline"
    )

    @field_validator("sla_hours")
    @classmethod
    def validate_sla_hours(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Accept legacy priority names and fill missing priorities with defaults."""
        hours = {}
        for key, value in v.items():
            priority = PRIORITY_ALIASES.get(key, key)
            if priority not in DEFAULT_SLA_HOURS:
                raise ValueError(f"Unknown priority in sla_hours: {key}")
            if value <= 0:
                raise ValueError(f"SLA hours must be positive: {key}")
            hours[priority] = value

        for priority, default in DEFAULT_SLA_HOURS.items():
            hours.setdefault(priority, default)

        return hours

    def hours_for_priority(self, priority: Priority | str) -> float:
        priority = Priority.parse(priority)
        return self.sla_hours[priority.value]

    def deadline_for(self, priority: Priority | str, created_at: datetime) -> datetime:
        return SLACalculator.calculate_deadline(created_at, self.hours_for_priority(priority))

    @property
    def warning_lookahead(self) -> timedelta:
        return timedelta(minutes=self.warning_lookahead_minutes)


class ISLAConfigProvider(ABC):
    """Source of the current SLA configuration (may change at runtime)."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        pass


class StaticSLAConfigProvider(ISLAConfigProvider):
    """Fixed configuration, for tests and scripts."""

    def __init__(self, config: Optional[SLAConfig] = None):
        self._config = config or SLAConfig()

    def get_config(self) -> SLAConfig:
        return self._config


@dataclass(frozen=True)
class SLAStatus:
    """
    Immutable snapshot of a ticket against its deadline.
    """
    ticket_id: str
    ticket_number: str
    priority: Priority
    deadline: datetime
    state: SLAState
    remaining_seconds: float
    is_breached: bool
    sla_escalated: bool
    sla_warning_sent: bool

    @property
    def minutes_until_deadline(self) -> float:
        return self.remaining_seconds / 60
