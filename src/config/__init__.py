"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-core", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Account Security ==========
    max_login_attempts: int = Field(
        default=5,
        description="Failed logins before the account is locked",
        ge=1
    )
    lockout_duration_minutes: int = Field(
        default=30,
        description="Minutes an account stays locked",
        ge=1
    )
    password_min_length: int = Field(
        default=12,
        description="Minimum password length for new accounts",
        ge=8
    )
    mfa_issuer: str = Field(default="HelpdeskCore", description="Issuer shown in authenticator apps")
    mfa_valid_window: int = Field(
        default=2,
        description="Accepted TOTP drift in 30s steps (either side)",
        ge=0,
        le=10
    )
    mfa_challenge_ttl_seconds: int = Field(
        default=300,
        description="Lifetime of a pending MFA login challenge",
        ge=30
    )

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )
    sla_monitor_interval_seconds: int = Field(
        default=300,
        description="Seconds between SLA monitor cycles (0 disables the scheduler)",
        ge=0
    )
    sla_warning_lookahead_minutes: int = Field(
        default=120,
        description="Warn this many minutes before an SLA deadline",
        ge=1
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving notification events"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )

    # ========== Audit ==========
    audit_retention_days: int = Field(
        default=365,
        description="Retention period honoured by the external purge job",
        ge=1
    )

    # ========== Attachments ==========
    attachment_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted attachment",
        ge=1
    )
    attachment_allowed_mime_types: List[str] = Field(
        default=[
            "image/jpeg",
            "image/png",
            "image/gif",
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "text/plain",
            "text/csv",
        ],
        description="MIME types accepted for attachments"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Enumerations ==========

class Role(str, Enum):
    """User roles, declared in ascending privilege order."""
    CUSTOMER = "customer"
    AGENT_TIER1 = "agent_tier1"
    AGENT_TIER2 = "agent_tier2"
    SUPERVISOR = "supervisor"
    ADMINISTRATOR = "administrator"

    @property
    def rank(self) -> int:
        return list(Role).index(self)

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """Resolve a role from its value or a legacy alias."""
        if isinstance(value, Role):
            return value
        value = ROLE_ALIASES.get(value, value)
        return cls(value)


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @classmethod
    def parse(cls, value: "str | TicketStatus") -> "TicketStatus":
        """Resolve a status from its value or a legacy alias."""
        if isinstance(value, TicketStatus):
            return value
        return cls(STATUS_ALIASES.get(value, value))


class Priority(str, Enum):
    """Ticket priority levels, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: "str | Priority") -> "Priority":
        """Resolve a priority from its value or a legacy alias."""
        if isinstance(value, Priority):
            return value
        return cls(PRIORITY_ALIASES.get(value, value))


class TicketCategory(str, Enum):
    """Ticket categories."""
    FUNCTIONAL_SUPPORT = "functional_support"
    INCIDENT = "incident"
    ALARM = "alarm"

    @classmethod
    def parse(cls, value: "str | TicketCategory") -> "TicketCategory":
        """Resolve a category from its value or a legacy alias."""
        if isinstance(value, TicketCategory):
            return value
        return cls(CATEGORY_ALIASES.get(value, value))


class Confidentiality(str, Enum):
    """Ticket confidentiality levels."""
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"

    @classmethod
    def parse(cls, value: "str | Confidentiality") -> "Confidentiality":
        """Resolve a confidentiality level from its value or a legacy alias."""
        if isinstance(value, Confidentiality):
            return value
        return cls(CONFIDENTIALITY_ALIASES.get(value, value))


class HistoryAction(str, Enum):
    """Action tags recorded in ticket history."""
    CREATE = "create"
    UPDATE = "update"
    ESCALATE = "escalate"
    REASSIGN = "reassign"
    COMMENT = "comment"
    ATTACH = "attach"
    SLA_ESCALATE = "sla_escalate"


class AuditResource(str, Enum):
    """Resource types recorded in the audit log."""
    TICKET = "ticket"
    USER = "user"
    SYSTEM = "system"
    ATTACHMENT = "attachment"
    COMMENT = "comment"
    AUDIT_LOG = "audit_log"


class AuditAction(str, Enum):
    """Audit log action codes."""
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED = "login_blocked"
    ACCOUNT_LOCKED = "account_locked"
    MFA_SETUP_STARTED = "mfa_setup_started"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    MFA_FAILED = "mfa_failed"
    USER_REGISTERED = "user_registered"
    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    TICKET_PRIORITY_CHANGED = "ticket_priority_changed"
    TICKET_ESCALATED = "ticket_escalated"
    TICKET_ESCALATED_SLA = "ticket_escalated_sla"
    TICKET_RESOLVED = "ticket_resolved"
    TICKET_CLOSED = "ticket_closed"
    TICKET_REASSIGNED = "ticket_reassigned"
    TICKET_UPDATE_FAILED = "ticket_update_failed"
    COMMENT_ADDED = "comment_added"
    ATTACHMENT_UPLOADED = "attachment_uploaded"
    SLA_WARNING_SENT = "sla_warning_sent"
    PERMISSION_DENIED = "permission_denied"


# ========== Lists and tables ==========

TERMINAL_STATUSES = (TicketStatus.RESOLVED, TicketStatus.CLOSED)
NON_TERMINAL_STATUSES = (TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.ESCALATED)

# Hours until the SLA deadline, by priority
DEFAULT_SLA_HOURS: Dict[str, int] = {
    Priority.CRITICAL.value: 2,
    Priority.HIGH.value: 8,
    Priority.MEDIUM.value: 24,
    Priority.LOW.value: 72,
}

# Spanish values accepted from clients of the previous system
ROLE_ALIASES = {
    "cliente": Role.CUSTOMER.value,
    "agente_n1": Role.AGENT_TIER1.value,
    "agente_n2": Role.AGENT_TIER2.value,
    "administrador": Role.ADMINISTRATOR.value,
}
PRIORITY_ALIASES = {
    "critica": Priority.CRITICAL.value,
    "alta": Priority.HIGH.value,
    "media": Priority.MEDIUM.value,
    "baja": Priority.LOW.value,
}
STATUS_ALIASES = {
    "abierto": TicketStatus.OPEN.value,
    "en_proceso": TicketStatus.IN_PROGRESS.value,
    "en_progreso": TicketStatus.IN_PROGRESS.value,
    "escalado": TicketStatus.ESCALATED.value,
    "resuelto": TicketStatus.RESOLVED.value,
    "cerrado": TicketStatus.CLOSED.value,
}
CATEGORY_ALIASES = {
    "soporte_funcional": TicketCategory.FUNCTIONAL_SUPPORT.value,
    "incidente": TicketCategory.INCIDENT.value,
    "alarma": TicketCategory.ALARM.value,
}
CONFIDENTIALITY_ALIASES = {
    "publico": Confidentiality.PUBLIC.value,
    "interno": Confidentiality.INTERNAL.value,
    "confidencial": Confidentiality.CONFIDENTIAL.value,
}
