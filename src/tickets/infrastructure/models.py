"""
Tickets Infrastructure Models
=============================

SQLAlchemy ORM models for tickets and their child records.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.config import Confidentiality, Priority, TicketCategory, TicketStatus
from src.infrastructure.database import Base, UTCDateTime, utcnow
from src.infrastructure.database.append_only import protect_append_only


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Business identifier, TKT-000001
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)

    # Ownership
    creator_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    # Content
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Classification
    category: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketCategory.FUNCTIONAL_SUPPORT.value)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketStatus.OPEN.value, index=True)
    confidentiality: Mapped[str] = mapped_column(String(20), nullable=False, default=Confidentiality.INTERNAL.value)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # SLA tracking
    sla_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    sla_escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sla_escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_warning_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sla_warning_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Incremented on every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_tickets_sla_scan", "status", "sla_escalated", "sla_deadline"),
    )


class TicketHistoryModel(Base):
    """
    Database model for HistoryEntry.

    Maps to the 'ticket_history' table. Append-only.
    """
    __tablename__ = "ticket_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(String(30), nullable=False)
    field: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # NULL actor means the system
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")

    __table_args__ = (
        UniqueConstraint("ticket_id", "sequence", name="uq_ticket_history_sequence"),
    )


class CommentModel(Base):
    """Maps to the 'ticket_comments' table."""
    __tablename__ = "ticket_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    author_id: Mapped[str] = mapped_column(String(36), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class AttachmentModel(Base):
    """Maps to the 'ticket_attachments' table."""
    __tablename__ = "ticket_attachments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(36), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class TicketSequenceModel(Base):
    """
    Named counters backing gap-free ticket numbers.

    Maps to the 'ticket_sequences' table.
    """
    __tablename__ = "ticket_sequences"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


protect_append_only(TicketHistoryModel)
