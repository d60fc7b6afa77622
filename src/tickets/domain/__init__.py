"""
Tickets Domain Layer
====================

Contains:
- Entities: Ticket, HistoryEntry, Comment, Attachment
- Helpers: input sanitizing, enum parsing, priority ladder, ticket number format

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.tickets.domain.entities import (
    Attachment,
    Comment,
    FieldChange,
    HistoryEntry,
    Ticket,
    PRIORITY_LADDER,
    UPDATABLE_FIELDS,
    format_ticket_number,
    next_priority,
    parse_choice,
    sanitize_filename,
    sanitize_text,
)

__all__ = [
    "Attachment",
    "Comment",
    "FieldChange",
    "HistoryEntry",
    "Ticket",
    "PRIORITY_LADDER",
    "UPDATABLE_FIELDS",
    "format_ticket_number",
    "next_priority",
    "parse_choice",
    "sanitize_filename",
    "sanitize_text",
]
