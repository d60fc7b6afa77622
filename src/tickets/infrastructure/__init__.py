"""
Tickets Infrastructure Layer
============================

- Models: SQLAlchemy ticket, history, comment, attachment and counter tables
- Repositories: ticket data access
- Numbering: gap-free ticket number allocation
"""

from src.tickets.infrastructure.models import (
    AttachmentModel,
    CommentModel,
    TicketHistoryModel,
    TicketModel,
    TicketSequenceModel,
)
from src.tickets.infrastructure.numbering import TicketNumberAllocator
from src.tickets.infrastructure.repositories import SQLAlchemyTicketRepository

__all__ = [
    "AttachmentModel",
    "CommentModel",
    "TicketHistoryModel",
    "TicketModel",
    "TicketSequenceModel",
    "TicketNumberAllocator",
    "SQLAlchemyTicketRepository",
]
