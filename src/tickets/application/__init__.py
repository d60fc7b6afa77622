"""
Tickets Application Layer
=========================

Contains:
- Services: TicketService
- DTOs: Ticket request/response models
- Interfaces: ticket repository, ticket number allocator
"""

from src.tickets.application.dto import (
    TicketCreateRequest,
    TicketUpdateRequest,
    EscalateRequest,
    ReassignRequest,
    CommentCreateRequest,
    AttachmentCreateRequest,
    TicketListQuery,
    HistoryEntryResponse,
    CommentResponse,
    AttachmentResponse,
    TicketSummaryResponse,
    TicketResponse,
    TicketListResponse,
    HistoryListResponse,
    PaginationInfo,
)
from src.tickets.application.services import (
    TicketService,
    TicketPage,
    HistoryPage,
    ITicketRepository,
    ITicketNumberAllocator,
)

__all__ = [
    # DTOs
    "TicketCreateRequest",
    "TicketUpdateRequest",
    "EscalateRequest",
    "ReassignRequest",
    "CommentCreateRequest",
    "AttachmentCreateRequest",
    "TicketListQuery",
    "HistoryEntryResponse",
    "CommentResponse",
    "AttachmentResponse",
    "TicketSummaryResponse",
    "TicketResponse",
    "TicketListResponse",
    "HistoryListResponse",
    "PaginationInfo",
    # Services
    "TicketService",
    "TicketPage",
    "HistoryPage",
    # Interfaces
    "ITicketRepository",
    "ITicketNumberAllocator",
]
