"""
Tickets Interfaces Layer
========================

FastAPI routes for the ticket lifecycle.
"""

from src.tickets.interfaces.controllers import router as tickets_router

__all__ = ["tickets_router"]
