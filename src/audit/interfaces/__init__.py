"""
Audit Interfaces Layer
======================

Read-only FastAPI routes over the audit ledger.
"""

from src.audit.interfaces.controllers import router as audit_router

__all__ = ["audit_router"]
