"""
Accounts Interfaces Layer
=========================

FastAPI routes for login, MFA and registration.
"""

from src.accounts.interfaces.controllers import router as auth_router

__all__ = ["auth_router"]
