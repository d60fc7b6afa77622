"""
Shared API Dependencies
=======================

FastAPI dependencies used by every module router.

The upstream gateway authenticates callers and forwards the principal in
the X-User-Id / X-User-Role headers; this layer trusts them.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core import Origin, Principal
from src.infrastructure.database import get_session_maker


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for services that open their own transactions."""
    return get_session_maker()


async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; services commit their own units of work."""
    async with session_factory() as session:
        yield session


async def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> Principal:
    """Build the caller identity from gateway headers."""
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authenticated principal"
        )
    try:
        return Principal(user_id=x_user_id, role=x_user_role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_user_role}"
        )


def get_origin(request: Request) -> Origin:
    """Client IP (first X-Forwarded-For hop when present) and user agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    elif request.client:
        ip_address = request.client.host
    else:
        ip_address = "unknown"

    return Origin(
        ip_address=ip_address or "unknown",
        user_agent=request.headers.get("user-agent")
    )
