"""
ShiftCount API Dependencies

Dependency injection for DB sessions, the acting user, and the ERP source.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from db.session import AsyncSessionLocal
from integrations.base import ErpStockSource
from integrations.kiotviet import KiotVietClient

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

DEV_ACTOR = {"actor_id": "dev-admin", "role": "ADMIN", "name": "Dev Admin"}


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """Factory for operations that open one session per unit of work (bulk review)."""
    return AsyncSessionLocal


def get_stock_source() -> ErpStockSource:
    return KiotVietClient()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode the bearer JWT into {actor_id, role}. Bypassed in debug mode."""
    if settings.debug and credentials is None:
        return dict(DEV_ACTOR)

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import actor_from_claims, decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    actor = actor_from_claims(payload)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is missing sub or role",
        )
    return actor
