"""Engine, declarative bases and schema-pinned sessions.

Public tables (tenants, users) live in `public`; every ISP tenant gets
its own schema holding the TenantBase tables (clients, invoices,
payments, assignments, deposits, alerts).  A session is pinned to one
schema through `search_path` for its whole life, and the pooled
connection is handed back pinned to `public` again.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

PUBLIC_SEARCH_PATH = "public"


class PublicBase(DeclarativeBase):
    pass


class TenantBase(DeclarativeBase):
    pass


def tenant_search_path(schema: str) -> str:
    # `schema` is validated by app.tenancy before it gets here
    return f'"{schema}", public'


@asynccontextmanager
async def session_scope(search_path: str = PUBLIC_SEARCH_PATH) -> AsyncIterator[AsyncSession]:
    """Session on `search_path` that commits on success, rolls back on error."""
    async with async_session() as session:
        await session.execute(text(f"SET search_path TO {search_path}"))
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            if search_path != PUBLIC_SEARCH_PATH:
                await session.execute(text(f"SET search_path TO {PUBLIC_SEARCH_PATH}"))


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: public schema (auth, tenant and user lookups)."""
    async with session_scope() as session:
        yield session


async def get_tenant_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: the schema of the tenant named in the request's JWT.

    Answers 400 when the request carries no tenant.
    """
    from app.tenancy import get_current_tenant_schema

    async with session_scope(tenant_search_path(get_current_tenant_schema())) as session:
        yield session
