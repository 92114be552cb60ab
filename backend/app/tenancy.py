"""Schema-per-tenant isolation.

Every ISP operator (Tenant) owns a PostgreSQL schema named
`tenant_<12 hex>`.  The schema of the current request or job sits in a
ContextVar: TenantMiddleware sets it from the JWT, the nightly audit
sets it per tenant with `tenant_scope`, and get_tenant_db and the cache
key builder read it.

Schema names end up inside SQL text (SET search_path, CREATE SCHEMA), so
nothing uses one before `validate_schema_name` has accepted it.
"""

import logging
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from fastapi import HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.public.tenant import Tenant

logger = logging.getLogger(__name__)

_tenant_ctx: ContextVar[str | None] = ContextVar("_tenant_ctx", default=None)

_SCHEMA_RE = re.compile(r"^tenant_[a-z0-9]{6,36}$")


def validate_schema_name(schema: str) -> str:
    if not _SCHEMA_RE.match(schema):
        raise ValueError(f"Invalid tenant schema name: {schema!r}")
    return schema


def new_schema_name() -> str:
    return f"tenant_{uuid.uuid4().hex[:12]}"


# ── Request / job context ───────────────────────────────────

def set_current_tenant_schema(schema: str) -> None:
    _tenant_ctx.set(validate_schema_name(schema))


def clear_tenant_context() -> None:
    _tenant_ctx.set(None)


def get_current_tenant_schema() -> str:
    schema = _tenant_ctx.get()
    if schema is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This endpoint needs a user attached to an ISP tenant",
        )
    return schema


@contextmanager
def tenant_scope(schema: str) -> Iterator[str]:
    """Run a block as `schema`, restoring the previous tenant afterwards."""
    token = _tenant_ctx.set(validate_schema_name(schema))
    try:
        yield schema
    finally:
        _tenant_ctx.reset(token)


# ── Provisioning ────────────────────────────────────────────

def create_tenant_tables(sync_conn, schema: str) -> None:
    """Create missing TenantBase tables inside `schema` (sync, for run_sync)."""
    from app.database import TenantBase

    translated = sync_conn.execution_options(schema_translate_map={None: schema})
    TenantBase.metadata.create_all(bind=translated, checkfirst=True)


async def provision_tenant(db: AsyncSession, name: str, currency: str = "IDR") -> Tenant:
    """Register an ISP operator and build its schema.

    The Tenant row and the schema are created in the caller's
    transaction; nothing is visible until it commits.
    """
    schema = validate_schema_name(new_schema_name())
    tenant = Tenant(name=name, tenant_schema=schema, currency=currency)
    db.add(tenant)
    await db.flush()

    await db.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
    conn = await db.connection()
    await conn.run_sync(create_tenant_tables, schema)

    logger.info(f"Provisioned tenant {name!r} in schema {schema}")
    return tenant
