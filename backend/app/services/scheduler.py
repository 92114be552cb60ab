"""Background task scheduler — runs the nightly integrity audit for all tenants.

Uses FastAPI's lifespan context to start/stop an asyncio background loop.
No external dependencies (no Celery, no APScheduler), just a simple
asyncio.sleep loop that fires once per day at the configured hour.

Configuration:
    RECONCILIATION_HOUR=2   (run at 02:00 UTC daily, via .env)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from sqlalchemy import select, text

from app.config import settings
from app.database import engine, session_scope, tenant_search_path
from app.models.public.tenant import Tenant
from app.tenancy import create_tenant_tables, tenant_scope, validate_schema_name
from app.utils.cache import close_redis

logger = logging.getLogger("fieldcash.scheduler")


async def _run_reconciliation_for_tenant(tenant_schema: str) -> dict | None:
    """Run the integrity audit for a single tenant schema."""
    from app.services.reconciliation import run_full_reconciliation

    try:
        with tenant_scope(tenant_schema):
            async with session_scope(tenant_search_path(tenant_schema)) as db:
                return await run_full_reconciliation(db)
    except Exception:
        logger.exception("Reconciliation failed for tenant %s", tenant_schema)
        return None


async def run_daily_reconciliation() -> None:
    """Iterate over all active tenants and run the audit for each."""
    logger.info("Starting daily reconciliation run")

    async with session_scope() as db:
        result = await db.execute(
            select(Tenant.tenant_schema).where(
                Tenant.is_active == True  # noqa: E712
            )
        )
        schemas = [row[0] for row in result.all()]

    logger.info("Found %d active tenants", len(schemas))

    for schema in schemas:
        logger.info("Running reconciliation for %s", schema)
        summary = await _run_reconciliation_for_tenant(schema)
        if summary:
            logger.info(
                "Tenant %s: %d alerts (critical=%d, high=%d)",
                schema,
                summary["total_alerts"],
                summary["by_severity"].get("critical", 0),
                summary["by_severity"].get("high", 0),
            )

    logger.info("Daily reconciliation complete for %d tenants", len(schemas))


def seconds_until(target_hour: int, now: datetime) -> float:
    """Seconds from `now` until the next target_hour:00 UTC."""
    next_run = now.replace(hour=target_hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def _scheduler_loop() -> None:
    """Sleep loop that fires the audit once per day."""
    target_hour = settings.reconciliation_hour

    while True:
        wait_seconds = seconds_until(target_hour, datetime.now(timezone.utc))
        logger.info("Next reconciliation run in %.0f seconds", wait_seconds)

        await asyncio.sleep(wait_seconds)

        try:
            await run_daily_reconciliation()
        except Exception:
            logger.exception("Unhandled error in daily reconciliation")

        # Small buffer to avoid running twice in the same minute
        await asyncio.sleep(60)


async def _ensure_tenant_tables():
    """Create any missing TenantBase tables in all existing tenant schemas.

    Runs once at startup so tenants created before a model existed get
    its table.
    """
    async with engine.begin() as conn:
        result = await conn.execute(
            text("SELECT schema_name FROM information_schema.schemata WHERE schema_name LIKE 'tenant_%'")
        )
        schemas = [row[0] for row in result.fetchall()]

    for schema in schemas:
        try:
            validate_schema_name(schema)
        except ValueError:
            logger.warning("Skipping schema %s: not a tenant schema name", schema)
            continue
        async with engine.begin() as conn:
            await conn.run_sync(create_tenant_tables, schema)
        logger.info("Ensured tables for schema %s", schema)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the scheduler on startup, cancel on shutdown."""
    await _ensure_tenant_tables()
    task = asyncio.create_task(_scheduler_loop())
    logger.info("Reconciliation scheduler started")
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await close_redis()
        logger.info("Reconciliation scheduler stopped")
