"""Management CLI for tenant operations.

Usage:
    python -m app.cli migrate-tenants     # Run Alembic on every tenant schema
    python -m app.cli list-tenants        # Show all tenant schemas
    python -m app.cli run-audit           # Run the integrity audit now
    python -m app.cli create-tenant NAME [CURRENCY]   # Register an ISP + schema
"""

import asyncio
import subprocess
import sys

from sqlalchemy import create_engine, select

from app.config import settings
from app.models.public.tenant import Tenant


def get_tenant_schemas() -> list[str]:
    engine = create_engine(settings.database_url_sync)
    with engine.connect() as conn:
        result = conn.execute(select(Tenant.tenant_schema).order_by(Tenant.tenant_schema))
        return [row[0] for row in result]


def migrate_tenants():
    """Run Alembic upgrade head against every tenant schema."""
    schemas = get_tenant_schemas()
    if not schemas:
        print("No tenant schemas found.")
        return

    failed = 0
    for schema in schemas:
        print(f"  Migrating {schema}...")
        result = subprocess.run(
            [
                sys.executable, "-m", "alembic", "upgrade", "head",
                "-x", "schema=tenant",
                "-x", f"tenant_schema={schema}",
            ],
            capture_output=True, text=True,
        )
        if result.returncode != 0:
            failed += 1
            print(f"  FAILED: {result.stderr}")
        else:
            print("  OK")

    if failed:
        sys.exit(1)


def list_tenants():
    schemas = get_tenant_schemas()
    for s in schemas:
        print(f"  {s}")
    print(f"\n{len(schemas)} tenant(s)")


def create_tenant():
    if len(sys.argv) < 3:
        print("Usage: python -m app.cli create-tenant NAME [CURRENCY]")
        sys.exit(2)
    name = sys.argv[2]
    currency = sys.argv[3] if len(sys.argv) > 3 else settings.currency

    async def _create():
        from app.database import session_scope
        from app.tenancy import provision_tenant

        async with session_scope() as db:
            return await provision_tenant(db, name, currency)

    tenant = asyncio.run(_create())
    print(f"  Created {tenant.name}: {tenant.tenant_schema}")


def run_audit():
    from app.services.scheduler import run_daily_reconciliation

    asyncio.run(run_daily_reconciliation())


COMMANDS = {
    "migrate-tenants": migrate_tenants,
    "list-tenants": list_tenants,
    "run-audit": run_audit,
    "create-tenant": create_tenant,
}


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd in COMMANDS:
        COMMANDS[cmd]()
    else:
        print(f"Usage: python -m app.cli [{'|'.join(COMMANDS)}]")
