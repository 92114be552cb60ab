"""Regression tests for multi-tenant isolation.

Verifies that:
  1. Redis cache keys include tenant context (no cross-tenant cache hits)
  2. Cache invalidation only affects the current tenant
  3. Schema names from tokens are validated before use
  4. All TenantBase models are registered in models/__init__.py
  5. Tenant tables are created inside the tenant's own schema
"""

import pytest
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.tenancy import (
    _tenant_ctx,
    create_tenant_tables,
    get_current_tenant_schema,
    new_schema_name,
    tenant_scope,
    validate_schema_name,
)
from app.utils.cache import cached, get_redis, invalidate_cache


@pytest.mark.cache
@pytest.mark.asyncio
class TestCacheTenantIsolation:
    """Verify cache keys are tenant-scoped."""

    async def test_cache_key_includes_tenant(self, redis_client):
        """Same function + args for different tenants must produce different cache keys."""
        call_count = 0

        @cached(ttl=10, prefix="test_iso")
        async def get_data(limit: int = 10):
            nonlocal call_count
            call_count += 1
            return {"tenant": _tenant_ctx.get(), "count": call_count}

        token_a = _tenant_ctx.set("tenant_aaa111")
        result_a = await get_data(limit=10)
        _tenant_ctx.reset(token_a)

        token_b = _tenant_ctx.set("tenant_bbb222")
        result_b = await get_data(limit=10)
        _tenant_ctx.reset(token_b)

        # Both calls must execute the function (no cross-tenant cache hit)
        assert call_count == 2
        assert result_a["tenant"] == "tenant_aaa111"
        assert result_b["tenant"] == "tenant_bbb222"

    async def test_invalidate_cache_is_tenant_scoped(self, redis_client):
        """invalidate_cache should only clear the current tenant's keys."""
        r = await get_redis()

        await r.set("t:tenant_aaa111:deposits:deposit_summary:abc", "data_a")
        await r.set("t:tenant_bbb222:deposits:deposit_summary:abc", "data_b")

        token_a = _tenant_ctx.set("tenant_aaa111")
        await invalidate_cache("deposits:*")
        _tenant_ctx.reset(token_a)

        assert await r.get("t:tenant_aaa111:deposits:deposit_summary:abc") is None
        assert await r.get("t:tenant_bbb222:deposits:deposit_summary:abc") == "data_b"

    async def test_no_tenant_context_does_not_leak(self, redis_client):
        """Without tenant context, cache keys must not collide with tenant-scoped keys."""
        call_count = 0

        @cached(ttl=10, prefix="test_leak")
        async def get_data(limit: int = 10):
            nonlocal call_count
            call_count += 1
            return {"count": call_count}

        await get_data(limit=10)

        token = _tenant_ctx.set("tenant_ccc333")
        await get_data(limit=10)
        _tenant_ctx.reset(token)

        assert call_count == 2


@pytest.mark.unit
class TestSchemaContext:
    def test_tenant_scope_restores_previous_schema(self):
        token = _tenant_ctx.set("tenant_outer1")
        try:
            with tenant_scope("tenant_inner1") as schema:
                assert schema == "tenant_inner1"
                assert get_current_tenant_schema() == "tenant_inner1"
            assert _tenant_ctx.get() == "tenant_outer1"
        finally:
            _tenant_ctx.reset(token)

    def test_tenant_scope_rejects_bad_names(self):
        with pytest.raises(ValueError):
            with tenant_scope("public"):
                pass
        assert _tenant_ctx.get() is None

    def test_new_schema_names_are_valid_and_distinct(self):
        first, second = new_schema_name(), new_schema_name()
        assert validate_schema_name(first) == first
        assert first != second

    def test_missing_context_is_rejected(self):
        token = _tenant_ctx.set(None)
        try:
            with pytest.raises(HTTPException) as exc:
                get_current_tenant_schema()
            assert exc.value.status_code == 400
        finally:
            _tenant_ctx.reset(token)

    @pytest.mark.parametrize("schema", ["tenant_abc123", "tenant_0f1e2d3c4b5a"])
    def test_valid_schema_names(self, schema):
        assert validate_schema_name(schema) == schema

    @pytest.mark.parametrize("schema", [
        "public",
        "tenant_ABC123",
        "tenant_abc",
        'tenant_abc123"; DROP SCHEMA public; --',
    ])
    def test_invalid_schema_names(self, schema):
        with pytest.raises(ValueError):
            validate_schema_name(schema)


@pytest.mark.api
@pytest.mark.asyncio
class TestTenantMiddleware:
    async def test_invalid_token_is_401(self, client):
        resp = await client.get(
            "/api/collector/assignments",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401
        assert resp.json() == {"detail": "Token expired or invalid"}

    async def test_health_ignores_invalid_token(self, client):
        resp = await client.get(
            "/health", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 200
        assert resp.json()["service"] == "FieldCash"


@pytest.mark.unit
class TestModelRegistration:
    """Verify all tenant models are registered for migration detection."""

    def test_all_tenant_models_imported(self):
        """Every TenantBase model must be imported in models/__init__.py."""
        import app.models  # noqa: F401 triggers all imports
        from app.database import TenantBase

        required_tables = {
            "service_packages", "clients", "invoices", "payments",
            "collector_assignments", "deposit_batches",
            "activity_logs", "reconciliation_alerts",
        }

        registered = set(TenantBase.metadata.tables.keys())
        missing = required_tables - registered
        assert not missing, f"Models not registered in models/__init__.py: {missing}"


@pytest.mark.integration
@pytest.mark.asyncio
class TestTenantTables:
    async def test_tables_are_created_in_the_tenant_schema(self):
        """SQLite stands in for PostgreSQL: an attached database is a schema."""
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        schema = "tenant_abc123def456"
        try:
            async with engine.connect() as conn:
                await conn.exec_driver_sql(f"ATTACH DATABASE ':memory:' AS {schema}")
                await conn.run_sync(create_tenant_tables, schema)
                # Running again only fills in what is missing
                await conn.run_sync(create_tenant_tables, schema)

                result = await conn.exec_driver_sql(
                    f"SELECT name FROM {schema}.sqlite_master WHERE type = 'table'"
                )
                in_tenant = {row[0] for row in result}
                result = await conn.exec_driver_sql(
                    "SELECT name FROM main.sqlite_master WHERE type = 'table'"
                )
                in_main = {row[0] for row in result}
        finally:
            await engine.dispose()

        assert {"payments", "deposit_batches", "reconciliation_alerts"} <= in_tenant
        assert "payments" not in in_main
