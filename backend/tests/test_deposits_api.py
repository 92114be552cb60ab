"""Finance deposit endpoints: listing, summary, detail, confirmation."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.models.tenant.invoice import Invoice


@pytest.mark.api
@pytest.mark.asyncio
class TestListDeposits:
    async def test_finance_sees_every_deposit(
        self, client: AsyncClient, deposited, finance_headers
    ):
        resp = await client.get("/api/deposits", headers=finance_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 1
        item = body["items"][0]
        assert item["id"] == deposited["batch"].id
        assert Decimal(item["amount"]) == Decimal("200000")
        assert item["confirmed"] is False

    async def test_collector_only_sees_own_deposits(
        self, client: AsyncClient, deposited, collector_user,
        other_collector_headers,
    ):
        # The collector_id filter is ignored without deposit.confirm
        resp = await client.get(
            "/api/deposits",
            params={"collector_id": collector_user.id},
            headers=other_collector_headers,
        )

        assert resp.status_code == 200
        assert resp.json()["total"] == 0

    async def test_filter_by_confirmed(
        self, client: AsyncClient, deposited, finance_headers
    ):
        resp = await client.get(
            "/api/deposits", params={"confirmed": "true"}, headers=finance_headers
        )
        assert resp.json()["total"] == 0

    async def test_requires_auth(self, client: AsyncClient):
        resp = await client.get("/api/deposits")
        assert resp.status_code in (401, 403)


@pytest.mark.api
@pytest.mark.asyncio
class TestDepositDetail:
    async def test_owner_can_read(
        self, client: AsyncClient, deposited, collector_headers
    ):
        batch_id = deposited["batch"].id
        resp = await client.get(f"/api/deposits/{batch_id}", headers=collector_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["deposit_ref"].startswith("DEP-")
        assert len(body["payment_ids"]) == 2
        assert body["proof_content_type"] == "image/jpeg"

    async def test_other_collector_gets_404(
        self, client: AsyncClient, deposited, other_collector_headers
    ):
        batch_id = deposited["batch"].id
        resp = await client.get(
            f"/api/deposits/{batch_id}", headers=other_collector_headers
        )

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


@pytest.mark.api
@pytest.mark.asyncio
class TestSummary:
    async def test_pending_then_confirmed(
        self, client: AsyncClient, deposited, finance_headers
    ):
        batch_id = deposited["batch"].id

        resp = await client.get("/api/deposits/summary", headers=finance_headers)
        assert resp.status_code == 200
        summary = resp.json()
        assert summary["pending_count"] == 1
        assert Decimal(summary["pending_amount"]) == Decimal("200000")
        assert summary["confirmed_count"] == 0

        resp = await client.post(
            f"/api/deposits/{batch_id}/confirm", headers=finance_headers
        )
        assert resp.status_code == 200, resp.text

        # Without Redis every call reads the database
        summary = (await client.get("/api/deposits/summary", headers=finance_headers)).json()
        assert summary["pending_count"] == 0
        assert summary["confirmed_count"] == 1
        assert Decimal(summary["total_amount"]) == Decimal("200000")

    async def test_filter_by_other_work_date_is_empty(
        self, client: AsyncClient, deposited, finance_headers
    ):
        resp = await client.get(
            "/api/deposits/summary",
            params={"work_date": "2001-01-01"},
            headers=finance_headers,
        )
        assert resp.json()["total_count"] == 0

    async def test_collector_cannot_read_summary(
        self, client: AsyncClient, collector_headers
    ):
        resp = await client.get("/api/deposits/summary", headers=collector_headers)
        assert resp.status_code == 403


@pytest.mark.api
@pytest.mark.asyncio
class TestConfirm:
    async def test_confirm_applies_payments(
        self, client: AsyncClient, db_session, deposited, billing, finance_headers
    ):
        batch_id = deposited["batch"].id
        invoice_a_id = billing["invoice_a"].id
        invoice_b_id = billing["invoice_b"].id

        resp = await client.post(
            f"/api/deposits/{batch_id}/confirm", headers=finance_headers
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["confirmed"] is True
        assert resp.json()["confirmed_at"] is not None

        invoice_a = await db_session.get(Invoice, invoice_a_id)
        invoice_b = await db_session.get(Invoice, invoice_b_id)
        await db_session.refresh(invoice_a)
        await db_session.refresh(invoice_b)
        assert invoice_a.status == "paid"
        assert invoice_b.paid_amount == Decimal("50000")
        assert invoice_b.status == "pending"

    async def test_collector_cannot_confirm(
        self, client: AsyncClient, deposited, collector_headers
    ):
        batch_id = deposited["batch"].id
        resp = await client.post(
            f"/api/deposits/{batch_id}/confirm", headers=collector_headers
        )
        assert resp.status_code == 403

    async def test_administrator_cannot_confirm_by_default(
        self, client: AsyncClient, deposited, admin_headers
    ):
        batch_id = deposited["batch"].id
        resp = await client.post(
            f"/api/deposits/{batch_id}/confirm", headers=admin_headers
        )
        assert resp.status_code == 403

    async def test_unknown_deposit(self, client: AsyncClient, finance_headers):
        resp = await client.post(
            "/api/deposits/does-not-exist/confirm", headers=finance_headers
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"
