"""Collector app endpoints: assignments, visits, payments, deposits.

The end-to-end test walks a collector's day: visit two clients, collect
one full and two partial payments, deposit with proof, and have finance
confirm the deposit.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.models.tenant.collector_assignment import CollectorAssignment
from app.models.tenant.payment import Payment
from app.services.payments import record_payment

JPEG = ("slip.jpg", b"\xff\xd8\xff\xe0 bank slip", "image/jpeg")


async def _visit(client, headers, assignment_id, notes="Met the client"):
    resp = await client.post(
        f"/api/collector/assignments/{assignment_id}/visit-success",
        json={"notes": notes},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def _collect(client, headers, assignment_id, kind, amount=None):
    body = {"collection_type": kind}
    if amount is not None:
        body["amount"] = amount
    return await client.post(
        f"/api/collector/assignments/{assignment_id}/payments",
        json=body,
        headers=headers,
    )


@pytest.mark.api
@pytest.mark.integration
@pytest.mark.asyncio
class TestCollectorDay:
    async def test_collect_deposit_confirm(
        self, client: AsyncClient, db_session, billing, assignments,
        collector_headers, finance_headers,
    ):
        a_id, b_id = assignments["a"].id, assignments["b"].id
        client_a_id, client_b_id = billing["client_a"].id, billing["client_b"].id

        # Client A pays the full 150,000
        await _visit(client, collector_headers, a_id)
        resp = await _collect(client, collector_headers, a_id, "full")
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert Decimal(body["payment"]["amount"]) == Decimal("150000")
        assert body["payment"]["method"] == "collector"
        assert body["payment"]["applied_at"] is None
        assert Decimal(body["ledger"]["total_collected"]) == Decimal("150000")

        # Client B (due 200,000) pays 50,000 then another 30,000
        await _visit(client, collector_headers, b_id)
        resp = await _collect(client, collector_headers, b_id, "partial", "50000")
        assert resp.status_code == 201, resp.text
        resp = await _collect(client, collector_headers, b_id, "partial", "30000")
        assert resp.status_code == 201, resp.text
        ledger = resp.json()["ledger"]
        assert ledger["paid_full_count"] == 1
        assert ledger["partial_count"] == 1
        assert Decimal(ledger["total_collected"]) == Decimal("230000")
        entry_b = next(e for e in ledger["entries"] if e["client_id"] == client_b_id)
        assert entry_b["status"] == "partial"
        assert Decimal(entry_b["amount"]) == Decimal("80000")

        # Deposit the day's cash
        resp = await client.post(
            "/api/collector/deposits", files={"proof": JPEG}, headers=collector_headers
        )
        assert resp.status_code == 201, resp.text
        deposit = resp.json()
        assert Decimal(deposit["amount"]) == Decimal("230000")
        assert sorted(deposit["client_ids"]) == sorted([client_a_id, client_b_id])
        assert len(deposit["payment_ids"]) == 3
        assert deposit["confirmed"] is False
        assert deposit["deposit_ref"].startswith("DEP-")
        assert deposit["proof_content_type"] == "image/jpeg"

        # Ledger is empty again, invoices untouched until finance confirms
        resp = await client.get("/api/collector/ledger", headers=collector_headers)
        assert Decimal(resp.json()["total_collected"]) == 0
        invoice_a = billing["invoice_a"]
        await db_session.refresh(invoice_a)
        assert invoice_a.paid_amount == Decimal("0")

        resp = await client.get(
            f"/api/collector/assignments/{a_id}", headers=collector_headers
        )
        assert resp.json()["workflow_status"] == "deposited"
        assert "deposit_batch_id" in resp.json()["locked_fields"]

        # Finance confirms: payments reach the invoices
        resp = await client.post(
            f"/api/deposits/{deposit['id']}/confirm", headers=finance_headers
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["confirmed"] is True

        invoice_b = billing["invoice_b"]
        await db_session.refresh(invoice_a)
        await db_session.refresh(invoice_b)
        assert invoice_a.paid_amount == Decimal("150000")
        assert invoice_a.status == "paid"
        assert invoice_b.paid_amount == Decimal("80000")
        assert invoice_b.status == "pending"

        for key in ("a", "b"):
            assignment = await db_session.get(CollectorAssignment, assignments[key].id)
            await db_session.refresh(assignment)
            assert assignment.workflow_status == "confirmed"

        # A second confirmation changes nothing
        resp = await client.post(
            f"/api/deposits/{deposit['id']}/confirm", headers=finance_headers
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "ALREADY_CONFIRMED"
        await db_session.refresh(invoice_b)
        assert invoice_b.paid_amount == Decimal("80000")

        # History groups the deposit under today's work date
        resp = await client.get("/api/collector/deposits", headers=collector_headers)
        days = resp.json()
        assert len(days) == 1
        assert days[0]["deposit_count"] == 1
        assert Decimal(days[0]["confirmed_amount"]) == Decimal("230000")


@pytest.mark.api
@pytest.mark.asyncio
class TestAssignments:
    async def test_collector_sees_only_own_assignments(
        self, client, assignments, collector_headers, other_collector_headers,
    ):
        resp = await client.get("/api/collector/assignments", headers=collector_headers)
        assert resp.status_code == 200
        assert resp.json()["total"] == 2

        resp = await client.get(
            "/api/collector/assignments", headers=other_collector_headers
        )
        assert resp.json()["total"] == 0

    async def test_detail_shows_amount_due(self, client, assignments, collector_headers):
        resp = await client.get(
            f"/api/collector/assignments/{assignments['b'].id}", headers=collector_headers
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["client_name"] == "Client B"
        assert Decimal(body["amount_due"]) == Decimal("200000")
        assert body["locked_fields"] == []

    async def test_finance_assigns_invoice(
        self, client, billing, collector_user, finance_headers,
    ):
        resp = await client.post(
            "/api/collector/assignments",
            json={"invoice_id": billing["invoice_a"].id, "collector_id": collector_user.id},
            headers=finance_headers,
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["workflow_status"] == "assigned"
        assert resp.json()["client_id"] == billing["client_a"].id

    async def test_invoice_cannot_be_assigned_twice(
        self, client, billing, assignments, collector_user, finance_headers,
    ):
        resp = await client.post(
            "/api/collector/assignments",
            json={"invoice_id": billing["invoice_a"].id, "collector_id": collector_user.id},
            headers=finance_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "ALREADY_ASSIGNED"

    async def test_only_collectors_can_be_assigned(
        self, client, billing, finance_user, finance_headers,
    ):
        resp = await client.post(
            "/api/collector/assignments",
            json={"invoice_id": billing["invoice_a"].id, "collector_id": finance_user.id},
            headers=finance_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "NOT_A_COLLECTOR"

    async def test_collectors_cannot_assign(
        self, client, billing, collector_user, collector_headers,
    ):
        resp = await client.post(
            "/api/collector/assignments",
            json={"invoice_id": billing["invoice_a"].id, "collector_id": collector_user.id},
            headers=collector_headers,
        )
        assert resp.status_code == 403


@pytest.mark.api
@pytest.mark.asyncio
class TestVisitsAndPayments:
    async def test_other_collector_cannot_visit(
        self, client, assignments, other_collector_headers,
    ):
        resp = await client.post(
            f"/api/collector/assignments/{assignments['a'].id}/visit-success",
            json={"notes": "Not mine"},
            headers=other_collector_headers,
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_visit_twice_is_illegal(self, client, assignments, collector_headers):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        resp = await client.post(
            f"/api/collector/assignments/{a_id}/visit-failed",
            json={"reason": "not_home"},
            headers=collector_headers,
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "ILLEGAL_TRANSITION"

    async def test_visit_notes_required(self, client, assignments, collector_headers):
        resp = await client.post(
            f"/api/collector/assignments/{assignments['a'].id}/visit-success",
            json={"notes": ""},
            headers=collector_headers,
        )
        assert resp.status_code == 422

    async def test_payment_needs_successful_visit(
        self, client, assignments, collector_headers,
    ):
        resp = await _collect(client, collector_headers, assignments["a"].id, "full")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_PAYMENT"

    async def test_partial_at_or_above_due_rejected(
        self, client, db_session, assignments, collector_headers,
    ):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)

        resp = await _collect(client, collector_headers, a_id, "partial", "150000")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_PAYMENT"

        # The rejected payment row is not kept
        payments = (await db_session.execute(Payment.__table__.select())).all()
        assert payments == []

    async def test_full_payment_only_once(self, client, assignments, collector_headers):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        assert (await _collect(client, collector_headers, a_id, "full")).status_code == 201

        resp = await _collect(client, collector_headers, a_id, "full")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "LEDGER_CONFLICT"

    async def test_full_after_partial_collects_remainder(
        self, client, assignments, collector_headers,
    ):
        b_id = assignments["b"].id
        await _visit(client, collector_headers, b_id)
        await _collect(client, collector_headers, b_id, "partial", "50000")

        resp = await _collect(client, collector_headers, b_id, "full")
        assert resp.status_code == 201, resp.text
        assert Decimal(resp.json()["payment"]["amount"]) == Decimal("150000")
        ledger = resp.json()["ledger"]
        assert ledger["paid_full_count"] == 1
        assert ledger["partial_count"] == 0
        assert Decimal(ledger["total_collected"]) == Decimal("200000")

    async def test_price_change_after_full_payment_keeps_ledger(
        self, client, db_session, billing, assignments, collector_headers,
    ):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        assert (await _collect(client, collector_headers, a_id, "full")).status_code == 201

        billing["basic"].price_monthly = Decimal("175000")
        await db_session.commit()

        resp = await client.get("/api/collector/ledger", headers=collector_headers)
        assert resp.status_code == 200, resp.text
        assert Decimal(resp.json()["total_collected"]) == Decimal("150000")

        resp = await client.post(
            "/api/collector/deposits", files={"proof": JPEG}, headers=collector_headers
        )
        assert resp.status_code == 201, resp.text
        assert Decimal(resp.json()["amount"]) == Decimal("150000")

    async def test_full_payment_capped_at_invoice_outstanding(
        self, client, db_session, billing, assignments, collector_headers,
    ):
        await record_payment(
            db_session, invoice_id=billing["invoice_a"].id,
            amount="50000", method="bank_transfer",
        )
        await db_session.commit()
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)

        resp = await _collect(client, collector_headers, a_id, "full")

        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert Decimal(body["payment"]["amount"]) == Decimal("100000")
        assert body["ledger"]["paid_full_count"] == 1
        assert Decimal(body["ledger"]["total_collected"]) == Decimal("100000")

        resp = await client.get("/api/collector/ledger", headers=collector_headers)
        assert Decimal(resp.json()["total_collected"]) == Decimal("100000")

    async def test_full_payment_on_settled_invoice_names_both_figures(
        self, client, db_session, billing, assignments, collector_headers,
    ):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        await record_payment(
            db_session, invoice_id=billing["invoice_a"].id,
            amount="150000", method="bank_transfer",
        )
        await db_session.commit()

        resp = await _collect(client, collector_headers, a_id, "full")

        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "LEDGER_CONFLICT"
        assert Decimal(error["details"]["outstanding"]) == Decimal("0")
        assert Decimal(error["details"]["due"]) == Decimal("150000")

    async def test_not_home_shows_in_ledger(
        self, client, billing, assignments, collector_headers,
    ):
        resp = await client.post(
            f"/api/collector/assignments/{assignments['a'].id}/visit-failed",
            json={"reason": "not_home", "notes": "Nobody answered"},
            headers=collector_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["failure_reason"] == "not_home"

        resp = await client.get("/api/collector/ledger", headers=collector_headers)
        ledger = resp.json()
        assert ledger["not_home_count"] == 1
        assert ledger["entries"][0]["client_id"] == billing["client_a"].id
        assert ledger["assignment_counts"]["visit_failed"] == 1


@pytest.mark.api
@pytest.mark.asyncio
class TestDepositSubmission:
    async def test_nothing_collected(self, client, assignments, collector_headers):
        resp = await client.post(
            "/api/collector/deposits", files={"proof": JPEG}, headers=collector_headers
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "EMPTY_DEPOSIT"

    async def test_proof_required_and_ledger_kept(
        self, client, assignments, collector_headers,
    ):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        await _collect(client, collector_headers, a_id, "full")

        resp = await client.post("/api/collector/deposits", headers=collector_headers)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "MISSING_PROOF"

        resp = await client.get("/api/collector/ledger", headers=collector_headers)
        assert Decimal(resp.json()["total_collected"]) == Decimal("150000")

    async def test_unsupported_proof_type(self, client, assignments, collector_headers):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        await _collect(client, collector_headers, a_id, "full")

        resp = await client.post(
            "/api/collector/deposits",
            files={"proof": ("notes.txt", b"I paid", "text/plain")},
            headers=collector_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_ATTACHMENT"

    async def test_deposited_cash_cannot_be_deposited_again(
        self, client, assignments, collector_headers,
    ):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        await _collect(client, collector_headers, a_id, "full")

        first = await client.post(
            "/api/collector/deposits", files={"proof": JPEG}, headers=collector_headers
        )
        assert first.status_code == 201
        second = await client.post(
            "/api/collector/deposits", files={"proof": JPEG}, headers=collector_headers
        )
        assert second.status_code == 422
        assert second.json()["error"]["code"] == "EMPTY_DEPOSIT"

    async def test_proof_is_stored(
        self, client, assignments, collector_headers, proof_storage,
    ):
        a_id = assignments["a"].id
        await _visit(client, collector_headers, a_id)
        await _collect(client, collector_headers, a_id, "full")

        resp = await client.post(
            "/api/collector/deposits", files={"proof": JPEG}, headers=collector_headers
        )
        assert proof_storage.files[resp.json()["proof_url"]] == JPEG[1]
        assert resp.json()["proof_size"] == len(JPEG[1])
