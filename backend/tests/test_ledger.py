"""CollectionLedger bookkeeping rules."""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.collection.errors import (
    InvalidPaymentError,
    LedgerConflictError,
    LedgerMismatchError,
)
from app.collection.ledger import CollectionLedger

PACKAGE = SimpleNamespace(
    id="pkg", pricing_model="flat",
    price_monthly=Decimal("150000"), price_per_device=Decimal("0"),
)


def _client(cid):
    return SimpleNamespace(id=cid, service_package_id="pkg", device_count=1, discount=None)


def _payment(pid, cid, amount):
    return SimpleNamespace(id=pid, client_id=cid, amount=Decimal(amount))


@pytest.fixture
def ledger():
    return CollectionLedger("collector-1", date(2026, 3, 1))


@pytest.mark.unit
class TestFullPayments:
    def test_full_payment_marks_client_paid(self, ledger):
        ledger.record_full_payment(_client("A"), PACKAGE, _payment("p1", "A", "150000"))

        assert ledger.paid_full_clients == {"A"}
        assert ledger.total_collected() == Decimal("150000.00")
        assert ledger.amount_for("A") == Decimal("150000.00")

    def test_full_payment_must_equal_due(self, ledger):
        with pytest.raises(LedgerMismatchError):
            ledger.record_full_payment(_client("A"), PACKAGE, _payment("p1", "A", "100000"))
        assert ledger.is_empty

    def test_second_full_payment_conflicts(self, ledger):
        ledger.record_full_payment(_client("A"), PACKAGE, _payment("p1", "A", "150000"))
        with pytest.raises(LedgerConflictError):
            ledger.record_full_payment(_client("A"), PACKAGE, _payment("p2", "A", "150000"))
        assert len(ledger.payments) == 1

    def test_full_after_partial_carries_the_remainder(self, ledger):
        client = _client("A")
        ledger.record_partial_payment(client, "50000", _payment("p1", "A", "50000"))
        ledger.record_full_payment(client, PACKAGE, _payment("p2", "A", "100000"))

        assert "A" not in ledger.partial_payments
        assert ledger.paid_full_clients == {"A"}
        assert ledger.total_collected() == Decimal("150000.00")
        assert [p.id for p in ledger.deposit_payments()] == ["p1", "p2"]

    def test_explicit_due_overrides_package_price(self, ledger):
        repriced = SimpleNamespace(**{**vars(PACKAGE), "price_monthly": Decimal("175000")})
        ledger.record_full_payment(
            _client("A"), repriced, _payment("p1", "A", "150000"), due="150000"
        )

        assert ledger.amount_for("A") == Decimal("150000.00")
        with pytest.raises(LedgerMismatchError):
            ledger.record_full_payment(
                _client("B"), PACKAGE, _payment("p2", "B", "150000"), due="120000"
            )

    def test_client_without_package_cannot_pay_in_full(self, ledger):
        with pytest.raises(InvalidPaymentError):
            ledger.record_full_payment(_client("A"), None, _payment("p1", "A", "1"))

    def test_payment_for_other_client_rejected(self, ledger):
        with pytest.raises(LedgerConflictError):
            ledger.record_full_payment(_client("A"), PACKAGE, _payment("p1", "B", "150000"))


@pytest.mark.unit
class TestPartialPayments:
    def test_partial_amount_is_cumulative(self, ledger):
        client = _client("A")
        ledger.record_partial_payment(client, "40000", _payment("p1", "A", "40000"))
        ledger.record_partial_payment(client, "70000", _payment("p2", "A", "30000"))

        assert ledger.partial_payments == {"A": Decimal("70000.00")}
        assert ledger.total_collected() == Decimal("70000.00")

    def test_partial_total_must_match_payments(self, ledger):
        client = _client("A")
        ledger.record_partial_payment(client, "40000", _payment("p1", "A", "40000"))
        with pytest.raises(LedgerMismatchError):
            ledger.record_partial_payment(client, "40000", _payment("p2", "A", "30000"))
        assert ledger.partial_payments == {"A": Decimal("40000.00")}
        assert len(ledger.payments) == 1

    def test_partial_reaching_due_is_rejected(self, ledger):
        with pytest.raises(InvalidPaymentError):
            ledger.record_partial_payment(
                _client("A"), "150000", _payment("p1", "A", "150000"), package=PACKAGE
            )

    def test_partial_after_full_conflicts(self, ledger):
        client = _client("A")
        ledger.record_full_payment(client, PACKAGE, _payment("p1", "A", "150000"))
        with pytest.raises(LedgerConflictError):
            ledger.record_partial_payment(client, "10000", _payment("p2", "A", "10000"))

    def test_non_positive_amount_rejected(self, ledger):
        with pytest.raises(InvalidPaymentError):
            ledger.record_partial_payment(_client("A"), "0", _payment("p1", "A", "0"))

    def test_same_payment_twice_rejected(self, ledger):
        client = _client("A")
        payment = _payment("p1", "A", "40000")
        ledger.record_partial_payment(client, "40000", payment)
        with pytest.raises(LedgerConflictError):
            ledger.record_partial_payment(client, "80000", payment)


@pytest.mark.unit
class TestNotHomeAndRelease:
    def test_not_home_is_not_money(self, ledger):
        ledger.mark_not_home("C")

        assert not ledger.is_empty
        assert ledger.total_collected() == 0
        assert ledger.client_ids() == []

    def test_not_home_after_payment_conflicts(self, ledger):
        ledger.record_partial_payment(_client("A"), "10000", _payment("p1", "A", "10000"))
        with pytest.raises(LedgerConflictError):
            ledger.mark_not_home("A")

    def test_payment_clears_not_home(self, ledger):
        ledger.mark_not_home("A")
        ledger.record_full_payment(_client("A"), PACKAGE, _payment("p1", "A", "150000"))
        assert ledger.not_home_clients == set()

    def test_release_drops_deposited_clients_only(self, ledger):
        ledger.record_full_payment(_client("A"), PACKAGE, _payment("p1", "A", "150000"))
        ledger.record_partial_payment(_client("B"), "20000", _payment("p2", "B", "20000"))
        ledger.mark_not_home("C")

        ledger.release(["A"])

        assert ledger.paid_full_clients == set()
        assert ledger.partial_payments == {"B": Decimal("20000.00")}
        assert [p.id for p in ledger.payments] == ["p2"]
        assert ledger.not_home_clients == {"C"}

    def test_clear(self, ledger):
        ledger.record_partial_payment(_client("B"), "20000", _payment("p2", "B", "20000"))
        ledger.mark_not_home("C")
        ledger.clear()
        assert ledger.is_empty
