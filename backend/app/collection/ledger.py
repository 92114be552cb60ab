"""CollectionLedger — one collector's working set for one work date.

Tracks which clients paid in full, which paid partially (cumulative
amount for the day), which were not home, and every payment recorded,
in order.  Mutations are synchronous and validate before they touch
state, so a rejected call leaves the ledger exactly as it was.

The ledger is owned by whoever built it (a request, a test, a CLI run);
it is never shared process-wide.  On the server it is rebuilt from the
database by app.services.collection.load_ledger.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from app.collection.errors import (
    InvalidPaymentError,
    LedgerConflictError,
    LedgerMismatchError,
)
from app.collection.money import ZERO, sum_money, to_money
from app.collection.pricing import compute_due


class CollectionLedger:
    def __init__(self, collector_id: str, work_date: date):
        self.collector_id = collector_id
        self.work_date = work_date
        self.paid_full_clients: set[str] = set()
        self.partial_payments: dict[str, Decimal] = {}
        self.not_home_clients: set[str] = set()
        self.payments: list = []
        # Due snapshot taken when the client was marked paid in full
        self._full_dues: dict[str, Decimal] = {}

    def __repr__(self) -> str:
        return (
            f"<CollectionLedger {self.collector_id} {self.work_date} "
            f"full={len(self.paid_full_clients)} partial={len(self.partial_payments)}>"
        )

    # ── Queries ──────────────────────────────────────────────

    def payments_for(self, client_id: str) -> list:
        return [p for p in self.payments if p.client_id == client_id]

    def collected_from(self, client_id: str) -> Decimal:
        return sum_money(p.amount for p in self.payments_for(client_id))

    def amount_for(self, client_id: str) -> Decimal:
        if client_id in self.partial_payments:
            return self.partial_payments[client_id]
        if client_id in self.paid_full_clients:
            return self._full_dues[client_id]
        return ZERO

    def client_ids(self) -> list[str]:
        return sorted(self.paid_full_clients | set(self.partial_payments))

    def total_collected(self) -> Decimal:
        return sum_money(self.amount_for(cid) for cid in self.client_ids())

    def deposit_payments(self) -> list:
        clients = set(self.client_ids())
        return [p for p in self.payments if p.client_id in clients]

    @property
    def is_empty(self) -> bool:
        return not self.payments and not self.not_home_clients

    # ── Mutations ────────────────────────────────────────────

    def _check_payment(self, client, payment) -> Decimal:
        if payment.client_id != client.id:
            raise LedgerConflictError(
                "Payment belongs to a different client",
                details={"client_id": client.id, "payment_client_id": payment.client_id},
            )
        if any(p.id == payment.id for p in self.payments):
            raise LedgerConflictError(
                "Payment already recorded in this ledger",
                details={"payment_id": payment.id},
            )
        amount = to_money(payment.amount)
        if amount <= 0:
            raise InvalidPaymentError("Payment amount must be positive")
        return amount

    def record_full_payment(self, client, package, payment, *, due=None) -> None:
        """Mark `client` paid in full with `payment` as the final instalment.

        The client's payments must add up to the amount due once this
        one is included, so a full payment after a partial one carries
        only the remainder.  `due` overrides the package price, which is
        how stored payments replay against the amount they were taken for.
        """
        if client.id in self.paid_full_clients:
            raise LedgerConflictError(
                "Client is already paid in full today",
                details={"client_id": client.id},
            )
        amount = self._check_payment(client, payment)
        due = compute_due(client, package) if due is None else to_money(due)
        if due <= 0:
            raise InvalidPaymentError(
                "Client has nothing due", details={"client_id": client.id}
            )

        collected = self.collected_from(client.id) + amount
        if collected != due:
            raise LedgerMismatchError(
                f"Full payment for client {client.id} adds up to {collected}, due is {due}",
                details={"client_id": client.id, "due": str(due), "collected": str(collected)},
            )

        self.payments.append(payment)
        self.partial_payments.pop(client.id, None)
        self.not_home_clients.discard(client.id)
        self.paid_full_clients.add(client.id)
        self._full_dues[client.id] = due

    def record_partial_payment(self, client, amount, payment, *, package=None) -> None:
        """Set the client's cumulative partial amount for the day.

        `amount` replaces any earlier partial amount (last write wins);
        `payment` is the instalment that brings the client's total to
        `amount`.  When `package` is given, `amount` must stay below
        the amount due, otherwise it is a full payment.
        """
        if client.id in self.paid_full_clients:
            raise LedgerConflictError(
                "Client is already paid in full today",
                details={"client_id": client.id},
            )
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidPaymentError("Partial amount must be positive")
        self._check_payment(client, payment)

        if package is not None:
            due = compute_due(client, package)
            if amount >= due:
                raise InvalidPaymentError(
                    f"Partial amount {amount} must be below the amount due {due}",
                    details={"client_id": client.id, "due": str(due)},
                )

        collected = self.collected_from(client.id) + to_money(payment.amount)
        if collected != amount:
            raise LedgerMismatchError(
                f"Partial payments for client {client.id} add up to {collected}, "
                f"expected {amount}",
                details={"client_id": client.id, "amount": str(amount), "collected": str(collected)},
            )

        self.payments.append(payment)
        self.not_home_clients.discard(client.id)
        self.partial_payments[client.id] = amount

    def mark_not_home(self, client_id: str) -> None:
        if self.payments_for(client_id):
            raise LedgerConflictError(
                "Client already has payments recorded today",
                details={"client_id": client_id},
            )
        self.not_home_clients.add(client_id)

    def release(self, client_ids) -> None:
        """Drop deposited clients and their payments."""
        released = set(client_ids)
        self.paid_full_clients -= released
        for cid in released:
            self.partial_payments.pop(cid, None)
            self._full_dues.pop(cid, None)
        self.payments = [p for p in self.payments if p.client_id not in released]

    def clear(self) -> None:
        self.paid_full_clients.clear()
        self.partial_payments.clear()
        self.not_home_clients.clear()
        self.payments.clear()
        self._full_dues.clear()
