"""Field collection services — assignments, visits, collector payments.

The collector's ledger is not kept in memory between requests: every
call rebuilds it from the collector's undeposited payments for the work
date, replaying them through CollectionLedger so the same rules apply to
stored and new payments alike.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.collection.assignment import NOT_HOME, WorkflowStatus
from app.collection.errors import (
    InvalidPaymentError,
    LedgerConflictError,
)
from app.collection.ledger import CollectionLedger
from app.collection.money import to_money
from app.collection.pricing import compute_due
from app.middleware.exceptions import (
    BusinessLogicError,
    PermissionDeniedError,
    ResourceNotFoundError,
)
from app.models.public.user import User
from app.models.tenant.client import Client
from app.models.tenant.collector_assignment import CollectorAssignment
from app.models.tenant.invoice import OPEN_INVOICE_STATUSES, Invoice
from app.models.tenant.payment import Payment
from app.models.tenant.service_package import ServicePackage
from app.services.payments import COLLECTOR_METHOD, record_payment, unapplied_total
from app.utils.activity import log_activity

logger = logging.getLogger(__name__)

OPEN_ASSIGNMENT_STATUSES = (
    WorkflowStatus.ASSIGNED.value,
    WorkflowStatus.VISIT_SUCCESS.value,
    WorkflowStatus.DEPOSITED.value,
)


def day_window(work_date: date) -> tuple[datetime, datetime]:
    start = datetime.combine(work_date, time.min)
    return start, start + timedelta(days=1)


async def _clients_and_packages(db: AsyncSession, client_ids) -> tuple[dict, dict]:
    client_ids = set(client_ids)
    if not client_ids:
        return {}, {}
    result = await db.execute(select(Client).where(Client.id.in_(client_ids)))
    clients = {c.id: c for c in result.scalars().all()}

    package_ids = {c.service_package_id for c in clients.values() if c.service_package_id}
    packages = {}
    if package_ids:
        result = await db.execute(
            select(ServicePackage).where(ServicePackage.id.in_(package_ids))
        )
        packages = {p.id: p for p in result.scalars().all()}
    return clients, packages


# ── Ledger ─────────────────────────────────────────────────────


async def load_ledger(
    db: AsyncSession,
    collector_id: str,
    work_date: date,
) -> CollectionLedger:
    """Rebuild the collector's ledger for `work_date` from the database."""
    start, end = day_window(work_date)
    ledger = CollectionLedger(collector_id, work_date)

    result = await db.execute(
        select(Payment)
        .where(
            Payment.collector_id == collector_id,
            Payment.method == COLLECTOR_METHOD,
            Payment.deposit_batch_id.is_(None),
            Payment.received_at >= start,
            Payment.received_at < end,
        )
        .order_by(Payment.received_at, Payment.payment_ref)
    )
    payments = result.scalars().all()
    clients, packages = await _clients_and_packages(db, (p.client_id for p in payments))

    running: dict[str, Decimal] = {}
    for payment in payments:
        client = clients[payment.client_id]
        package = packages.get(client.service_package_id)
        running[client.id] = running.get(client.id, to_money(0)) + to_money(payment.amount)
        # Stored rows were checked against the price of their day
        if payment.collection_type == "full":
            ledger.record_full_payment(client, package, payment, due=payment.due_snapshot)
        else:
            ledger.record_partial_payment(client, running[client.id], payment)

    result = await db.execute(
        select(CollectorAssignment.client_id).where(
            CollectorAssignment.collector_id == collector_id,
            CollectorAssignment.workflow_status == WorkflowStatus.VISIT_FAILED.value,
            CollectorAssignment.failure_reason == NOT_HOME,
            CollectorAssignment.visited_at >= start,
            CollectorAssignment.visited_at < end,
        )
    )
    for client_id in result.scalars().all():
        # Another invoice of the same client may have been paid that day
        if not ledger.payments_for(client_id):
            ledger.mark_not_home(client_id)

    return ledger


# ── Assignments ────────────────────────────────────────────────


async def assign_invoice(
    db: AsyncSession,
    user: User,
    *,
    invoice_id: str,
    collector_id: str,
) -> CollectorAssignment:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise ResourceNotFoundError("Invoice", invoice_id)
    if invoice.status not in OPEN_INVOICE_STATUSES:
        raise BusinessLogicError(
            f"Invoice {invoice.invoice_number} is {invoice.status}, only "
            f"{' / '.join(OPEN_INVOICE_STATUSES)} invoices can be assigned",
            error_code="INVOICE_NOT_OPEN",
        )

    existing = await db.execute(
        select(CollectorAssignment.id).where(
            CollectorAssignment.invoice_id == invoice_id,
            CollectorAssignment.workflow_status.in_(OPEN_ASSIGNMENT_STATUSES),
        )
    )
    if existing.first() is not None:
        raise BusinessLogicError(
            f"Invoice {invoice.invoice_number} already has an open assignment",
            error_code="ALREADY_ASSIGNED",
        )

    assignment = CollectorAssignment(
        invoice_id=invoice.id,
        client_id=invoice.client_id,
        collector_id=collector_id,
        workflow_status=WorkflowStatus.ASSIGNED.value,
        assigned_by=user.id,
        assigned_at=datetime.utcnow(),
    )
    db.add(assignment)
    await db.flush()

    await log_activity(
        db, user,
        action="assigned",
        entity_type="assignment",
        entity_id=assignment.id,
        entity_code=invoice.invoice_number,
        summary=f"Assigned {invoice.invoice_number} to collector {collector_id}",
    )
    return assignment


async def get_assignment_for(
    db: AsyncSession,
    assignment_id: str,
    user: User,
    *,
    own_only: bool = True,
) -> CollectorAssignment:
    assignment = await db.get(CollectorAssignment, assignment_id)
    if assignment is None:
        raise ResourceNotFoundError("Assignment", assignment_id)
    if own_only and assignment.collector_id != user.id:
        raise PermissionDeniedError("Assignment belongs to another collector")
    return assignment


# ── Collecting money ───────────────────────────────────────────


async def collect_payment(
    db: AsyncSession,
    user: User,
    assignment: CollectorAssignment,
    kind: str,
    amount=None,
    *,
    now: datetime | None = None,
) -> tuple[Payment, CollectionLedger]:
    """Record cash handed to the collector on a successful visit.

    kind="full"     pays whatever is still due for the client today
    kind="partial"  adds `amount` to the client's partial total
    """
    if assignment.collector_id != user.id:
        raise PermissionDeniedError("Assignment belongs to another collector")
    if WorkflowStatus(assignment.workflow_status) != WorkflowStatus.VISIT_SUCCESS:
        raise InvalidPaymentError(
            "Payments can only be collected after a successful visit",
            details={"workflow_status": assignment.workflow_status},
        )
    if kind not in ("full", "partial"):
        raise InvalidPaymentError(f"Unknown collection type: {kind}")

    now = now or datetime.utcnow()
    ledger = await load_ledger(db, user.id, now.date())

    client = await db.get(Client, assignment.client_id)
    package = (
        await db.get(ServicePackage, client.service_package_id)
        if client.service_package_id else None
    )
    due = compute_due(client, package)
    collected = ledger.collected_from(client.id)

    if kind == "full":
        pay_amount = due - collected
        if pay_amount <= 0:
            raise LedgerConflictError(
                "Nothing left to collect from this client today",
                details={"client_id": client.id, "due": str(due)},
            )
        invoice = await db.get(Invoice, assignment.invoice_id)
        outstanding = (
            to_money(invoice.total_amount)
            - to_money(invoice.paid_amount)
            - await unapplied_total(db, invoice.id)
        )
        if outstanding <= 0:
            raise LedgerConflictError(
                f"Invoice {invoice.invoice_number} has nothing outstanding, "
                f"{pay_amount} is still due from the client",
                details={
                    "invoice_id": invoice.id,
                    "outstanding": str(outstanding),
                    "due": str(pay_amount),
                },
            )
        if outstanding < pay_amount:
            # Paid partly through another channel: settle what the invoice still owes
            logger.info(
                f"Full collection on {invoice.invoice_number} capped at "
                f"outstanding {outstanding} (due {pay_amount})"
            )
            pay_amount = outstanding
        due = collected + pay_amount
    else:
        if amount is None:
            raise InvalidPaymentError("Partial payments need an amount")
        pay_amount = to_money(amount)
        if pay_amount <= 0:
            raise InvalidPaymentError("Partial amount must be positive")

    # Ledger rules run after the insert; a rejection drops the row
    async with db.begin_nested():
        payment = await record_payment(
            db,
            invoice_id=assignment.invoice_id,
            amount=pay_amount,
            method=COLLECTOR_METHOD,
            collector_id=user.id,
            received_at=now,
            collection_type=kind,
            due_snapshot=due if kind == "full" else None,
            user=user,
        )
        if kind == "full":
            ledger.record_full_payment(client, package, payment, due=due)
        else:
            ledger.record_partial_payment(
                client, collected + pay_amount, payment, package=package
            )

    logger.info(
        f"Collector {user.id} collected {pay_amount} ({kind}) from client {client.id}",
        extra={"assignment_id": assignment.id},
    )
    return payment, ledger


async def assignment_counts(db: AsyncSession, collector_id: str) -> dict[str, int]:
    """Number of the collector's assignments per workflow status."""
    result = await db.execute(
        select(CollectorAssignment.workflow_status, func.count(CollectorAssignment.id))
        .where(CollectorAssignment.collector_id == collector_id)
        .group_by(CollectorAssignment.workflow_status)
    )
    counts = {s.value: 0 for s in WorkflowStatus}
    for status, count in result.all():
        counts[status] = count
    return counts
