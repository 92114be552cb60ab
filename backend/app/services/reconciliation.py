"""Reconciliation — deposit confirmation and the cash integrity audit.

ReconciliationService.confirm() is the only path by which collector
cash reaches invoices.  It runs as one savepoint: flip the batch flag
(check-and-set), apply every payment, confirm every linked assignment.
Any failure rolls all of it back.

The check_* functions compare stored totals and return unsaved
ReconciliationAlert objects.  `run_full_reconciliation` runs every
check, persists the alerts and returns a run summary; the scheduler
calls it nightly per tenant.

Thresholds:
    - AMOUNT_TOLERANCE:          money must match exactly
    - STALE_COLLECTION_DAYS:     cash held undeposited longer than this
    - UNCONFIRMED_DEPOSIT_DAYS:  deposits waiting on finance longer than this
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.collection.assignment import Actor, AssignmentStateMachine
from app.collection.errors import (
    AlreadyConfirmedError,
    LedgerMismatchError,
    TransientError,
)
from app.collection.money import ZERO, sum_money, to_money
from app.collection.result import Result
from app.collection.transaction import LocalTransaction
from app.config import settings
from app.middleware.exceptions import FieldCashException, ResourceNotFoundError
from app.models.public.user import User
from app.models.tenant.collector_assignment import CollectorAssignment
from app.models.tenant.deposit_batch import DepositBatch
from app.models.tenant.invoice import Invoice
from app.models.tenant.payment import Payment
from app.models.tenant.reconciliation_alert import ReconciliationAlert
from app.services.payments import COLLECTOR_METHOD, apply_payment
from app.utils.activity import log_activity

logger = logging.getLogger(__name__)

# ── Configurable thresholds ──────────────────────────────────
AMOUNT_TOLERANCE = ZERO


def _severity(variance_pct: float) -> str:
    """Map variance percentage to severity level."""
    abs_pct = abs(variance_pct) if variance_pct else 0
    if abs_pct >= 20:
        return "critical"
    if abs_pct >= 10:
        return "high"
    if abs_pct >= 5:
        return "medium"
    return "low"


def _safe_pct(expected, actual) -> float:
    """Calculate percentage variance safely."""
    if not expected:
        return 100.0 if actual else 0.0
    return round(float(abs(actual - expected) / abs(expected) * 100), 2)


def _age_severity(days: int, threshold: int) -> str:
    if days >= threshold * 3:
        return "critical"
    if days >= threshold * 2:
        return "high"
    return "medium"


# ─────────────────────────────────────────────────────────────
# Deposit confirmation
# ─────────────────────────────────────────────────────────────

class ReconciliationService:
    def __init__(self, db: AsyncSession, machine: AssignmentStateMachine | None = None):
        self.db = db
        self.machine = machine or AssignmentStateMachine()

    def _apply_payment(self, invoice: Invoice, payment: Payment, now: datetime) -> None:
        apply_payment(invoice, payment, now)

    async def confirm(
        self,
        batch_id: str,
        user: User,
        *,
        now: datetime | None = None,
    ) -> Result:
        """Confirm a deposit and settle its payments, all or nothing."""
        now = now or datetime.utcnow()
        batch = await self.db.get(DepositBatch, batch_id)
        if batch is None:
            return Result.failure(ResourceNotFoundError("Deposit", batch_id))

        ref = batch.deposit_ref
        tx = LocalTransaction(f"confirm:{ref}")
        try:
            async with tx:
                async with self.db.begin_nested():
                    await self._confirm(batch, user, now)
        except FieldCashException as exc:
            logger.warning(
                f"Confirmation of {ref} failed: {exc.error_code}",
                extra={"deposit_batch_id": batch_id},
            )
            return Result.failure(exc)
        except SQLAlchemyError as exc:
            logger.error(f"Database error confirming {ref}: {exc}")
            return Result.failure(TransientError())

        await self.db.refresh(batch)
        logger.info(f"Deposit {ref} confirmed by {user.id}")
        return Result.success(batch)

    async def _confirm(self, batch: DepositBatch, user: User, now: datetime) -> None:
        db = self.db

        # Check-and-set: exactly one confirmer wins
        flipped = await db.execute(
            update(DepositBatch)
            .where(DepositBatch.id == batch.id, DepositBatch.confirmed == False)  # noqa: E712
            .values(confirmed=True, confirmed_at=now, confirmed_by=user.id)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            raise AlreadyConfirmedError(batch.id)

        result = await db.execute(
            select(Payment)
            .where(Payment.deposit_batch_id == batch.id)
            .order_by(Payment.payment_ref)
        )
        payments = result.scalars().all()

        if {p.id for p in payments} != set(batch.payment_ids or []):
            raise LedgerMismatchError(
                f"Deposit {batch.deposit_ref} payments changed since submission",
                details={"deposit_batch_id": batch.id},
            )
        paid = sum_money(p.amount for p in payments)
        if paid != to_money(batch.amount):
            raise LedgerMismatchError(
                f"Deposit {batch.deposit_ref} amount {batch.amount} != payments {paid}",
                details={"deposit_batch_id": batch.id, "payments": str(paid)},
            )

        invoice_ids = {p.invoice_id for p in payments}
        result = await db.execute(select(Invoice).where(Invoice.id.in_(invoice_ids)))
        invoices = {inv.id: inv for inv in result.scalars().all()}
        for payment in payments:
            self._apply_payment(invoices[payment.invoice_id], payment, now)

        result = await db.execute(
            select(CollectorAssignment).where(
                CollectorAssignment.deposit_batch_id == batch.id
            )
        )
        assignments = result.scalars().all()
        for assignment in assignments:
            self.machine.mark_confirmed(assignment, now, Actor.FINANCE)

        await log_activity(
            db, user,
            action="deposit_confirmed",
            entity_type="deposit",
            entity_id=batch.id,
            entity_code=batch.deposit_ref,
            summary=(
                f"Confirmed {paid:,.2f}: {len(payments)} payments on "
                f"{len(invoices)} invoices"
            ),
            details={"assignments": len(assignments)},
        )
        await db.flush()


# ─────────────────────────────────────────────────────────────
# CHECK 1:  DepositBatch.amount  ≠  sum of its linked payments
# ─────────────────────────────────────────────────────────────

async def check_deposit_amounts(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    """Every deposit must carry exactly the payments it claims."""
    linked = (
        select(
            Payment.deposit_batch_id,
            func.coalesce(func.sum(Payment.amount), 0).label("linked_amount"),
            func.count(Payment.id).label("linked_count"),
        )
        .where(Payment.deposit_batch_id.is_not(None))
        .group_by(Payment.deposit_batch_id)
        .subquery()
    )
    stmt = select(
        DepositBatch.id,
        DepositBatch.deposit_ref,
        DepositBatch.collector_id,
        DepositBatch.amount,
        DepositBatch.payment_ids,
        linked.c.linked_amount,
        linked.c.linked_count,
    ).outerjoin(linked, linked.c.deposit_batch_id == DepositBatch.id)

    result = await db.execute(stmt)
    alerts = []

    for row in result.all():
        expected = to_money(row.amount)
        actual = to_money(row.linked_amount)
        claimed = len(row.payment_ids or [])
        count = row.linked_count or 0

        if abs(actual - expected) <= AMOUNT_TOLERANCE and claimed == count:
            continue

        pct = _safe_pct(expected, actual)
        alerts.append(ReconciliationAlert(
            alert_type="deposit_vs_payments",
            severity="critical",
            title=f"{row.deposit_ref}: deposit amount ≠ linked payments",
            description=(
                f"Deposit {row.deposit_ref} claims {expected:,.2f} over {claimed} payments "
                f"but {count} linked payments total {actual:,.2f} "
                f"(variance {actual - expected:+,.2f} / {pct:.1f}%)."
            ),
            expected_value=expected,
            actual_value=actual,
            variance=actual - expected,
            variance_pct=pct,
            unit=settings.currency,
            entity_refs={
                "deposit_batch_id": row.id,
                "collector_id": row.collector_id,
            },
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# CHECK 2:  Invoice.paid_amount  ≠  sum of applied payments
# ─────────────────────────────────────────────────────────────

async def check_invoice_paid_amounts(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    """paid_amount only moves by applying payments, so the two must agree."""
    applied = (
        select(
            Payment.invoice_id,
            func.coalesce(func.sum(Payment.amount), 0).label("applied_amount"),
        )
        .where(Payment.applied_at.is_not(None))
        .group_by(Payment.invoice_id)
        .subquery()
    )
    stmt = select(
        Invoice.id,
        Invoice.invoice_number,
        Invoice.total_amount,
        Invoice.paid_amount,
        Invoice.status,
        applied.c.applied_amount,
    ).outerjoin(applied, applied.c.invoice_id == Invoice.id)

    result = await db.execute(stmt)
    alerts = []

    for row in result.all():
        expected = to_money(row.applied_amount)
        actual = to_money(row.paid_amount)
        total = to_money(row.total_amount)
        overpaid = actual > total

        if abs(actual - expected) <= AMOUNT_TOLERANCE and not overpaid:
            continue

        pct = _safe_pct(expected, actual)
        alerts.append(ReconciliationAlert(
            alert_type="invoice_vs_payments",
            severity="critical" if overpaid else _severity(pct),
            title=f"{row.invoice_number}: paid amount ≠ applied payments",
            description=(
                f"Invoice {row.invoice_number} ({row.status}) shows {actual:,.2f} paid of "
                f"{total:,.2f} but applied payments total {expected:,.2f}."
            ),
            expected_value=expected,
            actual_value=actual,
            variance=actual - expected,
            variance_pct=pct,
            unit=settings.currency,
            entity_refs={"invoice_id": row.id},
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# CHECK 3:  Collector cash held without a deposit
# ─────────────────────────────────────────────────────────────

async def check_stale_collections(
    db: AsyncSession,
    run_id: str,
    now: datetime | None = None,
) -> list[ReconciliationAlert]:
    """Flag collectors holding cash older than STALE_COLLECTION_DAYS."""
    now = now or datetime.utcnow()
    threshold = settings.stale_collection_days
    cutoff = now - timedelta(days=threshold)

    stmt = (
        select(
            Payment.collector_id,
            func.coalesce(func.sum(Payment.amount), 0).label("held_amount"),
            func.count(Payment.id).label("payment_count"),
            func.min(Payment.received_at).label("oldest"),
        )
        .where(
            Payment.method == COLLECTOR_METHOD,
            Payment.deposit_batch_id.is_(None),
            Payment.received_at < cutoff,
        )
        .group_by(Payment.collector_id)
    )
    result = await db.execute(stmt)
    alerts = []

    for row in result.all():
        held = to_money(row.held_amount)
        age_days = (now - row.oldest).days
        alerts.append(ReconciliationAlert(
            alert_type="stale_collection",
            severity=_age_severity(age_days, threshold),
            title=f"Collector {row.collector_id}: {held:,.2f} not deposited",
            description=(
                f"{row.payment_count} collected payments totalling {held:,.2f} have not "
                f"been deposited; the oldest is {age_days} days old."
            ),
            expected_value=ZERO,
            actual_value=held,
            variance=held,
            variance_pct=100.0,
            unit=settings.currency,
            entity_refs={"collector_id": row.collector_id},
            period_start=row.oldest,
            period_end=now,
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# CHECK 4:  Deposits waiting too long for finance
# ─────────────────────────────────────────────────────────────

async def check_unconfirmed_deposits(
    db: AsyncSession,
    run_id: str,
    now: datetime | None = None,
) -> list[ReconciliationAlert]:
    now = now or datetime.utcnow()
    threshold = settings.unconfirmed_deposit_days
    cutoff = now - timedelta(days=threshold)

    result = await db.execute(
        select(DepositBatch).where(
            DepositBatch.confirmed == False,  # noqa: E712
            DepositBatch.submitted_at < cutoff,
        )
    )
    alerts = []

    for batch in result.scalars().all():
        age_days = (now - batch.submitted_at).days
        amount = to_money(batch.amount)
        alerts.append(ReconciliationAlert(
            alert_type="unconfirmed_deposit",
            severity=_age_severity(age_days, threshold),
            title=f"{batch.deposit_ref}: awaiting confirmation for {age_days} days",
            description=(
                f"Deposit {batch.deposit_ref} of {amount:,.2f} from collector "
                f"{batch.collector_id} was submitted {age_days} days ago and is not "
                f"confirmed; its payments are not applied to invoices yet."
            ),
            expected_value=amount,
            actual_value=ZERO,
            variance=-amount,
            variance_pct=100.0,
            unit=settings.currency,
            entity_refs={
                "deposit_batch_id": batch.id,
                "collector_id": batch.collector_id,
            },
            period_start=batch.submitted_at,
            period_end=now,
            run_id=run_id,
        ))

    return alerts


# ─────────────────────────────────────────────────────────────
# Orchestration
# ─────────────────────────────────────────────────────────────

async def run_full_reconciliation(db: AsyncSession, now: datetime | None = None) -> dict:
    """Execute all integrity checks, persist alerts, return summary.

    Returns:
        {
            "run_id": "...",
            "ran_at": "...",
            "total_alerts": int,
            "by_type": {"deposit_vs_payments": int, ...},
            "by_severity": {"critical": int, "high": int, ...},
        }
    """
    now = now or datetime.utcnow()
    run_id = str(uuid.uuid4())

    # Auto-resolve open alerts from previous runs
    # (if a mismatch no longer appears, it was fixed)
    old_open = await db.execute(
        select(ReconciliationAlert).where(
            ReconciliationAlert.status == "open",
            ReconciliationAlert.run_id != run_id,
        )
    )
    for old_alert in old_open.scalars().all():
        old_alert.status = "resolved"
        old_alert.resolution_note = "Auto-resolved: mismatch no longer detected"
        old_alert.resolved_at = now
    await db.flush()

    all_alerts: list[ReconciliationAlert] = []
    all_alerts.extend(await check_deposit_amounts(db, run_id))
    all_alerts.extend(await check_invoice_paid_amounts(db, run_id))
    all_alerts.extend(await check_stale_collections(db, run_id, now))
    all_alerts.extend(await check_unconfirmed_deposits(db, run_id, now))

    for alert in all_alerts:
        alert.link_entities()
        db.add(alert)
    await db.flush()

    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    for a in all_alerts:
        by_type[a.alert_type] = by_type.get(a.alert_type, 0) + 1
        by_severity[a.severity] = by_severity.get(a.severity, 0) + 1

    return {
        "run_id": run_id,
        "ran_at": now.isoformat(),
        "total_alerts": len(all_alerts),
        "by_type": by_type,
        "by_severity": by_severity,
    }
