"""Payment recording and application to invoices.

record_payment() is the single entry point for new money: it guards the
invoice (exists, still open, not overpaid) and creates an append-only
Payment row.  Collector cash stays unapplied until finance confirms the
deposit; every other method is applied on the spot.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.collection.errors import InvalidPaymentError, OverpaymentError
from app.collection.money import ZERO, to_money
from app.middleware.exceptions import IntegrityViolationError, ResourceNotFoundError
from app.models.public.user import User
from app.models.tenant.invoice import Invoice
from app.models.tenant.payment import PAYMENT_METHODS, Payment
from app.utils.activity import log_activity
from app.utils.numbering import generate_code

logger = logging.getLogger(__name__)

COLLECTOR_METHOD = "collector"


async def unapplied_total(db: AsyncSession, invoice_id: str):
    """Sum of payments recorded against the invoice but not yet applied."""
    result = await db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.invoice_id == invoice_id,
            Payment.applied_at.is_(None),
        )
    )
    return to_money(result.scalar())


def apply_payment(invoice: Invoice, payment: Payment, now: datetime | None = None) -> None:
    """Add `payment` to the invoice's paid amount, exactly once."""
    if payment.applied_at is not None:
        raise IntegrityViolationError(
            f"Payment {payment.payment_ref} was already applied",
            error_code="PAYMENT_ALREADY_APPLIED",
            details={"payment_id": payment.id},
        )
    if payment.invoice_id != invoice.id:
        raise IntegrityViolationError(
            f"Payment {payment.payment_ref} belongs to another invoice",
            error_code="PAYMENT_INVOICE_MISMATCH",
            details={"payment_id": payment.id, "invoice_id": invoice.id},
        )

    now = now or datetime.utcnow()
    total = to_money(invoice.total_amount)
    new_paid = to_money(invoice.paid_amount) + to_money(payment.amount)
    if new_paid > total:
        raise OverpaymentError(
            f"Invoice {invoice.invoice_number} would be paid {new_paid} of {total}",
            details={"invoice_id": invoice.id, "total": str(total), "paid": str(new_paid)},
        )

    invoice.paid_amount = new_paid
    payment.applied_at = now
    if new_paid == total:
        invoice.status = "paid"
        invoice.paid_at = now


async def record_payment(
    db: AsyncSession,
    *,
    invoice_id: str,
    amount,
    method: str = "cash",
    collector_id: str | None = None,
    received_at: datetime | None = None,
    collection_type: str | None = None,
    due_snapshot=None,
    notes: str | None = None,
    user: User | None = None,
) -> Payment:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise ResourceNotFoundError("Invoice", invoice_id)
    if invoice.status in ("paid", "cancelled"):
        raise InvalidPaymentError(
            f"Invoice {invoice.invoice_number} is {invoice.status}",
            details={"invoice_id": invoice.id, "status": invoice.status},
        )

    method = method or "cash"
    if method not in PAYMENT_METHODS:
        raise InvalidPaymentError(f"Unknown payment method: {method}")
    if method == COLLECTOR_METHOD and not collector_id:
        raise InvalidPaymentError("Collector payments need a collector")

    amount = to_money(amount)
    if amount <= ZERO:
        raise InvalidPaymentError("Payment amount must be positive")

    outstanding = (
        to_money(invoice.total_amount)
        - to_money(invoice.paid_amount)
        - await unapplied_total(db, invoice.id)
    )
    if amount > outstanding:
        raise OverpaymentError(
            f"Payment {amount} exceeds outstanding balance {outstanding}",
            details={"invoice_id": invoice.id, "outstanding": str(outstanding)},
        )

    received_at = received_at or datetime.utcnow()
    payment = Payment(
        payment_ref=await generate_code(db, "payment", on=received_at.date()),
        invoice_id=invoice.id,
        client_id=invoice.client_id,
        amount=amount,
        method=method,
        collector_id=collector_id,
        collection_type=collection_type,
        due_snapshot=to_money(due_snapshot) if due_snapshot is not None else None,
        received_at=received_at,
        notes=notes,
        created_by=user.id if user else None,
    )
    db.add(payment)
    await db.flush()

    if method != COLLECTOR_METHOD:
        apply_payment(invoice, payment, received_at)

    if user is not None:
        await log_activity(
            db, user,
            action="payment_recorded",
            entity_type="payment",
            entity_id=payment.id,
            entity_code=payment.payment_ref,
            summary=f"Recorded {method} payment of {amount} on {invoice.invoice_number}",
            details={"invoice_id": invoice.id, "collection_type": collection_type},
        )
    await db.flush()

    logger.info(
        f"Payment {payment.payment_ref} recorded: {amount} via {method}",
        extra={"invoice_id": invoice.id},
    )
    return payment
