"""Payment — money received against an invoice.

Append-only.  The only writes after creation are the one-shot
`deposit_batch_id` link (collector cash handed over in a deposit) and
the one-shot `applied_at` stamp (amount added to the invoice).

Collector payments are applied by deposit confirmation; every other
method is applied when recorded.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import TenantBase

PAYMENT_METHODS = (
    "cash", "bank_transfer", "e_wallet", "qris", "virtual_account", "collector",
)


class Payment(TenantBase):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    payment_ref: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )

    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id"), nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(30), default="cash")

    # ── Field collection ─────────────────────────────────────
    collector_id: Mapped[str | None] = mapped_column(String(36), index=True)
    # full | partial
    collection_type: Mapped[str | None] = mapped_column(String(10))
    # amount due when a full payment was taken; replays never re-price
    due_snapshot: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    received_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    # ── Settlement ───────────────────────────────────────────
    deposit_batch_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("deposit_batches.id"), index=True
    )
    applied_at: Mapped[datetime | None] = mapped_column(DateTime)

    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
