"""Invoice — monthly subscription bill for a client.

`paid_amount` only ever grows, and only by applying a Payment
(see app.services.payments.apply_payment).

Lifecycle:  draft → pending → paid | overdue | cancelled
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import TenantBase

OPEN_INVOICE_STATUSES = ("pending", "overdue")


class Invoice(TenantBase):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )

    # ── Amounts ──────────────────────────────────────────────
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # ── Dates ────────────────────────────────────────────────
    due_date: Mapped[date | None] = mapped_column(Date)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Status ───────────────────────────────────────────────
    # draft | pending | paid | overdue | cancelled
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)

    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    client = relationship("Client", lazy="selectin")

    @property
    def outstanding(self) -> Decimal:
        return (self.total_amount or Decimal("0")) - (self.paid_amount or Decimal("0"))
