"""DepositBatch — one day's collector cash handed over with proof.

Immutable after creation except the confirmation fields, which flip
exactly once (confirmed false → true) when finance confirms.

`idempotency_key` is a SHA-256 over the collector id and the sorted
payment ids, so resubmitting the same payments can never create a
second batch.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import TenantBase


class DepositBatch(TenantBase):
    __tablename__ = "deposit_batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    deposit_ref: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    collector_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # ── Contents ─────────────────────────────────────────────
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    client_ids: Mapped[list] = mapped_column(JSON, default=list)
    payment_ids: Mapped[list] = mapped_column(JSON, default=list)

    # ── Proof ────────────────────────────────────────────────
    proof_url: Mapped[str] = mapped_column(String(500), nullable=False)
    proof_content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    proof_size: Mapped[int] = mapped_column(Integer, nullable=False)
    proof_filename: Mapped[str | None] = mapped_column(String(255))

    idempotency_key: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # ── Confirmation ─────────────────────────────────────────
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime)
    confirmed_by: Mapped[str | None] = mapped_column(String(36))  # user_id

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
