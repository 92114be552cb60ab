"""CollectorAssignment — one invoice handed to a field collector.

Lifecycle (monotonic, see app.collection.assignment):
    assigned → visit_success → deposited → confirmed
    assigned → visit_failed
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import TenantBase


class CollectorAssignment(TenantBase):
    __tablename__ = "collector_assignments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id"), nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )
    collector_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # assigned | visit_success | visit_failed | deposited | confirmed
    workflow_status: Mapped[str] = mapped_column(
        String(20), default="assigned", nullable=False, index=True
    )

    # ── Visit ────────────────────────────────────────────────
    visit_notes: Mapped[str | None] = mapped_column(Text)
    visit_photo_url: Mapped[str | None] = mapped_column(String(500))
    failure_reason: Mapped[str | None] = mapped_column(String(100))
    visited_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Deposit ──────────────────────────────────────────────
    deposit_batch_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("deposit_batches.id"), index=True
    )
    deposit_proof_url: Mapped[str | None] = mapped_column(String(500))
    deposit_submitted_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Confirmation ─────────────────────────────────────────
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime)

    assigned_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    client = relationship("Client", lazy="selectin")
    invoice = relationship("Invoice", lazy="selectin")
