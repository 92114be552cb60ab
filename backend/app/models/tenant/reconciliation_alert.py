"""ReconciliationAlert — flags mismatches between cash, deposits and invoices.

Each alert represents a single detected discrepancy, categorised by type
and severity.  Alerts are created by the daily integrity audit and
remain open until manually reviewed or auto-resolved on the next run.

Lifecycle:  open → acknowledged → resolved | dismissed
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, ForeignKey, Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import TenantBase


class ReconciliationAlert(TenantBase):
    __tablename__ = "reconciliation_alerts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Classification ───────────────────────────────────────
    # deposit_vs_payments | invoice_vs_payments |
    # stale_collection | unconfirmed_deposit
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # critical | high | medium | low
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # ── Mismatch details ─────────────────────────────────────
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # The two values that don't match
    expected_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    actual_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    variance: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    # Percentage deviation: abs(actual - expected) / expected * 100
    variance_pct: Mapped[float | None] = mapped_column(Float)
    unit: Mapped[str | None] = mapped_column(String(20))  # IDR, days

    # ── What the alert is about ──────────────────────────────
    # Copied out of entity_refs so alerts can be filtered and joined
    collector_id: Mapped[str | None] = mapped_column(String(36), index=True)
    deposit_batch_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("deposit_batches.id"), index=True
    )
    invoice_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("invoices.id"), index=True
    )
    # {"deposit_batch_id": "...", "invoice_id": "...", "collector_id": "..."}
    entity_refs: Mapped[dict | None] = mapped_column(JSON)

    # ── Period ───────────────────────────────────────────────
    period_start: Mapped[datetime | None] = mapped_column(DateTime)
    period_end: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Status ───────────────────────────────────────────────
    # open | acknowledged | resolved | dismissed
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)
    resolved_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    resolution_note: Mapped[str | None] = mapped_column(Text)

    # ── Run metadata ─────────────────────────────────────────
    run_id: Mapped[str | None] = mapped_column(String(36), index=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def link_entities(self) -> None:
        refs = self.entity_refs or {}
        self.collector_id = refs.get("collector_id")
        self.deposit_batch_id = refs.get("deposit_batch_id")
        self.invoice_id = refs.get("invoice_id")
