"""ActivityLog — immutable audit trail for collection and settlement actions.

Records who did what, when, and to which entity.  Every money-moving
step (payment recorded, deposit submitted, deposit confirmed) leaves a
row here.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import TenantBase


class ActivityLog(TenantBase):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Who ────────────────────────────────────────────────────
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # ── What ───────────────────────────────────────────────────
    # assigned | visit_success | visit_failed | payment_recorded |
    # deposit_submitted | deposit_confirmed | audit_run
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # ── Target ─────────────────────────────────────────────────
    # assignment | payment | deposit | invoice
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str | None] = mapped_column(String(36))
    entity_code: Mapped[str | None] = mapped_column(String(100))

    # ── Context ────────────────────────────────────────────────
    summary: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSON)

    # ── Timestamp ──────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
