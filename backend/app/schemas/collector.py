"""Pydantic schemas for the collector app (assignments, visits, ledger)."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


# ── Assignments ──────────────────────────────────────────────

class AssignmentCreate(BaseModel):
    invoice_id: str
    collector_id: str


class AssignmentOut(BaseModel):
    id: str
    invoice_id: str
    client_id: str
    collector_id: str
    workflow_status: str
    visit_notes: str | None = None
    visit_photo_url: str | None = None
    failure_reason: str | None = None
    visited_at: datetime | None = None
    deposit_batch_id: str | None = None
    deposit_proof_url: str | None = None
    deposit_submitted_at: datetime | None = None
    confirmed_at: datetime | None = None
    assigned_at: datetime

    model_config = {"from_attributes": True}


class AssignmentDetail(AssignmentOut):
    """Assignment plus what the collector needs at the door."""
    client_name: str
    client_address: str | None = None
    invoice_number: str
    invoice_total: Decimal
    invoice_paid: Decimal
    amount_due: Decimal
    locked_fields: list[str] = []


# ── Visits ───────────────────────────────────────────────────

class VisitSuccess(BaseModel):
    notes: str = Field(..., min_length=1)
    photo_url: str | None = None


class VisitFailed(BaseModel):
    reason: str = Field(..., min_length=1)  # not_home | refused | moved | ...
    notes: str | None = None


# ── Payments ─────────────────────────────────────────────────

class CollectPayment(BaseModel):
    collection_type: Literal["full", "partial"]
    amount: Decimal | None = Field(None, gt=0)


class PaymentOut(BaseModel):
    id: str
    payment_ref: str
    invoice_id: str
    client_id: str
    amount: Decimal
    method: str
    collector_id: str | None = None
    collection_type: str | None = None
    received_at: datetime
    deposit_batch_id: str | None = None
    applied_at: datetime | None = None

    model_config = {"from_attributes": True}


# ── Ledger ───────────────────────────────────────────────────

class LedgerEntry(BaseModel):
    client_id: str
    status: Literal["paid_full", "partial", "not_home"]
    amount: Decimal
    payment_ids: list[str]


class LedgerOut(BaseModel):
    collector_id: str
    work_date: date
    entries: list[LedgerEntry]
    total_collected: Decimal
    paid_full_count: int
    partial_count: int
    not_home_count: int
    assignment_counts: dict[str, int]


class CollectOut(BaseModel):
    payment: PaymentOut
    ledger: LedgerOut
