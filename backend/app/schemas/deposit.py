"""Pydantic schemas for deposit batches."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel


class DepositOut(BaseModel):
    id: str
    deposit_ref: str
    collector_id: str
    work_date: date
    amount: Decimal
    client_ids: list[str]
    payment_ids: list[str]
    proof_url: str
    proof_content_type: str
    proof_size: int
    proof_filename: str | None = None
    submitted_at: datetime
    confirmed: bool
    confirmed_at: datetime | None = None
    confirmed_by: str | None = None

    model_config = {"from_attributes": True}


class DepositHistoryDay(BaseModel):
    """Collector deposit history, grouped by work date."""
    work_date: date
    deposit_count: int
    total_amount: Decimal
    confirmed_amount: Decimal
    deposits: list[DepositOut]


class DepositSummary(BaseModel):
    work_date: date | None = None
    pending_count: int
    pending_amount: Decimal
    confirmed_count: int
    confirmed_amount: Decimal
    total_count: int
    total_amount: Decimal
