"""Integrity audit API shapes: alerts, the deposits and invoices they
point at, audit runs and the finance overview."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

AlertStatus = Literal["open", "acknowledged", "resolved", "dismissed"]


class AlertOut(BaseModel):
    id: str
    alert_type: str
    severity: str
    title: str
    description: str
    expected_value: Decimal | None
    actual_value: Decimal | None
    variance: Decimal | None
    variance_pct: float | None
    unit: str | None
    collector_id: str | None
    deposit_batch_id: str | None
    invoice_id: str | None
    period_start: datetime | None
    period_end: datetime | None
    status: AlertStatus
    resolved_at: datetime | None
    resolved_by: str | None
    resolution_note: str | None
    run_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AlertDeposit(BaseModel):
    id: str
    deposit_ref: str
    collector_id: str
    work_date: date
    amount: Decimal
    confirmed: bool
    submitted_at: datetime

    model_config = {"from_attributes": True}


class AlertInvoice(BaseModel):
    id: str
    invoice_number: str
    client_id: str
    total_amount: Decimal
    paid_amount: Decimal
    status: str

    model_config = {"from_attributes": True}


class AlertDetail(AlertOut):
    """An alert together with the deposit and invoice it concerns."""
    deposit: AlertDeposit | None = None
    invoice: AlertInvoice | None = None


class AlertUpdate(BaseModel):
    status: Literal["acknowledged", "resolved", "dismissed"]
    resolution_note: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def dismissal_needs_reason(self) -> "AlertUpdate":
        # A dismissed money mismatch is never looked at again
        if self.status == "dismissed" and not (self.resolution_note or "").strip():
            raise ValueError("Dismissing an alert needs a resolution_note")
        return self


class RunSummary(BaseModel):
    run_id: str
    ran_at: datetime
    total_alerts: int
    by_type: dict[str, int]
    by_severity: dict[str, int]


class ReconciliationOverview(BaseModel):
    """What finance looks at first: open problems and the cash behind them."""
    open_alerts: int
    acknowledged_alerts: int
    resolved_last_30_days: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
    # Undeposited collector cash flagged as stale by open alerts
    cash_held_by_collectors: Decimal
    collectors_with_open_alerts: int
    unconfirmed_deposits: int
    unconfirmed_amount: Decimal
    latest_run_id: str | None
    latest_run_at: datetime | None
    alerts: list[AlertOut]
