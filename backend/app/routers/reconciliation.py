"""Reconciliation router — the finance side of the cash integrity audit.

Endpoints:
    GET   /                    Overview: open alerts, stale collector cash,
                               deposits waiting for confirmation
    POST  /run                 Run the integrity audit now
    GET   /alerts              Alerts, filterable by type, severity, status,
                               collector, deposit batch and invoice
    GET   /alerts/{alert_id}   One alert with the deposit / invoice it concerns
    PATCH /alerts/{alert_id}   Acknowledge, resolve or dismiss an alert

Reading needs reconciliation.read; running the audit and working
alerts need reconciliation.write.
"""

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_permission
from app.collection.money import to_money
from app.database import get_tenant_db
from app.middleware.exceptions import IntegrityViolationError, ResourceNotFoundError
from app.models.public.user import User
from app.models.tenant.deposit_batch import DepositBatch
from app.models.tenant.invoice import Invoice
from app.models.tenant.reconciliation_alert import ReconciliationAlert
from app.schemas.reconciliation import (
    AlertDeposit,
    AlertDetail,
    AlertInvoice,
    AlertOut,
    AlertStatus,
    AlertUpdate,
    ReconciliationOverview,
    RunSummary,
)
from app.services.reconciliation import run_full_reconciliation
from app.utils.activity import log_activity

router = APIRouter()

ACTIVE_STATUSES = ("open", "acknowledged")
ALERT_TRANSITIONS = {
    "open": {"acknowledged", "resolved", "dismissed"},
    "acknowledged": {"resolved", "dismissed"},
}
SEVERITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}
OVERVIEW_ALERTS = 50

_live = ReconciliationAlert.is_deleted == False  # noqa: E712


async def _get_alert(db: AsyncSession, alert_id: str) -> ReconciliationAlert:
    result = await db.execute(
        select(ReconciliationAlert).where(ReconciliationAlert.id == alert_id, _live)
    )
    alert = result.scalar_one_or_none()
    if alert is None:
        raise ResourceNotFoundError("Alert", alert_id)
    return alert


async def _active_counts(db: AsyncSession, column) -> dict[str, int]:
    result = await db.execute(
        select(column, func.count(ReconciliationAlert.id))
        .where(_live, ReconciliationAlert.status.in_(ACTIVE_STATUSES))
        .group_by(column)
    )
    return dict(result.all())


# ── Overview ─────────────────────────────────────────────────

@router.get("/", response_model=ReconciliationOverview)
async def get_overview(
    db: AsyncSession = Depends(get_tenant_db),
    _user: User = Depends(require_permission("reconciliation.read")),
):
    result = await db.execute(
        select(ReconciliationAlert.status, func.count(ReconciliationAlert.id))
        .where(_live)
        .group_by(ReconciliationAlert.status)
    )
    by_status = dict(result.all())

    result = await db.execute(
        select(func.count(ReconciliationAlert.id)).where(
            _live,
            ReconciliationAlert.status == "resolved",
            ReconciliationAlert.resolved_at >= datetime.utcnow() - timedelta(days=30),
        )
    )
    resolved_recently = result.scalar() or 0

    # Cash the audit saw sitting with collectors, one open alert per collector
    result = await db.execute(
        select(func.coalesce(func.sum(ReconciliationAlert.actual_value), 0)).where(
            _live,
            ReconciliationAlert.alert_type == "stale_collection",
            ReconciliationAlert.status.in_(ACTIVE_STATUSES),
        )
    )
    held_cash = result.scalar()

    result = await db.execute(
        select(func.count(func.distinct(ReconciliationAlert.collector_id))).where(
            _live,
            ReconciliationAlert.status.in_(ACTIVE_STATUSES),
            ReconciliationAlert.collector_id.is_not(None),
        )
    )
    collectors_flagged = result.scalar() or 0

    result = await db.execute(
        select(
            func.count(DepositBatch.id),
            func.coalesce(func.sum(DepositBatch.amount), 0),
        ).where(DepositBatch.confirmed == False)  # noqa: E712
    )
    unconfirmed_count, unconfirmed_amount = result.one()

    result = await db.execute(
        select(ReconciliationAlert.run_id, ReconciliationAlert.created_at)
        .where(_live, ReconciliationAlert.run_id.is_not(None))
        .order_by(ReconciliationAlert.created_at.desc())
        .limit(1)
    )
    latest = result.first()

    result = await db.execute(
        select(ReconciliationAlert)
        .where(_live, ReconciliationAlert.status.in_(ACTIVE_STATUSES))
        .order_by(ReconciliationAlert.created_at.desc())
    )
    active = sorted(
        result.scalars().all(),
        key=lambda a: SEVERITY_RANK.get(a.severity, len(SEVERITY_RANK)),
    )

    return ReconciliationOverview(
        open_alerts=by_status.get("open", 0),
        acknowledged_alerts=by_status.get("acknowledged", 0),
        resolved_last_30_days=resolved_recently,
        by_type=await _active_counts(db, ReconciliationAlert.alert_type),
        by_severity=await _active_counts(db, ReconciliationAlert.severity),
        cash_held_by_collectors=to_money(held_cash),
        collectors_with_open_alerts=collectors_flagged,
        unconfirmed_deposits=unconfirmed_count,
        unconfirmed_amount=to_money(unconfirmed_amount),
        latest_run_id=latest.run_id if latest else None,
        latest_run_at=latest.created_at if latest else None,
        alerts=[AlertOut.model_validate(a) for a in active[:OVERVIEW_ALERTS]],
    )


# ── Audit run ────────────────────────────────────────────────

@router.post("/run", response_model=RunSummary, status_code=status.HTTP_201_CREATED)
async def run_audit(
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("reconciliation.write")),
):
    """Run every integrity check now.  Open alerts that are no longer
    detected are resolved automatically."""
    summary = await run_full_reconciliation(db)
    await log_activity(
        db, user,
        action="audit_run",
        entity_type="reconciliation",
        entity_id=summary["run_id"],
        summary=f"Integrity audit raised {summary['total_alerts']} alerts",
        details=summary["by_severity"],
    )
    return RunSummary(**summary)


# ── Alerts ───────────────────────────────────────────────────

@router.get("/alerts", response_model=list[AlertOut])
async def list_alerts(
    alert_type: str | None = Query(None),
    severity: str | None = Query(None),
    alert_status: AlertStatus | None = Query(None, alias="status"),
    collector_id: str | None = Query(None, description="Alerts about this collector"),
    deposit_batch_id: str | None = Query(None, description="Alerts about this deposit"),
    invoice_id: str | None = Query(None, description="Alerts about this invoice"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_tenant_db),
    _user: User = Depends(require_permission("reconciliation.read")),
):
    filters = [_live]
    for column, value in (
        (ReconciliationAlert.alert_type, alert_type),
        (ReconciliationAlert.severity, severity),
        (ReconciliationAlert.status, alert_status),
        (ReconciliationAlert.collector_id, collector_id),
        (ReconciliationAlert.deposit_batch_id, deposit_batch_id),
        (ReconciliationAlert.invoice_id, invoice_id),
    ):
        if value:
            filters.append(column == value)

    result = await db.execute(
        select(ReconciliationAlert)
        .where(*filters)
        .order_by(ReconciliationAlert.created_at.desc(), ReconciliationAlert.id)
        .limit(limit)
        .offset(offset)
    )
    return result.scalars().all()


@router.get("/alerts/{alert_id}", response_model=AlertDetail)
async def get_alert(
    alert_id: str,
    db: AsyncSession = Depends(get_tenant_db),
    _user: User = Depends(require_permission("reconciliation.read")),
):
    alert = await _get_alert(db, alert_id)
    detail = AlertDetail.model_validate(alert)
    if alert.deposit_batch_id:
        batch = await db.get(DepositBatch, alert.deposit_batch_id)
        if batch is not None:
            detail.deposit = AlertDeposit.model_validate(batch)
    if alert.invoice_id:
        invoice = await db.get(Invoice, alert.invoice_id)
        if invoice is not None:
            detail.invoice = AlertInvoice.model_validate(invoice)
    return detail


@router.patch("/alerts/{alert_id}", response_model=AlertOut)
async def update_alert(
    alert_id: str,
    body: AlertUpdate,
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("reconciliation.write")),
):
    alert = await _get_alert(db, alert_id)
    previous = alert.status
    if previous not in ALERT_TRANSITIONS:
        raise IntegrityViolationError(
            f"Alert is already {previous}",
            error_code="ALERT_CLOSED",
            details={"status": previous},
        )
    if body.status not in ALERT_TRANSITIONS[previous]:
        raise IntegrityViolationError(
            f"Alert is {previous} and cannot become {body.status}",
            error_code="ILLEGAL_TRANSITION",
            details={"from": previous, "to": body.status},
        )

    alert.status = body.status
    if body.resolution_note:
        alert.resolution_note = body.resolution_note
    if body.status != "acknowledged":
        alert.resolved_at = datetime.utcnow()
        alert.resolved_by = user.id

    await log_activity(
        db, user,
        action=f"alert_{body.status}",
        entity_type="reconciliation_alert",
        entity_id=alert.id,
        summary=f"{alert.title}: {previous} → {body.status}",
        details={
            "deposit_batch_id": alert.deposit_batch_id,
            "invoice_id": alert.invoice_id,
            "collector_id": alert.collector_id,
        },
    )
    await db.flush()
    return alert
