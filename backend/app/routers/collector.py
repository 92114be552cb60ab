"""Collector app — assignments, visits, cash collection, deposits.

Endpoints:
    GET  /assignments                       My assignments (finance: any collector)
    POST /assignments                       Assign an invoice to a collector
    GET  /assignments/{id}                  Assignment detail with amount due
    POST /assignments/{id}/visit-success    Record a successful visit
    POST /assignments/{id}/visit-failed     Record a failed visit (not_home, …)
    POST /assignments/{id}/payments         Collect a full or partial payment
    GET  /ledger                            Today's (or work_date's) ledger
    POST /deposits                          Deposit the day's cash with proof
    GET  /deposits                          Deposit history grouped by day
"""

from collections import defaultdict
from datetime import date, datetime

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_permission, user_can
from app.collection.assignment import NOT_HOME, AssignmentStateMachine
from app.collection.deposit import ProofAttachment
from app.collection.ledger import CollectionLedger
from app.collection.money import sum_money
from app.collection.pricing import compute_due
from app.config import settings
from app.database import get_db, get_tenant_db
from app.middleware.exceptions import BusinessLogicError, ResourceNotFoundError
from app.models.public.user import User, UserRole
from app.models.tenant.client import Client
from app.models.tenant.collector_assignment import CollectorAssignment
from app.models.tenant.deposit_batch import DepositBatch
from app.models.tenant.invoice import Invoice
from app.models.tenant.service_package import ServicePackage
from app.schemas.collector import (
    AssignmentCreate,
    AssignmentDetail,
    AssignmentOut,
    CollectOut,
    CollectPayment,
    LedgerEntry,
    LedgerOut,
    PaymentOut,
    VisitFailed,
    VisitSuccess,
)
from app.schemas.common import PaginatedResponse
from app.schemas.deposit import DepositHistoryDay, DepositOut
from app.services.collection import (
    assign_invoice,
    assignment_counts,
    collect_payment,
    get_assignment_for,
    load_ledger,
)
from app.services.deposits import submit_collector_deposit
from app.services.storage import ProofStorage, get_proof_storage
from app.utils.activity import log_activity

router = APIRouter()


# ── Helpers ──────────────────────────────────────────────────

def _can_see_all(user: User) -> bool:
    return user_can(user, "assignment.write")


def _ledger_out(ledger: CollectionLedger, counts: dict[str, int]) -> LedgerOut:
    entries = []
    for cid in sorted(ledger.paid_full_clients):
        entries.append(LedgerEntry(
            client_id=cid, status="paid_full", amount=ledger.amount_for(cid),
            payment_ids=[p.id for p in ledger.payments_for(cid)],
        ))
    for cid in sorted(ledger.partial_payments):
        entries.append(LedgerEntry(
            client_id=cid, status="partial", amount=ledger.amount_for(cid),
            payment_ids=[p.id for p in ledger.payments_for(cid)],
        ))
    for cid in sorted(ledger.not_home_clients):
        entries.append(LedgerEntry(
            client_id=cid, status="not_home", amount=0, payment_ids=[],
        ))

    return LedgerOut(
        collector_id=ledger.collector_id,
        work_date=ledger.work_date,
        entries=entries,
        total_collected=ledger.total_collected(),
        paid_full_count=len(ledger.paid_full_clients),
        partial_count=len(ledger.partial_payments),
        not_home_count=len(ledger.not_home_clients),
        assignment_counts=counts,
    )


# ── Assignments ──────────────────────────────────────────────

@router.get("/assignments", response_model=PaginatedResponse[AssignmentOut])
async def list_assignments(
    workflow_status: str | None = Query(None, alias="status"),
    collector_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("assignment.read")),
):
    """Collectors only ever see their own assignments."""
    if not _can_see_all(user):
        collector_id = user.id

    stmt = select(CollectorAssignment)
    count_stmt = select(func.count(CollectorAssignment.id))
    if collector_id:
        stmt = stmt.where(CollectorAssignment.collector_id == collector_id)
        count_stmt = count_stmt.where(CollectorAssignment.collector_id == collector_id)
    if workflow_status:
        stmt = stmt.where(CollectorAssignment.workflow_status == workflow_status)
        count_stmt = count_stmt.where(CollectorAssignment.workflow_status == workflow_status)

    total = (await db.execute(count_stmt)).scalar() or 0
    result = await db.execute(
        stmt.order_by(CollectorAssignment.assigned_at.desc()).limit(limit).offset(offset)
    )
    return PaginatedResponse(
        items=[AssignmentOut.model_validate(a) for a in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/assignments", response_model=AssignmentOut, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    body: AssignmentCreate,
    db: AsyncSession = Depends(get_tenant_db),
    public_db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("assignment.write")),
):
    collector = await public_db.get(User, body.collector_id)
    if collector is None or collector.tenant_id != user.tenant_id:
        raise ResourceNotFoundError("Collector", body.collector_id)
    if collector.role != UserRole.COLLECTOR or not collector.is_active:
        raise BusinessLogicError(
            f"{collector.full_name} is not an active collector",
            error_code="NOT_A_COLLECTOR",
        )

    assignment = await assign_invoice(
        db, user, invoice_id=body.invoice_id, collector_id=collector.id
    )
    return assignment


@router.get("/assignments/{assignment_id}", response_model=AssignmentDetail)
async def get_assignment(
    assignment_id: str,
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("assignment.read")),
):
    assignment = await get_assignment_for(
        db, assignment_id, user, own_only=not _can_see_all(user)
    )
    client = await db.get(Client, assignment.client_id)
    invoice = await db.get(Invoice, assignment.invoice_id)
    package = (
        await db.get(ServicePackage, client.service_package_id)
        if client.service_package_id else None
    )

    return AssignmentDetail(
        **AssignmentOut.model_validate(assignment).model_dump(),
        client_name=client.name,
        client_address=client.address,
        invoice_number=invoice.invoice_number,
        invoice_total=invoice.total_amount,
        invoice_paid=invoice.paid_amount,
        amount_due=compute_due(client, package),
        locked_fields=AssignmentStateMachine.locked_fields(assignment).locked_field_names(),
    )


# ── Visits ───────────────────────────────────────────────────

@router.post("/assignments/{assignment_id}/visit-success", response_model=AssignmentOut)
async def visit_success(
    assignment_id: str,
    body: VisitSuccess,
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("collection.write")),
):
    assignment = await get_assignment_for(db, assignment_id, user)
    AssignmentStateMachine().mark_visit_success(assignment, body.notes, body.photo_url)

    await log_activity(
        db, user,
        action="visit_success",
        entity_type="assignment",
        entity_id=assignment.id,
        summary="Visited client successfully",
    )
    await db.flush()
    return assignment


@router.post("/assignments/{assignment_id}/visit-failed", response_model=AssignmentOut)
async def visit_failed(
    assignment_id: str,
    body: VisitFailed,
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("collection.write")),
):
    assignment = await get_assignment_for(db, assignment_id, user)
    AssignmentStateMachine().mark_visit_failed(assignment, body.reason, body.notes)

    await log_activity(
        db, user,
        action="visit_failed",
        entity_type="assignment",
        entity_id=assignment.id,
        summary=(
            "Client not home" if body.reason == NOT_HOME
            else f"Visit failed: {body.reason}"
        ),
    )
    await db.flush()
    return assignment


# ── Collecting money ─────────────────────────────────────────

@router.post(
    "/assignments/{assignment_id}/payments",
    response_model=CollectOut,
    status_code=status.HTTP_201_CREATED,
)
async def collect(
    assignment_id: str,
    body: CollectPayment,
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("collection.write")),
):
    assignment = await get_assignment_for(db, assignment_id, user)
    payment, ledger = await collect_payment(
        db, user, assignment, body.collection_type, body.amount
    )
    return CollectOut(
        payment=PaymentOut.model_validate(payment),
        ledger=_ledger_out(ledger, await assignment_counts(db, user.id)),
    )


@router.get("/ledger", response_model=LedgerOut)
async def get_ledger(
    work_date: date | None = Query(None),
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("collection.write")),
):
    ledger = await load_ledger(db, user.id, work_date or datetime.utcnow().date())
    return _ledger_out(ledger, await assignment_counts(db, user.id))


# ── Deposits ─────────────────────────────────────────────────

@router.post("/deposits", response_model=DepositOut, status_code=status.HTTP_201_CREATED)
async def submit_deposit(
    proof: UploadFile | None = File(None),
    work_date: date | None = Form(None),
    db: AsyncSession = Depends(get_tenant_db),
    storage: ProofStorage = Depends(get_proof_storage),
    user: User = Depends(require_permission("deposit.submit")),
):
    """Deposit everything collected on `work_date` (default today).

    The proof is read up to one byte past the limit, which is enough to
    reject oversize files without buffering them whole.
    """
    attachment = None
    if proof is not None:
        data = await proof.read(settings.deposit_proof_max_bytes + 1)
        attachment = ProofAttachment(
            filename=proof.filename or "proof",
            content_type=proof.content_type or "application/octet-stream",
            data=data,
        )

    result = await submit_collector_deposit(
        db, user, storage,
        work_date=work_date or datetime.utcnow().date(),
        proof=attachment,
    )
    return result.unwrap()


@router.get("/deposits", response_model=list[DepositHistoryDay])
async def deposit_history(
    limit: int = Query(30, ge=1, le=100),
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("deposit.read")),
):
    """The collector's own deposits, newest work date first."""
    result = await db.execute(
        select(DepositBatch)
        .where(DepositBatch.collector_id == user.id)
        .order_by(DepositBatch.work_date.desc(), DepositBatch.submitted_at.desc())
    )
    by_day: dict[date, list[DepositBatch]] = defaultdict(list)
    for batch in result.scalars().all():
        by_day[batch.work_date].append(batch)

    days = []
    for work_date in sorted(by_day, reverse=True)[:limit]:
        batches = by_day[work_date]
        days.append(DepositHistoryDay(
            work_date=work_date,
            deposit_count=len(batches),
            total_amount=sum_money(b.amount for b in batches),
            confirmed_amount=sum_money(b.amount for b in batches if b.confirmed),
            deposits=[DepositOut.model_validate(b) for b in batches],
        ))
    return days
