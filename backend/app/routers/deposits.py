"""Finance view of collector deposits.

Endpoints:
    GET  /               Paginated deposits (collectors see only their own)
    GET  /summary        Pending vs confirmed totals (cached)
    GET  /{id}           One deposit
    POST /{id}/confirm   Confirm a deposit and settle its payments
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_permission, user_can
from app.database import get_tenant_db
from app.middleware.exceptions import ResourceNotFoundError
from app.models.public.user import User
from app.models.tenant.deposit_batch import DepositBatch
from app.schemas.common import PaginatedResponse
from app.schemas.deposit import DepositOut, DepositSummary
from app.services.deposits import deposit_summary
from app.services.reconciliation import ReconciliationService
from app.utils.cache import invalidate_cache

router = APIRouter()


@router.get("", response_model=PaginatedResponse[DepositOut])
async def list_deposits(
    confirmed: bool | None = Query(None),
    collector_id: str | None = Query(None),
    work_date: date | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("deposit.read")),
):
    if not user_can(user, "deposit.confirm"):
        collector_id = user.id

    filters = []
    if confirmed is not None:
        filters.append(DepositBatch.confirmed == confirmed)
    if collector_id:
        filters.append(DepositBatch.collector_id == collector_id)
    if work_date:
        filters.append(DepositBatch.work_date == work_date)

    total = (await db.execute(
        select(func.count(DepositBatch.id)).where(*filters)
    )).scalar() or 0
    result = await db.execute(
        select(DepositBatch)
        .where(*filters)
        .order_by(DepositBatch.submitted_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return PaginatedResponse(
        items=[DepositOut.model_validate(b) for b in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/summary", response_model=DepositSummary)
async def get_summary(
    work_date: date | None = Query(None),
    db: AsyncSession = Depends(get_tenant_db),
    _user: User = Depends(require_permission("deposit.confirm")),
):
    return await deposit_summary(db, work_date=work_date)


@router.get("/{batch_id}", response_model=DepositOut)
async def get_deposit(
    batch_id: str,
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("deposit.read")),
):
    batch = await db.get(DepositBatch, batch_id)
    if batch is None or (batch.collector_id != user.id and not user_can(user, "deposit.confirm")):
        raise ResourceNotFoundError("Deposit", batch_id)
    return batch


@router.post("/{batch_id}/confirm", response_model=DepositOut)
async def confirm_deposit(
    batch_id: str,
    db: AsyncSession = Depends(get_tenant_db),
    user: User = Depends(require_permission("deposit.confirm")),
):
    """Confirm receipt of a deposit; payments are applied to invoices."""
    result = await ReconciliationService(db).confirm(batch_id, user)
    batch = result.unwrap()
    await invalidate_cache("deposits:*")
    return batch
