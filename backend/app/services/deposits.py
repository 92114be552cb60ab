"""Deposit submission — persists a DepositDraft as a DepositBatch.

SqlDepositGateway is the DepositGateway the aggregator talks to on the
server.  Everything it writes happens inside one savepoint:

  1. replay: a batch with the same idempotency key is returned as-is
  2. verify the draft's payments (owner, not yet deposited, amount)
  3. store the proof, create the batch (DEP-YYYYMMDD-NNN); the stored
     file is deleted again if anything after this step fails
  4. link payments with UPDATE … WHERE deposit_batch_id IS NULL
     (a concurrent deposit of the same payment shows up as rowcount)
  5. move the matching visit_success assignments to deposited
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.collection.assignment import Actor, AssignmentStateMachine, WorkflowStatus
from app.collection.deposit import DepositAggregator, DepositDraft, ProofAttachment
from app.collection.errors import (
    DoubleDepositError,
    DuplicateSubmissionError,
    LedgerMismatchError,
    TransientError,
)
from app.collection.money import sum_money, to_money
from app.collection.result import Result
from app.collection.transaction import LocalTransaction
from app.models.public.user import User
from app.models.tenant.collector_assignment import CollectorAssignment
from app.models.tenant.deposit_batch import DepositBatch
from app.models.tenant.payment import Payment
from app.schemas.deposit import DepositSummary
from app.services.collection import load_ledger
from app.services.storage import ProofStorage
from app.utils.activity import log_activity
from app.utils.cache import cached, invalidate_cache
from app.utils.locks import get_payment_locks
from app.utils.numbering import generate_code

logger = logging.getLogger(__name__)


class SqlDepositGateway:
    def __init__(
        self,
        db: AsyncSession,
        user: User,
        storage: ProofStorage,
        machine: AssignmentStateMachine | None = None,
    ):
        self.db = db
        self.user = user
        self.storage = storage
        self.machine = machine or AssignmentStateMachine()

    async def _existing(self, idempotency_key: str) -> DepositBatch | None:
        result = await self.db.execute(
            select(DepositBatch).where(DepositBatch.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def create_deposit(self, draft: DepositDraft) -> DepositBatch:
        existing = await self._existing(draft.idempotency_key)
        if existing is not None:
            logger.info(f"Replaying deposit {existing.deposit_ref} for repeated submission")
            return existing

        tx = LocalTransaction(f"deposit-proof:{draft.idempotency_key[:12]}")
        try:
            async with tx:
                async with self.db.begin_nested():
                    batch = await self._create(draft, tx)
        except IntegrityError:
            # Lost a race on idempotency_key: the winner's batch is the answer
            existing = await self._existing(draft.idempotency_key)
            if existing is not None:
                return existing
            raise
        except OperationalError as exc:
            logger.error(f"Database error while creating deposit: {exc}")
            raise TransientError() from exc
        return batch

    async def _create(self, draft: DepositDraft, tx: LocalTransaction) -> DepositBatch:
        db = self.db
        payment_ids = list(draft.payment_ids)

        result = await db.execute(
            select(Payment).where(Payment.id.in_(payment_ids)).with_for_update()
        )
        payments = result.scalars().all()
        if len(payments) != len(payment_ids):
            raise LedgerMismatchError(
                "Deposit references unknown payments",
                details={"expected": len(payment_ids), "found": len(payments)},
            )

        for payment in payments:
            if payment.collector_id != draft.collector_id:
                raise LedgerMismatchError(
                    f"Payment {payment.payment_ref} was collected by someone else",
                    details={"payment_id": payment.id},
                )
            if payment.deposit_batch_id is not None:
                lock = (await get_payment_locks(db, payment)).locked_fields["deposit_batch_id"]
                raise DoubleDepositError(
                    f"Payment {payment.payment_ref} is already in deposit {lock.blocker_ref}",
                    details={"payment_id": payment.id, "deposit_ref": lock.blocker_ref},
                )

        paid = sum_money(p.amount for p in payments)
        if paid != to_money(draft.amount):
            raise LedgerMismatchError(
                f"Deposit amount {draft.amount} does not match payments {paid}",
                details={"amount": str(draft.amount), "payments": str(paid)},
            )

        now = datetime.utcnow()
        proof_url = await self.storage.save(draft.collector_id, draft.proof)
        tx.on_rollback(lambda: self.storage.delete(proof_url))
        batch = DepositBatch(
            deposit_ref=await generate_code(db, "deposit", on=draft.work_date),
            collector_id=draft.collector_id,
            work_date=draft.work_date,
            amount=paid,
            client_ids=list(draft.client_ids),
            payment_ids=payment_ids,
            proof_url=proof_url,
            proof_content_type=draft.proof.content_type,
            proof_size=draft.proof.size,
            proof_filename=draft.proof.filename,
            idempotency_key=draft.idempotency_key,
            submitted_at=now,
            confirmed=False,
        )
        db.add(batch)
        await db.flush()

        linked = await db.execute(
            update(Payment)
            .where(Payment.id.in_(payment_ids), Payment.deposit_batch_id.is_(None))
            .values(deposit_batch_id=batch.id)
            .execution_options(synchronize_session="evaluate")
        )
        if linked.rowcount != len(payment_ids):
            raise DoubleDepositError(
                "Some payments were deposited concurrently",
                details={"expected": len(payment_ids), "linked": linked.rowcount},
            )

        invoice_ids = {p.invoice_id for p in payments}
        result = await db.execute(
            select(CollectorAssignment).where(
                CollectorAssignment.collector_id == draft.collector_id,
                CollectorAssignment.invoice_id.in_(invoice_ids),
                CollectorAssignment.workflow_status == WorkflowStatus.VISIT_SUCCESS.value,
            )
        )
        assignments = result.scalars().all()
        for assignment in assignments:
            self.machine.mark_deposited(
                assignment, batch.id, proof_url, now, actor=Actor.DEPOSIT
            )

        await log_activity(
            db, self.user,
            action="deposit_submitted",
            entity_type="deposit",
            entity_id=batch.id,
            entity_code=batch.deposit_ref,
            summary=(
                f"Deposited {paid:,.2f} for {len(draft.client_ids)} clients "
                f"({len(payment_ids)} payments)"
            ),
            details={"work_date": draft.work_date.isoformat(), "assignments": len(assignments)},
        )
        await db.flush()
        return batch


async def submit_collector_deposit(
    db: AsyncSession,
    user: User,
    storage: ProofStorage,
    *,
    work_date: date,
    proof: ProofAttachment | None,
) -> Result:
    """Build the collector's deposit for `work_date` and submit it once."""
    ledger = await load_ledger(db, user.id, work_date)
    aggregator = DepositAggregator(SqlDepositGateway(db, user, storage))
    draft = aggregator.build_deposit(ledger, proof)

    result = await aggregator.submit(draft)
    if result.ok:
        await invalidate_cache("deposits:*")
    elif isinstance(result.error, DuplicateSubmissionError):
        logger.warning(f"Duplicate deposit submission by {user.id}")
    return result


@cached(ttl=60, prefix="deposits")
async def deposit_summary(db: AsyncSession, work_date: date | None = None) -> DepositSummary:
    """Totals for the finance dashboard, optionally for one work date."""
    stmt = select(
        DepositBatch.confirmed,
        func.count(DepositBatch.id),
        func.coalesce(func.sum(DepositBatch.amount), 0),
    ).group_by(DepositBatch.confirmed)
    if work_date is not None:
        stmt = stmt.where(DepositBatch.work_date == work_date)

    result = await db.execute(stmt)
    pending_count = confirmed_count = 0
    pending_amount = confirmed_amount = to_money(0)
    for confirmed, count, amount in result.all():
        if confirmed:
            confirmed_count, confirmed_amount = count, to_money(amount)
        else:
            pending_count, pending_amount = count, to_money(amount)

    return DepositSummary(
        work_date=work_date,
        pending_count=pending_count,
        pending_amount=pending_amount,
        confirmed_count=confirmed_count,
        confirmed_amount=confirmed_amount,
        total_count=pending_count + confirmed_count,
        total_amount=pending_amount + confirmed_amount,
    )
