"""DepositAggregator — turns a day's ledger into one deposit submission.

build_deposit() validates everything locally (amount, proof) before any
I/O and freezes the result into a DepositDraft.  submit() sends the
draft through a DepositGateway exactly once; the ledger releases the
deposited clients only after the gateway confirms.

The server builds a fresh aggregator for every request, so its lock and
submitted keys only guard one request.  Duplicate protection across
requests lives in the database: the unique `idempotency_key` replays an
existing batch, the payment rows are locked `with_for_update` while a
batch is created, and an already deposited ledger comes back empty and
fails with EMPTY_DEPOSIT.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from app.collection.errors import (
    DuplicateSubmissionError,
    EmptyDepositError,
    InvalidAttachmentError,
    LedgerMismatchError,
    MissingProofError,
    SubmissionInProgressError,
    TransientError,
)
from app.collection.ledger import CollectionLedger
from app.collection.money import sum_money
from app.collection.result import Result
from app.collection.transaction import LocalTransaction
from app.config import settings
from app.middleware.exceptions import FieldCashException

logger = logging.getLogger(__name__)


# ── Data structures ────────────────────────────────────────────


@dataclass(frozen=True)
class ProofAttachment:
    """Uploaded proof of deposit (bank slip photo or PDF)."""
    filename: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class DepositDraft:
    collector_id: str
    work_date: date
    amount: Decimal
    client_ids: tuple[str, ...]
    payment_ids: tuple[str, ...]
    proof: ProofAttachment
    idempotency_key: str
    ledger: CollectionLedger | None = field(default=None, compare=False, repr=False)


class DepositGateway(Protocol):
    async def create_deposit(self, draft: DepositDraft) -> Any:
        ...


def deposit_idempotency_key(collector_id: str, payment_ids) -> str:
    """SHA-256 over the collector and the exact set of payments."""
    material = collector_id + ":" + ",".join(sorted(payment_ids))
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def validate_attachment(
    proof: ProofAttachment | None,
    max_bytes: int,
    allowed_types: frozenset[str],
) -> ProofAttachment:
    if proof is None:
        raise MissingProofError()
    content_type = (proof.content_type or "").split(";")[0].strip().lower()
    if content_type not in allowed_types:
        raise InvalidAttachmentError(
            f"Unsupported proof type: {proof.content_type}",
            details={"allowed": sorted(allowed_types)},
        )
    if proof.size == 0:
        raise InvalidAttachmentError("Proof file is empty")
    if proof.size > max_bytes:
        raise InvalidAttachmentError(
            f"Proof file is {proof.size} bytes, limit is {max_bytes}",
            details={"size": proof.size, "max_bytes": max_bytes},
        )
    return proof


# ── Aggregator ─────────────────────────────────────────────────


class DepositAggregator:
    def __init__(
        self,
        gateway: DepositGateway,
        *,
        max_proof_bytes: int | None = None,
        allowed_types: frozenset[str] | None = None,
    ):
        self._gateway = gateway
        self._max_proof_bytes = max_proof_bytes or settings.deposit_proof_max_bytes
        self._allowed_types = allowed_types or settings.allowed_proof_types
        self._lock = asyncio.Lock()
        self._submitted_keys: set[str] = set()

    def build_deposit(
        self,
        ledger: CollectionLedger,
        proof: ProofAttachment | None,
    ) -> DepositDraft:
        total = ledger.total_collected()
        if total <= 0:
            raise EmptyDepositError()
        validate_attachment(proof, self._max_proof_bytes, self._allowed_types)

        payments = ledger.deposit_payments()
        paid = sum_money(p.amount for p in payments)
        if paid != total:
            raise LedgerMismatchError(
                f"Ledger total {total} does not match payments {paid}",
                details={"total": str(total), "payments": str(paid)},
            )

        payment_ids = tuple(p.id for p in payments)
        return DepositDraft(
            collector_id=ledger.collector_id,
            work_date=ledger.work_date,
            amount=total,
            client_ids=tuple(ledger.client_ids()),
            payment_ids=payment_ids,
            proof=proof,
            idempotency_key=deposit_idempotency_key(ledger.collector_id, payment_ids),
            ledger=ledger,
        )

    async def submit(self, draft: DepositDraft) -> Result:
        """Send `draft` once.

        Errors come back in the Result and leave the ledger untouched.
        Cancellation also leaves it untouched and propagates.
        """
        if draft.idempotency_key in self._submitted_keys:
            return Result.failure(DuplicateSubmissionError())
        if self._lock.locked():
            return Result.failure(SubmissionInProgressError())

        async with self._lock:
            tx = LocalTransaction(f"deposit:{draft.idempotency_key[:12]}")
            try:
                async with tx:
                    batch = await self._gateway.create_deposit(draft)
            except FieldCashException as exc:
                logger.warning(
                    f"Deposit submission failed: {exc.error_code}",
                    extra={"collector_id": draft.collector_id, "amount": str(draft.amount)},
                )
                return Result.failure(exc)
            except (OSError, asyncio.TimeoutError, SQLAlchemyError) as exc:
                logger.warning(f"Deposit submission transient failure: {exc!r}")
                return Result.failure(TransientError())

            self._submitted_keys.add(draft.idempotency_key)
            if draft.ledger is not None:
                draft.ledger.release(draft.client_ids)
            logger.info(
                f"Deposit submitted: {len(draft.payment_ids)} payments, {draft.amount}",
                extra={"collector_id": draft.collector_id},
            )
            return Result.success(batch)
