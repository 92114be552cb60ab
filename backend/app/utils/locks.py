"""Downstream locking — prevent edits to fields referenced downstream.

Each check function returns a LockInfo describing which fields are locked
and why, without raising exceptions.  The caller decides whether to
block the write based on which fields are being updated.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tenant.deposit_batch import DepositBatch


# ── Data structures ────────────────────────────────────────────


@dataclass
class FieldLock:
    """A single locked field with reason and unlock instructions."""
    field: str
    reason: str
    blocker_type: str   # "workflow", "deposit", "invoice"
    blocker_ref: str    # human-readable reference (e.g. "DEP-20260301-014")
    unlock_hint: str


@dataclass
class LockInfo:
    """Lock state for an entity.  Empty locked_fields means nothing locked."""
    locked_fields: dict[str, FieldLock] = field(default_factory=dict)

    @property
    def is_locked(self) -> bool:
        return len(self.locked_fields) > 0

    def check_update(self, updating_fields: set[str]) -> FieldLock | None:
        """Return the first FieldLock that conflicts, or None."""
        for f in sorted(updating_fields):
            if f in self.locked_fields:
                return self.locked_fields[f]
        return None

    def locked_field_names(self) -> list[str]:
        return list(self.locked_fields.keys())


def _add_locks(
    info: LockInfo,
    field_names: list[str] | tuple[str, ...],
    reason: str,
    blocker_type: str,
    blocker_ref: str,
    unlock_hint: str,
) -> None:
    for name in field_names:
        info.locked_fields[name] = FieldLock(
            field=name,
            reason=f"Cannot edit {name}: {reason}",
            blocker_type=blocker_type,
            blocker_ref=blocker_ref,
            unlock_hint=unlock_hint,
        )


# ── Assignment locks (written by workflow transitions) ─────────


# status → fields that transition wrote
ASSIGNMENT_TRANSITION_FIELDS: dict[str, tuple[str, ...]] = {
    "visit_success": ("visit_notes", "visit_photo_url", "visited_at"),
    "visit_failed": ("visit_notes", "failure_reason", "visited_at"),
    "deposited": ("deposit_batch_id", "deposit_proof_url", "deposit_submitted_at"),
    "confirmed": ("confirmed_at",),
}

# status → statuses passed through to reach it (inclusive)
_ASSIGNMENT_PATH: dict[str, tuple[str, ...]] = {
    "assigned": (),
    "visit_success": ("visit_success",),
    "visit_failed": ("visit_failed",),
    "deposited": ("visit_success", "deposited"),
    "confirmed": ("visit_success", "deposited", "confirmed"),
}


def get_assignment_locks(assignment) -> LockInfo:
    """Fields already written by the transitions this assignment went through."""
    info = LockInfo()
    status = str(getattr(assignment.workflow_status, "value", assignment.workflow_status))
    for step in _ASSIGNMENT_PATH.get(status, ()):
        _add_locks(
            info,
            ASSIGNMENT_TRANSITION_FIELDS[step],
            reason=f"recorded by the {step} step",
            blocker_type="workflow",
            blocker_ref=step,
            unlock_hint="Workflow fields are write-once.",
        )
    return info


# ── Payment locks (downstream: DepositBatch, Invoice) ──────────


PAYMENT_AMOUNT_FIELDS = ["amount", "invoice_id", "client_id"]


async def get_payment_locks(db: AsyncSession, payment) -> LockInfo:
    """Check if a payment is already in a deposit or applied to its invoice."""
    info = LockInfo()

    if payment.deposit_batch_id:
        result = await db.execute(
            select(DepositBatch.deposit_ref).where(
                DepositBatch.id == payment.deposit_batch_id
            )
        )
        deposit_ref = result.scalar() or "unknown"
        _add_locks(
            info,
            PAYMENT_AMOUNT_FIELDS + ["deposit_batch_id"],
            reason=f"included in deposit {deposit_ref}",
            blocker_type="deposit",
            blocker_ref=deposit_ref,
            unlock_hint="Deposited payments cannot be changed.",
        )

    if payment.applied_at is not None:
        _add_locks(
            info,
            PAYMENT_AMOUNT_FIELDS + ["applied_at"],
            reason=f"applied to invoice on {payment.applied_at:%Y-%m-%d}",
            blocker_type="invoice",
            blocker_ref=payment.invoice_id,
            unlock_hint="Applied payments cannot be changed.",
        )

    return info
