"""AssignmentStateMachine — the collector assignment workflow.

    assigned ──collector──▶ visit_success ──deposit──▶ deposited ──finance──▶ confirmed
        └─────collector──▶ visit_failed

visit_failed and confirmed are terminal.  Each transition has exactly
one permitted actor and writes its own fields; those fields are locked
afterwards.  A rejected transition leaves the assignment untouched.
"""

from __future__ import annotations

import enum
from datetime import datetime

from app.collection.errors import (
    FieldLockedError,
    IllegalTransitionError,
    IncompleteVisitError,
)
from app.config import settings
from app.utils.locks import ASSIGNMENT_TRANSITION_FIELDS, LockInfo, get_assignment_locks


class WorkflowStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    VISIT_SUCCESS = "visit_success"
    VISIT_FAILED = "visit_failed"
    DEPOSITED = "deposited"
    CONFIRMED = "confirmed"


class Actor(str, enum.Enum):
    COLLECTOR = "collector"
    DEPOSIT = "deposit"
    FINANCE = "finance"


TRANSITIONS: dict[tuple[WorkflowStatus, WorkflowStatus], Actor] = {
    (WorkflowStatus.ASSIGNED, WorkflowStatus.VISIT_SUCCESS): Actor.COLLECTOR,
    (WorkflowStatus.ASSIGNED, WorkflowStatus.VISIT_FAILED): Actor.COLLECTOR,
    (WorkflowStatus.VISIT_SUCCESS, WorkflowStatus.DEPOSITED): Actor.DEPOSIT,
    (WorkflowStatus.DEPOSITED, WorkflowStatus.CONFIRMED): Actor.FINANCE,
}

TERMINAL = frozenset({WorkflowStatus.VISIT_FAILED, WorkflowStatus.CONFIRMED})

# Reason code the ledger treats as "client not home"
NOT_HOME = "not_home"


class AssignmentStateMachine:
    def __init__(self, require_visit_photo: bool | None = None):
        if require_visit_photo is None:
            require_visit_photo = settings.require_visit_photo
        self.require_visit_photo = require_visit_photo

    @staticmethod
    def can_transition(current, target, actor) -> bool:
        return TRANSITIONS.get((WorkflowStatus(current), WorkflowStatus(target))) == Actor(actor)

    @staticmethod
    def locked_fields(assignment) -> LockInfo:
        return get_assignment_locks(assignment)

    def _transition(self, assignment, target: WorkflowStatus, actor: Actor, values: dict) -> None:
        current = WorkflowStatus(assignment.workflow_status)
        if not self.can_transition(current, target, actor):
            raise IllegalTransitionError(current.value, target.value, Actor(actor).value)

        lock = get_assignment_locks(assignment).check_update(set(values))
        if lock is not None:
            raise FieldLockedError(
                lock.reason, details={"field": lock.field, "hint": lock.unlock_hint}
            )

        for name, value in values.items():
            setattr(assignment, name, value)
        assignment.workflow_status = target.value

    # ── Transitions ──────────────────────────────────────────

    def mark_visit_success(
        self,
        assignment,
        notes: str | None,
        photo_url: str | None = None,
        *,
        visited_at: datetime | None = None,
        actor: Actor = Actor.COLLECTOR,
    ) -> None:
        # Legality first: a wrong-state call is an integrity error, not a form error
        current = WorkflowStatus(assignment.workflow_status)
        if not self.can_transition(current, WorkflowStatus.VISIT_SUCCESS, actor):
            raise IllegalTransitionError(
                current.value, WorkflowStatus.VISIT_SUCCESS.value, Actor(actor).value
            )
        if not notes or not notes.strip():
            raise IncompleteVisitError("Visit notes are required")
        if self.require_visit_photo and not photo_url:
            raise IncompleteVisitError("A visit photo is required")

        self._transition(assignment, WorkflowStatus.VISIT_SUCCESS, actor, {
            "visit_notes": notes.strip(),
            "visit_photo_url": photo_url,
            "visited_at": visited_at or datetime.utcnow(),
        })

    def mark_visit_failed(
        self,
        assignment,
        reason: str | None,
        notes: str | None = None,
        *,
        visited_at: datetime | None = None,
        actor: Actor = Actor.COLLECTOR,
    ) -> None:
        current = WorkflowStatus(assignment.workflow_status)
        if not self.can_transition(current, WorkflowStatus.VISIT_FAILED, actor):
            raise IllegalTransitionError(
                current.value, WorkflowStatus.VISIT_FAILED.value, Actor(actor).value
            )
        if not reason or not reason.strip():
            raise IncompleteVisitError("A failure reason is required")

        self._transition(assignment, WorkflowStatus.VISIT_FAILED, actor, {
            "failure_reason": reason.strip(),
            "visit_notes": notes.strip() if notes else None,
            "visited_at": visited_at or datetime.utcnow(),
        })

    def mark_deposited(
        self,
        assignment,
        batch_id: str,
        proof_url: str,
        submitted_at: datetime,
        *,
        actor: Actor = Actor.DEPOSIT,
    ) -> None:
        self._transition(assignment, WorkflowStatus.DEPOSITED, actor, {
            "deposit_batch_id": batch_id,
            "deposit_proof_url": proof_url,
            "deposit_submitted_at": submitted_at,
        })

    def mark_confirmed(self, assignment, confirmed_at: datetime, actor: Actor) -> None:
        self._transition(assignment, WorkflowStatus.CONFIRMED, actor, {
            "confirmed_at": confirmed_at,
        })

    # ── Edits outside transitions ────────────────────────────

    def amend(self, assignment, **values) -> None:
        """Edit workflow fields that no transition has written yet."""
        writable = {f for fields in ASSIGNMENT_TRANSITION_FIELDS.values() for f in fields}
        unknown = set(values) - writable
        if unknown:
            raise ValueError(f"Not a workflow field: {', '.join(sorted(unknown))}")

        lock = get_assignment_locks(assignment).check_update(set(values))
        if lock is not None:
            raise FieldLockedError(
                lock.reason, details={"field": lock.field, "hint": lock.unlock_hint}
            )
        for name, value in values.items():
            setattr(assignment, name, value)
