"""LocalTransaction — in-process unit of work around a remote call.

    pending → committed      block exited normally
    pending → rolled_back    block raised (including cancellation);
                             registered undo callbacks run newest-first

Database atomicity still comes from the session savepoint; this tracks
the caller-side state (and side effects outside the database, such as
stored files) so it is never half-applied.  Undo callbacks may be plain
functions or return an awaitable.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

PENDING = "pending"
COMMITTED = "committed"
ROLLED_BACK = "rolled_back"


class LocalTransaction:
    def __init__(self, name: str = "tx"):
        self.name = name
        self.state = PENDING
        self._undo: list[Callable[[], Any]] = []

    def on_rollback(self, fn: Callable[[], Any]) -> None:
        self._undo.append(fn)

    async def __aenter__(self) -> "LocalTransaction":
        if self.state != PENDING:
            raise RuntimeError(f"Transaction {self.name} already {self.state}")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.state = COMMITTED
            return False

        self.state = ROLLED_BACK
        logger.info(f"Transaction {self.name} rolled back: {exc_type.__name__}")
        for fn in reversed(self._undo):
            # The block's own exception is the one the caller sees
            try:
                outcome = fn()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Undo step of transaction {self.name} failed")
        return False
