"""
ttpcore/base/ledger.py
The cleanup ledger: deferred teardown actions replayed in reverse order.

Semantics:
    - Append-only while steps execute: a step registers its teardown the moment
      it has produced side effects worth undoing.
    - drain() runs every pending entry last-registered-first, like unwinding a
      stack of scopes.
    - Best-effort, not transactional: a failing entry is recorded and logged,
      and the remaining entries still run. The TeardownReport aggregates every
      failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Tuple

from ttpcore.base.errors import CleanupAggregateError, CleanupError, TTPError

logger = logging.getLogger(__name__)

CleanupAction = Callable[[], Awaitable[Any]]


class EntryState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass
class CleanupEntry:
    step_name: str
    action: CleanupAction
    sequence: int
    state: EntryState = EntryState.PENDING
    result: Any = None
    error: Optional[CleanupError] = None


@dataclass(frozen=True)
class TeardownReport:
    """Outcome of one drain() call, in execution order."""

    entries: Tuple[CleanupEntry, ...] = field(default_factory=tuple)

    @property
    def failures(self) -> List[CleanupError]:
        return [e.error for e in self.entries if e.error is not None]

    @property
    def succeeded(self) -> bool:
        return not self.failures

    @property
    def order(self) -> List[str]:
        return [e.step_name for e in self.entries]

    def merge(self, other: "TeardownReport") -> "TeardownReport":
        return TeardownReport(entries=self.entries + other.entries)

    def raise_if_failed(self) -> None:
        if self.failures:
            raise CleanupAggregateError(self.failures)


class CleanupLedger:
    """Ordered record of teardown actions for one procedure run."""

    def __init__(self) -> None:
        self._entries: List[CleanupEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CleanupEntry]:
        return iter(self._entries)

    def register(self, step_name: str, action: CleanupAction) -> CleanupEntry:
        entry = CleanupEntry(step_name=step_name, action=action, sequence=len(self._entries))
        self._entries.append(entry)
        logger.debug(f"[Ledger] Registered cleanup #{entry.sequence} for step '{step_name}'")
        return entry

    def pending(self) -> List[CleanupEntry]:
        return [e for e in self._entries if e.state is EntryState.PENDING]

    async def drain(self) -> TeardownReport:
        """Run every pending entry in reverse registration order."""
        ran: List[CleanupEntry] = []
        for entry in reversed(self._entries):
            if entry.state is not EntryState.PENDING:
                continue
            logger.info(f"[Ledger] Running cleanup for step '{entry.step_name}'")
            try:
                entry.result = await entry.action()
                entry.state = EntryState.DONE
            except Exception as exc:
                entry.state = EntryState.FAILED
                entry.error = _as_cleanup_error(entry.step_name, exc)
                logger.error(f"[Ledger] Cleanup for step '{entry.step_name}' failed: {exc}")
            ran.append(entry)
        return TeardownReport(entries=tuple(ran))


def _as_cleanup_error(step_name: str, exc: Exception) -> CleanupError:
    if isinstance(exc, CleanupError):
        exc.details.setdefault("step", step_name)
        return exc
    details = {"step": step_name, "cause": type(exc).__name__}
    if isinstance(exc, TTPError):
        details.update({k: v for k, v in exc.details.items() if k != "step"})
    err = CleanupError(f"cleanup for step '{step_name}' failed: {exc}", details=details)
    err.__cause__ = exc
    return err
