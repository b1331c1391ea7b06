"""
Cooperative cancellation for long-running sync runs.
"""

import time
from typing import Callable, Dict, List, Optional

from core.exceptions import SyncAlreadyRunningError, SyncCancelledError


class CancellationToken:
    """
    Cancel flag plus optional deadline, checked at every page and batch boundary.

    The token never interrupts an in-flight request; `check()` raises
    SyncCancelledError at the next boundary instead.
    """

    def __init__(
        self,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._started = clock()
        self.deadline_seconds = deadline_seconds
        self._deadline = self._started + deadline_seconds if deadline_seconds else None
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check(self, stage: str = "") -> None:
        """Raise SyncCancelledError if cancelled or past the deadline"""
        if self._reason is not None:
            raise SyncCancelledError(
                f"Sync cancelled: {self._reason}",
                context={"stage": stage}
            )
        if self.expired:
            raise SyncCancelledError(
                f"Sync deadline of {self.deadline_seconds}s exceeded",
                context={"stage": stage, "deadline_seconds": self.deadline_seconds}
            )


class RunRegistry:
    """
    In-process single-flight guard and lookup of cancellation tokens by run id.

    One registry is shared by every trigger surface in a process (API routes,
    scheduler); the sync run log covers other processes.
    """

    def __init__(self):
        self._claimed = False
        self._tokens: Dict[str, CancellationToken] = {}

    def claim(self) -> None:
        """Reserve the single run slot or raise SyncAlreadyRunningError"""
        if self._claimed:
            raise SyncAlreadyRunningError(
                "Sync is already running",
                context={"active_runs": self.active_run_ids}
            )
        self._claimed = True

    def release(self) -> None:
        self._claimed = False

    @property
    def busy(self) -> bool:
        return self._claimed

    def register(self, run_id: str, token: CancellationToken) -> None:
        self._tokens[run_id] = token

    def unregister(self, run_id: str) -> None:
        self._tokens.pop(run_id, None)

    def cancel(self, run_id: str, reason: str = "cancelled by caller") -> bool:
        token = self._tokens.get(run_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    @property
    def active_run_ids(self) -> List[str]:
        return list(self._tokens)
