"""Run leases - a single writer per run."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
import logging

from ..errors import RunBusyError

logger = logging.getLogger(__name__)


class RunLeaseManager:
    """
    Per-run locks for the executor.

    Every operation that mutates a run holds its lease for the whole
    load-modify-save cycle. Locks are created on demand and dropped once no
    caller holds or waits on them.
    """

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def is_held(self, run_id: str) -> bool:
        lock = self._locks.get(run_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, run_id: str, wait: bool = True) -> AsyncIterator[None]:
        """
        Hold the lease on a run.

        Args:
            run_id: Run to lock
            wait: Wait up to the timeout for the holder; if False, fail at once

        Raises:
            RunBusyError: If the lease can't be taken
        """
        lock = self._locks.setdefault(run_id, asyncio.Lock())
        self._users[run_id] = self._users.get(run_id, 0) + 1

        try:
            if not wait and lock.locked():
                raise RunBusyError(run_id)

            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out waiting for lease on run {run_id}")
                raise RunBusyError(run_id)

            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[run_id] -= 1
            if self._users[run_id] == 0:
                del self._users[run_id]
                self._locks.pop(run_id, None)

    def __len__(self) -> int:
        return len(self._locks)
