# Path: survey_blend/consistency/lock_manager.py
"""
Store Lock Manager

Read / readwrite locks per logical store for cooperative (asyncio) code.

Rules:
- read is shared, readwrite is exclusive
- a request is granted at once only if it is compatible with the current
  holders AND nobody is queued, so a waiting writer blocks later readers
- on release, queued requests are granted from the head while compatible
  (consecutive readers are granted together)
- a waiter that is cancelled or times out leaves the queue
"""

import asyncio
import time
import uuid
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from survey_blend.constants import LockMode
from survey_blend.core.errors import ConcurrencyError
from survey_blend.core.logger.ipo_logging import get_process_logger


@dataclass
class _Waiter:
    lock_id: str
    mode: LockMode
    future: asyncio.Future


@dataclass
class _StoreState:
    readers: dict[str, float] = field(default_factory=dict)
    writer: Optional[str] = None
    writer_since: float = 0.0
    waiters: deque = field(default_factory=deque)

    def compatible(self, mode: LockMode) -> bool:
        if mode == LockMode.READ:
            return self.writer is None
        return self.writer is None and not self.readers

    def idle(self) -> bool:
        return self.writer is None and not self.readers and not self.waiters


@dataclass(frozen=True)
class LockInfo:
    """A currently held lock."""
    store: str
    mode: LockMode
    lock_id: str
    acquired_at: float

    def to_dict(self) -> dict:
        return {
            'store': self.store,
            'mode': self.mode.value,
            'lock_id': self.lock_id,
            'acquired_at': self.acquired_at,
        }


class LockManager:
    """
    FIFO read/readwrite locks keyed by store name.

    Example:
        locks = LockManager()
        async with locks.hold('records', LockMode.READ):
            ...
    """

    def __init__(self, default_timeout: Optional[float] = None):
        """
        Args:
            default_timeout: Seconds to wait before ConcurrencyError
                (None or 0 waits indefinitely)
        """
        self.default_timeout = default_timeout or None
        self.logger = get_process_logger('consistency.lock_manager')
        self._stores: dict[str, _StoreState] = {}

    async def acquire(
        self,
        store: str,
        mode: LockMode = LockMode.READWRITE,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Acquire a lock, waiting behind incompatible holders and earlier requests.

        Args:
            store: Logical store name
            mode: READ (shared) or READWRITE (exclusive)
            timeout: Seconds to wait (default: manager default)

        Returns:
            Lock id to pass to release()

        Raises:
            ConcurrencyError: If the wait exceeded the timeout
        """
        mode = LockMode(mode)
        state = self._stores.setdefault(store, _StoreState())
        lock_id = str(uuid.uuid4())

        if not state.waiters and state.compatible(mode):
            self._grant(state, mode, lock_id)
            self.logger.debug(f"Acquired {mode.value} lock on '{store}' ({lock_id})")
            return lock_id

        future = asyncio.get_running_loop().create_future()
        state.waiters.append(_Waiter(lock_id, mode, future))
        self.logger.debug(
            f"Waiting for {mode.value} lock on '{store}' "
            f"({len(state.waiters)} queued)"
        )

        wait_for = timeout if timeout is not None else self.default_timeout
        try:
            if wait_for:
                await asyncio.wait_for(future, wait_for)
            else:
                await future
        except (asyncio.TimeoutError, asyncio.CancelledError) as e:
            if future.done() and not future.cancelled():
                # Granted while the caller was giving up
                self._drop_holder(state, mode, lock_id)
            else:
                self._remove_waiter(state, lock_id)
            self._grant_waiters(store, state)

            if isinstance(e, asyncio.TimeoutError):
                raise ConcurrencyError(
                    f"Timed out after {wait_for}s waiting for {mode.value} lock on '{store}'"
                ) from e
            raise

        self.logger.debug(f"Acquired {mode.value} lock on '{store}' ({lock_id})")
        return lock_id

    def release(self, store: str, mode: LockMode, lock_id: str) -> None:
        """
        Release a lock and wake the next compatible waiters.

        Raises:
            ConcurrencyError: If the lock id is not held in that mode
        """
        mode = LockMode(mode)
        state = self._stores.get(store)
        if state is None or not self._drop_holder(state, mode, lock_id):
            raise ConcurrencyError(
                f"Lock {lock_id} is not held on '{store}' in {mode.value} mode"
            )

        self.logger.debug(f"Released {mode.value} lock on '{store}' ({lock_id})")
        self._grant_waiters(store, state)
        if state.idle():
            del self._stores[store]

    @asynccontextmanager
    async def hold(
        self,
        store: str,
        mode: LockMode = LockMode.READWRITE,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Scoped lock, released on every exit path."""
        lock_id = await self.acquire(store, mode, timeout)
        try:
            yield lock_id
        finally:
            self.release(store, mode, lock_id)

    def held_locks(self) -> list[LockInfo]:
        """Locks currently held, by store."""
        held = []
        for store, state in self._stores.items():
            if state.writer is not None:
                held.append(LockInfo(store, LockMode.READWRITE, state.writer, state.writer_since))
            for lock_id, since in state.readers.items():
                held.append(LockInfo(store, LockMode.READ, lock_id, since))
        return held

    def waiting(self, store: str) -> int:
        """Number of queued requests on a store."""
        state = self._stores.get(store)
        return len(state.waiters) if state else 0

    def stats(self) -> dict:
        """Lock statistics."""
        return {
            'held_locks': len(self.held_locks()),
            'waiting': sum(len(s.waiters) for s in self._stores.values()),
            'stores': sorted(self._stores),
        }

    def clear_all_locks(self) -> int:
        """
        Emergency release of every held lock.

        Queued requests are then granted in order. Only for recovering
        from a holder that will never release.

        Returns:
            Number of locks cleared
        """
        cleared = 0
        for store, state in list(self._stores.items()):
            cleared += len(state.readers) + (1 if state.writer else 0)
            state.readers.clear()
            state.writer = None
            self._grant_waiters(store, state)
            if state.idle():
                del self._stores[store]

        self.logger.warning(f"Cleared {cleared} held lock(s)")
        return cleared

    # ------------------------------------------------------------------

    @staticmethod
    def _grant(state: _StoreState, mode: LockMode, lock_id: str) -> None:
        now = time.monotonic()
        if mode == LockMode.READ:
            state.readers[lock_id] = now
        else:
            state.writer = lock_id
            state.writer_since = now

    @staticmethod
    def _drop_holder(state: _StoreState, mode: LockMode, lock_id: str) -> bool:
        if mode == LockMode.READ:
            return state.readers.pop(lock_id, None) is not None
        if state.writer == lock_id:
            state.writer = None
            return True
        return False

    @staticmethod
    def _remove_waiter(state: _StoreState, lock_id: str) -> None:
        for waiter in list(state.waiters):
            if waiter.lock_id == lock_id:
                state.waiters.remove(waiter)
                return

    def _grant_waiters(self, store: str, state: _StoreState) -> None:
        while state.waiters:
            head = state.waiters[0]
            if head.future.done():
                state.waiters.popleft()
                continue
            if not state.compatible(head.mode):
                break
            state.waiters.popleft()
            self._grant(state, head.mode, head.lock_id)
            head.future.set_result(head.lock_id)
            self.logger.debug(f"Granted queued {head.mode.value} lock on '{store}'")


__all__ = ['LockManager', 'LockInfo']
