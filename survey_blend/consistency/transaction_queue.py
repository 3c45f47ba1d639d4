# Path: survey_blend/consistency/transaction_queue.py
"""
Transaction Queue

Single FIFO queue that runs submitted operations one at a time, in
submission order, regardless of how long each takes. Operations may be
plain callables or coroutine functions.

Priorities are optional: higher-priority work runs first, and work of
equal priority keeps submission order.

Queued operations must not submit to the same queue and wait for the
result, since the worker would be waiting on itself.
"""

import asyncio
import inspect
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from survey_blend.core.errors import ConcurrencyError
from survey_blend.core.logger.ipo_logging import get_process_logger


Operation = Callable[[], Union[Any, Awaitable[Any]]]


class TransactionPriority(str, Enum):
    """Queue priority; FIFO within each level."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


_PRIORITY_ORDER = (TransactionPriority.HIGH, TransactionPriority.NORMAL, TransactionPriority.LOW)


@dataclass
class QueuedTransaction:
    """A submitted operation and the future its caller awaits."""
    operation: Operation
    future: asyncio.Future
    name: str
    priority: TransactionPriority
    transaction_id: str = field(default_factory=lambda: str(uuid.uuid4()))


async def call_maybe_async(fn: Callable, *args: Any) -> Any:
    """Call fn and await the result if it is awaitable."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class TransactionQueue:
    """
    Global-order queue for multi-store mutations.

    Example:
        queue = TransactionQueue()
        result = await queue.queue_transaction(save_mapping, name='save-mapping')
    """

    def __init__(self):
        self.logger = get_process_logger('consistency.transaction_queue')
        self._pending: dict[TransactionPriority, deque] = {p: deque() for p in _PRIORITY_ORDER}
        self._worker: Optional[asyncio.Task] = None
        self._active: Optional[QueuedTransaction] = None
        self._completed = 0
        self._failed = 0
        self._closed = False

    def submit(
        self,
        operation: Operation,
        name: Optional[str] = None,
        priority: TransactionPriority = TransactionPriority.NORMAL,
    ) -> asyncio.Future:
        """
        Enqueue an operation immediately.

        Must be called from a running event loop. Submission order is
        fixed at the time of this call.

        Returns:
            Future resolved with the operation's result or exception

        Raises:
            ConcurrencyError: If the queue has been shut down
        """
        if self._closed:
            raise ConcurrencyError("Transaction queue is shut down")

        priority = TransactionPriority(priority)
        future = asyncio.get_running_loop().create_future()
        transaction = QueuedTransaction(
            operation=operation,
            future=future,
            name=name or getattr(operation, '__name__', 'transaction'),
            priority=priority,
        )
        self._pending[priority].append(transaction)
        self.logger.debug(
            f"Queued transaction '{transaction.name}' "
            f"(priority: {priority.value}, queue length: {self.queue_length})"
        )

        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())
        return future

    async def queue_transaction(
        self,
        operation: Operation,
        name: Optional[str] = None,
        priority: TransactionPriority = TransactionPriority.NORMAL,
    ) -> Any:
        """Enqueue an operation and wait for its result."""
        return await self.submit(operation, name, priority)

    @property
    def queue_length(self) -> int:
        return sum(len(q) for q in self._pending.values())

    def stats(self) -> dict:
        """Queue statistics."""
        return {
            'queue_length': self.queue_length,
            'active': self._active is not None,
            'active_transaction': self._active.name if self._active else None,
            'completed': self._completed,
            'failed': self._failed,
            'closed': self._closed,
        }

    def shutdown(self) -> int:
        """
        Stop accepting work and reject everything still pending.

        The transaction currently running, if any, is allowed to finish.

        Returns:
            Number of rejected transactions
        """
        self._closed = True
        rejected = 0
        for priority in _PRIORITY_ORDER:
            pending = self._pending[priority]
            while pending:
                transaction = pending.popleft()
                if not transaction.future.done():
                    transaction.future.set_exception(
                        ConcurrencyError(f"Transaction '{transaction.name}' rejected: queue shut down")
                    )
                    rejected += 1

        self.logger.info(f"Transaction queue shut down ({rejected} pending rejected)")
        return rejected

    async def join(self) -> None:
        """Wait until the queue has drained."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    def _next(self) -> Optional[QueuedTransaction]:
        for priority in _PRIORITY_ORDER:
            if self._pending[priority]:
                return self._pending[priority].popleft()
        return None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            transaction = self._next()
            if transaction is None:
                return
            if transaction.future.done() or transaction.future.get_loop() is not loop:
                # Caller gave up, or its event loop is gone
                continue

            self._active = transaction
            self.logger.debug(f"Executing transaction '{transaction.name}'")
            try:
                result = await call_maybe_async(transaction.operation)
            except Exception as e:
                self._failed += 1
                self.logger.warning(f"Transaction '{transaction.name}' failed: {e}")
                if not transaction.future.done():
                    transaction.future.set_exception(e)
            else:
                self._completed += 1
                self.logger.debug(f"Transaction '{transaction.name}' completed")
                if not transaction.future.done():
                    transaction.future.set_result(result)
            finally:
                self._active = None


__all__ = [
    'TransactionQueue',
    'TransactionPriority',
    'QueuedTransaction',
    'call_maybe_async',
]
