# Path: tests/unit/test_consistency/test_transaction_queue.py
"""
Unit tests for TransactionQueue.
"""

import asyncio

import pytest

from survey_blend.consistency.transaction_queue import (
    TransactionPriority,
    TransactionQueue,
    call_maybe_async,
)
from survey_blend.core.errors import ConcurrencyError


class TestOrdering:
    """Submission order is execution order."""

    def test_slow_operation_does_not_let_later_ones_overtake(self, run):
        async def scenario():
            queue = TransactionQueue()
            order = []

            def make(name, delay):
                async def op():
                    await asyncio.sleep(delay)
                    order.append(name)
                    return name
                return op

            results = await asyncio.gather(
                queue.queue_transaction(make('first', 0.03)),
                queue.queue_transaction(make('second', 0.0)),
                queue.queue_transaction(make('third', 0.01)),
            )
            return order, results

        order, results = run(scenario())

        assert order == ['first', 'second', 'third']
        assert results == ['first', 'second', 'third']

    def test_sync_operations(self, run):
        async def scenario():
            queue = TransactionQueue()
            return await queue.queue_transaction(lambda: 42, name='answer')

        assert run(scenario()) == 42

    def test_priority_runs_first_within_backlog(self, run):
        async def scenario():
            queue = TransactionQueue()
            order = []
            gate = asyncio.Event()

            async def blocker():
                await gate.wait()
                order.append('blocker')

            def record(name):
                return lambda: order.append(name)

            futures = [queue.submit(blocker)]
            await asyncio.sleep(0)
            futures += [
                queue.submit(record('low'), priority=TransactionPriority.LOW),
                queue.submit(record('normal')),
                queue.submit(record('high'), priority=TransactionPriority.HIGH),
            ]
            gate.set()
            await asyncio.gather(*futures)
            return order

        assert run(scenario()) == ['blocker', 'high', 'normal', 'low']


class TestFailures:
    """Errors reach the submitter and do not stop the queue."""

    def test_exception_propagates_and_queue_continues(self, run):
        async def scenario():
            queue = TransactionQueue()

            def fail():
                raise ValueError('bad mapping')

            failing = queue.submit(fail)
            after = queue.submit(lambda: 'still running')

            with pytest.raises(ValueError, match='bad mapping'):
                await failing
            return await after, queue.stats()

        result, stats = run(scenario())

        assert result == 'still running'
        assert stats['failed'] == 1
        assert stats['completed'] == 1
        assert stats['queue_length'] == 0


class TestShutdown:
    """Shutdown rejects pending work."""

    def test_pending_transactions_rejected(self, run):
        async def scenario():
            queue = TransactionQueue()
            gate = asyncio.Event()

            async def running():
                await gate.wait()
                return 'done'

            active = queue.submit(running)
            pending = queue.submit(lambda: 'never')
            await asyncio.sleep(0)

            rejected = queue.shutdown()
            gate.set()
            await queue.join()

            with pytest.raises(ConcurrencyError):
                await pending
            return rejected, await active

        rejected, active_result = run(scenario())

        assert rejected == 1
        assert active_result == 'done'

    def test_submit_after_shutdown(self, run):
        async def scenario():
            queue = TransactionQueue()
            queue.shutdown()
            queue.submit(lambda: None)

        with pytest.raises(ConcurrencyError):
            run(scenario())


class TestCallMaybeAsync:
    """Plain and coroutine callables."""

    def test_plain_and_coroutine(self, run):
        async def double(x):
            return x * 2

        async def scenario():
            return (
                await call_maybe_async(lambda x: x + 1, 1),
                await call_maybe_async(double, 4),
            )

        assert run(scenario()) == (2, 8)
