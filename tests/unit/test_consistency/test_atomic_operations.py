# Path: tests/unit/test_consistency/test_atomic_operations.py
"""
Unit tests for AtomicOperations and ConsistencyService.
"""

import pytest

from survey_blend.constants import LockMode
from survey_blend.consistency import (
    AtomicOperations,
    ConsistencyService,
    LockManager,
    OperationStep,
    TransactionQueue,
)
from survey_blend.core.errors import AtomicityError, VerificationError


@pytest.fixture
def atomic():
    """Executor with no backoff."""
    return AtomicOperations(TransactionQueue(), LockManager(), max_attempts=3)


def tracking_step(name, store, log, fail=False):
    """Step that appends to a shared list and removes itself on rollback."""
    def execute():
        if fail:
            raise RuntimeError(f'{name} exploded')
        store.append(name)
        log.append(f'execute:{name}')
        return name

    def rollback(data):
        store.remove(data)
        log.append(f'rollback:{data}')

    return OperationStep(name, execute=execute, rollback=rollback)


class TestExecuteAtomic:
    """All-or-nothing execution."""

    def test_success_collects_step_results(self, atomic, run):
        store, log = [], []
        steps = [tracking_step('a', store, log), tracking_step('b', store, log)]

        result = run(atomic.execute_atomic(steps, operation_name='two-steps'))

        assert result.operation_name == 'two-steps'
        assert result.step_results == {'a': 'a', 'b': 'b'}
        assert result.data == 'b'
        assert store == ['a', 'b']

    def test_failure_rolls_back_in_reverse(self, atomic, run):
        store, log = [], []
        steps = [
            tracking_step('one', store, log),
            tracking_step('two', store, log),
            tracking_step('three', store, log, fail=True),
        ]

        with pytest.raises(AtomicityError) as excinfo:
            run(atomic.execute_atomic(steps, operation_name='create-mapping'))

        error = excinfo.value
        assert store == []
        assert log == ['execute:one', 'execute:two', 'rollback:two', 'rollback:one']
        assert error.failed_step == 'three'
        assert error.rolled_back == ['two', 'one']
        assert isinstance(error.cause, RuntimeError)
        assert not error.is_compound

    def test_failing_rollback_is_compound(self, atomic, run, capture_logs):
        store, log = [], []

        def broken_rollback(data):
            raise OSError('disk gone')

        steps = [
            tracking_step('one', store, log),
            OperationStep('two', execute=lambda: 'x', rollback=broken_rollback),
            tracking_step('three', store, log, fail=True),
        ]

        with pytest.raises(AtomicityError) as excinfo:
            run(atomic.execute_atomic(steps))

        error = excinfo.value
        assert error.is_compound
        assert [rf.step for rf in error.rollback_failures] == ['two']
        assert error.rolled_back == ['one']
        assert store == []
        assert 'rollback failed for: two' in str(error)
        assert "Rollback failed for step 'two': disk gone" in capture_logs.getvalue()

    def test_async_steps(self, atomic, run):
        async def execute():
            return 7

        async def verify(data):
            return data == 7

        result = run(atomic.execute_atomic([OperationStep('async', execute, verify=verify)]))

        assert result.data == 7


class TestStepVerification:
    """Verification retries inside a step."""

    def test_retries_until_verified(self, atomic, run):
        attempts = []
        undone = []

        def execute():
            attempts.append(len(attempts) + 1)
            return len(attempts)

        step = OperationStep(
            'flaky',
            execute=execute,
            rollback=undone.append,
            verify=lambda data: data >= 2,
        )

        result = run(atomic.execute_atomic([step]))

        assert result.data == 2
        assert attempts == [1, 2]
        assert undone == [1]

    def test_exhausted_verification_fails_operation(self, atomic, run):
        store, log = [], []
        steps = [
            tracking_step('first', store, log),
            OperationStep('never-valid', execute=lambda: None, verify=lambda data: False, max_attempts=2),
        ]

        with pytest.raises(AtomicityError) as excinfo:
            run(atomic.execute_atomic(steps))

        assert isinstance(excinfo.value.cause, VerificationError)
        assert excinfo.value.rolled_back == ['first']
        assert store == []


class TestExecuteWithVerification:
    """Standalone retry helper."""

    def test_returns_first_verified_result(self, atomic, run):
        values = iter([1, 2, 3])

        result = run(atomic.execute_with_verification(lambda: next(values), lambda v: v == 2))

        assert result == 2

    def test_raises_last_operation_error(self, atomic, run):
        calls = []

        def op():
            calls.append(1)
            raise ConnectionError(f'attempt {len(calls)}')

        with pytest.raises(ConnectionError, match='attempt 2'):
            run(atomic.execute_with_verification(op, lambda v: True, attempts=2))

    def test_raises_verification_error(self, atomic, run):
        with pytest.raises(VerificationError):
            run(atomic.execute_with_verification(lambda: 0, lambda v: False, attempts=2))


class TestExecuteWithTransaction:
    """Queued execution under store locks."""

    def test_holds_locks_on_every_store(self, atomic, run):
        seen = {}

        def op():
            seen['locks'] = sorted(
                (info.store, info.mode) for info in atomic.locks.held_locks()
            )
            return 'ok'

        result = run(atomic.execute_with_transaction(op, ['records', 'mappings']))

        assert result == 'ok'
        assert seen['locks'] == [
            ('mappings', LockMode.READWRITE),
            ('records', LockMode.READWRITE),
        ]
        assert atomic.locks.held_locks() == []

    def test_releases_locks_on_error(self, atomic, run):
        def op():
            raise KeyError('missing')

        with pytest.raises(KeyError):
            run(atomic.execute_with_transaction(op, 'mappings'))
        assert atomic.locks.held_locks() == []


class TestConsistencyService:
    """Service wiring."""

    def test_from_config(self, mock_env_vars):
        from survey_blend.config_loader import ConfigLoader

        service = ConsistencyService.from_config(ConfigLoader())

        assert service.atomic.max_attempts == 2
        assert service.locks.default_timeout == 5
        assert service.atomic.queue is service.queue

    def test_shutdown(self, run):
        service = ConsistencyService()

        async def scenario():
            await service.queue.queue_transaction(lambda: None)
            return await service.shutdown()

        assert run(scenario()) == 0
        assert service.stats()['closed'] is True
