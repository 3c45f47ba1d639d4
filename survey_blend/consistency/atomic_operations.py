# Path: survey_blend/consistency/atomic_operations.py
"""
Atomic Operations

Multi-step operations with rollback and post-condition verification.

execute_atomic() runs named steps in order. When a step raises, or still
fails verification after the allowed attempts, the rollback handlers of
the completed steps run in reverse order and an AtomicityError is raised
carrying the failed step, the cause and the rollback outcome. A rollback
handler that raises is logged at ERROR and reported on the error
(is_compound), the remaining handlers still run.
"""

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from survey_blend.constants import LockMode
from survey_blend.core.errors import AtomicityError, RollbackFailure, VerificationError
from survey_blend.core.logger.ipo_logging import get_process_logger

from .lock_manager import LockManager
from .transaction_queue import (
    Operation,
    TransactionPriority,
    TransactionQueue,
    call_maybe_async,
)


@dataclass
class OperationStep:
    """
    One step of an atomic operation.

    Callables may be plain functions or coroutine functions.

    Attributes:
        name: Step name (used in logs and errors)
        execute: Performs the step, returns step data
        rollback: Undoes the step given its data
        verify: Returns True when the step's data is valid
        max_attempts: Verification attempts (default: executor setting)
    """
    name: str
    execute: Callable[[], Any]
    rollback: Optional[Callable[[Any], Any]] = None
    verify: Optional[Callable[[Any], Any]] = None
    max_attempts: Optional[int] = None


@dataclass
class AtomicOperationResult:
    """
    Successful atomic operation.

    Attributes:
        operation_name: Name of the operation
        step_results: Step name -> data returned by execute
    """
    operation_name: str
    step_results: dict[str, Any] = field(default_factory=dict)

    @property
    def data(self) -> Any:
        """Data of the last step."""
        if not self.step_results:
            return None
        return list(self.step_results.values())[-1]


class AtomicOperations:
    """
    Atomic executor bound to a queue and lock manager.

    Example:
        atomic = AtomicOperations(queue, locks)
        result = await atomic.execute_atomic([
            OperationStep('create', execute=create, rollback=delete),
            OperationStep('index', execute=reindex, verify=check_index),
        ], operation_name='create-mapping')
    """

    def __init__(
        self,
        queue: TransactionQueue,
        locks: LockManager,
        max_attempts: int = 3,
        backoff_seconds: float = 0.0,
    ):
        self.queue = queue
        self.locks = locks
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.logger = get_process_logger('consistency.atomic')

    async def execute_atomic(
        self,
        steps: Iterable[OperationStep],
        operation_name: str = 'atomic-operation',
    ) -> AtomicOperationResult:
        """
        Run steps in order with all-or-nothing semantics.

        Raises:
            AtomicityError: If a step failed; rollback has been attempted
        """
        steps = list(steps)
        completed: list[tuple[OperationStep, Any]] = []
        result = AtomicOperationResult(operation_name)

        self.logger.info(f"Starting atomic operation '{operation_name}' ({len(steps)} steps)")

        for step in steps:
            failures: list[RollbackFailure] = []
            try:
                data = await self._run_step(step, failures)
            except Exception as cause:
                self.logger.error(
                    f"Atomic operation '{operation_name}' failed at step '{step.name}': {cause}"
                )
                rolled_back = await self._rollback(completed, failures)
                raise AtomicityError(
                    operation_name, step.name, cause, rolled_back, failures
                ) from cause

            completed.append((step, data))
            result.step_results[step.name] = data
            self.logger.debug(f"Step completed: {step.name}")

        self.logger.info(f"Atomic operation completed: '{operation_name}'")
        return result

    async def execute_with_transaction(
        self,
        operation: Operation,
        stores: Union[str, Iterable[str]],
        mode: LockMode = LockMode.READWRITE,
        priority: TransactionPriority = TransactionPriority.NORMAL,
        name: Optional[str] = None,
    ) -> Any:
        """
        Run an operation through the queue while holding store locks.

        Locks on several stores are taken in sorted name order.
        """
        store_names = [stores] if isinstance(stores, str) else sorted(set(stores))

        async def locked() -> Any:
            async with AsyncExitStack() as stack:
                for store in store_names:
                    await stack.enter_async_context(self.locks.hold(store, mode))
                return await call_maybe_async(operation)

        return await self.queue.queue_transaction(
            locked,
            name=name or getattr(operation, '__name__', 'transaction'),
            priority=priority,
        )

    async def execute_with_verification(
        self,
        operation: Operation,
        verify: Callable[[Any], Any],
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> Any:
        """
        Retry an operation until its result verifies.

        Attempts are separated by exponential backoff (base * 2^(n-1)).

        Raises:
            The last error raised by the operation, or VerificationError
        """
        attempts = max(1, attempts or self.max_attempts)
        base = self.backoff_seconds if backoff_seconds is None else backoff_seconds
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                result = await call_maybe_async(operation)
                if await call_maybe_async(verify, result):
                    return result
                last_error = VerificationError(
                    f"Verification failed after attempt {attempt}/{attempts}"
                )
            except Exception as e:
                last_error = e

            self.logger.warning(f"Attempt {attempt}/{attempts} failed: {last_error}")
            if attempt < attempts and base > 0:
                await asyncio.sleep(base * 2 ** (attempt - 1))

        raise last_error

    async def _run_step(self, step: OperationStep, failures: list[RollbackFailure]) -> Any:
        """Execute a step, retrying while verification fails."""
        attempts = max(1, step.max_attempts or self.max_attempts)

        for attempt in range(1, attempts + 1):
            self.logger.debug(f"Executing step: {step.name} (attempt {attempt}/{attempts})")
            data = await call_maybe_async(step.execute)
            if step.verify is None or await call_maybe_async(step.verify, data):
                return data

            self.logger.warning(
                f"Step verification failed: {step.name} (attempt {attempt}/{attempts})"
            )
            # Undo the unverified attempt before retrying or giving up
            if step.rollback is not None:
                try:
                    await call_maybe_async(step.rollback, data)
                except Exception as e:
                    self.logger.error(f"Rollback failed for unverified step '{step.name}': {e}")
                    failures.append(RollbackFailure(step.name, e))
                    break

        raise VerificationError(f"Step verification failed: {step.name}")

    async def _rollback(
        self,
        completed: list[tuple[OperationStep, Any]],
        failures: list[RollbackFailure],
    ) -> list[str]:
        """Roll completed steps back in reverse order."""
        rolled_back: list[str] = []
        self.logger.info(f"Rolling back {len(completed)} step(s)")

        for step, data in reversed(completed):
            if step.rollback is None:
                continue
            try:
                await call_maybe_async(step.rollback, data)
                rolled_back.append(step.name)
                self.logger.info(f"Rolled back step: {step.name}")
            except Exception as e:
                self.logger.error(f"Rollback failed for step '{step.name}': {e}")
                failures.append(RollbackFailure(step.name, e))

        return rolled_back


__all__ = ['OperationStep', 'AtomicOperationResult', 'AtomicOperations']
