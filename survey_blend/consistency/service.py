# Path: survey_blend/consistency/service.py
"""
Consistency Service

Owns the lock manager, transaction queue and atomic executor. Construct
one per process and pass it to whatever mutates the shared stores.
"""

from typing import Optional

from survey_blend.config_loader import ConfigLoader
from survey_blend.core.logger.ipo_logging import get_process_logger

from .atomic_operations import AtomicOperations
from .lock_manager import LockManager
from .transaction_queue import TransactionQueue


class ConsistencyService:
    """
    Locks, queue and atomic executor with one lifecycle.

    Example:
        consistency = ConsistencyService.from_config()
        engine = SurveyBlendEngine(consistency=consistency)
        ...
        await consistency.shutdown()
    """

    def __init__(
        self,
        locks: Optional[LockManager] = None,
        queue: Optional[TransactionQueue] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 0.0,
    ):
        self.locks = locks or LockManager()
        self.queue = queue or TransactionQueue()
        self.atomic = AtomicOperations(
            self.queue, self.locks,
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
        )
        self.logger = get_process_logger('consistency.service')

    @classmethod
    def from_config(cls, config: Optional[ConfigLoader] = None) -> 'ConsistencyService':
        """Build a service from ConfigLoader settings."""
        config = config or ConfigLoader()
        return cls(
            locks=LockManager(default_timeout=config.get('lock_timeout_seconds') or None),
            max_attempts=config.get('verify_max_attempts', 3),
        )

    def stats(self) -> dict:
        """Queue and lock statistics."""
        return {
            **self.queue.stats(),
            **self.locks.stats(),
            'locks': [info.to_dict() for info in self.locks.held_locks()],
        }

    async def shutdown(self) -> int:
        """
        Reject pending transactions and wait for the running one.

        Returns:
            Number of rejected transactions
        """
        rejected = self.queue.shutdown()
        await self.queue.join()
        self.logger.info("Consistency service shut down")
        return rejected


__all__ = ['ConsistencyService']
