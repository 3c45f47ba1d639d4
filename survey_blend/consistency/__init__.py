# Path: survey_blend/consistency/__init__.py
"""
Transactional Consistency Layer

Serializes and atomically commits multi-step mutations against the
shared stores (mapping registry, normalized records).

Components:
    - LockManager: FIFO read/readwrite locks per store
    - TransactionQueue: Global-order execution queue
    - AtomicOperations: Multi-step execution with rollback and verification
    - ConsistencyService: Owner of the three, injected into the engine
"""

from .lock_manager import LockManager, LockInfo
from .transaction_queue import (
    TransactionQueue,
    TransactionPriority,
    QueuedTransaction,
    call_maybe_async,
)
from .atomic_operations import OperationStep, AtomicOperationResult, AtomicOperations
from .service import ConsistencyService

__all__ = [
    'LockManager',
    'LockInfo',
    'TransactionQueue',
    'TransactionPriority',
    'QueuedTransaction',
    'call_maybe_async',
    'OperationStep',
    'AtomicOperationResult',
    'AtomicOperations',
    'ConsistencyService',
]
