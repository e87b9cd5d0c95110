"""
Atomic Lock Manager Service
Serializes read-validate-mutate-append sequences per user so two requests
can never both observe the same balance before either one debits it
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Dict

logger = logging.getLogger(__name__)


class LockOperationType(Enum):
    """Types of operations that require atomic locking"""
    TASK_COMPLETION = "task_completion"
    WITHDRAWAL_REQUEST = "withdrawal_request"
    WITHDRAWAL_RESOLUTION = "withdrawal_resolution"
    BONUS_UNLOCK = "bonus_unlock"
    WALLET_BALANCE_UPDATE = "wallet_balance_update"
    KYC_UPDATE = "kyc_update"
    ADMIN_OVERRIDE = "admin_override"


class _LockSlot:
    """A registry lock plus the number of threads holding or waiting on it"""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class AtomicLockManager:
    """
    In-process lock registry keyed by user id.

    Locks are re-entrant so an operation holding a user's lock may call a
    helper that takes the same lock. Locks for different users never block
    each other. A slot is dropped from the registry once no thread holds or
    waits on it, so the registry only grows with the number of users being
    served at the same moment.
    """

    def __init__(self):
        self._registry_guard = threading.Lock()
        self._locks: Dict[str, _LockSlot] = {}
        self.metrics = {
            'locks_acquired': 0,
            'lock_contentions': 0,
        }

    def _checkout(self, key: str) -> threading.RLock:
        with self._registry_guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = _LockSlot()
                self._locks[key] = slot
            slot.users += 1
            return slot.lock

    def _checkin(self, key: str) -> None:
        with self._registry_guard:
            slot = self._locks[key]
            slot.users -= 1
            if slot.users == 0:
                del self._locks[key]

    def _count(self, metric: str) -> None:
        with self._registry_guard:
            self.metrics[metric] += 1

    @property
    def active_locks(self) -> int:
        """Registry slots currently held or awaited"""
        with self._registry_guard:
            return len(self._locks)

    @contextmanager
    def _hold(self, key: str, operation: str):
        lock = self._checkout(key)
        try:
            if not lock.acquire(blocking=False):
                self._count('lock_contentions')
                logger.debug(f"🔒 Waiting for lock {key} [{operation}]")
                lock.acquire()
            self._count('locks_acquired')
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    @contextmanager
    def user_lock(self, user_id: str, operation_type: LockOperationType = LockOperationType.WALLET_BALANCE_UPDATE):
        """Hold the user's lock for the duration of the block"""
        with self._hold(f"user:{user_id}", operation_type.value):
            yield

    @contextmanager
    def named_lock(self, name: str):
        """Lock for platform singletons such as settings and emergency switches"""
        with self._hold(f"named:{name}", name):
            yield
