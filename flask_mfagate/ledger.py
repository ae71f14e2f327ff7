"""
Per-user failed-attempt accounting and lockout.

The ledger keeps its counters in an :class:`AttemptStore`. The in-memory
store is process local, :class:`RedisAttemptStore` shares counters between
instances. Lockout expiry is evaluated lazily on read; the failure count is
only reset by :meth:`AttemptLedger.clear`.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

# Conditional import for shared lockout counters
try:
    import redis
    HAS_REDIS = True
except ImportError:
    HAS_REDIS = False

from .audit import AuditSink, emit_safely
from .exceptions import StorageUnavailableError
from .models import AttemptRecord, AuditAction, AuditContext, AuditEvent, AuditLevel

log = logging.getLogger(__name__)


class AttemptStore(ABC):
    """
    Storage backend for attempt records.

    ``increment`` must be atomic per user: of several concurrent calls that
    push the count past the threshold, exactly one may report that it
    imposed the lock.
    """

    @abstractmethod
    def get(self, user_id: Any) -> AttemptRecord:
        """Return the record for ``user_id`` (a zero record if none exists)."""

    @abstractmethod
    def increment(self, user_id: Any, max_attempts: int, lockout_duration: int,
                  now: float) -> Tuple[AttemptRecord, bool]:
        """
        Add one failure.

        Returns:
            Tuple[AttemptRecord, bool]: (updated record, whether this call
                imposed a new lock)
        """

    @abstractmethod
    def clear(self, user_id: Any) -> None:
        """Reset the failure count and remove any lock."""


class MemoryAttemptStore(AttemptStore):
    """
    Thread-safe in-process store.

    Users are mapped onto a fixed set of lock stripes by hash, so a user's
    operations are serialized while memory for locks stays constant.

    Args:
        stripes: Number of locks shared between users
    """

    def __init__(self, stripes: int = 64):
        self._records: Dict[Any, AttemptRecord] = {}
        self._stripes: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, user_id: Any) -> threading.Lock:
        return self._stripes[hash(user_id) % len(self._stripes)]

    def get(self, user_id: Any) -> AttemptRecord:
        with self._lock_for(user_id):
            record = self._records.get(user_id)
            if record is None:
                return AttemptRecord()
            return AttemptRecord(record.failure_count, record.locked_until)

    def increment(self, user_id: Any, max_attempts: int, lockout_duration: int,
                  now: float) -> Tuple[AttemptRecord, bool]:
        with self._lock_for(user_id):
            record = self._records.setdefault(user_id, AttemptRecord())
            record.failure_count += 1
            newly_locked = False
            if record.failure_count >= max_attempts:
                newly_locked = not record.is_locked(now)
                candidate = now + lockout_duration
                # never shorten an existing lock
                if record.locked_until is None or candidate > record.locked_until:
                    record.locked_until = candidate
            return AttemptRecord(record.failure_count, record.locked_until), newly_locked

    def clear(self, user_id: Any) -> None:
        with self._lock_for(user_id):
            self._records.pop(user_id, None)


class RedisAttemptStore(AttemptStore):
    """
    Shared store on top of a ``redis.Redis`` client.

    Keys:
        ``<prefix>:<user_id>:count`` failure counter (INCR)
        ``<prefix>:<user_id>:locked_until`` epoch seconds, set with NX
    """

    def __init__(self, redis_client, key_prefix: str = "mfa:attempts"):
        if not HAS_REDIS:
            raise RuntimeError(
                "Shared attempt counters require the redis library. "
                "Install with: pip install 'Flask-MFAGate[redis]'"
            )
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisAttemptStore":
        if not HAS_REDIS:
            raise RuntimeError(
                "Shared attempt counters require the redis library. "
                "Install with: pip install 'Flask-MFAGate[redis]'"
            )
        return cls(redis.Redis.from_url(url), **kwargs)

    def _keys(self, user_id: Any) -> Tuple[str, str]:
        base = f"{self.key_prefix}:{user_id}"
        return f"{base}:count", f"{base}:locked_until"

    def get(self, user_id: Any) -> AttemptRecord:
        count_key, lock_key = self._keys(user_id)
        try:
            count, locked_until = self.redis_client.mget(count_key, lock_key)
        except redis.RedisError as e:
            raise StorageUnavailableError(f"Attempt store unavailable: {e}") from e
        return AttemptRecord(
            failure_count=int(count or 0),
            locked_until=float(locked_until) if locked_until is not None else None,
        )

    def increment(self, user_id: Any, max_attempts: int, lockout_duration: int,
                  now: float) -> Tuple[AttemptRecord, bool]:
        count_key, lock_key = self._keys(user_id)
        try:
            count = int(self.redis_client.incr(count_key))
            if count < max_attempts:
                return AttemptRecord(failure_count=count), False

            locked_until = now + lockout_duration
            # NX on a key that expires with the lock: only one caller wins
            newly_locked = bool(self.redis_client.set(
                lock_key, repr(locked_until), nx=True, ex=max(1, int(lockout_duration))
            ))
            if not newly_locked:
                current = self.redis_client.get(lock_key)
                if current is not None:
                    locked_until = float(current)
            return AttemptRecord(failure_count=count, locked_until=locked_until), newly_locked
        except redis.RedisError as e:
            raise StorageUnavailableError(f"Attempt store unavailable: {e}") from e

    def clear(self, user_id: Any) -> None:
        try:
            self.redis_client.delete(*self._keys(user_id))
        except redis.RedisError as e:
            raise StorageUnavailableError(f"Attempt store unavailable: {e}") from e


class AttemptLedger:
    """
    Lockout policy over an :class:`AttemptStore`.

    Args:
        store: Backend holding the counters (defaults to in-memory)
        max_attempts: Failures before lockout
        lockout_duration: Lock length in seconds
        audit_sink: Receives ``MFA_LOCKOUT`` events
        clock: Returns the current epoch time
    """

    def __init__(self, store: Optional[AttemptStore] = None, max_attempts: int = 5,
                 lockout_duration: int = 900, audit_sink: Optional[AuditSink] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.store = store or MemoryAttemptStore()
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration
        self.audit_sink = audit_sink
        self._clock = clock or time.time

    def is_locked_out(self, user_id: Any) -> bool:
        return self.store.get(user_id).is_locked(self._clock())

    def locked_until(self, user_id: Any) -> Optional[float]:
        """Unlock time if the user is currently locked, else None."""
        record = self.store.get(user_id)
        if record.is_locked(self._clock()):
            return record.locked_until
        return None

    def remaining_attempts(self, user_id: Any) -> int:
        record = self.store.get(user_id)
        return max(0, self.max_attempts - record.failure_count)

    def record_failure(self, user_id: Any, context: Optional[AuditContext] = None) -> int:
        """
        Record one failed verification.

        Args:
            user_id: User that failed
            context: Opaque request context forwarded to the audit event

        Returns:
            int: Remaining attempts after this failure
        """
        record, newly_locked = self.store.increment(
            user_id, self.max_attempts, self.lockout_duration, self._clock()
        )
        if newly_locked:
            locked_until = datetime.fromtimestamp(record.locked_until, tz=timezone.utc)
            log.warning(
                f"User {user_id} locked out due to {record.failure_count} failed MFA attempts"
            )
            emit_safely(self.audit_sink, AuditEvent(
                action=AuditAction.MFA_LOCKOUT,
                user_id=user_id,
                level=AuditLevel.WARN,
                details={
                    'attempts': record.failure_count,
                    'lockedUntil': locked_until.isoformat(),
                },
                context=context,
            ))
        return max(0, self.max_attempts - record.failure_count)

    def clear(self, user_id: Any) -> None:
        self.store.clear(user_id)
