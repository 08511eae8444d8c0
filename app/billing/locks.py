"""
Concurrency control utilities for billing operations.

Two complementary mechanisms:

1. **Row locks with a version check** (lock_for_update, save_versioned)
   - select_for_update() serializes concurrent handlers touching the same
     subscription for the length of the transaction
   - the version column catches writers that loaded the row without the
     lock (admin edits, backends without SELECT ... FOR UPDATE)

2. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across worker processes
   - Used by periodic jobs so overlapping beat runs do not double-process

Usage:

    with transaction.atomic():
        subscription = lock_for_update(Subscription.objects, pk=pk)
        subscription.renew(fallback=now)
        save_versioned(subscription, ["status", "ends_at"])

    with DistributedLock("billing:cancel-lapsed", ttl=300, blocking=False):
        cancel_lapsed()
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_redis import get_redis_connection

from billing.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Row Locks + Optimistic Versioning
# =============================================================================


def lock_for_update(queryset: models.QuerySet[T], **lookup: Any) -> T | None:
    """
    Fetch one row with SELECT ... FOR UPDATE.

    Must be called within a transaction; the lock is held until it
    commits or rolls back.

    Returns:
        The locked instance, or None when nothing matches
    """
    return queryset.select_for_update().filter(**lookup).first()


def save_versioned(instance: T, fields: Iterable[str], using: str | None = None) -> T:
    """
    Persist ``fields`` only if the row still carries the loaded version.

    The version is incremented in the same UPDATE. ``updated_at`` is
    refreshed automatically when the model has one. Writes go to ``using``,
    falling back to the database the instance was loaded from.

    Raises:
        StaleRecordError: The row was modified since it was loaded
    """
    model_class = type(instance)
    manager = model_class._default_manager.db_manager(using or instance._state.db)
    expected_version = instance.version
    values = {name: getattr(instance, name) for name in fields}
    if any(f.name == "updated_at" for f in model_class._meta.concrete_fields):
        values["updated_at"] = timezone.now()

    updated = manager.filter(
        pk=instance.pk,
        version=expected_version,
    ).update(version=F("version") + 1, **values)

    if not updated:
        current = (
            manager.filter(pk=instance.pk)
            .values_list("version", flat=True)
            .first()
        )
        model_name = model_class.__name__
        raise StaleRecordError(
            f"{model_name} {instance.pk} has been modified "
            f"(expected version {expected_version}, current {current})",
            details={
                "pk": str(instance.pk),
                "expected_version": expected_version,
                "current_version": current,
            },
        )

    instance.version = expected_version + 1
    if "updated_at" in values:
        instance.updated_at = values["updated_at"]
    return instance


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - Automatic TTL prevents deadlocks from crashed processes
        - Token-based ownership prevents release by other processes
        - Blocking and non-blocking acquisition modes
        - Context manager support

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError: If lock couldn't be acquired
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.monotonic() + self.timeout
            while time.monotonic() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Safe to call multiple times.
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


__all__ = [
    "DistributedLock",
    "lock_for_update",
    "save_versioned",
]
