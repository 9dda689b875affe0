import threading
from collections import defaultdict
from contextlib import contextmanager

from redis.exceptions import LockError, RedisError

from app.core.config import settings
from app.core.exceptions import Conflict
from app.core.logging_config import get_logger
from app.core.redis import get_redis_client, namespaced

logger = get_logger("booking")

_local_locks = defaultdict(threading.Lock)
_local_locks_guard = threading.Lock()


def _local_lock(key: str) -> threading.Lock:
    with _local_locks_guard:
        return _local_locks[key]


@contextmanager
def _keyed_lock(key: str, busy_message: str):
    """
    A process-local lock always applies; when Redis is configured a
    Redis lock extends it across workers. Database row locks taken
    inside the transaction still guard a Redis outage.
    """
    timeout = settings.booking_lock_timeout
    local = _local_lock(key)
    if not local.acquire(timeout=timeout):
        raise Conflict(busy_message)

    remote = None
    try:
        client = get_redis_client()
        if client is not None:
            remote = client.lock(namespaced(key), timeout=timeout, blocking_timeout=timeout)
            try:
                acquired = remote.acquire()
            except RedisError as e:
                logger.warning(f"Redis lock unavailable for {key}: {e}")
                remote, acquired = None, True
            if not acquired:
                remote = None
                raise Conflict(busy_message)

        yield
    finally:
        if remote is not None:
            try:
                remote.release()
            except (LockError, RedisError) as e:
                logger.warning(f"Redis lock release failed for {key}: {e}")
        local.release()


def space_booking_lock(space_id: int):
    """Serialise reservation creation per space."""
    return _keyed_lock(
        f"space:{space_id}:booking-lock",
        "Another booking for this space is in progress, please retry",
    )


def reservation_payment_lock(reservation_id: int):
    return _keyed_lock(
        f"reservation:{reservation_id}:payment-lock",
        "Another payment operation for this reservation is in progress, please retry",
    )
