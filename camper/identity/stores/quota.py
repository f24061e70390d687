"""Usage counters in Redis."""

from typing import Any, Mapping, Optional, Tuple
import logging

import redis

from .base import QuotaStore
from .connections import get_redis
from .exceptions import StoreTimeout, Unavailable

logger = logging.getLogger(__name__)

COUNT = 'count'
TIER_AT_FIRST_USE = 'tier_at_first_use'


class RedisQuotaStore(QuotaStore):
    """
    Quota store using one Redis hash per ledger key.

    The increment, the first-use tier and the expiry are applied together in
    a single ``MULTI``/``EXEC`` block, so concurrent callers never lose an
    update.
    """

    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'RedisQuotaStore':
        """Build a store from application configuration."""
        return cls(get_redis(config))

    def atomic_increment(self, key: str, tier: Optional[str] = None,
                         ttl: Optional[int] = None) -> int:
        """
        Increment the count at ``key`` and return the new value.

        ``tier`` is recorded only by the call that creates the entry. ``ttl``
        (seconds) lets expired days drop out of the store.
        """
        try:
            pipe = self.r.pipeline(transaction=True)
            pipe.hincrby(key, COUNT, 1)
            if tier is not None:
                pipe.hsetnx(key, TIER_AT_FIRST_USE, tier)
            if ttl is not None:
                pipe.expire(key, ttl)
            results = pipe.execute()
        except redis.exceptions.TimeoutError as e:
            raise StoreTimeout(f'Increment timed out: {e}') from e
        except redis.exceptions.ConnectionError as e:
            raise Unavailable(f'Connection failed: {e}') from e
        except (redis.exceptions.RedisError,
                redis.exceptions.RedisClusterException) as e:
            raise Unavailable(f'Redis error: {e}') from e
        return int(results[0])

    def get(self, key: str) -> Tuple[int, Optional[str]]:
        """Current count and first-use tier; a missing entry reads as zero."""
        try:
            data = self.r.hgetall(key)
        except redis.exceptions.TimeoutError as e:
            raise StoreTimeout(f'Read timed out: {e}') from e
        except redis.exceptions.ConnectionError as e:
            raise Unavailable(f'Connection failed: {e}') from e
        except (redis.exceptions.RedisError,
                redis.exceptions.RedisClusterException) as e:
            raise Unavailable(f'Redis error: {e}') from e
        data = {_text(k): _text(v) for k, v in data.items()}
        return int(data.get(COUNT, 0)), data.get(TIER_AT_FIRST_USE)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return value
