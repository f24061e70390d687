"""Redis connections for the session and quota stores."""

from typing import Any, Mapping
import logging

import redis
from redis.cluster import RedisCluster

logger = logging.getLogger(__name__)


def init_app(app: Any) -> None:
    """Set default configuration parameters for an application instance."""
    app.config.setdefault('REDIS_HOST', 'localhost')
    app.config.setdefault('REDIS_PORT', '7000')
    app.config.setdefault('REDIS_DATABASE', '0')
    app.config.setdefault('REDIS_TOKEN', None)
    app.config.setdefault('REDIS_CLUSTER', '1')
    app.config.setdefault('REDIS_FAKE', False)


def get_redis(config: Mapping[str, Any]) -> redis.Redis:
    """
    Open a Redis client described by ``config``.

    The client is thread safe and connections are attached at the time a
    command is executed, so one client can be shared by the whole process.
    ``STORE_TIMEOUT`` bounds every command.
    """
    if config.get('REDIS_FAKE'):
        import fakeredis
        logger.warning('Using FakeRedis; data will not be shared or kept')
        return fakeredis.FakeStrictRedis()

    host = config.get('REDIS_HOST', 'localhost')
    port = int(config.get('REDIS_PORT', '7000'))
    db = int(config.get('REDIS_DATABASE', '0'))
    token = config.get('REDIS_TOKEN', None)
    timeout = config.get('STORE_TIMEOUT')
    timeout = float(timeout) if timeout else None
    logger.debug('New Redis connection at %s, port %s', host, port)
    if str(config.get('REDIS_CLUSTER', '1')) == '1':
        return RedisCluster(host=host, port=port, password=token,
                            socket_timeout=timeout,
                            socket_connect_timeout=timeout)
    return redis.StrictRedis(host=host, port=port, db=db, password=token,
                             socket_timeout=timeout,
                             socket_connect_timeout=timeout)
