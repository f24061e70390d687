"""
Distributed session store.

Session data are kept in Redis as signed JWTs keyed by session ID, and
expire with the session. Clients hold a separate token that carries enough
information to retrieve the session and check it against the stored nonce.
"""

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional
import logging
import random
import uuid

import dateutil.parser
import jwt
import redis
from pytz import UTC

from .. import domain, tokens
from .connections import get_redis
from .exceptions import ExpiredToken, InvalidToken, UnknownSession, \
    Unavailable, StoreTimeout

logger = logging.getLogger(__name__)


def _generate_nonce(length: int = 8) -> str:
    return ''.join([str(random.randint(0, 9)) for i in range(length)])


class SessionStore(object):
    """
    Issues and loads sessions.

    In fact, the Redis client is thread safe and connections are attached at
    the time a command is executed. This class simply provides a container
    for configuration.
    """

    def __init__(self, r: redis.Redis, secret: str,
                 duration: int = 7200) -> None:
        self.r = r
        self._secret = secret
        self._duration = duration

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'SessionStore':
        """Build a store from application configuration."""
        return cls(get_redis(config), config['JWT_SECRET'],
                   int(config.get('SESSION_DURATION', '7200')))

    def create(self, account_id: str, provider: str,
               session_id: Optional[str] = None) -> domain.Session:
        """
        Create a new session.

        Parameters
        ----------
        account_id : str
        provider : str
            The provider whose credential established the session.
        session_id : str
            Optional; generated if not provided.

        Returns
        -------
        :class:`.domain.Session`

        """
        if session_id is None:
            session_id = str(uuid.uuid4())
        start_time = datetime.now(tz=UTC)
        session = domain.Session(
            session_id=session_id,
            account_id=account_id,
            provider=provider,
            start_time=start_time,
            end_time=start_time + timedelta(seconds=self._duration),
            nonce=_generate_nonce()
        )
        try:
            self.r.set(session_id, tokens.encode(session, self._secret),
                       ex=self._duration)
        except redis.exceptions.TimeoutError as e:
            raise StoreTimeout(f'Session write timed out: {e}') from e
        except redis.exceptions.ConnectionError as e:
            raise Unavailable(f'Connection failed: {e}') from e
        except (redis.exceptions.RedisError,
                redis.exceptions.RedisClusterException) as e:
            raise Unavailable(f'Redis error: {e}') from e
        logger.debug('Created session %s for %s', session_id, account_id)
        return session

    def generate_token(self, session: domain.Session) -> str:
        """Generate a client token from a :class:`.domain.Session`."""
        expires = session.end_time.isoformat() if session.end_time else None
        return jwt.encode({
            'account_id': session.account_id,
            'session_id': session.session_id,
            'nonce': session.nonce,
            'expires': expires
        }, self._secret, algorithm='HS256')

    def load(self, token: str) -> domain.Session:
        """Load a session using a client token."""
        data = self._unpack_token(token)
        try:
            session_id = data['session_id']
            expires = data['expires']
        except KeyError as e:
            raise InvalidToken('Token payload malformed') from e
        if expires and dateutil.parser.parse(expires) <= datetime.now(tz=UTC):
            raise ExpiredToken('Session has expired')

        session = self.load_by_id(session_id)
        if session.expired:
            raise ExpiredToken('Session has expired')
        if data.get('nonce') != session.nonce \
                or data.get('account_id') != session.account_id:
            raise InvalidToken('Invalid token; likely a forgery')
        return session

    def load_by_id(self, session_id: str) -> domain.Session:
        """Get session data by session ID."""
        try:
            session_jwt = self.r.get(session_id)
        except redis.exceptions.TimeoutError as e:
            raise StoreTimeout(f'Session read timed out: {e}') from e
        except redis.exceptions.ConnectionError as e:
            raise Unavailable(f'Connection failed: {e}') from e
        except (redis.exceptions.RedisError,
                redis.exceptions.RedisClusterException) as e:
            raise Unavailable(f'Redis error: {e}') from e
        if not session_jwt:
            logger.debug('No such session: %s', session_id)
            raise UnknownSession(f'Failed to find session {session_id}')
        if isinstance(session_jwt, bytes):
            session_jwt = session_jwt.decode('utf-8')
        return tokens.decode(session_jwt, self._secret)

    def delete(self, token: str) -> None:
        """Delete the session referenced by a client token."""
        self.delete_by_id(self._unpack_token(token)['session_id'])

    def delete_by_id(self, session_id: str) -> None:
        """Delete a session in the key-value store by ID."""
        try:
            self.r.delete(session_id)
        except redis.exceptions.TimeoutError as e:
            raise StoreTimeout(f'Session delete timed out: {e}') from e
        except redis.exceptions.ConnectionError as e:
            raise Unavailable(f'Connection failed: {e}') from e
        except (redis.exceptions.RedisError,
                redis.exceptions.RedisClusterException) as e:
            raise Unavailable(f'Redis error: {e}') from e

    def _unpack_token(self, token: str) -> dict:
        try:
            return dict(jwt.decode(token, self._secret, algorithms=['HS256']))
        except jwt.exceptions.InvalidTokenError as e:
            raise InvalidToken('Session token is malformed') from e
