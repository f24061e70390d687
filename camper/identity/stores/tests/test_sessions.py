"""Tests for :mod:`camper.identity.stores.sessions`."""

from datetime import datetime, timedelta
from unittest import TestCase, mock

import fakeredis
import jwt
from pytz import UTC
from redis.exceptions import ConnectionError, ReadOnlyError, \
    ResponseError, TimeoutError

from ... import domain, tokens
from .. import sessions, exceptions, connections


class TestSessionStore(TestCase):
    """The session store puts sessions in a key-value store."""

    def setUp(self):
        self.r = fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())
        self.store = sessions.SessionStore(self.r, 'foosecret', duration=600)

    def test_create_and_load(self):
        """A session can be loaded with the token generated for it."""
        session = self.store.create('u1', domain.Provider.APPLE)
        self.assertTrue(bool(session.session_id))
        self.assertEqual(session.account_id, 'u1')
        self.assertEqual(len(session.nonce), 8)
        self.assertLessEqual(self.r.ttl(session.session_id), 600)

        token = self.store.generate_token(session)
        loaded = self.store.load(token)
        self.assertEqual(loaded.session_id, session.session_id)
        self.assertEqual(loaded.account_id, 'u1')
        self.assertEqual(loaded.provider, domain.Provider.APPLE)
        self.assertEqual(loaded.end_time, session.end_time)

    def test_load_by_id(self):
        """Sessions can be loaded by their ID."""
        session = self.store.create('u1', domain.Provider.PASSWORD,
                                    session_id='fooid')
        self.assertEqual(self.store.load_by_id('fooid').nonce, session.nonce)

    def test_delete(self):
        """Deleted sessions cannot be loaded."""
        session = self.store.create('u1', domain.Provider.PASSWORD)
        token = self.store.generate_token(session)
        self.store.delete(token)
        with self.assertRaises(exceptions.UnknownSession):
            self.store.load(token)

    def test_forged_token(self):
        """A token signed with another secret is refused."""
        session = self.store.create('u1', domain.Provider.PASSWORD)
        other = sessions.SessionStore(self.r, 'othersecret')
        with self.assertRaises(exceptions.InvalidToken):
            self.store.load(other.generate_token(session))

    def test_nonce_mismatch(self):
        """A token whose nonce does not match the session is refused."""
        session = self.store.create('u1', domain.Provider.PASSWORD)
        token = self.store.generate_token(session._replace(nonce='00000000'))
        with self.assertRaises(exceptions.InvalidToken):
            self.store.load(token)

    def test_expired_token(self):
        """A token past its expiry is refused."""
        token = jwt.encode({
            'account_id': 'u1',
            'session_id': 'fooid',
            'nonce': '12345678',
            'expires': (datetime.now(tz=UTC) - timedelta(seconds=1))
            .isoformat()
        }, 'foosecret', algorithm='HS256')
        with self.assertRaises(exceptions.ExpiredToken):
            self.store.load(token)

    def test_garbage_token(self):
        """Malformed tokens are refused."""
        with self.assertRaises(exceptions.InvalidToken):
            self.store.load('notatoken')

    def test_connection_failed(self):
        """Connection failures are raised as :class:`.Unavailable`."""
        r = mock.MagicMock()
        r.set.side_effect = ConnectionError
        r.get.side_effect = ConnectionError
        store = sessions.SessionStore(r, 'foosecret')
        with self.assertRaises(exceptions.Unavailable):
            store.create('u1', domain.Provider.PASSWORD)
        with self.assertRaises(exceptions.Unavailable):
            store.load_by_id('fooid')

    def test_timeout(self):
        """Timeouts are raised as :class:`.StoreTimeout`."""
        r = mock.MagicMock()
        r.set.side_effect = TimeoutError
        store = sessions.SessionStore(r, 'foosecret')
        with self.assertRaises(exceptions.StoreTimeout):
            store.create('u1', domain.Provider.PASSWORD)

    def test_reply_error(self):
        """Other Redis errors are raised as :class:`.Unavailable`."""
        r = mock.MagicMock()
        r.set.side_effect = ReadOnlyError('read only replica')
        r.get.side_effect = ResponseError('WRONGTYPE')
        r.delete.side_effect = ResponseError('OOM')
        store = sessions.SessionStore(r, 'foosecret')
        with self.assertRaises(exceptions.Unavailable):
            store.create('u1', domain.Provider.PASSWORD)
        with self.assertRaises(exceptions.Unavailable):
            store.load_by_id('fooid')
        with self.assertRaises(exceptions.Unavailable):
            store.delete_by_id('fooid')


class TestTokens(TestCase):
    """Session payloads are signed JWTs."""

    def test_round_trip(self):
        """A session survives encoding."""
        session = domain.Session('s1', 'u1', domain.Provider.GOOGLE,
                                 datetime(2024, 5, 1, tzinfo=UTC),
                                 datetime(2024, 5, 2, tzinfo=UTC), '123')
        self.assertEqual(tokens.decode(tokens.encode(session, 'k'), 'k'),
                         session)

    def test_wrong_secret(self):
        """Tokens signed with another secret are refused."""
        session = domain.Session('s1', 'u1', domain.Provider.GOOGLE,
                                 datetime(2024, 5, 1, tzinfo=UTC))
        with self.assertRaises(exceptions.InvalidToken):
            tokens.decode(tokens.encode(session, 'k'), 'j')


class TestGetRedis(TestCase):
    """Building Redis clients from configuration."""

    def test_fake(self):
        """``REDIS_FAKE`` gives a FakeRedis client."""
        r = connections.get_redis({'REDIS_FAKE': True})
        self.assertIsInstance(r, fakeredis.FakeStrictRedis)

    @mock.patch(f'{connections.__name__}.redis')
    def test_single_node(self, mock_redis):
        """A single node gets the store timeout as its socket timeout."""
        connections.get_redis({'REDIS_HOST': 'redis', 'REDIS_PORT': '6379',
                               'REDIS_CLUSTER': '0', 'STORE_TIMEOUT': '2'})
        mock_redis.StrictRedis.assert_called_once_with(
            host='redis', port=6379, db=0, password=None,
            socket_timeout=2.0, socket_connect_timeout=2.0
        )

    @mock.patch(f'{connections.__name__}.RedisCluster')
    def test_cluster(self, mock_cluster):
        """Clusters are used by default."""
        connections.get_redis({'REDIS_HOST': 'redis'})
        self.assertEqual(mock_cluster.call_count, 1)
