"""Tests for :mod:`camper.identity.stores.quota`."""

from threading import Thread
from unittest import TestCase, mock

import fakeredis
from redis.exceptions import ConnectionError, TimeoutError

from .. import quota, exceptions


class TestRedisQuotaStore(TestCase):
    """Counting with Redis hashes."""

    def setUp(self):
        self.r = fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())
        self.store = quota.RedisQuotaStore(self.r)

    def test_missing_key(self):
        """A key that was never incremented reads as zero."""
        self.assertEqual(self.store.get('quota:u1:photoUpload:2024-05-01'),
                         (0, None))

    def test_increment(self):
        """Each increment returns the new count."""
        key = 'quota:u1:photoUpload:2024-05-01'
        self.assertEqual(self.store.atomic_increment(key, tier='free'), 1)
        self.assertEqual(self.store.atomic_increment(key, tier='pro'), 2)
        self.assertEqual(self.store.get(key), (2, 'free'))

    def test_ttl(self):
        """The entry expires."""
        key = 'quota:u1:photoUpload:2024-05-01'
        self.store.atomic_increment(key, ttl=100)
        self.assertGreater(self.r.ttl(key), 0)
        self.assertLessEqual(self.r.ttl(key), 100)

    def test_concurrent_increments(self):
        """No update is lost when many callers increment at once."""
        key = 'quota:u1:photoUpload:2024-05-01'
        results = []

        def increment():
            results.append(self.store.atomic_increment(key, tier='free'))

        threads = [Thread(target=increment) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(self.store.get(key)[0], 20)
        self.assertEqual(sorted(results), list(range(1, 21)))

    def test_unavailable(self):
        """Connection failures are raised as :class:`.Unavailable`."""
        r = mock.MagicMock()
        r.pipeline.return_value.execute.side_effect = ConnectionError
        r.hgetall.side_effect = TimeoutError
        store = quota.RedisQuotaStore(r)
        with self.assertRaises(exceptions.Unavailable):
            store.atomic_increment('foo')
        with self.assertRaises(exceptions.StoreTimeout):
            store.get('foo')
