"""Tests for :mod:`camper.identity.quota`."""

from datetime import datetime, timedelta
from threading import Thread
from unittest import TestCase, mock

import fakeredis
import pytz
from hypothesis import given
from hypothesis import strategies as st
from pytz import UTC
from redis.exceptions import ReadOnlyError

from .. import domain, quota
from ..capabilities import PHOTO_UPLOAD
from ..stores import exceptions as store
from ..stores.base import QuotaStore
from ..stores.quota import RedisQuotaStore

CHICAGO = pytz.timezone('America/Chicago')
NOON = datetime(2024, 5, 1, 17, 0, tzinfo=UTC)   # Noon in Chicago.


class TestDayKey(TestCase):
    """Bucketing days in the canonical timezone."""

    def test_chicago(self):
        """Late evening UTC is still the previous day in Chicago."""
        at = datetime(2024, 5, 2, 3, 0, tzinfo=UTC)
        self.assertEqual(quota.day_key(at), '2024-05-01')

    def test_naive_is_utc(self):
        """Naive datetimes are taken to be UTC."""
        self.assertEqual(quota.day_key(datetime(2024, 5, 2, 3, 0)),
                         '2024-05-01')

    def test_midnight_boundary(self):
        """One millisecond either side of midnight are different days."""
        midnight = CHICAGO.localize(datetime(2024, 5, 2, 0, 0))
        before = midnight - timedelta(milliseconds=1)
        self.assertEqual(quota.day_key(before), '2024-05-01')
        self.assertEqual(quota.day_key(midnight), '2024-05-02')

    @given(st.datetimes(min_value=datetime(2000, 1, 1),
                        max_value=datetime(2100, 1, 1)),
           st.sampled_from(['Asia/Tokyo', 'Europe/London',
                            'America/Los_Angeles', 'Pacific/Kiritimati']))
    def test_caller_zone_does_not_matter(self, at, zone):
        """The same instant has the same day key in any local zone."""
        instant = UTC.localize(at)
        local = instant.astimezone(pytz.timezone(zone))
        self.assertEqual(quota.day_key(instant), quota.day_key(local))

    @given(st.datetimes(min_value=datetime(2000, 1, 2),
                        max_value=datetime(2100, 1, 1)))
    def test_straddling_midnight(self, day):
        """Calls straddling midnight in Chicago land in different days."""
        midnight = CHICAGO.localize(datetime(day.year, day.month, day.day))
        before = midnight - timedelta(milliseconds=1)
        self.assertNotEqual(quota.day_key(before), quota.day_key(midnight))

    def test_ledger_key(self):
        """Keys identify account, resource and day."""
        self.assertEqual(quota.ledger_key('u1', 'photoUpload', '2024-05-01'),
                         'quota:u1:photoUpload:2024-05-01')


class TestQuotaLedger(TestCase):
    """Counting uses against a Redis-backed store."""

    def setUp(self):
        self.store = RedisQuotaStore(
            fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())
        )
        self.ledger = quota.QuotaLedger(self.store, {PHOTO_UPLOAD: 1})

    def test_three_uploads(self):
        """Only the first upload of the day is allowed."""
        results = [
            self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free',
                                            at=NOON)
            for _ in range(3)
        ]
        self.assertEqual([(r.allowed, r.remaining) for r in results],
                         [(True, 1), (False, 0), (False, 0)])
        self.assertEqual([r.count for r in results], [1, 2, 3])
        entry = self.ledger.usage('u1', PHOTO_UPLOAD, 'free', at=NOON).entry
        self.assertEqual(entry.count, 3)
        self.assertEqual(entry.tier_at_first_use, 'free')

    def test_next_day(self):
        """A new day starts from zero."""
        self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free', at=NOON)
        tomorrow = NOON + timedelta(days=1)
        decision = self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free',
                                                   at=tomorrow)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.count, 1)

    def test_bypass(self):
        """Pro and admin never touch the ledger."""
        for tier in ('pro', 'admin'):
            decision = self.ledger.check_and_increment('u1', PHOTO_UPLOAD,
                                                       tier, at=NOON)
            self.assertEqual(decision, domain.QuotaDecision(True, -1))
        usage = self.ledger.usage('u1', PHOTO_UPLOAD, 'free', at=NOON)
        self.assertEqual(usage.entry.count, 0)

    def test_downgrade_takes_effect(self):
        """Bypass is decided on each call, not cached."""
        self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'pro', at=NOON)
        first = self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free',
                                                at=NOON)
        second = self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free',
                                                 at=NOON)
        self.assertTrue(first.allowed)
        self.assertFalse(second.allowed)

    def test_usage(self):
        """Usage reports without counting."""
        self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free', at=NOON)
        usage = self.ledger.usage('u1', PHOTO_UPLOAD, 'free', at=NOON)
        self.assertEqual((usage.entry.count, usage.limit, usage.remaining),
                         (1, 1, 0))
        self.assertEqual(usage.entry.day_key, '2024-05-01')
        again = self.ledger.usage('u1', PHOTO_UPLOAD, 'free', at=NOON)
        self.assertEqual(again.entry.count, 1)
        pro = self.ledger.usage('u1', PHOTO_UPLOAD, 'pro', at=NOON)
        self.assertEqual((pro.limit, pro.remaining), (-1, -1))

    def test_unknown_resource(self):
        """Resources without a limit are a programming error."""
        with self.assertRaises(ValueError):
            self.ledger.check_and_increment('u1', 'videos', 'free')

    def test_unknown_timezone(self):
        """The canonical timezone is checked up front."""
        with self.assertRaises(pytz.UnknownTimeZoneError):
            quota.QuotaLedger(self.store, timezone='Mars/Olympus_Mons')

    def test_concurrent_calls(self):
        """N concurrent calls count N, and allow exactly the limit."""
        ledger = quota.QuotaLedger(self.store, {PHOTO_UPLOAD: 3})
        results = []

        def call():
            results.append(ledger.check_and_increment('u1', PHOTO_UPLOAD,
                                                      'free', at=NOON))

        threads = [Thread(target=call) for _ in range(25)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(results), 25)
        self.assertEqual(sum(1 for r in results if r.allowed), 3)
        usage = ledger.usage('u1', PHOTO_UPLOAD, 'free', at=NOON)
        self.assertEqual(usage.entry.count, 25)


class TestFailOpen(TestCase):
    """Store failures never block the user."""

    def setUp(self):
        self.store = mock.MagicMock(spec=QuotaStore)
        self.ledger = quota.QuotaLedger(self.store, {PHOTO_UPLOAD: 1})

    def test_unavailable(self):
        """An unavailable store allows the call."""
        self.store.atomic_increment.side_effect = store.Unavailable('down')
        decision = self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free')
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, 1)

    def test_timeout(self):
        """A timed-out store allows the call."""
        self.store.atomic_increment.side_effect = store.StoreTimeout('slow')
        decision = self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free')
        self.assertTrue(decision.allowed)

    def test_usage_unavailable(self):
        """Usage reads as zero when the store is down."""
        self.store.get.side_effect = store.Unavailable('down')
        usage = self.ledger.usage('u1', PHOTO_UPLOAD, 'free')
        self.assertEqual(usage.entry.count, 0)
        self.assertEqual(usage.remaining, 1)

    def test_single_atomic_call(self):
        """Counting is one atomic increment, never a read then a write."""
        self.store.atomic_increment.return_value = 1
        self.ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free', at=NOON)
        self.store.get.assert_not_called()
        self.store.atomic_increment.assert_called_once_with(
            'quota:u1:photoUpload:2024-05-01', tier='free',
            ttl=quota.ENTRY_TTL
        )

    def test_reply_error(self):
        """Errors in Redis replies allow the call."""
        r = fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())
        ledger = quota.QuotaLedger(RedisQuotaStore(r), {PHOTO_UPLOAD: 1})
        r.set(quota.ledger_key('u1', PHOTO_UPLOAD, '2024-05-01'), 'foo')
        decision = ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free',
                                              at=NOON)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, 1)

    def test_read_only_replica(self):
        """Writes refused by a read-only replica allow the call."""
        r = mock.MagicMock()
        r.pipeline.return_value.execute.side_effect = \
            ReadOnlyError("You can't write against a read only replica.")
        ledger = quota.QuotaLedger(RedisQuotaStore(r), {PHOTO_UPLOAD: 1})
        decision = ledger.check_and_increment('u1', PHOTO_UPLOAD, 'free',
                                              at=NOON)
        self.assertTrue(decision.allowed)
