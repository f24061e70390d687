"""
Per-account, per-day, per-resource usage counting.

Days are bucketed in a single canonical timezone, never the caller's, so
every client agrees on when a day ends. Counting goes through the quota
store's atomic increment; a check is never a read followed by a write. The
ledger is a monotonic record of usage, not a token bucket: calls over the
limit are still counted, they are just reported as not allowed.

Quota is a soft constraint. If the store cannot be reached, the ledger fails
open and allows the call.
"""

from datetime import datetime
from typing import Dict, Mapping, Optional
import logging

import pytz
from pytz import UTC

from . import domain
from .capabilities import DEFAULT_DAILY_LIMITS
from .domain import Tier, UNLIMITED
from .stores.base import QuotaStore
from .stores.exceptions import StoreError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'America/Chicago'
ENTRY_TTL = 3 * 24 * 60 * 60
"""Seconds an entry is kept; comfortably longer than any one day."""


def day_key(at: Optional[datetime] = None,
            timezone: str = DEFAULT_TIMEZONE) -> str:
    """
    The ``YYYY-MM-DD`` date of ``at`` in the canonical ``timezone``.

    Naive datetimes are taken to be UTC.
    """
    if at is None:
        at = datetime.now(tz=UTC)
    elif at.tzinfo is None:
        at = UTC.localize(at)
    return at.astimezone(pytz.timezone(timezone)).strftime('%Y-%m-%d')


def ledger_key(account_id: str, resource_kind: str, day: str) -> str:
    """Opaque quota store key for one ledger entry."""
    return f'quota:{account_id}:{resource_kind}:{day}'


class QuotaLedger(object):
    """
    Meters free-tier usage of limited resources.

    Parameters
    ----------
    store : :class:`.QuotaStore`
    limits : dict
        Daily limit per resource kind. Defaults to
        :data:`.capabilities.DEFAULT_DAILY_LIMITS`.
    timezone : str
        Canonical timezone for day keys.

    """

    def __init__(self, store: QuotaStore,
                 limits: Optional[Mapping[str, int]] = None,
                 timezone: str = DEFAULT_TIMEZONE) -> None:
        self.store = store
        self.limits: Dict[str, int] = dict(DEFAULT_DAILY_LIMITS
                                           if limits is None else limits)
        pytz.timezone(timezone)     # Fail early on an unknown zone.
        self.timezone = timezone

    def limit_for(self, resource_kind: str) -> int:
        """The free-tier daily limit for ``resource_kind``."""
        try:
            return self.limits[resource_kind]
        except KeyError as e:
            raise ValueError(f'No daily limit for {resource_kind}') from e

    def check_and_increment(self, account_id: str, resource_kind: str,
                            tier: Optional[str],
                            at: Optional[datetime] = None) \
            -> domain.QuotaDecision:
        """
        Count one use of ``resource_kind`` and decide whether it is allowed.

        This is a single atomic operation. Pro and admin tiers bypass the
        ledger entirely; the tier is taken from this call, so a downgrade
        applies immediately.

        Parameters
        ----------
        account_id : str
        resource_kind : str
        tier : str
            The account's tier right now.
        at : datetime
            When the use happens. Defaults to now.

        Returns
        -------
        :class:`.domain.QuotaDecision`
            ``remaining`` is the number of uses that were left before this
            one was counted, or ``-1`` for tiers that bypass the ledger.

        """
        if Tier.bypasses_quota(tier):
            return domain.QuotaDecision(True, UNLIMITED)

        limit = self.limit_for(resource_kind)
        key = ledger_key(account_id, resource_kind,
                         day_key(at, self.timezone))
        try:
            count = self.store.atomic_increment(key, tier=tier or Tier.FREE,
                                                ttl=ENTRY_TTL)
        except StoreError as e:
            logger.warning('Quota store unavailable, allowing %s for %s: %s',
                           resource_kind, account_id, e)
            return domain.QuotaDecision(True, limit)

        if count > limit:
            logger.debug('%s over %s limit (%i/%i)', account_id,
                         resource_kind, count, limit)
            return domain.QuotaDecision(False, 0, count)
        return domain.QuotaDecision(True, limit - (count - 1), count)

    def usage(self, account_id: str, resource_kind: str,
              tier: Optional[str],
              at: Optional[datetime] = None) -> domain.QuotaUsage:
        """Report today's usage without counting anything."""
        day = day_key(at, self.timezone)
        try:
            count, first_tier = self.store.get(
                ledger_key(account_id, resource_kind, day)
            )
        except StoreError as e:
            logger.warning('Quota store unavailable: %s', e)
            count, first_tier = 0, None
        entry = domain.QuotaEntry(account_id, resource_kind, day, count,
                                  first_tier)
        if Tier.bypasses_quota(tier):
            return domain.QuotaUsage(entry, UNLIMITED, UNLIMITED)
        limit = self.limit_for(resource_kind)
        return domain.QuotaUsage(entry, limit, max(0, limit - count))
