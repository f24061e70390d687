"""Entitlement sources."""

from typing import Dict, Optional
import logging

from ..domain import Tier
from .base import EntitlementSource, ProfileStore
from .exceptions import NoSuchAccount

logger = logging.getLogger(__name__)


class ProfileEntitlementSource(EntitlementSource):
    """Reads the tier recorded on the account's profile record."""

    def __init__(self, profiles: ProfileStore) -> None:
        self.profiles = profiles

    def current_tier(self, account_id: str) -> str:
        account = self.profiles.get(account_id)
        if account is None:
            raise NoSuchAccount(f'No record for {account_id}')
        return account.tier or Tier.FREE


class StaticEntitlementSource(EntitlementSource):
    """
    Fixed tiers per account, for hosts that resolve purchases elsewhere.

    Accounts without an entry hold ``default``.
    """

    def __init__(self, tiers: Optional[Dict[str, str]] = None,
                 default: str = Tier.FREE) -> None:
        self.tiers = dict(tiers or {})
        self.default = default

    def set_tier(self, account_id: str, tier: str) -> None:
        """Change the tier of an account, e.g. after a purchase."""
        logger.debug('Tier for %s is now %s', account_id, tier)
        self.tiers[account_id] = tier

    def current_tier(self, account_id: str) -> str:
        return self.tiers.get(account_id, self.default)
