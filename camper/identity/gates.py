"""
Evaluates the authorization ladder for a requested capability.

Gates are checked strictly in order, ``anonymous``, ``authenticated``,
``verified``, then ``entitled``, and evaluation stops at the first gate that
is not met or at the capability's required gate, whichever comes first.
Later gates are never consulted: an unverified account holding a pro tier is
reported as needing verification, and a request without a session is never
asked about verification.

Outcomes are returned as :class:`.domain.GateResult` values. The failure code
says exactly where the chain stopped, so the caller can offer the right next
step (sign in, verify, upgrade) rather than a bare denial.
"""

from datetime import datetime
from typing import Iterable, Optional, Union
import logging

from . import capabilities, domain, lookups
from .domain import Gate, GateFailure
from .exceptions import SessionRequired, TransientStoreError, \
    VerificationThrottled
from .stores import exceptions as store
from .stores.base import CredentialStore, EntitlementSource, ProfileStore
from .stores.util import now

logger = logging.getLogger(__name__)

PREVERIFIED_PROVIDERS = (domain.Provider.APPLE, domain.Provider.GOOGLE)
"""
Providers that verify e-mail addresses out-of-band.

Sessions established through these are treated as verified without any
further check. If such a provider ever starts issuing assertions for
unverified addresses, this assumption silently breaks.
"""


class AuthorizationGateChain(object):
    """Checks whether an account may use a capability."""

    def __init__(self, profiles: ProfileStore, credentials: CredentialStore,
                 entitlements: EntitlementSource,
                 preverified_providers: Iterable[str] = PREVERIFIED_PROVIDERS) \
            -> None:
        self.profiles = profiles
        self.credentials = credentials
        self.entitlements = entitlements
        self.preverified_providers = frozenset(preverified_providers)

    def evaluate(self, capability: Union[domain.Capability, str],
                 account_id: Optional[str],
                 session: Optional[domain.Session] = None) -> domain.GateResult:
        """
        Evaluate the gate chain for ``capability``.

        Parameters
        ----------
        capability : :class:`.domain.Capability` or str
            A capability, or the key of one in
            :data:`.capabilities.REGISTRY`.
        account_id : str or None
            The account the request is made on behalf of.
        session : :class:`.domain.Session` or None
            The caller's session. A request is authenticated only if the
            session is live and belongs to ``account_id``.

        Returns
        -------
        :class:`.domain.GateResult`

        Raises
        ------
        :class:`.TransientStoreError`
            A store needed to decide a gate was unavailable.
        ValueError
            ``capability`` is not a known capability key.

        """
        capability = _resolve(capability)
        required = capability.requires

        def stop(cleared: int, failure: str) -> domain.GateResult:
            logger.debug('%s stopped after %s: %s', capability,
                         Gate.NAMES[cleared], failure)
            return domain.GateResult(capability, False, cleared, failure)

        if required <= Gate.ANONYMOUS:
            return domain.GateResult(capability, True, Gate.ANONYMOUS)

        # Authenticated.
        if not _is_live(session, account_id):
            return stop(Gate.ANONYMOUS, GateFailure.LOGIN_REQUIRED)
        assert session is not None
        account_id = session.account_id
        if required <= Gate.AUTHENTICATED:
            return domain.GateResult(capability, True, Gate.AUTHENTICATED)

        # Verified.
        try:
            account = lookups.get_profile(self.profiles, account_id)
        except store.Unavailable as e:
            logger.warning('Profile store unavailable: %s', e)
            raise TransientStoreError() from e
        if account is None:
            logger.warning('Session for %s has no account record', account_id)
            return stop(Gate.ANONYMOUS, GateFailure.LOGIN_REQUIRED)
        if not self._is_verified(account, session):
            return stop(Gate.AUTHENTICATED, GateFailure.VERIFICATION_REQUIRED)
        if required <= Gate.VERIFIED:
            return domain.GateResult(capability, True, Gate.VERIFIED)

        # Entitled.
        tier = self.current_tier(account_id)
        if not domain.Tier.dominates(tier, capability.required_tier):
            return stop(Gate.VERIFIED, GateFailure.UPGRADE_REQUIRED)
        return domain.GateResult(capability, True, Gate.ENTITLED)

    def current_tier(self, account_id: str) -> str:
        """
        Ask the entitlement source for the account's tier, right now.

        Never cached, so a downgrade takes effect on the next request.
        """
        try:
            return self.entitlements.current_tier(account_id)
        except store.NoSuchAccount:
            logger.debug('No entitlement for %s; treating as free', account_id)
            return domain.Tier.FREE
        except store.StoreError as e:
            logger.warning('Entitlement source unavailable: %s', e)
            raise TransientStoreError() from e

    def _is_verified(self, account: domain.Account,
                     session: domain.Session) -> bool:
        if account.verified_at is not None:
            return True
        if session.provider in self.preverified_providers:
            return True
        # The address may have been confirmed since the record was written.
        try:
            confirmed = lookups.is_email_verified(self.credentials,
                                                  account.account_id)
        except store.NoSuchAccount:
            return False
        except store.StoreError as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e
        if not confirmed:
            return False
        try:
            self.profiles.mark_verified(account.account_id, now())
        except store.StoreError as e:
            logger.warning('Could not stamp verification for %s: %s',
                           account.account_id, e)
        else:
            logger.info('Marked %s as verified', account.account_id)
        return True

    def resend_verification(self, session: Optional[domain.Session]) \
            -> datetime:
        """
        Ask the identity provider to send a new verification message.

        Returns
        -------
        datetime
            When the message was sent.

        Raises
        ------
        :class:`.SessionRequired`
            There is no live session.
        :class:`.VerificationThrottled`
            A message was sent too recently; see ``retry_after``.
        :class:`.TransientStoreError`

        """
        if not _is_live(session, None):
            raise SessionRequired()
        assert session is not None
        try:
            return self.credentials.send_verification(session.account_id)
        except store.RateLimited as e:
            logger.debug('Verification resend for %s throttled',
                         session.account_id)
            raise VerificationThrottled(retry_after=e.retry_after) from e
        except store.NoSuchAccount as e:
            raise SessionRequired() from e
        except store.StoreError as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e


def _resolve(capability: Union[domain.Capability, str]) -> domain.Capability:
    if isinstance(capability, domain.Capability):
        return capability
    found = capabilities.get(capability)
    if found is None:
        raise ValueError(f'Unknown capability: {capability}')
    return found


def _is_live(session: Optional[domain.Session],
             account_id: Optional[str]) -> bool:
    if session is None or session.expired:
        return False
    return account_id is None or session.account_id == account_id
