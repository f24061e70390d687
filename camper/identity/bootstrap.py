"""
Creates the application-level account record exactly once.

A credential must already exist for the account in the credential store.
:class:`AccountBootstrap` only writes the profile record, which must exist if
and only if such a credential exists. No compensating credential deletion is
attempted when the write fails: the credential can be reused on retry.
"""

from typing import Optional
import logging

from . import domain, handles, lookups
from .exceptions import EmailInUse, HandleTaken, PermissionDenied, \
    TransientStoreError
from .stores import exceptions as store
from .stores.base import CredentialStore, ProfileStore
from .stores.util import normalize_email, now

logger = logging.getLogger(__name__)


class AccountBootstrap(object):
    """Orchestrates creation of a new :class:`.domain.Account`."""

    def __init__(self, credentials: CredentialStore,
                 profiles: ProfileStore) -> None:
        self.credentials = credentials
        self.profiles = profiles

    def bootstrap(self, account_id: str, email: Optional[str],
                  display_name: Optional[str], handle: Optional[str] = None,
                  photo_ref: Optional[str] = None) -> domain.Account:
        """
        Create the account record for ``account_id``.

        Calling this again for an account that already has a record returns
        that record unchanged, so a cancelled or failed call is always safe
        to repeat.

        Parameters
        ----------
        account_id : str
        email : str or None
        display_name : str or None
        handle : str or None
            Requested handle. Normalized; if nothing is left, a handle is
            derived from ``display_name`` or, failing that, from
            ``account_id``. Derived handles that are taken are retried with
            the alternatives from :func:`.handles.fallbacks`.
        photo_ref : str or None
            Opaque reference to an already-uploaded profile photo.

        Returns
        -------
        :class:`.domain.Account`

        Raises
        ------
        :class:`.HandleTaken`
            The requested handle is taken, or every derived handle is.
            Retryable with a different handle.
        :class:`.EmailInUse`
            The address belongs to another account; sign in instead.
        :class:`.TransientStoreError`
        :class:`.PermissionDenied`

        """
        requested = handles.normalize(handle)
        candidates = [requested] if requested \
            else handles.fallbacks(display_name, account_id)

        existing = self._fetch_existing(account_id)
        if existing is not None:
            logger.debug('Record for %s already exists', account_id)
            return existing

        # Must precede the profile write; see the method docstring.
        self._refresh_credential_visibility(account_id)

        record = domain.Account(
            account_id=account_id,
            email=normalize_email(email),
            handle=candidates[0],
            display_name=(display_name or '').strip(),
            tier=domain.Tier.FREE,
            verified_at=None,
            created_at=now(),
            photo_ref=photo_ref
        )
        for candidate in candidates:
            record = record._replace(handle=candidate)
            try:
                account = self._create(record)
            except store.HandleConflict as e:
                if self._email_owned_elsewhere(record.email, account_id):
                    logger.info('Email for %s belongs to another account',
                                account_id)
                    raise EmailInUse() from e
                logger.info('Handle %s is taken', candidate)
                conflict = e
                continue
            logger.info('Bootstrapped account %s as @%s', account_id,
                        account.handle)
            return account
        raise HandleTaken() from conflict

    def _create(self, record: domain.Account) -> domain.Account:
        """Write ``record``; handle conflicts are left to the caller."""
        account_id = record.account_id
        try:
            return self.profiles.create_if_absent(account_id, record)
        except store.HandleConflict:
            raise
        except store.EmailConflict as e:
            logger.info('Email for %s belongs to another account', account_id)
            raise EmailInUse() from e
        except store.AccountConflict as e:
            # Lost a race with a concurrent bootstrap for the same account.
            logger.warning('Concurrent bootstrap for %s', account_id)
            raise EmailInUse() from e
        except store.Unavailable as e:
            logger.warning('Profile store unavailable: %s', e)
            raise TransientStoreError() from e
        except store.StoreError as e:
            logger.error('Profile write for %s failed: %s', account_id, e)
            raise PermissionDenied() from e

    def _fetch_existing(self, account_id: str) -> Optional[domain.Account]:
        try:
            return lookups.get_profile(self.profiles, account_id)
        except store.Unavailable as e:
            logger.warning('Profile store unavailable: %s', e)
            raise TransientStoreError() from e

    def _refresh_credential_visibility(self, account_id: str) -> None:
        """
        Force a credential-session refresh before the first profile write.

        The profile store authorizes writes against the caller's own
        credential, and a newly created credential can take a moment to
        become visible to it. Writing without this refresh fails with
        spurious permission errors on the very first write after sign-up.
        """
        try:
            self.credentials.force_session_refresh(account_id, issue=False)
        except store.Unavailable as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e
        except store.StoreError as e:
            logger.error('Session refresh for %s failed: %s', account_id, e)
            raise PermissionDenied() from e

    def _email_owned_elsewhere(self, email: Optional[str],
                               account_id: str) -> bool:
        if email is None:
            return False
        try:
            bindings = lookups.find_bindings(self.credentials, email)
        except store.Unavailable as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e
        return any(b.account_id != account_id for b in bindings)

