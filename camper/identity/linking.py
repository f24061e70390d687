"""
Detects and resolves e-mail collisions across credential providers.

When someone signs in with a provider whose e-mail address is already bound
to a different provider, nothing is created. The sign-in is classified as
``link_required`` and the unconsumed assertion is handed back inside a
:class:`.domain.PendingLinkRequest`. The link is completed by
:meth:`CredentialLinkingResolver.complete_link`, which binds the new provider
only after the user has re-proven ownership of the existing account with its
password.
"""

from typing import List, Optional
import logging

from . import domain, lookups
from .exceptions import CredentialInUse, ProviderAlreadyLinked, \
    TransientStoreError, WrongPassword
from .stores import exceptions as store
from .stores.base import CredentialStore, ProfileStore
from .stores.util import normalize_email

logger = logging.getLogger(__name__)


class CredentialLinkingResolver(object):
    """Classifies sign-in attempts and completes pending links."""

    def __init__(self, credentials: CredentialStore,
                 profiles: ProfileStore) -> None:
        self.credentials = credentials
        self.profiles = profiles

    def resolve_sign_in(self, assertion: domain.ProviderAssertion) \
            -> domain.SignInOutcome:
        """
        Classify a sign-in attempt.

        Assertions without an e-mail claim skip collision detection and are
        treated as a direct sign-in: we cannot detect what we cannot observe.

        Returns
        -------
        :class:`.domain.SignInOutcome`
            ``existing_account`` if the provider subject, or another subject
            of the same provider, is bound to the address; ``new_account`` if
            nothing is bound; otherwise ``link_required``.

        Raises
        ------
        :class:`.TransientStoreError`

        """
        try:
            binding = lookups.find_binding(self.credentials,
                                           assertion.provider,
                                           assertion.subject_id)
            if binding is not None:
                return _existing(assertion, binding.account_id)

            email = normalize_email(assertion.email)
            if email is None:
                logger.debug('No email claim from %s; skipping collision'
                             ' detection', assertion.provider)
                return domain.SignInOutcome(domain.SignInOutcome.NEW_ACCOUNT,
                                            assertion)
            bindings = lookups.find_bindings(self.credentials, email)
        except store.Unavailable as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e

        if not bindings:
            return domain.SignInOutcome(domain.SignInOutcome.NEW_ACCOUNT,
                                        assertion)
        for binding in bindings:
            if binding.provider == assertion.provider:
                return _existing(assertion, binding.account_id)

        primary = _primary_binding(bindings)
        logger.info('%s sign-in collides with %s on %s', assertion.provider,
                    primary.provider, primary.account_id)
        pending = domain.PendingLinkRequest(
            assertion=assertion,
            email=email,
            account_id=primary.account_id,
            primary_provider=primary.provider
        )
        return domain.SignInOutcome(domain.SignInOutcome.LINK_REQUIRED,
                                    assertion, account_id=primary.account_id,
                                    pending=pending)

    def complete_link(self, pending: domain.PendingLinkRequest,
                      password: str) -> Optional[domain.Account]:
        """
        Bind the pending credential after re-authenticating the owner.

        The password check always happens first. If it fails, nothing is
        written and the pending request should be discarded.

        Returns
        -------
        :class:`.domain.Account` or None
            The account the credential was bound to; ``None`` if that
            account has a credential but no record yet, in which case the
            caller should bootstrap it.

        Raises
        ------
        :class:`.WrongPassword`
        :class:`.ProviderAlreadyLinked`
        :class:`.CredentialInUse`
            The credential is bound elsewhere, or the password belongs to
            an account other than the one the request targets.
        :class:`.TransientStoreError`

        """
        try:
            account_id = self.credentials.reauthenticate_with_password(
                pending.email, password
            )
        except store.InvalidPassword as e:
            logger.debug('Re-authentication failed for pending link')
            raise WrongPassword() from e
        except store.StoreError as e:
            logger.warning('Re-authentication unavailable: %s', e)
            raise TransientStoreError() from e

        if account_id != pending.account_id:
            logger.warning('Pending link targeted %s but password belongs'
                           ' to %s', pending.account_id, account_id)
            raise CredentialInUse()

        try:
            self.credentials.bind_provider_to_account(account_id,
                                                      pending.assertion)
        except store.BindingConflict as e:
            logger.info('Link of %s to %s refused: %s',
                        pending.assertion.provider, account_id, e.reason)
            if e.reason == store.BindingConflict.PROVIDER_ALREADY_LINKED:
                raise ProviderAlreadyLinked() from e
            raise CredentialInUse() from e
        except store.StoreError as e:
            logger.warning('Could not bind credential: %s', e)
            raise TransientStoreError() from e

        logger.info('Linked %s to %s', pending.assertion.provider, account_id)
        try:
            return lookups.get_profile(self.profiles, account_id)
        except store.Unavailable as e:
            raise TransientStoreError() from e


def _existing(assertion: domain.ProviderAssertion,
              account_id: str) -> domain.SignInOutcome:
    return domain.SignInOutcome(domain.SignInOutcome.EXISTING_ACCOUNT,
                                assertion, account_id=account_id)


def _primary_binding(bindings: List[domain.CredentialBinding]) \
        -> domain.CredentialBinding:
    """Prefer the password binding, since that is what we re-prove with."""
    for binding in bindings:
        if binding.provider == domain.Provider.PASSWORD:
            return binding
    return bindings[0]
