"""
Credentials and provider bindings in the SQL database.

This stands in for a managed identity provider. Each account holds one
credential row and one binding per provider; the password provider's
subject is the account's normalized e-mail address.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional
import logging
import math
import uuid

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from .. import domain
from . import util
from .base import CredentialStore
from .exceptions import BindingConflict, InvalidPassword, NoSuchAccount, \
    PermissionDenied, RateLimited
from .models import DBCredential, DBCredentialBinding
from .sessions import SessionStore

logger = logging.getLogger(__name__)

Sender = Callable[[str, str], None]
"""Delivers a verification message, given an e-mail address and account ID."""


class SQLCredentialStore(CredentialStore):
    """
    Credential store backed by ``camper_credentials`` and its bindings.

    Parameters
    ----------
    sessions : :class:`.SessionStore`
        Issues sessions on :meth:`force_session_refresh`. Without one,
        sessions are minted locally and are not persisted.
    duration : int
        Lifetime in seconds of locally minted sessions.
    resend_interval : int
        Minimum number of seconds between verification messages.
    sender : callable
        Delivers verification messages. Delivery is out of scope here; when
        absent, sends are only recorded.

    """

    def __init__(self, sessions: Optional[SessionStore] = None,
                 duration: int = 7200, resend_interval: int = 60,
                 sender: Optional[Sender] = None) -> None:
        self.sessions = sessions
        self.duration = duration
        self.resend_interval = resend_interval
        self.sender = sender

    def create_credential(self, assertion: domain.ProviderAssertion,
                          password: Optional[str] = None) -> str:
        """
        Create a credential with its first provider binding.

        Returns
        -------
        str
            The new account ID.

        Raises
        ------
        :class:`.BindingConflict`
            The provider subject or ``(provider, email)`` pair is already
            bound to an account.
        :class:`.InvalidPassword`
            A password credential was requested without a password.

        """
        email = util.normalize_email(assertion.email)
        subject_id = assertion.subject_id
        password_enc = None
        if assertion.provider == domain.Provider.PASSWORD:
            if not password or email is None:
                raise InvalidPassword('Password credentials need an email'
                                      ' and a password')
            subject_id = email
            password_enc = util.hash_password(password)

        account_id = str(uuid.uuid4())
        created_at = util.now()
        with util.unavailable_on_error():
            try:
                with util.transaction() as session:
                    self._check_unbound(session, assertion.provider,
                                        subject_id, email, account_id)
                    credential = DBCredential(
                        account_id=account_id,
                        email=email,
                        password_enc=password_enc,
                        email_verified=0,
                        created_at=created_at
                    )
                    session.add(credential)
                    session.add(DBCredentialBinding(
                        account_id=account_id,
                        provider=assertion.provider,
                        subject_id=subject_id,
                        email=email,
                        created_at=created_at
                    ))
                    session.commit()
            except IntegrityError as e:
                raise BindingConflict('Credential is bound to an account',
                                      BindingConflict.CREDENTIAL_IN_USE) from e
        logger.info('Created %s credential for %s', assertion.provider,
                    account_id)
        return account_id

    def find_bindings_by_email(self, email: str) \
            -> List[domain.CredentialBinding]:
        """Bindings whose e-mail, or whose account's e-mail, is ``email``."""
        email = util.normalize_email(email)
        if email is None:
            return []
        with util.unavailable_on_error():
            with util.transaction() as session:
                rows = session.query(DBCredentialBinding) \
                    .join(DBCredential) \
                    .filter(or_(DBCredentialBinding.email == email,
                                DBCredential.email == email)) \
                    .order_by(DBCredentialBinding.binding_id) \
                    .all()
                return [_to_domain(row) for row in rows]

    def find_binding(self, provider: str, subject_id: str) \
            -> Optional[domain.CredentialBinding]:
        """The binding for ``(provider, subject_id)``, if one exists."""
        if provider == domain.Provider.PASSWORD:
            subject_id = util.normalize_email(subject_id) or subject_id
        with util.unavailable_on_error():
            with util.transaction() as session:
                row = session.query(DBCredentialBinding) \
                    .filter(DBCredentialBinding.provider == provider) \
                    .filter(DBCredentialBinding.subject_id == subject_id) \
                    .first()
                return _to_domain(row) if row is not None else None

    def bind_provider_to_account(self, account_id: str,
                                 assertion: domain.ProviderAssertion) \
            -> domain.CredentialBinding:
        """
        Attach a provider credential to an existing account.

        Raises
        ------
        :class:`.BindingConflict`
            With reason ``provider-already-linked`` if the account already
            holds a credential for the provider, or ``credential-in-use`` if
            the credential belongs to a different account.
        :class:`.NoSuchAccount`

        """
        email = util.normalize_email(assertion.email)
        created_at = util.now()
        with util.unavailable_on_error():
            try:
                with util.transaction() as session:
                    credential = session.query(DBCredential) \
                        .filter(DBCredential.account_id == account_id) \
                        .first()
                    if credential is None:
                        raise NoSuchAccount(f'No credential for {account_id}')
                    for binding in credential.bindings:
                        if binding.provider == assertion.provider:
                            raise BindingConflict(
                                f'{assertion.provider} is already linked',
                                BindingConflict.PROVIDER_ALREADY_LINKED
                            )
                    self._check_unbound(session, assertion.provider,
                                        assertion.subject_id, email,
                                        account_id)
                    session.add(DBCredentialBinding(
                        account_id=account_id,
                        provider=assertion.provider,
                        subject_id=assertion.subject_id,
                        email=email,
                        created_at=created_at
                    ))
                    session.commit()
            except IntegrityError as e:
                raise BindingConflict('Credential is bound to an account',
                                      BindingConflict.CREDENTIAL_IN_USE) from e
        logger.info('Linked %s to %s', assertion.provider, account_id)
        return domain.CredentialBinding(
            provider=assertion.provider,
            subject_id=assertion.subject_id,
            account_id=account_id,
            email=email,
            created_at=created_at
        )

    def _check_unbound(self, session, provider: str, subject_id: str,
                       email: Optional[str], account_id: str) -> None:
        query = session.query(DBCredentialBinding) \
            .filter(DBCredentialBinding.provider == provider)
        if email is not None:
            query = query.filter(or_(
                DBCredentialBinding.subject_id == subject_id,
                DBCredentialBinding.email == email
            ))
        else:
            query = query.filter(DBCredentialBinding.subject_id == subject_id)
        existing = query.first()
        if existing is None:
            return
        if existing.account_id == account_id:
            raise BindingConflict(f'{provider} is already linked',
                                  BindingConflict.PROVIDER_ALREADY_LINKED)
        raise BindingConflict('Credential is bound to another account',
                              BindingConflict.CREDENTIAL_IN_USE)

    def reauthenticate_with_password(self, email: str, password: str) -> str:
        """
        Check a password against the password credential for ``email``.

        Unknown addresses fail the same way as wrong passwords.

        Raises
        ------
        :class:`.InvalidPassword`

        """
        subject_id = util.normalize_email(email)
        with util.unavailable_on_error():
            with util.transaction() as session:
                binding = session.query(DBCredentialBinding) \
                    .filter(DBCredentialBinding.provider
                            == domain.Provider.PASSWORD) \
                    .filter(DBCredentialBinding.subject_id == subject_id) \
                    .first()
                if binding is None or not binding.credential.password_enc:
                    logger.debug('No password credential for address')
                    raise InvalidPassword('Incorrect password')
                util.check_password(password, binding.credential.password_enc)
                return binding.account_id

    def force_session_refresh(self, account_id: str,
                              provider: Optional[str] = None,
                              issue: bool = True) \
            -> Optional[domain.Session]:
        """
        Refresh the credential for ``account_id``, and reissue its session.

        With ``issue`` false only the credential is refreshed, and no session
        is created.

        Raises
        ------
        :class:`.PermissionDenied`
            The credential is not (yet) visible.

        """
        with util.unavailable_on_error():
            with util.transaction() as session:
                credential = session.query(DBCredential) \
                    .filter(DBCredential.account_id == account_id) \
                    .first()
                if credential is None:
                    raise PermissionDenied(f'Credential {account_id} is not'
                                           ' visible')
                if provider is None:
                    providers = [b.provider for b in credential.bindings]
                    provider = providers[0] if providers \
                        else domain.Provider.PASSWORD
                credential.session_refreshed_at = util.now()
                session.add(credential)
        if not issue:
            logger.debug('Refreshed credential for %s', account_id)
            return None
        if self.sessions is not None:
            refreshed = self.sessions.create(account_id, provider)
        else:
            start_time = util.now()
            refreshed = domain.Session(
                session_id=str(uuid.uuid4()),
                account_id=account_id,
                provider=provider,
                start_time=start_time,
                end_time=start_time + timedelta(seconds=self.duration)
            )
        logger.debug('Refreshed session for %s', account_id)
        return refreshed

    def is_email_verified(self, account_id: str) -> bool:
        """Whether the account's e-mail address has been confirmed."""
        with util.unavailable_on_error():
            with util.transaction() as session:
                credential = session.query(DBCredential) \
                    .filter(DBCredential.account_id == account_id) \
                    .first()
                if credential is None:
                    raise NoSuchAccount(f'No credential for {account_id}')
                return bool(credential.email_verified)

    def confirm_email(self, account_id: str) -> None:
        """Record that the owner followed a verification link."""
        with util.unavailable_on_error():
            with util.transaction() as session:
                credential = session.query(DBCredential) \
                    .filter(DBCredential.account_id == account_id) \
                    .first()
                if credential is None:
                    raise NoSuchAccount(f'No credential for {account_id}')
                credential.email_verified = 1
                session.add(credential)
        logger.info('Confirmed email for %s', account_id)

    def send_verification(self, account_id: str) -> datetime:
        """
        Send a verification message, at most once per resend interval.

        Raises
        ------
        :class:`.RateLimited`
            A message was sent less than ``resend_interval`` seconds ago.
        :class:`.NoSuchAccount`

        """
        sent_at = util.now()
        with util.unavailable_on_error():
            with util.transaction() as session:
                credential = session.query(DBCredential) \
                    .filter(DBCredential.account_id == account_id) \
                    .first()
                if credential is None:
                    raise NoSuchAccount(f'No credential for {account_id}')
                last = util.aware(credential.verification_sent_at)
                if last is not None:
                    elapsed = (sent_at - last).total_seconds()
                    if elapsed < self.resend_interval:
                        retry_after = math.ceil(self.resend_interval - elapsed)
                        raise RateLimited('Verification sent recently',
                                          retry_after=retry_after)
                credential.verification_sent_at = sent_at
                email = credential.email
                session.add(credential)
        if self.sender is not None and email:
            self.sender(email, account_id)
        logger.info('Sent verification to %s', account_id)
        return sent_at


def _to_domain(row: DBCredentialBinding) -> domain.CredentialBinding:
    return domain.CredentialBinding(
        provider=row.provider,
        subject_id=row.subject_id,
        account_id=row.account_id,
        email=row.email,
        created_at=util.aware(row.created_at)
    )
