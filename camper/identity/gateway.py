"""
Composition root for the identity gateway.

:class:`Gateway` is constructed once, at application start, from explicitly
passed stores, and holds the four components: :class:`.AccountBootstrap`,
:class:`.CredentialLinkingResolver`, :class:`.AuthorizationGateChain` and
:class:`.QuotaLedger`. When the stores are not configured,
:func:`from_config` returns an :class:`Unconfigured` value instead, which
callers check for rather than catching errors from a half-built client.

Intended for use in a Flask application factory, for example:

.. code-block:: python

   from flask import Flask
   from camper.identity.gateway import IdentityGateway
   from someapp import routes


   def create_web_app() -> Flask:
      app = Flask('someapp')
      app.config.from_pyfile('config.py')
      IdentityGateway(app)   # Loads request.auth before each request.
      app.register_blueprint(routes.blueprint)
      return app

"""

from datetime import datetime
from typing import Any, Iterable, Mapping, NamedTuple, Optional, Union
import logging

from flask import Flask, current_app, request

from . import domain, lookups
from .bootstrap import AccountBootstrap
from .gates import AuthorizationGateChain, PREVERIFIED_PROVIDERS
from .linking import CredentialLinkingResolver
from .quota import DEFAULT_TIMEZONE, QuotaLedger
from .exceptions import CredentialInUse, EmailInUse, TransientStoreError, \
    WrongPassword
from .stores import connections, util
from .stores import exceptions as store
from .stores.base import CredentialStore, EntitlementSource, ProfileStore, \
    QuotaStore
from .stores.credentials import SQLCredentialStore
from .stores.entitlements import ProfileEntitlementSource
from .stores.profiles import SQLProfileStore
from .stores.quota import RedisQuotaStore
from .stores.sessions import SessionStore

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'identity_gateway'


class Unconfigured(NamedTuple):
    """The gateway cannot run, because its stores are not configured."""

    reason: str


class Gateway(object):
    """
    The identity and authorization gateway.

    Parameters
    ----------
    credentials : :class:`.CredentialStore`
    profiles : :class:`.ProfileStore`
    entitlements : :class:`.EntitlementSource`
    quota_store : :class:`.QuotaStore`
    sessions : :class:`.SessionStore`
        Resolves request tokens. Optional for callers that pass sessions
        around themselves.
    limits : dict
        Free-tier daily limits by resource kind.
    timezone : str
        Canonical timezone for quota day keys.
    preverified_providers : iterable
        Providers whose sessions count as verified.

    """

    def __init__(self, credentials: CredentialStore, profiles: ProfileStore,
                 entitlements: EntitlementSource, quota_store: QuotaStore,
                 sessions: Optional[SessionStore] = None,
                 limits: Optional[Mapping[str, int]] = None,
                 timezone: str = DEFAULT_TIMEZONE,
                 preverified_providers: Iterable[str] = PREVERIFIED_PROVIDERS)\
            -> None:
        self.credentials = credentials
        self.profiles = profiles
        self.sessions = sessions
        self.bootstrapper = AccountBootstrap(credentials, profiles)
        self.linking = CredentialLinkingResolver(credentials, profiles)
        self.gates = AuthorizationGateChain(profiles, credentials,
                                            entitlements,
                                            preverified_providers)
        self.ledger = QuotaLedger(quota_store, limits, timezone)

    # Components.

    def bootstrap(self, account_id: str, email: Optional[str],
                  display_name: Optional[str], handle: Optional[str] = None,
                  photo_ref: Optional[str] = None) -> domain.Account:
        """See :meth:`.AccountBootstrap.bootstrap`."""
        return self.bootstrapper.bootstrap(account_id, email, display_name,
                                           handle, photo_ref)

    def resolve_sign_in(self, assertion: domain.ProviderAssertion) \
            -> domain.SignInOutcome:
        """See :meth:`.CredentialLinkingResolver.resolve_sign_in`."""
        return self.linking.resolve_sign_in(assertion)

    def evaluate(self, capability: Union[domain.Capability, str],
                 account_id: Optional[str],
                 session: Optional[domain.Session] = None) -> domain.GateResult:
        """See :meth:`.AuthorizationGateChain.evaluate`."""
        return self.gates.evaluate(capability, account_id, session)

    def resend_verification(self, session: Optional[domain.Session]) \
            -> datetime:
        """See :meth:`.AuthorizationGateChain.resend_verification`."""
        return self.gates.resend_verification(session)

    def check_and_increment(self, account_id: str, resource_kind: str,
                            tier: Optional[str]) -> domain.QuotaDecision:
        """See :meth:`.QuotaLedger.check_and_increment`."""
        return self.ledger.check_and_increment(account_id, resource_kind, tier)

    def usage(self, account_id: str, resource_kind: str) -> domain.QuotaUsage:
        """Today's usage of ``resource_kind`` at the account's current tier."""
        return self.ledger.usage(account_id, resource_kind,
                                 self._tier_for_quota(account_id))

    # Flows.

    def sign_up(self, email: str, password: str,
                display_name: Optional[str], handle: Optional[str] = None,
                photo_ref: Optional[str] = None) -> domain.SignInResult:
        """
        Create a password account and its record, then start a session.

        Raises
        ------
        :class:`.EmailInUse`
            The address is bound to any provider already.
        :class:`.HandleTaken`
        :class:`.TransientStoreError`
        :class:`.PermissionDenied`

        """
        assertion = domain.ProviderAssertion(
            provider=domain.Provider.PASSWORD,
            subject_id=util.normalize_email(email) or '',
            email=email,
            display_name=display_name
        )
        outcome = self.linking.resolve_sign_in(assertion)
        if outcome.kind == domain.SignInOutcome.NEW_ACCOUNT:
            account_id = self._create_credential(assertion, password)
        elif outcome.kind == domain.SignInOutcome.EXISTING_ACCOUNT:
            # A retry after HandleTaken reuses the credential it created.
            account_id = self._reclaim_credential(email, password)
        else:
            logger.info('Sign-up refused; address belongs to another'
                        ' provider')
            raise EmailInUse()

        account = self.bootstrapper.bootstrap(account_id, email, display_name,
                                              handle, photo_ref)
        try:
            self.credentials.send_verification(account_id)
        except store.StoreError as e:
            logger.warning('Could not send verification to %s: %s',
                           account_id, e)
        return domain.SignInResult(
            outcome._replace(account_id=account_id),
            account,
            self._start_session(account_id, domain.Provider.PASSWORD)
        )

    def sign_in(self, assertion: domain.ProviderAssertion) \
            -> domain.SignInResult:
        """
        Sign in with a provider assertion, creating the account if needed.

        A ``link_required`` result carries no account or session; collect
        the primary provider's password and call :meth:`complete_link`.
        """
        if assertion.provider == domain.Provider.PASSWORD:
            raise ValueError('Use sign_in_with_password for passwords')
        outcome = self.linking.resolve_sign_in(assertion)
        if outcome.kind == domain.SignInOutcome.LINK_REQUIRED:
            return domain.SignInResult(outcome)

        if outcome.kind == domain.SignInOutcome.NEW_ACCOUNT:
            account_id = self._create_credential(assertion)
            outcome = outcome._replace(account_id=account_id)
        else:
            account_id = outcome.account_id
        account = self._ensure_account(account_id, assertion.email,
                                       assertion.display_name)
        return domain.SignInResult(
            outcome, account,
            self._start_session(account_id, assertion.provider)
        )

    def sign_in_with_password(self, email: str, password: str) \
            -> domain.SignInResult:
        """
        Sign in with an e-mail address and password.

        Raises
        ------
        :class:`.WrongPassword`
        :class:`.TransientStoreError`

        """
        try:
            account_id = self.credentials.reauthenticate_with_password(
                email, password
            )
        except store.InvalidPassword as e:
            raise WrongPassword() from e
        except store.StoreError as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e
        assertion = domain.ProviderAssertion(
            provider=domain.Provider.PASSWORD,
            subject_id=util.normalize_email(email) or '',
            email=email
        )
        account = self._ensure_account(account_id, email, None)
        return domain.SignInResult(
            domain.SignInOutcome(domain.SignInOutcome.EXISTING_ACCOUNT,
                                 assertion, account_id=account_id),
            account,
            self._start_session(account_id, domain.Provider.PASSWORD)
        )

    def complete_link(self, pending: domain.PendingLinkRequest,
                      password: str) -> domain.SignInResult:
        """
        Link the pending provider, then sign in to the existing account.

        See :meth:`.CredentialLinkingResolver.complete_link`.
        """
        assertion = pending.assertion
        account = self.linking.complete_link(pending, password)
        if account is None:
            account = self.bootstrapper.bootstrap(pending.account_id,
                                                  pending.email,
                                                  assertion.display_name)
        outcome = domain.SignInOutcome(domain.SignInOutcome.EXISTING_ACCOUNT,
                                       assertion,
                                       account_id=account.account_id)
        return domain.SignInResult(
            outcome, account,
            self._start_session(account.account_id, assertion.provider)
        )

    def request(self, capability: Union[domain.Capability, str],
                account_id: Optional[str],
                session: Optional[domain.Session] = None) \
            -> domain.AccessDecision:
        """
        Check a capability request, and count it if it is metered.

        The quota ledger is consulted only after every gate the capability
        requires has passed.
        """
        gate = self.gates.evaluate(capability, account_id, session)
        resource_kind = gate.capability.resource_kind
        if not gate.passed or resource_kind is None or session is None:
            return domain.AccessDecision(gate)
        tier = self._tier_for_quota(session.account_id)
        quota = self.ledger.check_and_increment(session.account_id,
                                                resource_kind, tier)
        return domain.AccessDecision(gate, quota)

    # Sessions.

    def load_session(self, token: str) -> domain.Session:
        """Resolve a client token to its session."""
        if self.sessions is None:
            raise store.UnknownSession('No session store')
        return self.sessions.load(token)

    def generate_token(self, session: domain.Session) -> str:
        """Issue a client token for ``session``."""
        if self.sessions is None:
            raise store.UnknownSession('No session store')
        return self.sessions.generate_token(session)

    def sign_out(self, token: str) -> None:
        """End the session referenced by ``token``."""
        if self.sessions is not None:
            self.sessions.delete(token)

    # Helpers.

    def _create_credential(self, assertion: domain.ProviderAssertion,
                           password: Optional[str] = None) -> str:
        try:
            return self.credentials.create_credential(assertion, password)
        except store.BindingConflict as e:
            logger.info('Credential already bound: %s', e)
            if assertion.provider == domain.Provider.PASSWORD:
                raise EmailInUse() from e
            raise CredentialInUse() from e
        except store.InvalidPassword as e:
            raise ValueError('An email and password are required') from e
        except store.StoreError as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e

    def _reclaim_credential(self, email: str, password: str) -> str:
        """Reuse a password credential that never got an account record."""
        try:
            account_id = self.credentials.reauthenticate_with_password(
                email, password
            )
            existing = lookups.get_profile(self.profiles, account_id)
        except store.InvalidPassword as e:
            logger.info('Sign-up refused; address already has an account')
            raise EmailInUse() from e
        except store.StoreError as e:
            logger.warning('Credential store unavailable: %s', e)
            raise TransientStoreError() from e
        if existing is not None:
            logger.info('Sign-up refused; address already has an account')
            raise EmailInUse()
        return account_id

    def _ensure_account(self, account_id: str, email: Optional[str],
                        display_name: Optional[str]) -> domain.Account:
        try:
            account = lookups.get_profile(self.profiles, account_id)
        except store.Unavailable as e:
            raise TransientStoreError() from e
        if account is not None:
            return account
        # The credential exists but an earlier bootstrap never finished.
        logger.info('Completing bootstrap for %s', account_id)
        return self.bootstrapper.bootstrap(account_id, email, display_name)

    def _start_session(self, account_id: str,
                       provider: str) -> domain.Session:
        try:
            return self.credentials.force_session_refresh(account_id,
                                                          provider)
        except store.StoreError as e:
            logger.warning('Could not start session for %s: %s',
                           account_id, e)
            raise TransientStoreError() from e

    def _tier_for_quota(self, account_id: str) -> str:
        try:
            return self.gates.current_tier(account_id)
        except TransientStoreError:
            logger.warning('Tier unknown for %s; metering as free',
                           account_id)
            return domain.Tier.FREE


def from_config(config: Mapping[str, Any]) -> Union[Gateway, Unconfigured]:
    """
    Build a :class:`Gateway` from application configuration.

    The SQL stores need an application context initialized with
    :func:`.stores.util.init_app` at the time they are used.
    """
    if not util.is_configured(config):
        return Unconfigured('SQLALCHEMY_DATABASE_URI is not set')
    if not config.get('REDIS_FAKE') and not config.get('REDIS_HOST'):
        return Unconfigured('REDIS_HOST is not set')
    if not config.get('JWT_SECRET'):
        return Unconfigured('JWT_SECRET is not set')

    duration = int(config.get('SESSION_DURATION', '7200'))
    r = connections.get_redis(config)
    sessions = SessionStore(r, config['JWT_SECRET'], duration)
    credentials = SQLCredentialStore(
        sessions, duration,
        int(config.get('VERIFICATION_RESEND_INTERVAL', '60'))
    )
    profiles = SQLProfileStore()
    return Gateway(
        credentials, profiles, ProfileEntitlementSource(profiles),
        RedisQuotaStore(r), sessions,
        limits=config.get('QUOTA_DAILY_LIMITS'),
        timezone=config.get('QUOTA_TIMEZONE', DEFAULT_TIMEZONE),
        preverified_providers=config.get('PREVERIFIED_PROVIDERS',
                                         PREVERIFIED_PROVIDERS)
    )


def current_gateway() -> Union[Gateway, Unconfigured]:
    """The gateway attached to the current application."""
    gateway: Union[Gateway, Unconfigured] = \
        current_app.extensions.get(EXTENSION_KEY,
                                   Unconfigured('IdentityGateway not set up'))
    return gateway


class IdentityGateway(object):
    """Attaches the gateway to an app, and sessions to its requests."""

    def __init__(self, app: Optional[Flask] = None) -> None:
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """
        Build the gateway and attach :meth:`.load_session` to ``app``.

        Parameters
        ----------
        app : :class:`Flask`

        """
        app.config.setdefault('SQLALCHEMY_DATABASE_URI', None)
        app.config.setdefault('JWT_SECRET', None)
        app.config.setdefault('SESSION_DURATION', '7200')
        app.config.setdefault('AUTH_SESSION_COOKIE_NAME', 'CAMPER_SESSION_ID')
        app.config.setdefault('QUOTA_TIMEZONE', DEFAULT_TIMEZONE)
        app.config.setdefault('PREVERIFIED_PROVIDERS',
                              list(PREVERIFIED_PROVIDERS))
        app.config.setdefault('VERIFICATION_RESEND_INTERVAL', '60')
        connections.init_app(app)

        if util.is_configured(app.config):
            util.init_app(app)
        gateway = from_config(app.config)
        if isinstance(gateway, Unconfigured):
            logger.warning('Identity gateway is unconfigured: %s',
                           gateway.reason)
        app.extensions[EXTENSION_KEY] = gateway
        app.before_request(self.load_session)

    def load_session(self) -> None:
        """
        Look for an active session, and attach it to the request.

        The token is taken from an ``Authorization: Bearer`` header or,
        failing that, from the session cookie. ``request.auth`` is ``None``
        when there is no usable session.
        """
        request.auth = None
        gateway = current_gateway()
        if isinstance(gateway, Unconfigured):
            return
        token = _get_token()
        if token is None:
            return
        try:
            request.auth = gateway.load_session(token)
        except (store.InvalidToken, store.UnknownSession) as e:
            logger.debug('No valid session: %s', e)
        except store.Unavailable as e:
            logger.warning('Session store unavailable: %s', e)


def _get_token() -> Optional[str]:
    header = request.headers.get('Authorization')
    if header:
        scheme, _, value = header.partition(' ')
        if scheme.lower() == 'bearer' and value.strip():
            return value.strip()
    cookie_name = current_app.config['AUTH_SESSION_COOKIE_NAME']
    token: Optional[str] = request.cookies.get(cookie_name)
    return token
