"""Defines identity and authorization concepts for the camper gateway."""

from typing import Any, Optional, NamedTuple, List, Callable, Union
from datetime import datetime
from functools import partial
import typing
import logging

import dateutil.parser
from pytz import UTC

logger = logging.getLogger(__name__)

UNLIMITED = -1
"""Sentinel for ``remaining`` when a tier bypasses the quota ledger."""


class Tier:
    """Entitlement tiers, from least to most privileged."""

    FREE = 'free'
    PRO = 'pro'
    ADMIN = 'admin'
    ORDER = [FREE, PRO, ADMIN]

    @classmethod
    def rank(cls, tier: Optional[str]) -> int:
        """Position of ``tier`` in :attr:`ORDER`; unknown tiers rank as free."""
        if tier not in cls.ORDER:
            return 0
        return cls.ORDER.index(tier)

    @classmethod
    def dominates(cls, held: Optional[str], required: str) -> bool:
        """Whether ``held`` is at least as privileged as ``required``."""
        return cls.rank(held) >= cls.rank(required)

    @classmethod
    def bypasses_quota(cls, tier: Optional[str]) -> bool:
        """Paid and staff tiers are not metered by the quota ledger."""
        return tier in (cls.PRO, cls.ADMIN)


class Gate:
    """Stages of the authorization ladder, in evaluation order."""

    ANONYMOUS = 0
    AUTHENTICATED = 1
    VERIFIED = 2
    ENTITLED = 3

    NAMES = {
        ANONYMOUS: 'anonymous',
        AUTHENTICATED: 'authenticated',
        VERIFIED: 'verified',
        ENTITLED: 'entitled',
    }


class GateFailure:
    """Where a capability request stopped, so the caller can render a next step."""

    LOGIN_REQUIRED = 'login_required'
    VERIFICATION_REQUIRED = 'verification_required'
    UPGRADE_REQUIRED = 'upgrade_required'
    QUOTA_EXCEEDED = 'quota_exceeded'

    NEXT_ACTIONS = {
        LOGIN_REQUIRED: 'Sign in or create an account to continue.',
        VERIFICATION_REQUIRED: 'Verify your email address to continue. We can'
                               ' send you a new verification link.',
        UPGRADE_REQUIRED: 'Upgrade your membership to unlock this feature.',
        QUOTA_EXCEEDED: "You've hit today's limit. Try again tomorrow, or"
                        " upgrade for unlimited use.",
    }


class Provider:
    """Known credential providers."""

    PASSWORD = 'password'
    APPLE = 'apple.com'
    GOOGLE = 'google.com'


class Account(NamedTuple):
    """The application-level identity record."""

    account_id: str
    """Stable, provider-independent primary key."""

    email: Optional[str]
    """Primary e-mail address. Some providers do not disclose one."""

    handle: str
    """Unique, mutable, slug-like public name."""

    display_name: str
    """Free-form name shown alongside the handle."""

    tier: str = Tier.FREE
    """Membership tier recorded on the profile. See :class:`Tier`."""

    verified_at: Optional[datetime] = None
    """When the e-mail address was verified, if it has been."""

    created_at: Optional[datetime] = None
    """When the account record was created."""

    photo_ref: Optional[str] = None
    """Opaque reference to the profile photo in external media storage."""

    @property
    def verified(self) -> bool:
        """Whether the account has an explicit verification timestamp."""
        return self.verified_at is not None


class CredentialBinding(NamedTuple):
    """One ``(provider, subject_id)`` pair bound to exactly one account."""

    provider: str
    subject_id: str
    account_id: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None


class ProviderAssertion(NamedTuple):
    """An unconsumed credential presented by an identity provider."""

    provider: str
    """The provider that issued the assertion, e.g. ``apple.com``."""

    subject_id: str
    """The provider's stable identifier for the user."""

    email: Optional[str] = None
    """E-mail claim, if the provider disclosed one."""

    display_name: Optional[str] = None
    """Name claim, if the provider disclosed one."""

    token: Optional[str] = None
    """Raw provider credential (e.g. an identity token), passed through opaquely."""


class PendingLinkRequest(NamedTuple):
    """
    A secondary-provider credential awaiting proof of primary ownership.

    Held by the client while the user supplies the primary provider's
    password. Never persisted; discarding it has no side effects.
    """

    assertion: ProviderAssertion
    email: str
    account_id: str
    primary_provider: str


class SignInOutcome(NamedTuple):
    """Classification of a sign-in attempt."""

    NEW_ACCOUNT = 'new_account'  # type: ignore
    EXISTING_ACCOUNT = 'existing_account'  # type: ignore
    LINK_REQUIRED = 'link_required'  # type: ignore

    kind: str
    assertion: ProviderAssertion
    account_id: Optional[str] = None
    pending: Optional[PendingLinkRequest] = None


class Session(NamedTuple):
    """An authenticated session for an account."""

    session_id: str
    """Unique identifier for the session."""

    account_id: str
    """The account for which the session was created."""

    provider: str
    """The provider whose credential established the session."""

    start_time: datetime
    """When the session was created."""

    end_time: Optional[datetime] = None
    """When the session ends."""

    nonce: Optional[str] = None
    """A pseudo-random nonce generated when the session was created."""

    @property
    def expired(self) -> bool:
        """Expired if the current time is later than :attr:`.end_time`."""
        return bool(self.end_time is not None
                    and datetime.now(tz=UTC) >= self.end_time)

    @property
    def expires(self) -> Optional[int]:
        """
        Number of seconds until the session expires.

        If the session is already expired, returns 0.
        """
        if self.end_time is None:
            return None
        duration = (self.end_time - datetime.now(tz=UTC)).total_seconds()
        return int(max(duration, 0))


class SignInResult(NamedTuple):
    """What a sign-in or sign-up flow produced."""

    outcome: SignInOutcome
    account: Optional[Account] = None
    """The signed-in account, unless a link is still pending."""

    session: Optional[Session] = None

    @property
    def link_required(self) -> bool:
        """Whether the caller must collect the primary provider's password."""
        return self.outcome.kind == SignInOutcome.LINK_REQUIRED


class Capability(NamedTuple):
    """Something an account may ask to do, and the gate it must clear."""

    key: str
    """Stable identifier, e.g. ``photos:upload``."""

    requires: int
    """Minimum :class:`Gate` that must be cleared."""

    required_tier: str = Tier.FREE
    """Tier checked by the entitled gate."""

    resource_kind: Optional[str] = None
    """Quota ledger resource consumed by each use, if metered."""

    def __str__(self) -> str:
        return self.key


class GateResult(NamedTuple):
    """Outcome of evaluating the gate chain for a capability."""

    capability: Capability
    passed: bool
    cleared: int
    """The highest :class:`Gate` that was cleared before evaluation stopped."""

    failure: Optional[str] = None
    """A :class:`GateFailure` code when ``passed`` is ``False``."""

    @property
    def next_action(self) -> Optional[str]:
        """User-facing description of what to do next."""
        if self.failure is None:
            return None
        return GateFailure.NEXT_ACTIONS.get(self.failure)


class QuotaEntry(NamedTuple):
    """Usage of one resource by one account on one day."""

    account_id: str
    resource_kind: str
    day_key: str
    count: int = 0
    tier_at_first_use: Optional[str] = None


class QuotaDecision(NamedTuple):
    """Result of :meth:`.QuotaLedger.check_and_increment`."""

    allowed: bool
    remaining: int
    """Uses left before this call was counted; ``-1`` means unlimited."""

    count: Optional[int] = None
    """Stored count after the increment, when the ledger was touched."""


class QuotaUsage(NamedTuple):
    """Read-only view of today's usage, as reported by the quota ledger."""

    entry: QuotaEntry
    limit: int
    """Daily limit for the account's tier; ``-1`` means unlimited."""

    remaining: int


class AccessDecision(NamedTuple):
    """Combined gate and quota outcome for a capability request."""

    gate: GateResult
    quota: Optional[QuotaDecision] = None

    @property
    def allowed(self) -> bool:
        """Whether the caller may proceed with the action."""
        return self.gate.passed and (self.quota is None or self.quota.allowed)

    @property
    def failure(self) -> Optional[str]:
        """Where the request stopped, if it did."""
        if not self.gate.passed:
            return self.gate.failure
        if self.quota is not None and not self.quota.allowed:
            return GateFailure.QUOTA_EXCEEDED
        return None


# Helpers and private functions.


def to_dict(obj: tuple) -> dict:
    """
    Generate a dict representation of a NamedTuple instance.

    This just uses the built-in ``_asdict`` method on the intance, but also
    calls this on any child NamedTuple instances (recursively) so that the
    entire tree is cast to ``dict``.

    Parameters
    ----------
    obj : tuple
        A NamedTuple instance.

    Returns
    -------
    dict

    """
    if not hasattr(obj, '_asdict'):  # NamedTuple-generated classes have this.
        return {}
    data = obj._asdict()  # type: ignore

    def _cast(obj: Any) -> Any:
        if hasattr(obj, '_asdict'):
            obj = to_dict(obj)
        elif isinstance(obj, datetime):
            obj = obj.isoformat()
        elif isinstance(obj, list):
            obj = [_cast(o) for o in obj]
        return obj

    return {key: _cast(value) for key, value in data.items()}


def from_dict(cls: type, data: dict) -> Any:
    """
    Generate a NamedTuple instance from a dict, with recursion.

    This is the inverse of :func:`to_dict`. Fields typed with another
    NamedTuple class are instantiated from nested dicts, and ISO-8601
    strings are parsed for fields typed as :class:`datetime`.

    Parameters
    ----------
    cls: type
        Any NamedTuple class.

    data: dict
        Data with which to instantiate ``cls`` and its children.

    Returns
    -------
    NamedTuple
        An instance of ``cls``.
    """
    _data = {}
    for field, field_type in typing.get_type_hints(cls).items():
        if field not in data or field not in cls._fields:  # type: ignore
            continue
        value = data[field]
        target_type = _get_cast_type(field_type, value)
        if target_type:
            value = target_type(value)
        _data[field] = value
    return cls(**_data)


def _candidate_types(field_type: Any) -> List[Any]:
    """Unpack ``Optional``/``Union`` annotations into their member types."""
    if typing.get_origin(field_type) is Union:
        return list(typing.get_args(field_type))
    return [field_type]


def _is_a_namedtuple(field_type: Any) -> bool:
    """Determine whether or not a field type is a NamedTuple class."""
    return isinstance(field_type, type) and hasattr(field_type, '_fields')


def _get_cast_type(field_type: Any, value: Any) -> Optional[Callable]:
    """Get a casting callable for a field type/value."""
    candidates = _candidate_types(field_type)
    if type(value) is dict:
        for s_type in candidates:
            if s_type is dict:
                return None
            if _is_a_namedtuple(s_type):
                return partial(from_dict, s_type)
    elif type(value) is str and datetime in candidates:
        return dateutil.parser.parse
    return None
