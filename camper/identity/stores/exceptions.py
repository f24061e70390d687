"""Exceptions raised by store implementations."""

from typing import Optional


class StoreError(RuntimeError):
    """Base class for store failures."""


class Unavailable(StoreError):
    """The store is temporarily unavailable."""


class StoreTimeout(Unavailable):
    """A store call exceeded its time bound."""


class PermissionDenied(StoreError):
    """The store's authorization layer rejected the call."""


class HandleConflict(StoreError):
    """The handle uniqueness constraint was violated."""


class EmailConflict(StoreError):
    """The e-mail index already belongs to a different account."""


class AccountConflict(StoreError):
    """A record already exists for the account ID."""


class NoSuchAccount(StoreError):
    """No credential or record exists for the account."""


class InvalidPassword(StoreError):
    """Password is not correct."""


class BindingConflict(StoreError):
    """A provider credential could not be bound to the account."""

    PROVIDER_ALREADY_LINKED = 'provider-already-linked'
    CREDENTIAL_IN_USE = 'credential-in-use'

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class RateLimited(StoreError):
    """The call was refused because it was repeated too soon."""

    def __init__(self, message: str, retry_after: Optional[int] = None) \
            -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InvalidToken(StoreError):
    """A session token is malformed, forged or expired."""


class ExpiredToken(InvalidToken):
    """The session referenced by a token has expired."""


class UnknownSession(StoreError):
    """No session exists with the requested ID."""
