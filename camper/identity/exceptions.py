"""
Errors surfaced to callers of the identity gateway.

Store-level failures never reach callers directly; they are translated into
one of these at the boundary of each component. Every error says whether the
caller may retry with the same input (:attr:`IdentityError.retryable`) and
carries a message that is safe to show to the end user.
"""

from typing import Optional


class IdentityError(RuntimeError):
    """Base class for gateway errors."""

    retryable = False
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)


class HandleTaken(IdentityError):
    """The requested handle belongs to another account."""

    retryable = True
    user_message = "That handle is already taken. Please choose another one."


class EmailInUse(IdentityError):
    """The e-mail address already belongs to a different account."""

    user_message = "That email is already in use. Try signing in instead."


class TransientStoreError(IdentityError):
    """A backing store was unavailable or timed out."""

    retryable = True
    user_message = "We couldn't reach our servers. Please try again."


class PermissionDenied(IdentityError):
    """The store refused the write. Details are logged, never shown."""

    retryable = True
    user_message = ("We couldn't finish setting up your account."
                    " Please try again.")


class WrongPassword(IdentityError):
    """Re-authentication with the primary provider failed."""

    retryable = True
    user_message = "Incorrect password. Please try again."


class ProviderAlreadyLinked(IdentityError):
    """The account already holds a credential for the pending provider."""

    user_message = ("This sign-in method is already linked to an account."
                    " Sign in with it directly instead.")


class CredentialInUse(IdentityError):
    """The pending credential is bound to a different account."""

    user_message = ("This sign-in method is already in use by another"
                    " account. Sign in with it directly instead.")


class SessionRequired(IdentityError):
    """An action needs a live session and the caller has none."""

    user_message = "Please sign in, or create an account, to continue."


class VerificationThrottled(IdentityError):
    """A verification message was sent too recently."""

    retryable = True
    user_message = ("We recently sent you a verification link. Please wait"
                    " a moment before requesting another.")

    def __init__(self, message: Optional[str] = None,
                 retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
