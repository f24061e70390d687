"""Read-only store calls that are safe to repeat, with retry logic."""

from typing import List, Optional

from retry import retry

from . import domain
from .stores.base import CredentialStore, ProfileStore
from .stores.exceptions import Unavailable


@retry(Unavailable, tries=3, delay=0.1, backoff=2)
def get_profile(profiles: ProfileStore,
                account_id: str) -> Optional[domain.Account]:
    """Load an account record."""
    return profiles.get(account_id)


@retry(Unavailable, tries=3, delay=0.1, backoff=2)
def find_bindings(credentials: CredentialStore,
                  email: str) -> List[domain.CredentialBinding]:
    """Load every binding associated with ``email``."""
    return credentials.find_bindings_by_email(email)


@retry(Unavailable, tries=3, delay=0.1, backoff=2)
def find_binding(credentials: CredentialStore, provider: str,
                 subject_id: str) -> Optional[domain.CredentialBinding]:
    """Load the binding for a provider subject."""
    return credentials.find_binding(provider, subject_id)


@retry(Unavailable, tries=3, delay=0.1, backoff=2)
def is_email_verified(credentials: CredentialStore, account_id: str) -> bool:
    """Ask the credential store whether the e-mail has been confirmed."""
    return credentials.is_email_verified(account_id)
