"""
Contracts for the external systems the gateway consumes.

The gateway components only ever talk to these interfaces. Concrete
implementations backed by SQL and Redis live alongside; a host application
may supply its own (for example, wrappers around a managed identity
provider) as long as they raise the exceptions in
:mod:`camper.identity.stores.exceptions`.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from .. import domain


class CredentialStore(ABC):
    """External identity provider: owns credentials and provider bindings."""

    @abstractmethod
    def create_credential(self, assertion: domain.ProviderAssertion,
                          password: Optional[str] = None) -> str:
        """Create a credential and its first binding; return the account ID."""

    @abstractmethod
    def find_bindings_by_email(self, email: str) \
            -> List[domain.CredentialBinding]:
        """All provider bindings associated with ``email``."""

    @abstractmethod
    def find_binding(self, provider: str, subject_id: str) \
            -> Optional[domain.CredentialBinding]:
        """The binding for a provider subject, if any."""

    @abstractmethod
    def bind_provider_to_account(self, account_id: str,
                                 assertion: domain.ProviderAssertion) \
            -> domain.CredentialBinding:
        """Attach the asserted provider credential to an existing account."""

    @abstractmethod
    def reauthenticate_with_password(self, email: str, password: str) -> str:
        """Prove ownership of a password credential; return its account ID."""

    @abstractmethod
    def force_session_refresh(self, account_id: str,
                              provider: Optional[str] = None,
                              issue: bool = True) \
            -> Optional[domain.Session]:
        """
        Refresh the credential so downstream stores can see it.

        Returns the reissued session, or ``None`` when ``issue`` is false.
        """

    @abstractmethod
    def is_email_verified(self, account_id: str) -> bool:
        """Whether the provider has observed the e-mail being verified."""

    @abstractmethod
    def send_verification(self, account_id: str) -> datetime:
        """Send a verification message; return when it was sent."""


class ProfileStore(ABC):
    """External document store holding account records."""

    @abstractmethod
    def create_if_absent(self, account_id: str,
                         record: domain.Account) -> domain.Account:
        """Create the record, enforcing handle and e-mail uniqueness."""

    @abstractmethod
    def get(self, account_id: str) -> Optional[domain.Account]:
        """The record for ``account_id``, if it exists."""

    @abstractmethod
    def mark_verified(self, account_id: str, when: datetime) -> None:
        """Stamp the verification time on the record."""

    @abstractmethod
    def handle_exists(self, handle: str) -> bool:
        """Whether any record holds ``handle``."""


class EntitlementSource(ABC):
    """Subscription and purchase oracle."""

    @abstractmethod
    def current_tier(self, account_id: str) -> str:
        """The account's active tier right now."""


class QuotaStore(ABC):
    """Counter store with an atomic increment primitive."""

    @abstractmethod
    def atomic_increment(self, key: str, tier: Optional[str] = None,
                         ttl: Optional[int] = None) -> int:
        """Increment ``key`` by one and return the new count."""

    @abstractmethod
    def get(self, key: str) -> Tuple[int, Optional[str]]:
        """The current count and first-use tier for ``key``."""
