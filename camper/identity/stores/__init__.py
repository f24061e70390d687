"""
External systems consumed by the gateway.

:mod:`.base` defines the contracts. The SQL stores require an application
context with :func:`.util.init_app` applied; the Redis stores take a client
from :func:`.connections.get_redis`.
"""

from .base import CredentialStore, ProfileStore, EntitlementSource, \
    QuotaStore
from .credentials import SQLCredentialStore
from .profiles import SQLProfileStore
from .quota import RedisQuotaStore
from .sessions import SessionStore
from .entitlements import ProfileEntitlementSource, StaticEntitlementSource
from .util import transaction, init_app, create_all, drop_all, \
    is_configured
from . import exceptions
