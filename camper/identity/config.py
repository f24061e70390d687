"""Flask configuration."""
import json
import secrets
import os

#################### Account database ####################
SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI', None)
"""Profile and credential store. Without it the gateway is unconfigured."""

SQLALCHEMY_TRACK_MODIFICATIONS = False

CREATE_DB = bool(int(os.environ.get('CREATE_DB', '0')))
"""Create the account tables when the application starts. Dev and test."""

STORE_TIMEOUT = os.environ.get('STORE_TIMEOUT', '5')
"""Seconds any single store call may take.

Applied as the Redis socket timeout and the SQL connection pool timeout.
"""

#################### Sessions and quota ####################
REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = os.environ.get('REDIS_PORT', '7000')
REDIS_DATABASE = os.environ.get('REDIS_DATABASE', '0')
REDIS_TOKEN = os.environ.get('REDIS_TOKEN', None)
"""This is the token used in the AUTH procedure."""
REDIS_CLUSTER = os.environ.get('REDIS_CLUSTER', '1')

REDIS_FAKE = os.environ.get('REDIS_FAKE', False)
"""Use the FakeRedis library instead of a redis service.

Useful for testing, dev, beta."""

JWT_SECRET = os.environ.get('JWT_SECRET', secrets.token_urlsafe(16))
"""Secret used to sign session tokens."""

SESSION_DURATION = os.environ.get('SESSION_DURATION', '7200')
"""Seconds a session lasts."""

AUTH_SESSION_COOKIE_NAME = os.environ.get('AUTH_SESSION_COOKIE_NAME',
                                          'CAMPER_SESSION_ID')

QUOTA_TIMEZONE = os.environ.get('QUOTA_TIMEZONE', 'America/Chicago')
"""Every client's day ends at midnight in this zone."""

QUOTA_DAILY_LIMITS = json.loads(
    os.environ.get('QUOTA_DAILY_LIMITS', '{"photoUpload": 1}')
)
"""Free-tier limits per resource kind, as JSON."""

#################### Verification ####################
PREVERIFIED_PROVIDERS = [
    provider.strip() for provider
    in os.environ.get('PREVERIFIED_PROVIDERS', 'apple.com,google.com')
    .split(',') if provider.strip()
]
"""Providers whose sign-ins count as e-mail verified."""

VERIFICATION_RESEND_INTERVAL = os.environ.get('VERIFICATION_RESEND_INTERVAL',
                                              '60')
"""Minimum seconds between verification messages for one account."""

#################### Logging ####################
LOG_JSON = bool(int(os.environ.get('LOG_JSON', '0')))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
