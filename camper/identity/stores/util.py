"""Helpers and Flask application integration for the SQL stores."""

from typing import Generator, Optional, Any
from datetime import datetime
from contextlib import contextmanager
from base64 import b64encode, b64decode
import hashlib
import logging
import secrets

from flask import Flask
from pytz import UTC
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, \
    TimeoutError as PoolTimeout
from sqlalchemy.orm.session import Session

from .models import db
from .exceptions import StoreError, Unavailable, StoreTimeout, \
    InvalidPassword

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 120000


def now() -> datetime:
    """Get the current time, in UTC."""
    return datetime.now(tz=UTC)


def aware(t: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to datetimes that the database handed back naive."""
    if t is None or t.tzinfo is not None:
        return t
    return UTC.localize(t)


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and trim an address; blank addresses become ``None``."""
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


@contextmanager
def transaction() -> Generator[Session, None, None]:
    """Context manager for database transaction."""
    try:
        yield db.session
        # The caller may have explicitly committed already, in order to
        # implement exception handling logic. We only want to commit here if
        # there is anything remaining that is not flushed.
        if db.session.new or db.session.dirty or db.session.deleted:
            db.session.commit()
    except (IntegrityError, StoreError) as e:
        # Constraint violations and store errors are expected outcomes.
        logger.debug('Rolling back: %s', str(e))
        db.session.rollback()
        raise
    except Exception as e:
        logger.error('Commit failed, rolling back: %s', str(e))
        db.session.rollback()
        raise


@contextmanager
def unavailable_on_error() -> Generator[None, None, None]:
    """
    Translate driver-level errors into store errors.

    Integrity errors pass through untouched, for the caller to classify.
    """
    try:
        yield
    except PoolTimeout as e:
        raise StoreTimeout('Timed out waiting for a connection') from e
    except IntegrityError:
        raise
    except OperationalError as e:
        if 'timeout' in str(e.orig).lower():
            raise StoreTimeout('Database call timed out') from e
        raise Unavailable('Database is temporarily unavailable') from e
    except DBAPIError as e:
        raise Unavailable('Database error') from e


def init_app(app: Flask) -> None:
    """Set configuration defaults and attach session to the application."""
    app.config.setdefault('SQLALCHEMY_TRACK_MODIFICATIONS', False)
    timeout = app.config.get('STORE_TIMEOUT')
    if timeout and not app.config['SQLALCHEMY_DATABASE_URI'].startswith(
            'sqlite'):
        app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS',
                              {'pool_timeout': float(timeout)})
    db.init_app(app)


def current_session() -> Session:
    """Get/create database session for this context."""
    return db.session


def create_all() -> None:
    """Create all tables in the database."""
    db.create_all()


def drop_all() -> None:
    """Drop all tables in the database."""
    db.drop_all()


def is_configured(config: Any) -> bool:
    """Determine whether or not the account database is configured."""
    return bool(config.get('SQLALCHEMY_DATABASE_URI'))


def _hash_salt_and_password(salt: bytes, password: str) -> bytes:
    return hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt,
                               PBKDF2_ITERATIONS)


def hash_password(password: str) -> str:
    """Generate a secure hash of a password."""
    salt = secrets.token_bytes(16)
    hashed = _hash_salt_and_password(salt, password)
    return b64encode(salt + hashed).decode('ascii')


def check_password(password: str, encrypted: str) -> None:
    """Check a password against an encrypted hash."""
    decoded = b64decode(encrypted)
    salt = decoded[:16]
    enc_hashed = decoded[16:]
    pass_hashed = _hash_salt_and_password(salt, password)
    if not secrets.compare_digest(pass_hashed, enc_hashed):
        raise InvalidPassword('Incorrect password')
