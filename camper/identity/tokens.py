"""Functions for working with session tokens on requests."""

import jwt

from . import domain
from .stores.exceptions import InvalidToken


def encode(session: domain.Session, secret: str) -> str:
    """Encode session information as a signed JWT."""
    return jwt.encode(domain.to_dict(session), secret, algorithm='HS256')


def decode(token: str, secret: str) -> domain.Session:
    """Decode a session token to access session information."""
    try:
        data: dict = jwt.decode(token, secret, algorithms=['HS256'])
    except jwt.exceptions.InvalidTokenError as e:
        raise InvalidToken('Not a valid token') from e
    try:
        return domain.from_dict(domain.Session, data)
    except (TypeError, ValueError) as e:
        raise InvalidToken('Token payload malformed') from e
