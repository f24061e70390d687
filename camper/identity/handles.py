"""Normalization, fallback derivation and display rules for handles."""

from typing import List, Optional
import re

MAX_LENGTH = 30

_DISALLOWED = re.compile(r'[^a-z0-9_]')
_PLACEHOLDER = re.compile(r'^user\d+$')

# Common first names and placeholder words; these read as names, not handles.
COMMON_FIRST_NAMES = frozenset([
    "alana", "john", "jane", "mike", "michael", "sarah", "david", "emma",
    "james", "mary", "robert", "jennifer", "william", "linda", "richard",
    "elizabeth", "joseph", "barbara", "thomas", "susan", "charles", "jessica",
    "chris", "christopher", "daniel", "ashley", "matthew", "emily", "anthony",
    "megan", "mark", "hannah", "donald", "samantha", "steven", "katherine",
    "paul", "alexis", "andrew", "rachel", "joshua", "stephanie", "kenneth",
    "lauren", "kevin", "amanda", "brian", "nicole", "george", "natalie",
    "timothy", "victoria", "ronald", "rebecca", "edward", "anna", "jason",
    "caitlin", "jeffrey", "madison", "ryan", "grace", "jacob", "sophia",
    "gary", "olivia", "nicholas", "ava", "eric", "isabella", "jonathan", "mia",
    "stephen", "abigail", "larry", "chloe", "justin", "zoe", "scott", "lily",
    "brandon", "ella", "benjamin", "camper", "anonymous", "user", "guest",
    "unknown",
])


def normalize(raw: Optional[str]) -> str:
    """
    Normalize a requested handle for storage.

    Lowercases, drops any leading ``@``, strips every character outside
    ``[a-z0-9_]`` and truncates to :data:`MAX_LENGTH`. May return an empty
    string, in which case the caller should derive a fallback.
    """
    if not raw:
        return ''
    value = raw.strip().lstrip('@').lower()
    return _DISALLOWED.sub('', value)[:MAX_LENGTH]


def _hash_seed(seed: str) -> int:
    value = 5381
    for char in seed:
        value = ((value << 5) + value + ord(char)) & 0xFFFFFFFF
    return value


def camper_number(seed: str) -> str:
    """Deterministic, zero-padded number derived from ``seed``."""
    if not seed or not seed.strip():
        return '0000'
    return str(_hash_seed(seed) % 1000000).zfill(4)


def fallback(display_name: Optional[str], account_id: str) -> str:
    """Derive a handle when the requested one normalizes to nothing."""
    derived = normalize(display_name)
    if derived:
        return derived
    return f'camper{camper_number(account_id)}'


def fallbacks(display_name: Optional[str], account_id: str) -> List[str]:
    """
    Derived handles to try in order, for when earlier ones are taken.

    The first is :func:`fallback`. The next appends the account's camper
    number to it, and the last is the plain ``camperNNNN`` handle.
    """
    number = camper_number(account_id)
    derived = normalize(display_name)
    if not derived:
        return [f'camper{number}']
    candidates = [derived,
                  f'{derived[:MAX_LENGTH - len(number)]}{number}',
                  f'camper{number}']
    return [value for i, value in enumerate(candidates)
            if value not in candidates[:i]]


def is_valid_handle(value: Optional[str]) -> bool:
    """
    Check whether ``value`` looks like a deliberately chosen handle.

    Blank values, common first names, placeholder words, values containing
    spaces and ``userNNN`` patterns are rejected. Values with digits or
    underscores, or of eight or more characters, are accepted; other short
    alpha-only values must be at least four characters long.
    """
    if not value or not value.strip():
        return False
    raw = value.strip().lstrip('@')
    lower = raw.lower()
    if lower in COMMON_FIRST_NAMES or ' ' in lower:
        return False
    if _PLACEHOLDER.match(lower):
        return False
    if any(c.isdigit() for c in lower) or '_' in lower or len(lower) >= 8:
        return True
    return len(lower) >= 4


def display_handle(handle: Optional[str], account_id: Optional[str]) -> str:
    """
    Render a handle for attribution, e.g. ``@camper1``.

    Falls back to a deterministic ``@CamperNNNN`` derived from the account
    ID when the stored handle is missing or not a valid handle.
    """
    if handle and is_valid_handle(handle):
        return '@' + re.sub(r'\s+', '', handle.strip().lstrip('@'))
    return f'@Camper{camper_number(account_id or "")}'
