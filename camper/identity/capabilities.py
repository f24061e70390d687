"""
Capabilities that callers may request, and the gate each one requires.

Each capability declares the minimum :class:`.Gate` that must be cleared
(see :mod:`camper.identity.gates`), the tier the entitled gate checks
against, and, for metered actions, the quota ledger resource each use
consumes. Rather than refer to capabilities by writing new objects, these
constants should be imported and used. For an example, see
:mod:`camper.identity.decorators`.
"""

from typing import Dict, Optional

from .domain import Capability, Gate, Tier

PHOTO_UPLOAD = 'photoUpload'
"""Quota ledger resource for community photo posts."""

DEFAULT_DAILY_LIMITS: Dict[str, int] = {
    PHOTO_UPLOAD: 1,
}
"""Per-resource daily limits for free-tier accounts."""


BROWSE_PARKS = Capability('parks:browse', Gate.ANONYMOUS)
"""Browse and search parks and campgrounds."""

SAVE_FAVORITE = Capability('favorites:create', Gate.AUTHENTICATED)
"""Save a park to the account's favorites."""

CREATE_TRIP = Capability('trips:create', Gate.AUTHENTICATED)
"""Create a trip plan."""

DELETE_ACCOUNT = Capability('account:delete', Gate.AUTHENTICATED)
"""
Request deletion of the account.

Deletion itself is carried out elsewhere; this only checks that the caller
holds a live session for the account.
"""

POST_COMMENT = Capability('community:comment', Gate.VERIFIED)
"""Comment on community posts."""

ASK_A_CAMPER = Capability('community:ask', Gate.VERIFIED)
"""Post a question to the community."""

UPLOAD_PHOTO = Capability('photos:upload', Gate.VERIFIED,
                          resource_kind=PHOTO_UPLOAD)
"""Post a photo. Free accounts are limited per day."""

UNLIMITED_UPLOADS = Capability('photos:unlimited', Gate.ENTITLED, Tier.PRO)
"""Post photos without a daily limit."""

MODERATE_CONTENT = Capability('content:moderate', Gate.ENTITLED, Tier.ADMIN)
"""Approve or remove flagged community content."""

REGISTRY: Dict[str, Capability] = {
    capability.key: capability for capability in [
        BROWSE_PARKS,
        SAVE_FAVORITE,
        CREATE_TRIP,
        DELETE_ACCOUNT,
        POST_COMMENT,
        ASK_A_CAMPER,
        UPLOAD_PHOTO,
        UNLIMITED_UPLOADS,
        MODERATE_CONTENT,
    ]
}

_HUMAN_LABELS = {
    BROWSE_PARKS: "Browse parks and campgrounds.",
    SAVE_FAVORITE: "Save parks to your favorites. Requires an account.",
    CREATE_TRIP: "Plan trips. Requires an account.",
    DELETE_ACCOUNT: "Delete your account and its data.",
    POST_COMMENT: "Comment on community posts. Requires a verified email.",
    ASK_A_CAMPER: "Ask the community a question. Requires a verified email.",
    UPLOAD_PHOTO: "Share photos with the community. Free members may post"
                  " one photo per day.",
    UNLIMITED_UPLOADS: "Share as many photos as you like. Requires a Pro"
                       " membership.",
    MODERATE_CONTENT: "Review flagged community content.",
}


def get(key: str) -> Optional[Capability]:
    """Look up a capability by its key."""
    return REGISTRY.get(key)


def get_human_label(capability: Capability) -> Optional[str]:
    """The human-readable label for a capability, for display to end users."""
    return _HUMAN_LABELS.get(capability)
