"""Grant management for warden."""

from .service import (
    GrantService,
    CAPABILITY_GRANT,
    CAPABILITY_REVOKE,
    RESOURCE_SHARE_ADD,
    RESOURCE_SHARE_REMOVE,
)

__all__ = [
    "GrantService",
    "CAPABILITY_GRANT",
    "CAPABILITY_REVOKE",
    "RESOURCE_SHARE_ADD",
    "RESOURCE_SHARE_REMOVE",
]
