"""Media access control."""

from adaptive_media.modules.access.exceptions import AccessDenied, AccessError
from adaptive_media.modules.access.guard import MediaAccessGuard, Principal

__all__ = [
    "AccessDenied",
    "AccessError",
    "MediaAccessGuard",
    "Principal",
]
