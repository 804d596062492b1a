"""Media asset records, roles and access grants."""

from adaptive_media.modules.media.models import (
    MediaAsset,
    MediaAccessGrant,
    MediaKind,
    ProcessingStatus,
    UserRole,
)
from adaptive_media.modules.media.repository import AccessRepository, MediaAssetRepository

__all__ = [
    "MediaAsset",
    "MediaAccessGrant",
    "MediaKind",
    "ProcessingStatus",
    "UserRole",
    "AccessRepository",
    "MediaAssetRepository",
]
