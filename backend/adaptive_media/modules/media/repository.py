"""Repositories for media assets, roles and access grants."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_media.modules.media.models import (
    MediaAccessGrant,
    MediaAsset,
    MediaKind,
    ProcessingStatus,
    UserRole,
)


def recorded_paths(asset: MediaAsset) -> set[str]:
    """Every storage path recorded on ``asset``, rendition outputs included."""
    paths = {asset.original_path, asset.processed_path, asset.thumbnail_path}
    for record in (asset.manifest or {}).values():
        if isinstance(record, dict) and record.get("path"):
            paths.add(record["path"])
    paths.discard(None)
    return paths


class MediaAssetRepository:
    """Repository for MediaAsset operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        kind: MediaKind,
        original_path: str,
        file_size: Optional[int] = None,
        asset_id: Optional[uuid.UUID] = None,
    ) -> MediaAsset:
        """Create a pending media asset.

        Args:
            kind: Media kind
            original_path: Storage path of the uploaded original
            file_size: Size of the original in bytes
            asset_id: Explicit id, generated when omitted

        Returns:
            Created MediaAsset
        """
        asset = MediaAsset(
            id=asset_id or uuid.uuid4(),
            kind=kind,
            original_path=original_path,
            file_size=file_size,
            manifest={},
            processing_status=ProcessingStatus.PENDING,
        )
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def get_by_id(self, asset_id: uuid.UUID) -> Optional[MediaAsset]:
        """Get a media asset by ID."""
        result = await self.session.execute(
            select(MediaAsset).where(MediaAsset.id == asset_id)
        )
        return result.scalar_one_or_none()

    async def find_by_path(self, path: str) -> Optional[MediaAsset]:
        """Find the asset owning a stored path.

        Matches the recorded original, processed and thumbnail paths, then
        rendition keys under ``processed/{asset_id}/`` that the asset's
        manifest actually records.
        """
        result = await self.session.execute(
            select(MediaAsset)
            .where(
                or_(
                    MediaAsset.original_path == path,
                    MediaAsset.processed_path == path,
                    MediaAsset.thumbnail_path == path,
                )
            )
            .limit(1)
        )
        asset = result.scalar_one_or_none()
        if asset is not None:
            return asset

        parts = path.split("/")
        if len(parts) >= 3 and parts[0] == "processed":
            try:
                asset_id = uuid.UUID(parts[1])
            except ValueError:
                return None
            asset = await self.get_by_id(asset_id)
            if asset is not None and path in recorded_paths(asset):
                return asset
        return None

    async def mark_processing(self, asset: MediaAsset) -> None:
        asset.processing_status = ProcessingStatus.PROCESSING
        asset.processing_error = None
        await self.session.flush()

    async def record_source(
        self,
        asset: MediaAsset,
        width: int,
        height: int,
        duration: Optional[float],
        file_size: int,
    ) -> None:
        """Store probed properties of the original."""
        asset.width = width
        asset.height = height
        asset.duration = duration
        asset.file_size = file_size
        await self.session.flush()

    async def complete_processing(
        self,
        asset: MediaAsset,
        manifest: dict[str, Any],
        processed_path: Optional[str],
        thumbnail_path: Optional[str] = None,
    ) -> None:
        """Store a manifest with at least one successful rendition."""
        asset.manifest = manifest
        asset.processed_path = processed_path
        if thumbnail_path:
            asset.thumbnail_path = thumbnail_path
        asset.processing_status = ProcessingStatus.COMPLETED
        asset.processing_error = None
        asset.processed_at = datetime.utcnow()
        await self.session.flush()

    async def fail_processing(
        self,
        asset: MediaAsset,
        error_message: str,
        manifest: Optional[dict[str, Any]] = None,
    ) -> None:
        """Mark processing failed, keeping whatever per-rendition results exist."""
        if manifest is not None:
            asset.manifest = manifest
        asset.processing_status = ProcessingStatus.FAILED
        asset.processing_error = error_message
        asset.processed_at = datetime.utcnow()
        await self.session.flush()


class AccessRepository:
    """Read-only lookups of roles and per-media grants."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_roles(self, user_id: uuid.UUID) -> list[str]:
        result = await self.session.execute(
            select(UserRole.role).where(UserRole.user_id == user_id)
        )
        return list(result.scalars().all())

    async def has_grant(self, user_id: uuid.UUID, media_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(MediaAccessGrant.id)
            .where(MediaAccessGrant.user_id == user_id)
            .where(MediaAccessGrant.media_id == media_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
