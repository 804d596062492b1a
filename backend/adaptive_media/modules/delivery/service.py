"""Media delivery: access check, URL cache, then signing.

Only the paths recorded on the asset are ever signed. The cache absorbs its
own persistence failures, so a broken store only costs extra signing calls.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Optional, Protocol

from adaptive_media.modules.access.guard import MediaAccessGuard, Principal
from adaptive_media.modules.delivery.cache import UrlCache, make_cache_key
from adaptive_media.modules.delivery.exceptions import NotFound
from adaptive_media.modules.delivery.formats import ImageTransform
from adaptive_media.modules.delivery.resolver import SecureUrlResolver
from adaptive_media.modules.delivery.schemas import (
    ManifestResponse,
    MediaUrlResponse,
    RenditionUrl,
    SecureMediaResponse,
    to_datetime,
)
from adaptive_media.modules.media.models import MediaAsset
from adaptive_media.modules.transcoding.ladder import parse_quality
from adaptive_media.modules.transcoding.manifest import TranscodeManifest

logger = logging.getLogger(__name__)

DEFAULT_TRANSFORM_FORMAT = "webp"


class AssetLookup(Protocol):
    async def get_by_id(self, asset_id: uuid.UUID) -> Optional[MediaAsset]: ...

    async def find_by_path(self, path: str) -> Optional[MediaAsset]: ...


@dataclass(frozen=True)
class DeliveredUrl:
    url: str
    expires_at: float
    cached: bool


class MediaDeliveryService:
    def __init__(
        self,
        assets: AssetLookup,
        guard: MediaAccessGuard,
        resolver: SecureUrlResolver,
        cache: Optional[UrlCache] = None,
        secure_expiry: int = 7200,
    ):
        self.assets = assets
        self.guard = guard
        self.resolver = resolver
        self.cache = cache
        self.secure_expiry = secure_expiry

    async def deliver(
        self,
        path: str,
        access_class: str,
        transform: Optional[ImageTransform] = None,
        expires_in: int = 3600,
    ) -> DeliveredUrl:
        """Signed URL for a path the caller was already authorized for."""
        key, format_class, applied = self.resolver.prepare(path, transform)
        cache_key = make_cache_key(key, applied, access_class)

        if self.cache is not None:
            entry = self.cache.get(cache_key)
            if entry is not None:
                return DeliveredUrl(url=entry.url, expires_at=entry.expires_at, cached=True)

        resolved = await self.resolver.issue_prepared(key, format_class, applied, expires_in)

        if self.cache is not None:
            self.cache.set(cache_key, resolved.url, resolved.expires_at, access_class)

        return DeliveredUrl(url=resolved.url, expires_at=resolved.expires_at, cached=False)

    async def _authorized_asset(self, principal: Principal, asset_id: uuid.UUID) -> tuple[MediaAsset, str]:
        asset = await self.assets.get_by_id(asset_id)
        if asset is None:
            raise NotFound(str(asset_id))
        decision = await self.guard.require_access(principal, asset.id)
        return asset, decision.access_class

    async def media_url(
        self,
        principal: Principal,
        asset_id: uuid.UUID,
        label: Optional[str] = None,
        expires_in: int = 3600,
    ) -> MediaUrlResponse:
        """URL of one rendition, falling back to the processed then original path.

        Raises:
            NotFound: Unknown asset or no stored path
            AccessDenied: Principal may not view the asset
        """
        asset, access_class = await self._authorized_asset(principal, asset_id)
        path, served_label = select_path(asset, label)
        if path is None:
            raise NotFound(str(asset_id))
        delivered = await self.deliver(path, access_class, expires_in=expires_in)
        return MediaUrlResponse(
            url=delivered.url,
            expires_at=to_datetime(delivered.expires_at),
            label=served_label,
            cached=delivered.cached,
        )

    async def manifest(
        self,
        principal: Principal,
        asset_id: uuid.UUID,
        expires_in: int = 3600,
    ) -> ManifestResponse:
        """Signed URLs for every successful rendition, lowest first.

        Renditions whose object has gone missing are left out.
        """
        asset, access_class = await self._authorized_asset(principal, asset_id)
        manifest = TranscodeManifest.from_record(str(asset.id), asset.manifest)

        entries = []
        for result in sorted(manifest.successful, key=lambda r: (r.height, r.bitrate)):
            if not result.path:
                continue
            try:
                delivered = await self.deliver(result.path, access_class, expires_in=expires_in)
            except NotFound:
                logger.warning(
                    "Rendition missing from storage",
                    extra={"asset_id": str(asset.id), "label": result.label, "path": result.path},
                )
                continue
            entries.append(
                RenditionUrl(
                    label=result.label,
                    width=result.width,
                    height=result.height,
                    bitrate=result.bitrate,
                    url=delivered.url,
                    size_bytes=result.size_bytes,
                )
            )

        thumbnail_url = None
        if asset.thumbnail_path:
            try:
                thumbnail_url = (
                    await self.deliver(asset.thumbnail_path, access_class, expires_in=expires_in)
                ).url
            except NotFound:
                thumbnail_url = None

        return ManifestResponse(
            asset_id=asset.id,
            manifest=entries,
            original_path=asset.original_path,
            thumbnail_url=thumbnail_url,
            processing_status=asset.processing_status.value,
        )

    async def secure_url(
        self,
        principal: Principal,
        path: str,
        transform: Optional[ImageTransform] = None,
        expires_in: Optional[int] = None,
    ) -> SecureMediaResponse:
        """Signed URL for a stored path owned by a media asset.

        Raises:
            InvalidPath: Malformed path
            NotFound: No asset owns the path, or the object is missing
            AccessDenied: Principal may not view the owning asset
        """
        key, _, _ = self.resolver.prepare(path)
        asset = await self.assets.find_by_path(key)
        if asset is None:
            raise NotFound(key)
        decision = await self.guard.require_access(principal, asset.id)

        if transform is not None and transform.format is None:
            transform = replace(transform, format=DEFAULT_TRANSFORM_FORMAT)

        delivered = await self.deliver(
            key,
            decision.access_class,
            transform=transform,
            expires_in=expires_in or self.secure_expiry,
        )
        return SecureMediaResponse(
            url=delivered.url,
            expires_at=to_datetime(delivered.expires_at),
            cached=delivered.cached,
        )


def select_path(asset: MediaAsset, label: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Stored path to serve for a requested label.

    Returns:
        The path and the label it corresponds to, or ``(None, None)``
    """
    manifest = TranscodeManifest.from_record(str(asset.id), asset.manifest)
    if label:
        quality = parse_quality(label)
        wanted = quality.value if quality is not None else label
        result = manifest.renditions.get(wanted)
        if result is not None and result.success and result.path:
            return result.path, wanted

    if asset.processed_path:
        best = manifest.best
        served = best.label if best is not None and best.path == asset.processed_path else None
        return asset.processed_path, served

    if asset.original_path:
        return asset.original_path, None
    return None, None
