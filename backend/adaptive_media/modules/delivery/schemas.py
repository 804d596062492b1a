"""Pydantic schemas for media delivery."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from adaptive_media.modules.delivery.formats import ImageTransform


def to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class ResponseFormat(str, Enum):
    URL = "url"
    MANIFEST = "manifest"


class AdaptiveMediaRequest(BaseModel):
    """Request for a rendition URL or the full rendition manifest."""
    asset_id: UUID
    label: Optional[str] = Field(None, description="Rendition label, e.g. 720p")
    expires_in: int = Field(default=3600, ge=60, le=7 * 24 * 3600)
    format: ResponseFormat = ResponseFormat.URL


class RenditionUrl(BaseModel):
    """One playable rendition in a manifest response."""
    label: str
    width: int
    height: int
    bitrate: int  # kbps
    url: str
    size_bytes: Optional[int] = None


class MediaUrlResponse(BaseModel):
    url: str
    expires_at: datetime
    label: Optional[str] = None
    cached: bool = False


class ManifestResponse(BaseModel):
    asset_id: UUID
    manifest: list[RenditionUrl]
    original_path: str
    thumbnail_url: Optional[str] = None
    processing_status: str


class SecureMediaRequest(BaseModel):
    """Signed URL request for a stored path, optionally transformed."""
    path: str = Field(..., min_length=1)
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    quality: Optional[int] = Field(None, gt=0, le=100)
    format: Optional[str] = Field(None, pattern="^(webp|avif|jpeg|jpg|png|origin)$")
    resize: Optional[str] = None
    expires_in: Optional[int] = Field(None, ge=60, le=7 * 24 * 3600)

    def transform(self) -> Optional[ImageTransform]:
        if not any((self.width, self.height, self.quality, self.format)):
            return None
        return ImageTransform(
            width=self.width,
            height=self.height,
            quality=self.quality,
            format=self.format,
            resize=self.resize,
        )


class SecureMediaResponse(BaseModel):
    url: str
    expires_at: datetime
    cached: bool = False


class CacheStatsResponse(BaseModel):
    entries: int
    valid_entries: int
    max_entries: int
    hits: int
    misses: int
    hit_rate: float
