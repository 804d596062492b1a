"""Pydantic schemas for the transcoding API."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from adaptive_media.core.config import settings
from adaptive_media.modules.transcoding.manifest import RenditionResult, TranscodeManifest


class TranscodeRequest(BaseModel):
    """Schema for requesting a rendition ladder for an uploaded video."""
    source_bucket: Optional[str] = Field(None, description="Bucket holding the source")
    source_path: str = Field(..., min_length=1, description="Storage path of the source video")
    asset_id: UUID
    target_labels: list[str] = Field(
        default_factory=lambda: list(settings.DEFAULT_RENDITION_LABELS),
        description="Quality labels to produce, e.g. 480p",
    )


class RenditionResponse(BaseModel):
    """Outcome of a single rendition."""
    label: str
    success: bool
    path: Optional[str] = None
    size_bytes: Optional[int] = None
    size_mb: Optional[float] = None
    compression_ratio: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: RenditionResult) -> "RenditionResponse":
        return cls(
            label=result.label,
            success=result.success,
            path=result.path,
            size_bytes=result.size_bytes,
            size_mb=result.size_mb,
            compression_ratio=result.compression_ratio,
            width=result.width,
            height=result.height,
            error=result.error,
        )


class TranscodeResponse(BaseModel):
    """Result of a completed transcode job."""
    asset_id: UUID
    success: bool
    status: str
    per_rendition: list[RenditionResponse]
    thumbnail_path: Optional[str] = None

    @classmethod
    def from_manifest(
        cls,
        manifest: TranscodeManifest,
        thumbnail_path: Optional[str] = None,
    ) -> "TranscodeResponse":
        ordered = sorted(manifest.renditions.values(), key=lambda r: (r.height, r.bitrate))
        return cls(
            asset_id=UUID(manifest.asset_id),
            success=manifest.status == "completed",
            status=manifest.status,
            per_rendition=[RenditionResponse.from_result(r) for r in ordered],
            thumbnail_path=thumbnail_path,
        )


class TranscodeEnqueueResponse(BaseModel):
    """Acknowledgement of a queued transcode job."""
    asset_id: UUID
    task_id: str
    status: str = "queued"
