"""Pydantic schemas for media asset records."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from adaptive_media.modules.media.models import MediaKind, ProcessingStatus


class MediaAssetCreate(BaseModel):
    """Registers an object that was already uploaded to storage."""
    original_path: str = Field(..., min_length=1)
    file_size: Optional[int] = Field(None, ge=0)


class MediaAssetResponse(BaseModel):
    id: UUID
    kind: MediaKind
    original_path: str
    processed_path: Optional[str]
    thumbnail_path: Optional[str]
    file_size: Optional[int]
    width: Optional[int]
    height: Optional[int]
    duration: Optional[float]
    manifest: dict[str, Any]
    processing_status: ProcessingStatus
    processing_error: Optional[str]
    created_at: Optional[datetime]
    processed_at: Optional[datetime]

    class Config:
        from_attributes = True
