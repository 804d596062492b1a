"""Media asset API router."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_media.core.config import settings
from adaptive_media.core.database import get_db
from adaptive_media.core.security import get_current_principal
from adaptive_media.modules.access.guard import MediaAccessGuard, Principal
from adaptive_media.modules.delivery.exceptions import InvalidPath
from adaptive_media.modules.delivery.formats import classify, media_kind, normalize_path
from adaptive_media.modules.media.repository import AccessRepository, MediaAssetRepository
from adaptive_media.modules.media.schemas import MediaAssetCreate, MediaAssetResponse

router = APIRouter(prefix="/media", tags=["media"])


@router.post("", response_model=MediaAssetResponse, status_code=status.HTTP_201_CREATED)
async def register_media(
    data: MediaAssetCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Record an uploaded object as a pending media asset."""
    try:
        key = normalize_path(data.original_path, settings.STORAGE_BUCKET)
    except InvalidPath as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    asset = await MediaAssetRepository(db).create(
        kind=media_kind(classify(key)),
        original_path=key,
        file_size=data.file_size,
    )
    return asset


@router.get("/{asset_id}", response_model=MediaAssetResponse)
async def get_media(
    asset_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Processing status and rendition manifest of an asset."""
    guard = MediaAccessGuard(AccessRepository(db), settings.PRIVILEGED_ROLES)
    if not await guard.can_access(principal, asset_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    asset = await MediaAssetRepository(db).get_by_id(asset_id)
    if asset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media asset not found")
    return asset
