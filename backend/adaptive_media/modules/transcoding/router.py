"""Transcoding API router."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_media.core.config import settings
from adaptive_media.core.database import get_db
from adaptive_media.core.security import get_current_principal
from adaptive_media.core.storage import StorageService
from adaptive_media.modules.access.guard import MediaAccessGuard, Principal
from adaptive_media.modules.delivery.dependencies import get_storage
from adaptive_media.modules.media.repository import AccessRepository, MediaAssetRepository
from adaptive_media.modules.transcoding.exceptions import (
    AssetNotFound,
    InputTooLarge,
    ProbeFailed,
    SourceNotFound,
    UnsupportedBucket,
)
from adaptive_media.modules.transcoding.schemas import (
    TranscodeEnqueueResponse,
    TranscodeRequest,
    TranscodeResponse,
)
from adaptive_media.modules.transcoding.service import TranscodeJob
from adaptive_media.modules.transcoding.tasks import enqueue_transcode

router = APIRouter(prefix="/transcode", tags=["transcoding"])


async def require_privileged(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Only privileged roles may start transcode jobs."""
    guard = MediaAccessGuard(AccessRepository(db), settings.PRIVILEGED_ROLES)
    if not await guard.is_privileged(principal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return principal


@router.post("", response_model=TranscodeEnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def queue_transcode(
    data: TranscodeRequest,
    principal: Principal = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
):
    """Queue a rendition ladder job for an uploaded video."""
    asset = await MediaAssetRepository(db).get_by_id(data.asset_id)
    if asset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media asset not found")
    task_id = enqueue_transcode(data)
    return TranscodeEnqueueResponse(asset_id=data.asset_id, task_id=task_id)


@router.post("/run", response_model=TranscodeResponse)
async def run_transcode_now(
    data: TranscodeRequest,
    principal: Principal = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """Run a rendition ladder job inside the request and return its manifest."""
    job = TranscodeJob.from_settings(MediaAssetRepository(db), storage=storage)
    try:
        outcome = await job.run(data)
    except (AssetNotFound, SourceNotFound) as e:
        await db.commit()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InputTooLarge as e:
        await db.commit()
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e)) from e
    except UnsupportedBucket as e:
        await db.commit()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ProbeFailed as e:
        await db.commit()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return TranscodeResponse.from_manifest(outcome.manifest, outcome.thumbnail_path)
