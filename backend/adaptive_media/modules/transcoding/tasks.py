"""Celery tasks for transcoding.

A job is never retried per rendition. The task as a whole is retried only
when storage infrastructure fails transiently before any rendition ran.
"""

import asyncio
import uuid

from celery import Task

from adaptive_media.core.celery_app import celery_app
from adaptive_media.core.database import async_session_maker, engine
from adaptive_media.core.retry import RETRY_CONFIGS
from adaptive_media.core.storage import StorageError
from adaptive_media.modules.media.repository import MediaAssetRepository
from adaptive_media.modules.transcoding.exceptions import TranscodeError
from adaptive_media.modules.transcoding.schemas import TranscodeRequest, TranscodeResponse
from adaptive_media.modules.transcoding.service import TranscodeJob

TRANSCODE_RETRY_CONFIG = RETRY_CONFIGS["transcode"]


def _run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    async def runner():
        try:
            return await coro
        finally:
            # Pooled connections belong to the loop that opened them
            await engine.dispose()

    return asyncio.run(runner())


class TranscodeTask(Task):
    """Base task for transcoding operations."""
    abstract = True
    max_retries = TRANSCODE_RETRY_CONFIG.max_attempts - 1

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Mark the asset failed when the task dies outside the job's own handling."""
        if isinstance(exc, TranscodeError):
            return  # already recorded on the asset by the job
        payload = args[0] if args else kwargs.get("payload")
        asset_id = payload.get("asset_id") if isinstance(payload, dict) else None
        if asset_id:
            _run(_mark_asset_failed(asset_id, f"{type(exc).__name__}: {exc}"))


async def _mark_asset_failed(asset_id: str, error: str) -> None:
    async with async_session_maker() as session:
        repo = MediaAssetRepository(session)
        asset = await repo.get_by_id(uuid.UUID(asset_id))
        if asset:
            await repo.fail_processing(asset, error)
            await session.commit()


@celery_app.task(bind=True, base=TranscodeTask, name="adaptive_media.transcode")
def transcode_media_task(self: TranscodeTask, payload: dict) -> dict:
    """Transcode an uploaded video into its rendition ladder.

    Args:
        payload: Serialized TranscodeRequest

    Returns:
        dict: Serialized TranscodeResponse
    """
    request = TranscodeRequest.model_validate(payload)
    try:
        return _run(run_transcode(request))
    except StorageError as exc:
        attempt = self.request.retries + 1
        raise self.retry(exc=exc, countdown=TRANSCODE_RETRY_CONFIG.calculate_delay(attempt))


async def run_transcode(request: TranscodeRequest) -> dict:
    """Run a job in its own database session and return the serialized result."""
    async with async_session_maker() as session:
        job = TranscodeJob.from_settings(MediaAssetRepository(session))
        try:
            outcome = await job.run(request)
        finally:
            await session.commit()
    return TranscodeResponse.from_manifest(outcome.manifest, outcome.thumbnail_path).model_dump(mode="json")


def enqueue_transcode(request: TranscodeRequest) -> str:
    """Queue a transcode job and return the Celery task id."""
    result = transcode_media_task.delay(request.model_dump(mode="json"))
    return result.id
