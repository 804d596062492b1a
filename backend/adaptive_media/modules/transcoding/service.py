"""Transcode job orchestration.

A job checks the source size, downloads it once into a private temporary
directory, probes it, plans the ladder and hands the plan to the worker.
The temporary directory is removed on every exit path.
"""

import asyncio
import logging
import os
import tempfile
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

from adaptive_media.core.config import Settings, settings as default_settings
from adaptive_media.core.logging import log_error, log_info
from adaptive_media.core.metrics import (
    TRANSCODE_JOB_DURATION_SECONDS,
    TRANSCODE_JOBS_IN_PROGRESS,
    TRANSCODE_JOBS_TOTAL,
)
from adaptive_media.core.storage import StorageService
from adaptive_media.modules.media.models import MediaAsset
from adaptive_media.modules.transcoding.exceptions import (
    AssetNotFound,
    InputTooLarge,
    SourceNotFound,
    TranscodeError,
    UnsupportedBucket,
)
from adaptive_media.modules.transcoding.ffmpeg import FFmpegTranscoder, SourceInfo
from adaptive_media.modules.transcoding.ladder import plan
from adaptive_media.modules.transcoding.manifest import NO_RENDITIONS_ERROR, TranscodeManifest
from adaptive_media.modules.transcoding.schemas import TranscodeRequest
from adaptive_media.modules.transcoding.worker import TranscodeWorker

logger = logging.getLogger(__name__)


class AssetStore(Protocol):
    """The subset of MediaAssetRepository a job writes through."""

    async def get_by_id(self, asset_id: uuid.UUID) -> Optional[MediaAsset]: ...

    async def mark_processing(self, asset: MediaAsset) -> None: ...

    async def record_source(
        self, asset: MediaAsset, width: int, height: int, duration: Optional[float], file_size: int
    ) -> None: ...

    async def complete_processing(
        self, asset: MediaAsset, manifest: dict, processed_path: Optional[str],
        thumbnail_path: Optional[str] = None,
    ) -> None: ...

    async def fail_processing(
        self, asset: MediaAsset, error_message: str, manifest: Optional[dict] = None
    ) -> None: ...


@dataclass
class TranscodeOutcome:
    manifest: TranscodeManifest
    thumbnail_path: Optional[str] = None


def strip_bucket(path: str, bucket: str) -> str:
    """Drop a leading ``{bucket}/`` from a storage path."""
    path = path.lstrip("/")
    prefix = f"{bucket}/"
    if bucket and path.startswith(prefix):
        return path[len(prefix):]
    return path


class TranscodeJob:
    """Runs the rendition ladder for one media asset."""

    def __init__(
        self,
        storage: StorageService,
        worker: TranscodeWorker,
        assets: AssetStore,
        bucket: str = "",
        max_source_bytes: int = 50 * 1024 * 1024,
        temp_root: Optional[str] = None,
        poster_enabled: bool = True,
    ):
        self.storage = storage
        self.worker = worker
        self.assets = assets
        self.bucket = bucket
        self.max_source_bytes = max_source_bytes
        self.temp_root = temp_root
        self.poster_enabled = poster_enabled

    @classmethod
    def from_settings(
        cls,
        assets: AssetStore,
        storage: Optional[StorageService] = None,
        s: Optional[Settings] = None,
    ) -> "TranscodeJob":
        s = s or default_settings
        storage = storage or StorageService.from_settings(s)
        transcoder = FFmpegTranscoder(
            ffmpeg_path=s.FFMPEG_PATH,
            ffprobe_path=s.FFPROBE_PATH,
            encode_timeout=s.ENCODE_TIMEOUT_SECONDS,
            probe_timeout=s.PROBE_TIMEOUT_SECONDS,
        )
        return cls(
            storage=storage,
            worker=TranscodeWorker(transcoder, storage),
            assets=assets,
            bucket=s.STORAGE_BUCKET,
            max_source_bytes=s.MAX_SOURCE_BYTES,
            temp_root=s.TRANSCODE_TEMP_DIR,
            poster_enabled=s.POSTER_ENABLED,
        )

    async def run(self, request: TranscodeRequest) -> TranscodeOutcome:
        """Execute the job and persist its manifest on the asset.

        Raises:
            AssetNotFound: No asset row for ``request.asset_id``
            UnsupportedBucket: Source lives in a bucket this deployment does not serve
            InputTooLarge: Source exceeds the size ceiling
            SourceNotFound: Source object is missing
            ProbeFailed: Source could not be probed
        """
        asset_id = str(request.asset_id)
        asset = await self.assets.get_by_id(request.asset_id)
        if asset is None:
            raise AssetNotFound(asset_id)

        await self.assets.mark_processing(asset)
        started = time.perf_counter()
        TRANSCODE_JOBS_IN_PROGRESS.inc()
        try:
            outcome = await self._execute(request, asset)
        except TranscodeError as e:
            log_error(logger, "Transcode job aborted", e, asset_id=asset_id)
            await self.assets.fail_processing(asset, str(e))
            TRANSCODE_JOBS_TOTAL.labels(status="failed").inc()
            raise
        finally:
            TRANSCODE_JOBS_IN_PROGRESS.dec()
            TRANSCODE_JOB_DURATION_SECONDS.observe(time.perf_counter() - started)

        manifest = outcome.manifest
        if manifest.status == "failed":
            await self.assets.fail_processing(asset, NO_RENDITIONS_ERROR, manifest.to_record())
        else:
            best = manifest.best
            await self.assets.complete_processing(
                asset,
                manifest.to_record(),
                processed_path=best.path if best else None,
                thumbnail_path=outcome.thumbnail_path,
            )

        TRANSCODE_JOBS_TOTAL.labels(status=manifest.status).inc()
        log_info(
            logger,
            "Transcode job finished",
            asset_id=asset_id,
            status=manifest.status,
            succeeded=[r.label for r in manifest.successful],
            failed=[r.label for r in manifest.failed],
        )
        return outcome

    async def _execute(self, request: TranscodeRequest, asset: MediaAsset) -> TranscodeOutcome:
        asset_id = str(request.asset_id)
        if request.source_bucket and self.bucket and request.source_bucket != self.bucket:
            raise UnsupportedBucket(request.source_bucket)
        source_key = strip_bucket(request.source_path, self.bucket)

        info = await self.storage.head(source_key)
        if info is None:
            raise SourceNotFound(source_key)
        if info.size > self.max_source_bytes:
            raise InputTooLarge(info.size, self.max_source_bytes)

        with tempfile.TemporaryDirectory(prefix=f"transcode-{asset_id}-", dir=self.temp_root) as work_dir:
            extension = os.path.splitext(source_key)[1] or ".bin"
            source_path = os.path.join(work_dir, f"source{extension}")
            if not await self.storage.download(source_key, source_path):
                raise SourceNotFound(source_key)

            source: SourceInfo = await asyncio.to_thread(
                self.worker.transcoder.probe, source_path
            )
            await self.assets.record_source(
                asset, source.width, source.height, source.duration, info.size
            )

            specs = plan(source.width, source.height, request.target_labels)
            log_info(
                logger,
                "Planned renditions",
                asset_id=asset_id,
                native=f"{source.width}x{source.height}",
                labels=[spec.label for spec in specs],
            )

            manifest = await self.worker.run(specs, asset_id, source_path, info.size, work_dir)

            thumbnail_path = None
            if self.poster_enabled and manifest.successful:
                thumbnail_path = await self.worker.extract_poster(asset_id, source_path, work_dir)

        return TranscodeOutcome(manifest=manifest, thumbnail_path=thumbnail_path)
