"""Sequential per-rendition encode, upload and cleanup."""

import asyncio
import logging
import os
from typing import Optional, Sequence

from adaptive_media.core.metrics import TRANSCODE_RENDITIONS_TOTAL
from adaptive_media.core.storage import StorageService
from adaptive_media.modules.transcoding.exceptions import EncodeFailed, UploadFailed
from adaptive_media.modules.transcoding.ffmpeg import FFmpegTranscoder
from adaptive_media.modules.transcoding.ladder import RenditionSpec
from adaptive_media.modules.transcoding.manifest import (
    RenditionResult,
    TranscodeManifest,
    compression_ratio,
)

logger = logging.getLogger(__name__)

RENDITION_CONTENT_TYPE = "video/mp4"


def rendition_key(asset_id: str, label: str) -> str:
    """Deterministic storage key of a rendition."""
    return f"processed/{asset_id}/{asset_id}_{label}.mp4"


def poster_key(asset_id: str) -> str:
    return f"processed/{asset_id}/{asset_id}_poster.jpg"


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove temp file", extra={"path": path, "error": str(e)})


class TranscodeWorker:
    """Produces renditions of one local source file.

    Renditions are processed strictly one after another. A failed rendition
    is recorded and the worker moves on to the next one.
    """

    def __init__(self, transcoder: FFmpegTranscoder, storage: StorageService):
        self.transcoder = transcoder
        self.storage = storage

    async def process_rendition(
        self,
        spec: RenditionSpec,
        asset_id: str,
        source_path: str,
        source_size: int,
        work_dir: str,
    ) -> RenditionResult:
        """Encode, upload and clean up a single rendition."""
        output_path = os.path.join(work_dir, f"{asset_id}_{spec.label}.mp4")
        try:
            output = await asyncio.to_thread(
                self.transcoder.encode, spec, source_path, output_path
            )
            if not output.success:
                raise EncodeFailed(output.error_message or "encode failed")

            key = rendition_key(asset_id, spec.label)
            upload = await self.storage.upload(output_path, key, RENDITION_CONTENT_TYPE)
            if not upload.success:
                raise UploadFailed(upload.error_message or "upload failed")

            return RenditionResult(
                label=spec.label,
                success=True,
                width=spec.width,
                height=spec.height,
                bitrate=spec.bitrate,
                path=key,
                size_bytes=output.file_size,
                compression_ratio=compression_ratio(source_size, output.file_size),
            )
        except (EncodeFailed, UploadFailed) as e:
            logger.warning(
                "Rendition failed",
                extra={
                    "asset_id": asset_id,
                    "label": spec.label,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return RenditionResult(
                label=spec.label,
                success=False,
                width=spec.width,
                height=spec.height,
                bitrate=spec.bitrate,
                error=f"{type(e).__name__}: {e}",
            )
        finally:
            _remove(output_path)

    async def run(
        self,
        specs: Sequence[RenditionSpec],
        asset_id: str,
        source_path: str,
        source_size: int,
        work_dir: str,
    ) -> TranscodeManifest:
        """Process every spec in order and collect the outcomes."""
        manifest = TranscodeManifest(asset_id=asset_id)
        for spec in specs:
            result = await self.process_rendition(
                spec, asset_id, source_path, source_size, work_dir
            )
            manifest.record(result)
            TRANSCODE_RENDITIONS_TOTAL.labels(
                label=spec.label,
                outcome="success" if result.success else "failure",
            ).inc()
            if result.success:
                logger.info(
                    "Rendition completed",
                    extra={
                        "asset_id": asset_id,
                        "label": spec.label,
                        "size_mb": result.size_mb,
                        "compression_ratio": result.compression_ratio,
                    },
                )
        return manifest

    async def extract_poster(self, asset_id: str, source_path: str, work_dir: str) -> Optional[str]:
        """Upload a poster frame. Returns its key, or None when unavailable."""
        output_path = os.path.join(work_dir, f"{asset_id}_poster.jpg")
        try:
            ok = await asyncio.to_thread(self.transcoder.extract_poster, source_path, output_path)
            if not ok:
                return None
            key = poster_key(asset_id)
            upload = await self.storage.upload(output_path, key, "image/jpeg")
            if not upload.success:
                logger.warning(
                    "Poster upload failed",
                    extra={"asset_id": asset_id, "error": upload.error_message},
                )
                return None
            return key
        finally:
            _remove(output_path)
