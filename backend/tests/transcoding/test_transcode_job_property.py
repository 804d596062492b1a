"""Property-based tests for the transcode job and worker.

Covers: sequential per-rendition processing, failure isolation, temp file
cleanup on every exit path, size ceiling and probe failures.
"""

import sys
from unittest.mock import MagicMock

# Mock celery_app before importing transcoding modules
sys.modules["adaptive_media.core.celery_app"] = MagicMock()

import os
import uuid
from types import SimpleNamespace
from typing import Optional

import pytest
from hypothesis import given, settings, strategies as st

from adaptive_media.core.storage import ObjectInfo, StorageResult
from adaptive_media.modules.media.models import ProcessingStatus
from adaptive_media.modules.transcoding.exceptions import (
    AssetNotFound,
    InputTooLarge,
    ProbeFailed,
    SourceNotFound,
    UnsupportedBucket,
)
from adaptive_media.modules.transcoding.ffmpeg import SourceInfo, TranscodeOutput
from adaptive_media.modules.transcoding.manifest import NO_RENDITIONS_ERROR
from adaptive_media.modules.transcoding.schemas import TranscodeRequest, TranscodeResponse
from adaptive_media.modules.transcoding.service import TranscodeJob, strip_bucket
from adaptive_media.modules.transcoding.worker import TranscodeWorker, rendition_key


class FakeStorage:
    """In-memory object store."""

    def __init__(self, objects: Optional[dict[str, bytes]] = None, failing_uploads: set[str] = frozenset()):
        self.objects = dict(objects or {})
        self.failing_uploads = failing_uploads
        self.uploads: list[str] = []

    async def head(self, key: str) -> Optional[ObjectInfo]:
        if key not in self.objects:
            return None
        return ObjectInfo(key=key, size=len(self.objects[key]))

    async def download(self, key: str, destination: str) -> bool:
        if key not in self.objects:
            return False
        with open(destination, "wb") as f:
            f.write(self.objects[key])
        return True

    async def upload(self, file_path: str, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        self.uploads.append(key)
        if any(key.endswith(f"_{label}.mp4") for label in self.failing_uploads):
            return StorageResult(success=False, key=key, error_message="bucket unavailable")
        with open(file_path, "rb") as f:
            self.objects[key] = f.read()
        return StorageResult(success=True, key=key, file_size=len(self.objects[key]))


class FakeTranscoder:
    """Writes a fixed-size output per rendition; chosen labels fail."""

    def __init__(
        self,
        width: int = 1920,
        height: int = 1080,
        failing: set[str] = frozenset(),
        probe_error: Optional[Exception] = None,
        poster: bool = True,
    ):
        self.width = width
        self.height = height
        self.failing = failing
        self.probe_error = probe_error
        self.poster = poster
        self.encoded: list[str] = []
        self.open_outputs: list[str] = []

    def probe(self, input_path: str) -> SourceInfo:
        assert os.path.exists(input_path)
        if self.probe_error is not None:
            raise self.probe_error
        return SourceInfo(width=self.width, height=self.height, duration=12.5)

    def encode(self, spec, input_path: str, output_path: str) -> TranscodeOutput:
        # The previous rendition's output must already be gone
        for previous in self.open_outputs:
            assert not os.path.exists(previous)
        self.encoded.append(spec.label)
        self.open_outputs.append(output_path)
        if spec.label in self.failing:
            with open(output_path, "wb") as f:
                f.write(b"partial")
            return TranscodeOutput(
                success=False,
                output_path=output_path,
                width=spec.width,
                height=spec.height,
                error_message="ffmpeg exited with 1",
            )
        with open(output_path, "wb") as f:
            f.write(b"v" * spec.height)
        return TranscodeOutput(
            success=True,
            output_path=output_path,
            width=spec.width,
            height=spec.height,
            file_size=spec.height,
        )

    def extract_poster(self, input_path: str, output_path: str) -> bool:
        if not self.poster:
            return False
        with open(output_path, "wb") as f:
            f.write(b"jpeg")
        return True


class FakeAssets:
    """In-memory asset store recording the job's writes."""

    def __init__(self, asset_id: uuid.UUID):
        self.asset = SimpleNamespace(
            id=asset_id,
            processing_status=ProcessingStatus.PENDING,
            manifest={},
            processed_path=None,
            thumbnail_path=None,
            processing_error=None,
            width=None,
            height=None,
        )
        self.calls: list[str] = []

    async def get_by_id(self, asset_id: uuid.UUID):
        return self.asset if asset_id == self.asset.id else None

    async def mark_processing(self, asset) -> None:
        self.calls.append("processing")
        asset.processing_status = ProcessingStatus.PROCESSING

    async def record_source(self, asset, width, height, duration, file_size) -> None:
        asset.width, asset.height = width, height

    async def complete_processing(self, asset, manifest, processed_path, thumbnail_path=None) -> None:
        self.calls.append("completed")
        asset.processing_status = ProcessingStatus.COMPLETED
        asset.manifest = manifest
        asset.processed_path = processed_path
        asset.thumbnail_path = thumbnail_path

    async def fail_processing(self, asset, error_message, manifest=None) -> None:
        self.calls.append("failed")
        asset.processing_status = ProcessingStatus.FAILED
        asset.processing_error = error_message
        if manifest is not None:
            asset.manifest = manifest


def build_job(tmp_path, transcoder: FakeTranscoder, storage: FakeStorage, asset_id: uuid.UUID, max_bytes: int = 1024):
    work_root = tmp_path / "work"
    work_root.mkdir(exist_ok=True)
    assets = FakeAssets(asset_id)
    job = TranscodeJob(
        storage=storage,
        worker=TranscodeWorker(transcoder, storage),
        assets=assets,
        bucket="content",
        max_source_bytes=max_bytes,
        temp_root=str(work_root),
    )
    return job, assets, work_root


LABELS = ["240p", "360p", "480p", "720p", "1080p"]


class TestJobOutcome:
    """Per-rendition failures are isolated; the job fails only with zero successes."""

    @given(failing=st.sets(st.sampled_from(LABELS)))
    @settings(max_examples=100, deadline=None)
    @pytest.mark.asyncio
    async def test_status_follows_successes(self, tmp_path_factory, failing: set[str]) -> None:
        tmp_path = tmp_path_factory.mktemp("job")
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 512})
        transcoder = FakeTranscoder(failing=failing)
        job, assets, work_root = build_job(tmp_path, transcoder, storage, asset_id)

        outcome = await job.run(TranscodeRequest(source_path="uploads/a.mp4", asset_id=asset_id, target_labels=LABELS))

        assert transcoder.encoded == LABELS
        succeeded = [label for label in LABELS if label not in failing]
        assert [r.label for r in outcome.manifest.successful] == succeeded
        if succeeded:
            assert assets.asset.processing_status == ProcessingStatus.COMPLETED
            assert assets.asset.processed_path == rendition_key(str(asset_id), succeeded[-1])
        else:
            assert assets.asset.processing_status == ProcessingStatus.FAILED
            assert assets.asset.processing_error == NO_RENDITIONS_ERROR
        assert set(assets.asset.manifest) == set(LABELS)
        assert list(work_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_upload_failure_recorded_per_rendition(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 512}, failing_uploads={"720p"})
        job, assets, work_root = build_job(tmp_path, FakeTranscoder(), storage, asset_id)

        outcome = await job.run(
            TranscodeRequest(source_path="uploads/a.mp4", asset_id=asset_id, target_labels=["480p", "720p"])
        )

        response = TranscodeResponse.from_manifest(outcome.manifest, outcome.thumbnail_path)
        by_label = {r.label: r for r in response.per_rendition}
        assert response.success is True
        assert by_label["480p"].success and by_label["480p"].path.endswith("_480p.mp4")
        assert not by_label["720p"].success
        assert by_label["720p"].error.startswith("UploadFailed")
        assert list(work_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_1080p_source_skips_1440p(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 512})
        transcoder = FakeTranscoder(width=1920, height=1080)
        job, _, _ = build_job(tmp_path, transcoder, storage, asset_id)

        outcome = await job.run(
            TranscodeRequest(
                source_path="uploads/a.mp4",
                asset_id=asset_id,
                target_labels=["240p", "480p", "720p", "1080p", "1440p"],
            )
        )

        assert transcoder.encoded == ["240p", "480p", "720p", "1080p"]
        assert "1440p" not in outcome.manifest.renditions

    @pytest.mark.asyncio
    async def test_poster_stored_as_thumbnail(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 512})
        job, assets, _ = build_job(tmp_path, FakeTranscoder(), storage, asset_id)

        await job.run(TranscodeRequest(source_path="uploads/a.mp4", asset_id=asset_id, target_labels=["240p"]))

        assert assets.asset.thumbnail_path == f"processed/{asset_id}/{asset_id}_poster.jpg"
        assert assets.asset.thumbnail_path in storage.objects

    @pytest.mark.asyncio
    async def test_poster_failure_is_not_fatal(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 512})
        job, assets, _ = build_job(tmp_path, FakeTranscoder(poster=False), storage, asset_id)

        await job.run(TranscodeRequest(source_path="uploads/a.mp4", asset_id=asset_id, target_labels=["240p"]))

        assert assets.asset.processing_status == ProcessingStatus.COMPLETED
        assert assets.asset.thumbnail_path is None


class TestJobFatalErrors:
    """Job-level errors abort before any rendition and mark the asset failed."""

    @given(extra=st.integers(min_value=1, max_value=4096))
    @settings(max_examples=100, deadline=None)
    @pytest.mark.asyncio
    async def test_oversized_input_rejected(self, tmp_path_factory, extra: int) -> None:
        tmp_path = tmp_path_factory.mktemp("big")
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * (1024 + extra)})
        transcoder = FakeTranscoder()
        job, assets, _ = build_job(tmp_path, transcoder, storage, asset_id, max_bytes=1024)

        with pytest.raises(InputTooLarge):
            await job.run(TranscodeRequest(source_path="uploads/a.mp4", asset_id=asset_id))

        assert transcoder.encoded == []
        assert assets.asset.processing_status == ProcessingStatus.FAILED

    @pytest.mark.asyncio
    async def test_input_at_ceiling_is_accepted(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 1024})
        job, assets, _ = build_job(tmp_path, FakeTranscoder(), storage, asset_id, max_bytes=1024)

        await job.run(TranscodeRequest(source_path="uploads/a.mp4", asset_id=asset_id, target_labels=["240p"]))

        assert assets.asset.processing_status == ProcessingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_probe_failure_cleans_up(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 512})
        transcoder = FakeTranscoder(probe_error=ProbeFailed("no video stream"))
        job, assets, work_root = build_job(tmp_path, transcoder, storage, asset_id)

        with pytest.raises(ProbeFailed):
            await job.run(TranscodeRequest(source_path="uploads/a.mp4", asset_id=asset_id))

        assert assets.calls == ["processing", "failed"]
        assert assets.asset.processing_error == "no video stream"
        assert list(work_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_missing_source(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        job, assets, _ = build_job(tmp_path, FakeTranscoder(), FakeStorage(), asset_id)

        with pytest.raises(SourceNotFound):
            await job.run(TranscodeRequest(source_path="content/uploads/missing.mp4", asset_id=asset_id))
        assert assets.asset.processing_status == ProcessingStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_asset(self, tmp_path) -> None:
        job, assets, _ = build_job(tmp_path, FakeTranscoder(), FakeStorage(), uuid.uuid4())

        with pytest.raises(AssetNotFound):
            await job.run(TranscodeRequest(source_path="uploads/a.mp4", asset_id=uuid.uuid4()))
        assert assets.calls == []

    @pytest.mark.asyncio
    async def test_foreign_bucket_rejected(self, tmp_path) -> None:
        asset_id = uuid.uuid4()
        storage = FakeStorage({"uploads/a.mp4": b"s" * 512})
        job, _, _ = build_job(tmp_path, FakeTranscoder(), storage, asset_id)

        with pytest.raises(UnsupportedBucket):
            await job.run(TranscodeRequest(source_bucket="other", source_path="uploads/a.mp4", asset_id=asset_id))


class TestStripBucket:
    """Source paths may carry the bucket as their first segment."""

    def test_strips_leading_bucket(self) -> None:
        assert strip_bucket("content/uploads/a.mp4", "content") == "uploads/a.mp4"
        assert strip_bucket("/content/uploads/a.mp4", "content") == "uploads/a.mp4"

    def test_keeps_other_prefixes(self) -> None:
        assert strip_bucket("contents/a.mp4", "content") == "contents/a.mp4"
