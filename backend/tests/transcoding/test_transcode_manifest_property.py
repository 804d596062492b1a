"""Property-based tests for rendition results and the transcode manifest."""

import sys
from unittest.mock import MagicMock

# Mock celery_app before importing transcoding modules
sys.modules["adaptive_media.core.celery_app"] = MagicMock()

from hypothesis import given, settings, strategies as st

from adaptive_media.modules.transcoding.manifest import (
    RenditionResult,
    TranscodeManifest,
    compression_ratio,
)


def make_result(label: str, success: bool) -> RenditionResult:
    height = int(label.rstrip("p")) if label.endswith("p") else 2160
    if success:
        return RenditionResult(
            label=label,
            success=True,
            width=height * 16 // 9,
            height=height,
            bitrate=height * 2,
            path=f"processed/a/a_{label}.mp4",
            size_bytes=height * 1000,
            compression_ratio=50,
        )
    return RenditionResult(
        label=label,
        success=False,
        width=height * 16 // 9,
        height=height,
        bitrate=height * 2,
        error="EncodeFailed: boom",
    )


outcome_strategy = st.lists(
    st.tuples(st.sampled_from(["240p", "360p", "480p", "720p", "1080p"]), st.booleans()),
    min_size=0,
    max_size=15,
)


class TestManifestStatus:
    """A job fails iff no rendition succeeded."""

    @given(outcomes=outcome_strategy)
    @settings(max_examples=100)
    def test_failed_iff_zero_successes(self, outcomes: list[tuple[str, bool]]) -> None:
        manifest = TranscodeManifest(asset_id="a")
        for label, success in outcomes:
            manifest.record(make_result(label, success))
        any_success = any(success for _, success in outcomes)
        assert (manifest.status == "failed") == (not any_success)

    @given(outcomes=outcome_strategy)
    @settings(max_examples=100)
    def test_success_never_overwritten_by_failure(self, outcomes: list[tuple[str, bool]]) -> None:
        manifest = TranscodeManifest(asset_id="a")
        succeeded: set[str] = set()
        for label, success in outcomes:
            accepted = manifest.record(make_result(label, success))
            if label in succeeded and not success:
                assert accepted is False
            if success:
                succeeded.add(label)
        for label in succeeded:
            assert manifest.renditions[label].success

    def test_best_is_tallest_success(self) -> None:
        manifest = TranscodeManifest(asset_id="a")
        manifest.record(make_result("480p", True))
        manifest.record(make_result("1080p", False))
        manifest.record(make_result("720p", True))
        assert manifest.best.label == "720p"

    def test_best_is_none_without_success(self) -> None:
        manifest = TranscodeManifest(asset_id="a")
        manifest.record(make_result("480p", False))
        assert manifest.best is None


class TestManifestRecords:
    """Serialized manifest as stored on the asset."""

    def test_failure_record_has_error_and_no_path(self) -> None:
        record = make_result("480p", False).to_record()
        assert record["success"] is False
        assert record["error"] == "EncodeFailed: boom"
        assert "path" not in record

    def test_success_record_has_size_mb(self) -> None:
        result = make_result("720p", True)
        result.size_bytes = 3 * 1024 * 1024
        record = result.to_record()
        assert record["size_mb"] == 3.0
        assert record["path"] == "processed/a/a_720p.mp4"

    def test_legacy_record_without_flag_is_success(self) -> None:
        manifest = TranscodeManifest.from_record(
            "a", {"720p": {"path": "processed/a/a_720p.mp4", "width": 1280, "height": 720, "bitrate": 1500}}
        )
        assert manifest.status == "completed"
        assert manifest.best.path == "processed/a/a_720p.mp4"

    def test_record_reload_preserves_outcomes(self) -> None:
        manifest = TranscodeManifest(asset_id="a")
        manifest.record(make_result("480p", True))
        manifest.record(make_result("720p", False))
        reloaded = TranscodeManifest.from_record("a", manifest.to_record())
        assert [r.label for r in reloaded.successful] == ["480p"]
        assert [r.label for r in reloaded.failed] == ["720p"]


class TestCompressionRatio:
    """Percentage saved against the source."""

    @given(
        source=st.integers(min_value=1, max_value=10**10),
        output=st.integers(min_value=0, max_value=10**10),
    )
    @settings(max_examples=100)
    def test_matches_rounded_formula(self, source: int, output: int) -> None:
        assert compression_ratio(source, output) == round((1 - output / source) * 100)

    def test_zero_source_gives_zero(self) -> None:
        assert compression_ratio(0, 100) == 0

    def test_half_size_is_fifty_percent(self) -> None:
        assert compression_ratio(1000, 500) == 50
