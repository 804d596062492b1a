"""Per-rendition outcomes and the manifest that collects them."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

NO_RENDITIONS_ERROR = "No qualities processed successfully"


def compression_ratio(source_size: int, output_size: int) -> int:
    """Percentage saved relative to the source, rounded to an integer."""
    if source_size <= 0:
        return 0
    return round((1 - output_size / source_size) * 100)


def size_mb(size_bytes: int) -> float:
    return round(size_bytes / BYTES_PER_MB, 2)


@dataclass
class RenditionResult:
    """Outcome of one rendition within a job."""
    label: str
    success: bool
    width: int
    height: int
    bitrate: int  # kbps
    path: Optional[str] = None
    size_bytes: Optional[int] = None
    compression_ratio: Optional[int] = None
    error: Optional[str] = None

    @property
    def size_mb(self) -> Optional[float]:
        if self.size_bytes is None:
            return None
        return size_mb(self.size_bytes)

    def to_record(self) -> dict[str, Any]:
        """Serializable form stored in the asset's manifest column."""
        record: dict[str, Any] = {
            "success": self.success,
            "width": self.width,
            "height": self.height,
            "bitrate": self.bitrate,
        }
        if self.success:
            record.update(
                path=self.path,
                size_bytes=self.size_bytes,
                size_mb=self.size_mb,
                compression_ratio=self.compression_ratio,
            )
        else:
            record["error"] = self.error
        return record

    @classmethod
    def from_record(cls, label: str, record: dict[str, Any]) -> "RenditionResult":
        return cls(
            label=label,
            # Records written before failures were tracked carry no flag
            success=record.get("success", True),
            width=record.get("width", 0),
            height=record.get("height", 0),
            bitrate=record.get("bitrate", 0),
            path=record.get("path"),
            size_bytes=record.get("size_bytes"),
            compression_ratio=record.get("compression_ratio"),
            error=record.get("error"),
        )


@dataclass
class TranscodeManifest:
    """All rendition outcomes of one job, keyed by label.

    A label recorded as successful is never replaced by a later failure.
    """
    asset_id: str
    renditions: dict[str, RenditionResult] = field(default_factory=dict)

    def record(self, result: RenditionResult) -> bool:
        """Add a result. Returns False when it was rejected."""
        existing = self.renditions.get(result.label)
        if existing is not None and existing.success and not result.success:
            logger.warning(
                "Ignoring failure for already successful rendition",
                extra={"asset_id": self.asset_id, "label": result.label},
            )
            return False
        self.renditions[result.label] = result
        return True

    @property
    def successful(self) -> list[RenditionResult]:
        return [r for r in self.renditions.values() if r.success]

    @property
    def failed(self) -> list[RenditionResult]:
        return [r for r in self.renditions.values() if not r.success]

    @property
    def status(self) -> str:
        return "completed" if self.successful else "failed"

    @property
    def best(self) -> Optional[RenditionResult]:
        """Tallest successful rendition."""
        successful = self.successful
        if not successful:
            return None
        return max(successful, key=lambda r: (r.height, r.bitrate))

    def to_record(self) -> dict[str, dict[str, Any]]:
        return {label: result.to_record() for label, result in self.renditions.items()}

    @classmethod
    def from_record(cls, asset_id: str, record: Optional[dict[str, Any]]) -> "TranscodeManifest":
        manifest = cls(asset_id=asset_id)
        for label, data in (record or {}).items():
            manifest.renditions[label] = RenditionResult.from_record(label, data)
        return manifest
