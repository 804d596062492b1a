"""Video transcoding into a rendition ladder."""

from adaptive_media.modules.transcoding.ladder import (
    DEFAULT_LABELS,
    InvalidDimensions,
    Quality,
    RenditionSpec,
    plan,
)
from adaptive_media.modules.transcoding.manifest import RenditionResult, TranscodeManifest

__all__ = [
    "DEFAULT_LABELS",
    "InvalidDimensions",
    "Quality",
    "RenditionSpec",
    "plan",
    "RenditionResult",
    "TranscodeManifest",
]
