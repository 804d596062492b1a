"""Media format classification and image transform parameters.

Every path maps to exactly one FormatClass. Which classes may be resized or
re-encoded is decided by an exhaustive match, so a new class cannot be added
without deciding its transform policy.
"""

import posixpath
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, assert_never

from adaptive_media.modules.delivery.exceptions import InvalidPath
from adaptive_media.modules.media.models import MediaKind

MAX_TRANSFORM_EDGE = 1920
MAX_TRANSFORM_QUALITY = 95
DEFAULT_TRANSFORM_QUALITY = 75
DEFAULT_RESIZE = "cover"
RESIZE_MODES = ("cover", "contain", "fill")


class FormatClass(str, Enum):
    IMAGE = "image"
    # Phone-camera containers that lose data when converted
    LOSSY_CONVERSION_IMAGE = "lossy_conversion_image"
    ANIMATED_IMAGE = "animated_image"
    VIDEO = "video"
    AUDIO = "audio"
    UNKNOWN = "unknown"


EXTENSION_CLASSES: dict[str, FormatClass] = {
    "jpg": FormatClass.IMAGE,
    "jpeg": FormatClass.IMAGE,
    "png": FormatClass.IMAGE,
    "webp": FormatClass.IMAGE,
    "avif": FormatClass.IMAGE,
    "bmp": FormatClass.IMAGE,
    "tif": FormatClass.IMAGE,
    "tiff": FormatClass.IMAGE,
    "heic": FormatClass.LOSSY_CONVERSION_IMAGE,
    "heif": FormatClass.LOSSY_CONVERSION_IMAGE,
    "gif": FormatClass.ANIMATED_IMAGE,
    "apng": FormatClass.ANIMATED_IMAGE,
    "mp4": FormatClass.VIDEO,
    "m4v": FormatClass.VIDEO,
    "mov": FormatClass.VIDEO,
    "webm": FormatClass.VIDEO,
    "mkv": FormatClass.VIDEO,
    "mp3": FormatClass.AUDIO,
    "m4a": FormatClass.AUDIO,
    "aac": FormatClass.AUDIO,
    "wav": FormatClass.AUDIO,
    "ogg": FormatClass.AUDIO,
    "oga": FormatClass.AUDIO,
    "opus": FormatClass.AUDIO,
    "flac": FormatClass.AUDIO,
    "weba": FormatClass.AUDIO,
}


def extension_of(path: str) -> str:
    return posixpath.splitext(path)[1].lstrip(".").lower()


def classify(path: str) -> FormatClass:
    return EXTENSION_CLASSES.get(extension_of(path), FormatClass.UNKNOWN)


def allows_transform(format_class: FormatClass) -> bool:
    match format_class:
        case FormatClass.IMAGE:
            return True
        case (
            FormatClass.LOSSY_CONVERSION_IMAGE
            | FormatClass.ANIMATED_IMAGE
            | FormatClass.VIDEO
            | FormatClass.AUDIO
            | FormatClass.UNKNOWN
        ):
            return False
        case _:
            assert_never(format_class)


def media_kind(format_class: FormatClass) -> MediaKind:
    match format_class:
        case FormatClass.IMAGE | FormatClass.LOSSY_CONVERSION_IMAGE | FormatClass.UNKNOWN:
            return MediaKind.IMAGE
        case FormatClass.ANIMATED_IMAGE:
            return MediaKind.ANIMATED_IMAGE
        case FormatClass.VIDEO:
            return MediaKind.VIDEO
        case FormatClass.AUDIO:
            return MediaKind.AUDIO
        case _:
            assert_never(format_class)


def normalize_path(path: str, bucket: str = "") -> str:
    """Canonical object key for a client supplied path.

    Strips query strings, leading slashes and a leading bucket segment, and
    collapses duplicate separators.

    Raises:
        InvalidPath: Empty paths or paths escaping the bucket
    """
    key = path.split("?", 1)[0].strip()
    segments = [segment for segment in key.split("/") if segment and segment != "."]
    if bucket and segments and segments[0] == bucket:
        segments = segments[1:]
    if not segments:
        raise InvalidPath("Empty media path")
    if ".." in segments:
        raise InvalidPath(f"Path escapes storage root: {path}")
    return "/".join(segments)


@dataclass(frozen=True)
class ImageTransform:
    """Requested image rendition parameters."""
    width: Optional[int] = None
    height: Optional[int] = None
    quality: Optional[int] = None
    format: Optional[str] = None
    resize: Optional[str] = None

    def clamped(self) -> "ImageTransform":
        """Copy limited to safe maxima, with quality and resize defaults filled in."""
        def edge(value: Optional[int]) -> Optional[int]:
            if value is None:
                return None
            return max(1, min(value, MAX_TRANSFORM_EDGE))

        quality = self.quality if self.quality is not None else DEFAULT_TRANSFORM_QUALITY
        resize = self.resize if self.resize in RESIZE_MODES else DEFAULT_RESIZE
        return replace(
            self,
            width=edge(self.width),
            height=edge(self.height),
            quality=max(1, min(quality, MAX_TRANSFORM_QUALITY)),
            format=self.format.lower() if self.format else None,
            resize=resize,
        )

    def as_params(self) -> dict[str, object]:
        """Non-empty parameters in a stable order."""
        params = {
            "width": self.width,
            "height": self.height,
            "quality": self.quality,
            "format": self.format,
            "resize": self.resize,
        }
        return {k: v for k, v in sorted(params.items()) if v is not None}

    @property
    def is_empty(self) -> bool:
        return not any((self.width, self.height, self.quality, self.format))
