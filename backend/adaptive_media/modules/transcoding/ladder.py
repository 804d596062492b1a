"""Rendition ladder: quality labels, their encoder targets, and planning.

``plan`` is pure. It maps requested labels onto the fixed quality table,
derives widths from the source aspect ratio, and never upscales.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class Quality(str, Enum):
    """Supported rendition labels, lowest first."""
    Q_240P = "240p"
    Q_360P = "360p"
    Q_480P = "480p"
    Q_720P = "720p"
    Q_1080P = "1080p"
    Q_1440P = "1440p"
    Q_4K = "4k"


@dataclass(frozen=True)
class QualityProfile:
    """Canonical encoder targets for one quality label."""
    height: int
    bitrate: int  # kbps
    crf: int


QUALITY_PROFILES: dict[Quality, QualityProfile] = {
    Quality.Q_240P: QualityProfile(height=240, bitrate=300, crf=40),
    Quality.Q_360P: QualityProfile(height=360, bitrate=500, crf=38),
    Quality.Q_480P: QualityProfile(height=480, bitrate=800, crf=35),
    Quality.Q_720P: QualityProfile(height=720, bitrate=1500, crf=32),
    Quality.Q_1080P: QualityProfile(height=1080, bitrate=3000, crf=30),
    Quality.Q_1440P: QualityProfile(height=1440, bitrate=6000, crf=28),
    Quality.Q_4K: QualityProfile(height=2160, bitrate=12000, crf=26),
}

QUALITY_ALIASES: dict[str, Quality] = {
    "2k": Quality.Q_1440P,
    "2160p": Quality.Q_4K,
}

# Ordered lowest to highest
QUALITY_ORDER: list[Quality] = sorted(QUALITY_PROFILES, key=lambda q: QUALITY_PROFILES[q].height)

DEFAULT_LABELS: tuple[str, ...] = ("240p", "360p", "480p", "720p", "1080p")


class InvalidDimensions(ValueError):
    """Source dimensions are not positive."""
    pass


@dataclass(frozen=True)
class RenditionSpec:
    """Target of a single rendition encode."""
    label: str
    width: int
    height: int
    bitrate: int  # kbps
    crf: int

    @property
    def buffer_size(self) -> int:
        """Rate-control buffer in kbps, capped at 1.5x the target bitrate."""
        return int(self.bitrate * 1.5)


def parse_quality(label: str) -> Optional[Quality]:
    """Resolve a label or alias to a Quality, case-insensitively."""
    normalized = label.strip().lower()
    if normalized in QUALITY_ALIASES:
        return QUALITY_ALIASES[normalized]
    try:
        return Quality(normalized)
    except ValueError:
        return None


def even_width(native_width: int, native_height: int, target_height: int) -> int:
    """Width preserving the source aspect ratio, rounded to an even number."""
    aspect = native_width / native_height
    return max(2, round(target_height * aspect / 2) * 2)


def plan(
    native_width: int,
    native_height: int,
    requested_labels: Iterable[str],
) -> list[RenditionSpec]:
    """Compute the renditions to encode for a source.

    Args:
        native_width: Source width in pixels
        native_height: Source height in pixels
        requested_labels: Quality labels, aliases accepted

    Returns:
        Specs ordered ascending by height, none taller than the source

    Raises:
        InvalidDimensions: If either dimension is not positive
    """
    if native_width <= 0 or native_height <= 0:
        raise InvalidDimensions(
            f"Source dimensions must be positive, got {native_width}x{native_height}"
        )

    selected: set[Quality] = set()
    for label in requested_labels:
        quality = parse_quality(label)
        if quality is None:
            logger.warning("Ignoring unknown rendition label", extra={"label": label})
            continue
        if QUALITY_PROFILES[quality].height > native_height:
            logger.info(
                "Skipping rendition above source resolution",
                extra={"label": quality.value, "native_height": native_height},
            )
            continue
        selected.add(quality)

    specs = []
    for quality in QUALITY_ORDER:
        if quality not in selected:
            continue
        profile = QUALITY_PROFILES[quality]
        specs.append(
            RenditionSpec(
                label=quality.value,
                width=even_width(native_width, native_height, profile.height),
                height=profile.height,
                bitrate=profile.bitrate,
                crf=profile.crf,
            )
        )
    return specs
