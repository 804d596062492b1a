"""Playback-side rendition selection and switching."""

from adaptive_media.modules.playback.controller import AdaptiveQualityController
from adaptive_media.modules.playback.exceptions import (
    LoadCancelled,
    NetworkMeasurementUnavailable,
    PlaybackError,
    PreloadTimeout,
    UnknownRendition,
)
from adaptive_media.modules.playback.loader import MediaLoadCoordinator
from adaptive_media.modules.playback.policy import (
    PlaybackState,
    PolicyConfig,
    SwitchAction,
    SwitchReason,
    decide,
)
from adaptive_media.modules.playback.signals import (
    BufferHealth,
    NetworkCondition,
    NetworkMonitor,
    PlaybackSignals,
)

__all__ = [
    "AdaptiveQualityController",
    "BufferHealth",
    "LoadCancelled",
    "MediaLoadCoordinator",
    "NetworkCondition",
    "NetworkMeasurementUnavailable",
    "NetworkMonitor",
    "PlaybackError",
    "PlaybackSignals",
    "PlaybackState",
    "PolicyConfig",
    "PreloadTimeout",
    "SwitchAction",
    "SwitchReason",
    "UnknownRendition",
    "decide",
]
