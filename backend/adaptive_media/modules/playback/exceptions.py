"""Playback exceptions.

None of these are fatal to playback: a failed switch leaves the current
rendition playing.
"""


class PlaybackError(Exception):
    """Base exception for the playback module."""
    pass


class PreloadTimeout(PlaybackError):
    """The candidate rendition did not buffer in time."""

    def __init__(self, label: str, timeout: float):
        self.label = label
        self.timeout = timeout
        super().__init__(f"Preload of {label} did not finish within {timeout}s")


class LoadCancelled(PlaybackError):
    """A load was superseded by a newer load for the same item."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Load for {item_id} was cancelled")


class NetworkMeasurementUnavailable(PlaybackError):
    """No downlink estimate could be taken."""
    pass


class UnknownRendition(PlaybackError):
    """Requested label is not among the available renditions."""

    def __init__(self, label: str):
        self.label = label
        super().__init__(f"Rendition {label} is not available")
