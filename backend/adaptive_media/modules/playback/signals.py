"""Buffer and network signals sampled during playback."""

import logging
import statistics
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

CRITICAL_BUFFER_SECONDS = 2.0
LOW_BUFFER_SECONDS = 5.0
GOOD_BUFFER_SECONDS = 10.0

FALLBACK_DOWNLINK_MBPS = 5.0
MIN_DOWNLINK_MBPS = 0.1
SAMPLE_WINDOW = 10
STABILITY_SAMPLES = 3
STABILITY_MAX_VARIATION = 0.3
TREND_TOLERANCE = 0.1


class BufferHealth(str, Enum):
    CRITICAL = "critical"
    LOW = "low"
    GOOD = "good"
    EXCELLENT = "excellent"


def classify_buffer(seconds_ahead: float) -> BufferHealth:
    """Classify seconds of playable content ahead of the play head."""
    if seconds_ahead < CRITICAL_BUFFER_SECONDS:
        return BufferHealth.CRITICAL
    if seconds_ahead < LOW_BUFFER_SECONDS:
        return BufferHealth.LOW
    if seconds_ahead < GOOD_BUFFER_SECONDS:
        return BufferHealth.GOOD
    return BufferHealth.EXCELLENT


class NetworkTrend(str, Enum):
    IMPROVING = "improving"
    STEADY = "steady"
    DEGRADING = "degrading"


@dataclass(frozen=True)
class NetworkCondition:
    downlink_mbps: float
    stable: bool = True
    trend: NetworkTrend = NetworkTrend.STEADY


@dataclass(frozen=True)
class PlaybackSignals:
    """One sample of everything the quality policy looks at."""
    buffer_seconds: float
    network: NetworkCondition
    stalling: bool = False

    @property
    def buffer_health(self) -> BufferHealth:
        return classify_buffer(self.buffer_seconds)


class NetworkMonitor:
    """Rolling window of downlink measurements.

    The connection counts as stable while there are fewer than three
    samples, or while the coefficient of variation of the last three stays
    under 0.3.
    """

    def __init__(
        self,
        window: int = SAMPLE_WINDOW,
        fallback_mbps: float = FALLBACK_DOWNLINK_MBPS,
        floor_mbps: float = MIN_DOWNLINK_MBPS,
    ):
        self._samples: deque[float] = deque(maxlen=window)
        self.fallback_mbps = fallback_mbps
        self.floor_mbps = floor_mbps
        self._fallback_active = False

    @property
    def samples(self) -> list[float]:
        return list(self._samples)

    def record(self, downlink_mbps: Optional[float]) -> NetworkCondition:
        """Add a measurement and return the updated condition.

        ``None`` means the measurement was unavailable; the fallback
        estimate is used and the window is left untouched.
        """
        if downlink_mbps is None:
            if not self._fallback_active:
                logger.warning(
                    "Network measurement unavailable, using fallback estimate",
                    extra={"fallback_mbps": self.fallback_mbps},
                )
            self._fallback_active = True
            return NetworkCondition(
                downlink_mbps=self.fallback_mbps,
                stable=self.is_stable(),
                trend=self.trend(),
            )

        self._fallback_active = False
        self._samples.append(max(float(downlink_mbps), self.floor_mbps))
        return self.condition()

    def condition(self) -> NetworkCondition:
        if not self._samples:
            return NetworkCondition(downlink_mbps=self.fallback_mbps)
        return NetworkCondition(
            downlink_mbps=self._samples[-1],
            stable=self.is_stable(),
            trend=self.trend(),
        )

    def is_stable(self) -> bool:
        if len(self._samples) < STABILITY_SAMPLES:
            return True
        recent = list(self._samples)[-STABILITY_SAMPLES:]
        mean = statistics.fmean(recent)
        if mean <= 0:
            return False
        return statistics.pstdev(recent) / mean < STABILITY_MAX_VARIATION

    def trend(self) -> NetworkTrend:
        if len(self._samples) < STABILITY_SAMPLES:
            return NetworkTrend.STEADY
        recent = list(self._samples)[-STABILITY_SAMPLES:]
        first, last = recent[0], recent[-1]
        if last > first * (1 + TREND_TOLERANCE):
            return NetworkTrend.IMPROVING
        if last < first * (1 - TREND_TOLERANCE):
            return NetworkTrend.DEGRADING
        return NetworkTrend.STEADY

    def reset(self) -> None:
        self._samples.clear()
        self._fallback_active = False
