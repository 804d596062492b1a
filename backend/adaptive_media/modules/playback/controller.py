"""Adaptive quality controller for one playback session.

The controller samples buffer and network signals on its own asyncio task,
feeds them to ``policy.decide`` and executes the resulting switches against
a ``PlaybackSurface``. A switch preloads the candidate rendition at the
current position and only swaps once it has buffered. Failed switches are
logged and abandoned; playback continues on the current rendition.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from adaptive_media.core.metrics import QUALITY_SWITCHES_TOTAL
from adaptive_media.modules.playback.exceptions import (
    LoadCancelled,
    NetworkMeasurementUnavailable,
    PreloadTimeout,
    UnknownRendition,
)
from adaptive_media.modules.playback.loader import MediaLoadCoordinator
from adaptive_media.modules.playback.policy import (
    DEFAULT_POLICY,
    PlaybackState,
    PolicyConfig,
    SwitchAction,
    SwitchReason,
    abandon_switch,
    complete_switch,
    decide,
    ladder,
    set_override,
)
from adaptive_media.modules.playback.signals import BufferHealth, NetworkMonitor, PlaybackSignals

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_INTERVAL = 1.0  # seconds
DEFAULT_PRELOAD_TIMEOUT = 10.0  # seconds


class PlaybackSurface(Protocol):
    """The player the controller drives."""

    def buffered_seconds(self) -> float: ...

    def is_stalling(self) -> bool: ...

    def position(self) -> float: ...

    def is_playing(self) -> bool: ...

    async def preload(self, url: str, position: float) -> Any:
        """Load ``url`` at ``position`` and return once enough is buffered."""
        ...

    async def swap(self, handle: Any, position: float, playing: bool) -> None: ...


class RenditionSource(Protocol):
    async def rendition_url(self, label: str) -> str: ...


DownlinkProbe = Callable[[], Awaitable[float]]


class AdaptiveQualityController:
    def __init__(
        self,
        surface: PlaybackSurface,
        source: RenditionSource,
        available_labels: Iterable[str],
        initial_label: Optional[str] = None,
        measure_downlink: Optional[DownlinkProbe] = None,
        monitor: Optional[NetworkMonitor] = None,
        config: PolicyConfig = DEFAULT_POLICY,
        sample_interval: float = DEFAULT_SAMPLE_INTERVAL,
        preload_timeout: float = DEFAULT_PRELOAD_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        loads: Optional[MediaLoadCoordinator] = None,
        session_id: str = "default",
    ):
        self.available = ladder(available_labels)
        if not self.available:
            raise ValueError("At least one known rendition label is required")

        if initial_label is not None and initial_label not in self.available:
            raise UnknownRendition(initial_label)

        self.surface = surface
        self.source = source
        self.measure_downlink = measure_downlink
        self.monitor = monitor or NetworkMonitor()
        self.config = config
        self.sample_interval = sample_interval
        self.preload_timeout = preload_timeout
        self._clock = clock
        self._loads = loads or MediaLoadCoordinator()
        self._load_key = f"{session_id}:switch"

        self._state = PlaybackState(current=initial_label or self.available[0])
        self._switch_lock = asyncio.Lock()
        self._sampler: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def current_label(self) -> str:
        return self._state.current

    @property
    def manual_override(self) -> Optional[str]:
        return self._state.manual_override

    async def start(self) -> None:
        """Start the sampling task."""
        if self._sampler is None or self._sampler.done():
            self._sampler = asyncio.create_task(self._sample_loop())

    async def close(self) -> None:
        """Stop sampling and cancel any switch still preloading."""
        if self._sampler is not None:
            self._sampler.cancel()
            try:
                await self._sampler
            except asyncio.CancelledError:
                pass
            self._sampler = None
        for task in self._ticks:
            task.cancel()
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)
        await self._loads.close()

    async def _sample_loop(self) -> None:
        # Ticks run as their own tasks so sampling continues while a switch preloads.
        while True:
            await asyncio.sleep(self.sample_interval)
            task = asyncio.create_task(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._tick_done)

    def _tick_done(self, task: asyncio.Task) -> None:
        self._ticks.discard(task)
        if task.cancelled():
            return
        e = task.exception()
        if e is not None:
            logger.error(
                "Quality sampling tick failed",
                extra={"error": str(e), "current": self._state.current},
            )

    async def sample(self) -> PlaybackSignals:
        """Read the surface and the network into one signal sample."""
        downlink: Optional[float] = None
        if self.measure_downlink is not None:
            try:
                downlink = await self.measure_downlink()
            except NetworkMeasurementUnavailable:
                downlink = None
        network = self.monitor.record(downlink)
        return PlaybackSignals(
            buffer_seconds=self.surface.buffered_seconds(),
            stalling=self.surface.is_stalling(),
            network=network,
        )

    async def tick(self) -> Optional[SwitchAction]:
        """Run one sampling step and execute the switch it calls for.

        A bandwidth switch still preloading is cancelled when the buffer
        turns critical or playback stalls, so the emergency drop is not held
        back by a slow upgrade.

        Returns:
            The action that was attempted, or None when no switch was due
        """
        if self._switch_lock.locked() and self._state.pending_reason != SwitchReason.BANDWIDTH:
            return None

        signals = await self.sample()
        if self._switch_lock.locked():
            if not (signals.stalling or signals.buffer_health == BufferHealth.CRITICAL):
                return None
            self._loads.cancel(self._load_key)
        async with self._switch_lock:
            self._state, action = decide(
                self._state,
                signals,
                self.available,
                self.config,
                now=self._clock(),
            )
            if action is None:
                return None
            await self._execute(action)
            return action

    async def set_manual_quality(self, label: Optional[str]) -> bool:
        """Pin playback to ``label``; ``None`` re-enables automatic switching.

        An automatic switch still preloading is cancelled first.

        Returns:
            True when playback ends up on the requested label, or when the
            override was cleared
        """
        if label is not None and label not in self.available:
            raise UnknownRendition(label)

        self._loads.cancel(self._load_key)
        async with self._switch_lock:
            self._state, action = set_override(self._state, label)
            if action is None:
                return True
            return await self._execute(action)

    async def _preload(self, label: str, url: str, position: float) -> Any:
        try:
            return await asyncio.wait_for(
                self.surface.preload(url, position),
                timeout=self.preload_timeout,
            )
        except asyncio.TimeoutError as e:
            raise PreloadTimeout(label, self.preload_timeout) from e

    async def _execute(self, action: SwitchAction) -> bool:
        reason = action.reason.value
        log_extra = {"from": action.from_label, "to": action.label, "reason": reason}

        try:
            url = await self.source.rendition_url(action.label)
            position = self.surface.position()
            handle = await self._loads.load(
                self._load_key,
                lambda: self._preload(action.label, url, position),
            )
            await self.surface.swap(
                handle,
                position=self.surface.position(),
                playing=self.surface.is_playing(),
            )
        except PreloadTimeout as e:
            self._state = abandon_switch(self._state)
            QUALITY_SWITCHES_TOTAL.labels(reason=reason, outcome="timeout").inc()
            logger.warning("Quality switch abandoned", extra={**log_extra, "error": str(e)})
            return False
        except LoadCancelled:
            self._state = abandon_switch(self._state)
            QUALITY_SWITCHES_TOTAL.labels(reason=reason, outcome="cancelled").inc()
            logger.info("Quality switch cancelled", extra=log_extra)
            return False
        except Exception as e:
            self._state = abandon_switch(self._state)
            QUALITY_SWITCHES_TOTAL.labels(reason=reason, outcome="failed").inc()
            logger.warning("Quality switch failed", extra={**log_extra, "error": str(e)})
            return False

        self._state = complete_switch(self._state, self._clock(), self.config.history_size)
        QUALITY_SWITCHES_TOTAL.labels(reason=reason, outcome="success").inc()
        logger.info("Quality switched", extra=log_extra)
        return True

    def stats(self) -> dict:
        network = self.monitor.condition()
        return {
            "current": self._state.current,
            "manual_override": self._state.manual_override,
            "available": list(self.available),
            "network": {
                "downlink_mbps": network.downlink_mbps,
                "stable": network.stable,
                "trend": network.trend.value,
            },
            "history": [
                {"label": r.label, "timestamp": r.timestamp, "reason": r.reason.value}
                for r in self._state.history
            ],
        }
