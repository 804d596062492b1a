"""Rendition switching policy.

``decide`` is a pure function of the playback state, one signal sample and
the clock value passed in. It never performs I/O; the controller executes
whatever switch it asks for and reports back through ``complete_switch`` or
``abandon_switch``.

Upgrades are slow (stable network, a comfortable buffer, long cooldown) and
downgrades are fast. A critical buffer or a stall is the only path that
ignores the cooldown.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional

from adaptive_media.modules.playback.signals import BufferHealth, PlaybackSignals
from adaptive_media.modules.transcoding.ladder import QUALITY_ORDER, Quality, parse_quality

# Downlink each rendition needs, before the safety margin
REQUIRED_MBPS: dict[Quality, float] = {
    Quality.Q_240P: 0.4,
    Quality.Q_360P: 0.8,
    Quality.Q_480P: 1.5,
    Quality.Q_720P: 4.0,
    Quality.Q_1080P: 8.0,
    Quality.Q_1440P: 16.0,
    Quality.Q_4K: 35.0,
}


class SwitchReason(str, Enum):
    BUFFER = "buffer"
    BANDWIDTH = "bandwidth"
    MANUAL = "manual"


@dataclass(frozen=True)
class PolicyConfig:
    stable_margin: float = 1.2
    unstable_margin: float = 1.5
    upgrade_cooldown: float = 10.0  # seconds
    downgrade_cooldown: float = 3.0  # seconds
    buffer_threshold: float = 3.0  # seconds
    emergency_step: int = 2  # rungs dropped on a critical buffer
    history_size: int = 10

    @property
    def upgrade_min_buffer(self) -> float:
        return self.buffer_threshold * 2


DEFAULT_POLICY = PolicyConfig()


@dataclass(frozen=True)
class SwitchRecord:
    label: str
    timestamp: float
    reason: SwitchReason


@dataclass(frozen=True)
class SwitchAction:
    """A switch the controller should execute."""
    from_label: str
    label: str
    reason: SwitchReason

    @property
    def bypasses_cooldown(self) -> bool:
        return self.reason in (SwitchReason.BUFFER, SwitchReason.MANUAL)


@dataclass(frozen=True)
class PlaybackState:
    """Quality state of one playback session. Never persisted.

    ``target`` is set while a switch is being executed.
    """
    current: str
    target: Optional[str] = None
    last_switch_at: Optional[float] = None
    manual_override: Optional[str] = None
    pending_reason: Optional[SwitchReason] = None
    history: tuple[SwitchRecord, ...] = field(default_factory=tuple)

    @property
    def switching(self) -> bool:
        return self.target is not None


def rank(label: str) -> int:
    """Position of a label on the quality ladder, -1 when unknown."""
    quality = parse_quality(label)
    if quality is None:
        return -1
    return QUALITY_ORDER.index(quality)


def ladder(available: Iterable[str]) -> list[str]:
    """Known labels from ``available``, canonical, deduplicated, lowest first."""
    qualities = {q for q in (parse_quality(label) for label in available) if q is not None}
    return [q.value for q in QUALITY_ORDER if q in qualities]


def required_mbps(label: str) -> float:
    quality = parse_quality(label)
    if quality is None:
        raise ValueError(f"Unknown quality label: {label}")
    return REQUIRED_MBPS[quality]


def bandwidth_target(rungs: list[str], downlink_mbps: float, margin: float) -> str:
    """Highest rung whose requirement times ``margin`` stays under the downlink.

    The lowest rung is returned when none fits.
    """
    target = rungs[0]
    for label in rungs:
        if required_mbps(label) * margin < downlink_mbps:
            target = label
        else:
            break
    return target


def emergency_target(rungs: list[str], current: str, step: int) -> str:
    """Rung ``step`` positions below ``current``, clamped to the lowest."""
    current_rank = rank(current)
    below = [label for label in rungs if rank(label) < current_rank]
    if not below:
        return rungs[0]
    return below[max(0, len(below) - step)]


def _cooled_down(state: PlaybackState, now: float, cooldown: float) -> bool:
    return state.last_switch_at is None or now - state.last_switch_at >= cooldown


def _begin(state: PlaybackState, label: str, reason: SwitchReason) -> tuple[PlaybackState, SwitchAction]:
    action = SwitchAction(from_label=state.current, label=label, reason=reason)
    return replace(state, target=label, pending_reason=reason), action


def decide(
    state: PlaybackState,
    signals: PlaybackSignals,
    available: Iterable[str],
    config: PolicyConfig = DEFAULT_POLICY,
    now: float = 0.0,
) -> tuple[PlaybackState, Optional[SwitchAction]]:
    """Evaluate one sampling tick.

    Args:
        state: Current session state
        signals: Buffer and network sample
        available: Labels of the playable renditions
        config: Margins and cooldowns
        now: Clock value in seconds, same clock as ``state.last_switch_at``

    Returns:
        The new state and the switch to execute, or ``None`` for no switch
    """
    if state.manual_override is not None or state.switching:
        return state, None

    rungs = ladder(available)
    if not rungs:
        return state, None

    current_rank = rank(state.current)

    if signals.stalling or signals.buffer_health == BufferHealth.CRITICAL:
        target = emergency_target(rungs, state.current, config.emergency_step)
        if rank(target) < current_rank:
            return _begin(state, target, SwitchReason.BUFFER)
        return state, None

    network = signals.network
    margin = config.stable_margin if network.stable else config.unstable_margin
    target = bandwidth_target(rungs, network.downlink_mbps, margin)
    target_rank = rank(target)

    if target_rank > current_rank:
        if (
            network.stable
            and signals.buffer_seconds > config.upgrade_min_buffer
            and _cooled_down(state, now, config.upgrade_cooldown)
        ):
            return _begin(state, target, SwitchReason.BANDWIDTH)
    elif target_rank < current_rank:
        if _cooled_down(state, now, config.downgrade_cooldown):
            return _begin(state, target, SwitchReason.BANDWIDTH)

    return state, None


def set_override(state: PlaybackState, label: Optional[str]) -> tuple[PlaybackState, Optional[SwitchAction]]:
    """Pin the session to ``label``, or return to automatic with ``None``.

    Any switch already pending is replaced.
    """
    if label is None:
        return replace(state, manual_override=None), None

    state = replace(state, manual_override=label, target=None, pending_reason=None)
    if label == state.current:
        return state, None
    return _begin(state, label, SwitchReason.MANUAL)


def complete_switch(state: PlaybackState, now: float, history_size: int = DEFAULT_POLICY.history_size) -> PlaybackState:
    """Commit the pending switch."""
    if state.target is None:
        return state
    record = SwitchRecord(
        label=state.target,
        timestamp=now,
        reason=state.pending_reason or SwitchReason.BANDWIDTH,
    )
    history = (state.history + (record,))[-history_size:]
    return replace(
        state,
        current=state.target,
        target=None,
        pending_reason=None,
        last_switch_at=now,
        history=history,
    )


def abandon_switch(state: PlaybackState) -> PlaybackState:
    """Drop the pending switch and stay on the current rendition."""
    return replace(state, target=None, pending_reason=None)
