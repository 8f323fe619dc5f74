"""Polling interval policy for auction viewers.

Pure: the distributor feeds in the current conditions and schedules the
returned interval itself.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass

from core.config import Settings, get_settings

TERMINAL_STATUSES = frozenset({"completed", "cancelled", "incomplete"})


class ChannelState(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ViewerConditions:
    channel: ChannelState = ChannelState.CONNECTING
    visible: bool = True
    idle_seconds: float = 0.0
    # None while nothing has been fetched yet
    auction_status: str | None = None

    @property
    def terminal(self) -> bool:
        return self.auction_status in TERMINAL_STATUSES


@dataclass(frozen=True)
class PollingPolicy:
    active_seconds: float = 15
    idle_seconds: float = 60
    hidden_seconds: float = 300
    terminal_seconds: float = 60
    terminal_idle_seconds: float = 300
    connected_factor: float = 2
    idle_after_seconds: float = 300

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PollingPolicy":
        settings = settings or get_settings()
        return cls(
            active_seconds=settings.poll_active_seconds,
            idle_seconds=settings.poll_idle_seconds,
            hidden_seconds=settings.poll_hidden_seconds,
            terminal_seconds=settings.poll_terminal_seconds,
            terminal_idle_seconds=settings.poll_terminal_idle_seconds,
            connected_factor=settings.poll_connected_factor,
            idle_after_seconds=settings.idle_after_seconds,
        )

    def next_interval(self, conditions: ViewerConditions) -> float:
        """Seconds until the next poll.

        hidden -> 300; terminal -> 60, or 300 once idle; active and idle -> 60;
        active and recently used -> 15, times ``connected_factor`` while the
        push channel is up (capped at the idle interval).
        """
        idle = conditions.idle_seconds >= self.idle_after_seconds
        if not conditions.visible:
            return self.hidden_seconds
        if conditions.terminal:
            return self.terminal_idle_seconds if idle else self.terminal_seconds
        if idle:
            return self.idle_seconds
        if conditions.channel is ChannelState.CONNECTED:
            return min(self.active_seconds * self.connected_factor, self.idle_seconds)
        return self.active_seconds
