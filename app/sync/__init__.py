"""Near-real-time synchronisation of auction state for connected viewers.

The protocol is change-notify-then-pull: the change feed only says *what*
changed, viewers re-fetch the full snapshot, and a polling timer bounds
staleness whenever the feed is unavailable.
"""
from .distributor import SyncDistributor
from .feed import ChangeEvent, ChangeFeed, InMemoryChangeFeed, RedisChangeFeed, get_change_feed, publish_changes
from .policy import ChannelState, PollingPolicy, ViewerConditions

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "ChannelState",
    "InMemoryChangeFeed",
    "PollingPolicy",
    "RedisChangeFeed",
    "SyncDistributor",
    "ViewerConditions",
    "get_change_feed",
    "publish_changes",
]
