"""
实时通知包：广播器、变更轮询器及其运行时
"""

from .broadcaster import (
    NotificationBroadcaster,
    TOPIC_ORDERS,
    TOPIC_POINTS,
    EVENT_NEW_ORDER,
    EVENT_NEW_POINTS,
    EVENT_ORDER_UPDATED,
    UnknownTopic,
    UnknownChangeType
)
from .poller import ChangePoller
from .hub import RealtimeHub, init_realtime, get_hub, shutdown_realtime, notify

__all__ = [
    "NotificationBroadcaster",
    "TOPIC_ORDERS",
    "TOPIC_POINTS",
    "EVENT_NEW_ORDER",
    "EVENT_NEW_POINTS",
    "EVENT_ORDER_UPDATED",
    "UnknownTopic",
    "UnknownChangeType",
    "ChangePoller",
    "RealtimeHub",
    "init_realtime",
    "get_hub",
    "shutdown_realtime",
    "notify"
]
