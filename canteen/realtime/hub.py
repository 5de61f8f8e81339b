"""
实时通知运行时

每个进程只创建一个广播器和一组轮询器。init_realtime 可重复调用，第二次起直接返回
已有实例。
"""

import asyncio
import threading
from functools import partial
from typing import Any, List, Optional, Set

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from canteen.core.config import settings
from canteen.realtime.broadcaster import (
    NotificationBroadcaster,
    TOPIC_ORDERS,
    TOPIC_POINTS,
    EVENT_NEW_ORDER,
    EVENT_NEW_POINTS,
)
from canteen.realtime.feeds import LatestOrderFeed, LatestPointRecordFeed
from canteen.realtime.poller import ChangePoller

logger = structlog.get_logger()


class RealtimeHub:
    """广播器与轮询器的组合"""

    def __init__(self, broadcaster: NotificationBroadcaster, pollers: List[ChangePoller]):
        self.broadcaster = broadcaster
        self.pollers = pollers

    def start(self) -> None:
        for poller in self.pollers:
            poller.start()

    async def stop(self) -> None:
        for poller in self.pollers:
            await poller.stop()


_hub: Optional[RealtimeHub] = None
_hub_lock = threading.Lock()
_dispatches: Set[asyncio.Task] = set()


def build_hub(
    session_maker: Optional[async_sessionmaker] = None,
    interval: Optional[float] = None
) -> RealtimeHub:
    broadcaster = NotificationBroadcaster()
    interval = interval if interval is not None else settings.poll_interval_seconds
    pollers = [
        ChangePoller(
            "orders",
            LatestOrderFeed(session_maker),
            partial(broadcaster.publish, TOPIC_ORDERS, EVENT_NEW_ORDER),
            interval=interval,
            tick_timeout=settings.poll_tick_timeout_seconds
        ),
        ChangePoller(
            "points",
            LatestPointRecordFeed(session_maker),
            partial(broadcaster.publish, TOPIC_POINTS, EVENT_NEW_POINTS),
            interval=interval,
            tick_timeout=settings.poll_tick_timeout_seconds
        ),
    ]
    return RealtimeHub(broadcaster, pollers)


def init_realtime(
    session_maker: Optional[async_sessionmaker] = None,
    interval: Optional[float] = None,
    start_pollers: Optional[bool] = None
) -> RealtimeHub:
    """初始化实时通知运行时（幂等）"""
    global _hub

    with _hub_lock:
        if _hub is not None:
            logger.info("实时通知已初始化")
            return _hub

        logger.info("正在初始化实时通知")
        hub = build_hub(session_maker, interval)
        _hub = hub

    if settings.poller_enabled if start_pollers is None else start_pollers:
        hub.start()
    return hub


def get_hub() -> Optional[RealtimeHub]:
    return _hub


async def shutdown_realtime() -> None:
    """停止轮询并释放实例"""
    global _hub

    with _hub_lock:
        hub, _hub = _hub, None
    if hub is not None:
        await hub.stop()
        await drain_dispatches()
        logger.info("实时通知已关闭")


async def notify(topic: str, event: str, payload: Any) -> int:
    """运行时已初始化时推送，未初始化时忽略"""
    hub = _hub
    if hub is None:
        return 0
    return await hub.broadcaster.publish(topic, event, payload)


def _on_dispatch_done(task: asyncio.Task) -> None:
    _dispatches.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("后台推送失败", error=str(task.exception()))


async def dispatch(topic: str, event: str, payload: Any) -> int:
    """
    在后台推送，不等待连接发送完成

    业务写操作提交后用它发通知，响应不受慢连接影响。返回值恒为0（送达数未知）。
    """
    if _hub is None:
        return 0
    task = asyncio.get_running_loop().create_task(notify(topic, event, payload))
    _dispatches.add(task)
    task.add_done_callback(_on_dispatch_done)
    return 0


async def drain_dispatches() -> None:
    """等待当前事件循环中尚未完成的后台推送"""
    loop = asyncio.get_running_loop()
    pending = [task for task in _dispatches if task.get_loop() is loop]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
