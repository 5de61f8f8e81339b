"""
实时通知广播器

客户端通过长连接加入房间（orders / points），轮询器或手动触发的变更事件推送给房间内的
所有连接。断开或发送超时的连接在推送时被跳过并移除。
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set, Tuple

import structlog

from canteen.core.config import settings

logger = structlog.get_logger()

TOPIC_ORDERS = "orders"
TOPIC_POINTS = "points"
DEFAULT_TOPICS = (TOPIC_ORDERS, TOPIC_POINTS)

EVENT_NEW_ORDER = "new-order"
EVENT_NEW_POINTS = "new-points"
EVENT_ORDER_UPDATED = "order-updated"

# 变更类型 -> (房间, 推送事件)
CHANGE_ROUTES: Dict[str, Tuple[str, str]] = {
    "new_order": (TOPIC_ORDERS, EVENT_NEW_ORDER),
    "new_points": (TOPIC_POINTS, EVENT_NEW_POINTS),
    "order_updated": (TOPIC_ORDERS, EVENT_ORDER_UPDATED),
}


class UnknownTopic(ValueError):
    """不存在的房间"""


class UnknownChangeType(ValueError):
    """不支持的变更类型"""


def build_message(event: str, payload: Any) -> Dict[str, Any]:
    """推送给客户端的消息体"""
    return {
        "event": event,
        "payload": payload,
        "timestamp": datetime.now().astimezone().isoformat()
    }


class NotificationBroadcaster:
    """按房间分发通知的广播器"""

    def __init__(self, topics: Iterable[str] = DEFAULT_TOPICS, send_timeout: Optional[float] = None):
        self.topics = frozenset(topics)
        self.send_timeout = send_timeout if send_timeout is not None else settings.socket_send_timeout_seconds
        self._connections: Dict[str, Any] = {}
        self._subscribers: Dict[str, Set[str]] = {topic: set() for topic in self.topics}

    def on_connect(self, connection: Any, connection_id: Optional[str] = None) -> str:
        """登记新连接，尚未加入任何房间"""
        connection_id = connection_id or uuid.uuid4().hex
        self._connections[connection_id] = connection
        logger.info("用户连接", connection_id=connection_id)
        return connection_id

    def subscribe(self, connection_id: str, topic: str) -> bool:
        """加入房间，重复加入无副作用；连接未登记时返回 False"""
        if topic not in self.topics:
            raise UnknownTopic(f"未知房间: {topic}")
        if connection_id not in self._connections:
            return False
        if connection_id not in self._subscribers[topic]:
            self._subscribers[topic].add(connection_id)
            logger.info("用户加入房间", connection_id=connection_id, topic=topic)
        return True

    def on_disconnect(self, connection_id: str) -> None:
        """移除连接及其全部房间订阅"""
        self._connections.pop(connection_id, None)
        for subscribers in self._subscribers.values():
            subscribers.discard(connection_id)
        logger.info("用户断开连接", connection_id=connection_id)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    async def publish(self, topic: str, event: str, payload: Any) -> int:
        """向房间内所有连接推送，返回成功送达的连接数"""
        if topic not in self.topics:
            raise UnknownTopic(f"未知房间: {topic}")

        message = build_message(event, payload)
        targets = [
            (connection_id, self._connections[connection_id])
            for connection_id in list(self._subscribers[topic])
            if connection_id in self._connections
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._send(connection, message) for _, connection in targets),
            return_exceptions=True
        )

        delivered = 0
        for (connection_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.info("推送失败，移除连接", connection_id=connection_id, error=str(result) or type(result).__name__)
                self.on_disconnect(connection_id)
            else:
                delivered += 1

        logger.debug("广播完成", topic=topic, event_name=event, delivered=delivered)
        return delivered

    async def _send(self, connection: Any, message: Dict[str, Any]) -> None:
        """单个连接发送超时视为失败"""
        await asyncio.wait_for(connection.send_json(message), timeout=self.send_timeout)

    async def announce(self, change_type: str, payload: Any) -> int:
        """按变更类型转发到对应房间"""
        route = CHANGE_ROUTES.get(change_type) if isinstance(change_type, str) else None
        if route is None:
            raise UnknownChangeType(f"Unknown type '{change_type}'")
        topic, event = route
        return await self.publish(topic, event, payload)
