"""
实时通知接口

WS /api/socket 客户端消息：
    {"type": "join-orders"} / {"type": "join-points"}
    {"type": "join", "topic": "orders"}
    {"type": "database-changed", "data": {"type": "new_order", "payload": {...}}}
POST /api/emit 由其他服务手动触发变更通知。
"""

import json
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from canteen.api.dependencies import get_broadcaster
from canteen.realtime.broadcaster import (
    NotificationBroadcaster,
    UnknownChangeType,
    UnknownTopic,
    TOPIC_ORDERS,
    TOPIC_POINTS,
)
from canteen.realtime.hub import get_hub

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["实时通知"])

JOIN_SHORTCUTS = {
    "join-orders": TOPIC_ORDERS,
    "join-points": TOPIC_POINTS,
}


class EmitRequest(BaseModel):
    type: Optional[str] = None
    payload: Any = None


@router.post("/emit")
async def emit_change(request: EmitRequest, broadcaster: NotificationBroadcaster = Depends(get_broadcaster)):
    """手动触发变更通知"""
    if not request.type:
        raise HTTPException(status_code=400, detail="缺少变更类型")
    try:
        delivered = await broadcaster.announce(request.type, request.payload)
    except UnknownChangeType as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "delivered": delivered}


async def handle_client_message(broadcaster: NotificationBroadcaster, connection_id: str, message: Any) -> None:
    """处理单条客户端消息，格式不对的消息记录后忽略"""
    if not isinstance(message, dict):
        logger.warning("忽略非法消息", connection_id=connection_id)
        return

    message_type = message.get("type")
    if not isinstance(message_type, str):
        logger.warning("忽略非法消息", connection_id=connection_id)
        return

    try:
        if message_type in JOIN_SHORTCUTS:
            broadcaster.subscribe(connection_id, JOIN_SHORTCUTS[message_type])
        elif message_type == "join":
            broadcaster.subscribe(connection_id, str(message.get("topic")))
        elif message_type == "database-changed":
            data = message.get("data") or {}
            if not isinstance(data, dict):
                logger.warning("忽略非法变更数据", connection_id=connection_id)
                return
            await broadcaster.announce(data.get("type"), data.get("payload"))
        else:
            logger.warning("未知消息类型", connection_id=connection_id, type=message_type)
    except (UnknownTopic, UnknownChangeType) as e:
        logger.warning("客户端消息无效", connection_id=connection_id, error=str(e))


@router.websocket("/socket")
async def notification_socket(websocket: WebSocket):
    """仪表盘长连接"""
    hub = get_hub()
    if hub is None:
        await websocket.close(code=1013)
        return

    broadcaster = hub.broadcaster
    await websocket.accept()
    connection_id = broadcaster.on_connect(websocket)
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("忽略非JSON消息", connection_id=connection_id)
                continue
            await handle_client_message(broadcaster, connection_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.on_disconnect(connection_id)
