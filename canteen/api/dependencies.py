"""
路由依赖注入
"""

from fastapi import HTTPException

from canteen.realtime.broadcaster import NotificationBroadcaster
from canteen.realtime.hub import get_hub
from canteen.services.order_service import OrderService
from canteen.services.payment_service import PaymentService


def get_order_service() -> OrderService:
    return OrderService()


def get_payment_service() -> PaymentService:
    return PaymentService()


def get_broadcaster() -> NotificationBroadcaster:
    """获取进程内广播器，未初始化时返回503"""
    hub = get_hub()
    if hub is None:
        raise HTTPException(status_code=503, detail="实时通知服务未初始化")
    return hub.broadcaster
