"""
服务包初始化文件
"""

from .common_cache import SimpleCache, order_cache
from .order_service import OrderService
from .payment_service import PaymentService

__all__ = [
    "SimpleCache",
    "order_cache",
    "OrderService",
    "PaymentService"
]
