"""
数据模型包初始化文件
"""

from .order import (
    OrderStatus,
    PayMethod,
    OrderCreate,
    OrderUpdate,
    OrderCreated,
    OrderDetailInput,
    OrderDetailItem,
    OrderPaymentEntry,
    OrderDetailData,
    OrderSummary,
    normalize_status,
    quantize_money,
    format_money
)
from .payment import PaymentRequest, PaymentResult, PointRecordSummary

__all__ = [
    "OrderStatus",
    "PayMethod",
    "OrderCreate",
    "OrderUpdate",
    "OrderCreated",
    "OrderDetailInput",
    "OrderDetailItem",
    "OrderPaymentEntry",
    "OrderDetailData",
    "OrderSummary",
    "normalize_status",
    "quantize_money",
    "format_money",
    "PaymentRequest",
    "PaymentResult",
    "PointRecordSummary"
]
