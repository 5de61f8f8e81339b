"""
仓库包初始化文件 - 数据库访问层
"""

from .order_repository import OrderRepository, PointRecordRepository
from .payment_repository import PaymentRepository, PaymentSource, payment_source
from .student_repository import StudentRepository, MerchantRepository

__all__ = [
    "OrderRepository",
    "PointRecordRepository",
    "PaymentRepository",
    "PaymentSource",
    "payment_source",
    "StudentRepository",
    "MerchantRepository"
]
