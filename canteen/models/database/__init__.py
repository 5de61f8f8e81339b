"""
数据库模型包初始化文件
"""

from .student_db import StudentDB, MerchantDB, DishDB
from .order_db import OrderDB, OrderDetailDB, PaymentDB, PointRecordDB, build_legacy_payment_table

__all__ = [
    "StudentDB",
    "MerchantDB",
    "DishDB",
    "OrderDB",
    "OrderDetailDB",
    "PaymentDB",
    "PointRecordDB",
    "build_legacy_payment_table"
]
