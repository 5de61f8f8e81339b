"""
支付与积分相关数据模型
"""

from datetime import datetime
from typing import Optional
from pydantic import Field, field_validator

from canteen.models.order import CamelModel, Money, PayMethod


class PaymentRequest(CamelModel):
    """学生支付订单请求"""

    order_id: str = Field(..., description="订单编号")
    student_id: str = Field(..., description="学号")
    pay_method: PayMethod = Field(default=PayMethod.CAMPUS_CARD, description="支付方式")

    @field_validator('order_id', mode='before')
    @classmethod
    def validate_order_id(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("订单ID不能为空")
        return str(v).strip()

    @field_validator('student_id', mode='before')
    @classmethod
    def validate_student_id(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("学号不能为空")
        return str(v).strip()

    @field_validator('pay_method', mode='before')
    @classmethod
    def default_pay_method(cls, v):
        return PayMethod.CAMPUS_CARD if v is None else v


class PaymentResult(CamelModel):
    """支付结果"""

    success: bool = True
    pay_id: str
    new_balance: Money
    new_points: int


class PointRecordSummary(CamelModel):
    """积分流水摘要（用于实时推送）"""

    record_id: str
    student_id: str
    student_name: Optional[str] = None
    order_id: str
    points: int
    created_at: datetime
