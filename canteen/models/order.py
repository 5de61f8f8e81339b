"""
订单相关数据模型
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from typing import Annotated, List, Optional
from pydantic import BaseModel, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel
from enum import Enum


MONEY_QUANT = Decimal("0.01")


def quantize_money(value) -> Decimal:
    """金额统一保留两位小数（四舍五入）"""
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    """金额输出为两位小数字符串"""
    return f"{quantize_money(value):.2f}"


def to_local_naive(value: datetime) -> datetime:
    """带时区的时间转换为本地无时区时间，与数据库存储保持一致"""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


# 对外输出时序列化为 "22.00" 形式的字符串
Money = Annotated[Decimal, PlainSerializer(format_money, return_type=str, when_used="json")]


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING_PAYMENT = "待支付"
    COMPLETED = "已完成"


class PayMethod(str, Enum):
    """支付方式枚举"""
    WECHAT = "微信"
    ALIPAY = "支付宝"
    CAMPUS_CARD = "校园卡"
    CASH = "现金"


def normalize_status(raw: Optional[str]) -> OrderStatus:
    """数据库中无法识别的状态一律视为待支付"""
    try:
        return OrderStatus((raw or "").strip())
    except ValueError:
        return OrderStatus.PENDING_PAYMENT


def _require_text(value: str, message: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(message)
    return str(value).strip()


def _check_amount(value: Decimal) -> Decimal:
    if not value.is_finite():
        raise ValueError("订单金额必须为有效数字")
    if value < 0:
        raise ValueError("订单金额不能为负数")
    return quantize_money(value)


class CamelModel(BaseModel):
    """请求/响应字段统一使用驼峰命名"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class OrderDetailInput(CamelModel):
    """下单明细"""

    dish_id: str = Field(..., description="菜品编号")
    quantity: int = Field(..., description="数量")

    @field_validator('dish_id', mode='before')
    @classmethod
    def validate_dish_id(cls, v):
        return _require_text(v, "菜品编号不能为空")

    @field_validator('quantity')
    @classmethod
    def validate_quantity(cls, v):
        if v <= 0:
            raise ValueError("菜品数量必须大于0")
        return v


class OrderCreate(CamelModel):
    """创建订单请求模型"""

    student_id: str = Field(..., description="学号")
    merchant_id: str = Field(..., description="档口编号")
    total_amount: Decimal = Field(..., description="订单总金额")
    status: OrderStatus = Field(default=OrderStatus.PENDING_PAYMENT, description="订单状态")
    order_time: Optional[datetime] = Field(None, description="下单时间，缺省为当前时间")
    details: List[OrderDetailInput] = Field(..., description="订单明细")

    @field_validator('student_id', mode='before')
    @classmethod
    def validate_student_id(cls, v):
        return _require_text(v, "学号不能为空")

    @field_validator('merchant_id', mode='before')
    @classmethod
    def validate_merchant_id(cls, v):
        return _require_text(v, "档口编号不能为空")

    @field_validator('total_amount')
    @classmethod
    def validate_total_amount(cls, v):
        return _check_amount(v)

    @field_validator('status', mode='before')
    @classmethod
    def default_status(cls, v):
        return OrderStatus.PENDING_PAYMENT if v is None else v

    @field_validator('order_time')
    @classmethod
    def validate_order_time(cls, v):
        return to_local_naive(v) if v is not None else v

    @field_validator('details')
    @classmethod
    def validate_details(cls, v):
        """明细不能为空，同一菜品只能出现一次"""
        if not v:
            raise ValueError("订单明细不能为空")
        dish_ids = [detail.dish_id for detail in v]
        if len(set(dish_ids)) != len(dish_ids):
            raise ValueError("订单明细中存在重复菜品")
        return v


class OrderUpdate(CamelModel):
    """更新订单模型（仅修改提交的字段）"""

    status: Optional[OrderStatus] = None
    total_amount: Optional[Decimal] = None
    order_time: Optional[datetime] = None

    @field_validator('total_amount')
    @classmethod
    def validate_total_amount(cls, v):
        return _check_amount(v) if v is not None else v

    @field_validator('order_time')
    @classmethod
    def validate_order_time(cls, v):
        return to_local_naive(v) if v is not None else v

    def changed_fields(self) -> dict:
        """提交且非空的字段"""
        return {
            name: getattr(self, name)
            for name in ("status", "total_amount", "order_time")
            if getattr(self, name) is not None
        }


class OrderCreated(CamelModel):
    """创建订单响应"""

    order_id: str
    success: bool = True


class OrderPaymentEntry(CamelModel):
    """订单支付记录"""

    pay_id: str
    pay_method: str
    amount: Money
    pay_time: Optional[datetime] = None


class OrderDetailItem(CamelModel):
    """订单明细（小计按 单价 × 数量 实时计算）"""

    order_id: str
    dish_id: str
    dish_name: Optional[str] = None
    price: Money
    quantity: int
    subtotal: Money


class OrderDetailData(CamelModel):
    """订单详情视图"""

    order_id: str
    student_id: str
    student_name: Optional[str] = None
    merchant_id: str
    merchant_name: Optional[str] = None
    location: Optional[str] = None
    total_amount: Money
    status: OrderStatus
    order_time: Optional[datetime] = None
    payment: List[OrderPaymentEntry] = Field(default_factory=list)
    details: List[OrderDetailItem] = Field(default_factory=list)
    point_reward: int = 0


class OrderSummary(CamelModel):
    """订单摘要（用于实时推送）"""

    order_id: str
    student_id: str
    student_name: Optional[str] = None
    merchant_id: str
    merchant_name: Optional[str] = None
    order_time: datetime
    total_amount: Money
    status: OrderStatus
