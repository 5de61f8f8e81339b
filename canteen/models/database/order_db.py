"""
订单相关数据库模型
"""

from datetime import datetime

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, CheckConstraint, Table, MetaData
from sqlalchemy.orm import relationship
from canteen.core.database import Base


class OrderDB(Base):
    """订单数据库表"""

    __tablename__ = "orders"

    # 订单编号 = 档口编号 + YYMMDD + 4位当日序号
    order_id = Column(String(20), primary_key=True, comment="订单编号")
    student_id = Column(String(12), ForeignKey("students.student_id"), nullable=False, index=True, comment="学号")
    merchant_id = Column(String(5), ForeignKey("merchants.merchant_id"), nullable=False, index=True, comment="档口编号")

    order_time = Column(DateTime, nullable=False, default=datetime.now, index=True, comment="下单时间")
    total_amount = Column(Numeric(10, 2), nullable=False, comment="订单总金额")
    status = Column(String(10), nullable=False, default="待支付", index=True, comment="订单状态")

    # 关系映射
    student = relationship("StudentDB")
    merchant = relationship("MerchantDB")
    details = relationship("OrderDetailDB", back_populates="order")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="chk_order_total_amount"),
        {'comment': '订单主表'}
    )


class OrderDetailDB(Base):
    """订单明细数据库表"""

    __tablename__ = "order_details"

    order_id = Column(String(20), ForeignKey("orders.order_id"), primary_key=True, comment="订单编号")
    dish_id = Column(String(10), ForeignKey("dishes.dish_id"), primary_key=True, comment="菜品编号")
    quantity = Column(Integer, nullable=False, comment="数量")

    order = relationship("OrderDB", back_populates="details")
    dish = relationship("DishDB")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_order_detail_quantity"),
        {'comment': '订单明细表'}
    )


class PaymentDB(Base):
    """支付记录数据库表"""

    __tablename__ = "payments"

    pay_id = Column(String(32), primary_key=True, comment="支付编号")
    order_id = Column(String(20), ForeignKey("orders.order_id"), nullable=False, index=True, comment="订单编号")
    pay_method = Column(String(10), nullable=False, comment="支付方式")
    amount = Column(Numeric(10, 2), nullable=False, comment="支付金额")
    pay_time = Column(DateTime, nullable=False, default=datetime.now, comment="支付时间")

    __table_args__ = (
        {'comment': '支付记录表'}
    )


class PointRecordDB(Base):
    """积分流水数据库表（只追加）"""

    __tablename__ = "point_records"

    record_id = Column(Integer, primary_key=True, autoincrement=True, comment="流水编号")
    student_id = Column(String(12), ForeignKey("students.student_id"), nullable=False, index=True, comment="学号")
    # 不设外键：删除订单后积分流水仍保留
    order_id = Column(String(20), nullable=False, index=True, comment="订单编号")
    points = Column(Integer, nullable=False, comment="积分变动")
    created_at = Column(DateTime, nullable=False, default=datetime.now, comment="创建时间")

    student = relationship("StudentDB")

    __table_args__ = (
        {'comment': '积分流水表'}
    )


def build_legacy_payment_table(name: str, metadata: MetaData = None) -> Table:
    """构造旧版支付记录表（列结构与 payments 相同，表名不同）"""
    metadata = metadata if metadata is not None else MetaData()
    return Table(
        name,
        metadata,
        Column("pay_id", String(32), primary_key=True),
        Column("order_id", String(20), nullable=False, index=True),
        Column("pay_method", String(10), nullable=False),
        Column("amount", Numeric(10, 2), nullable=False),
        Column("pay_time", DateTime, nullable=False, default=datetime.now),
    )
