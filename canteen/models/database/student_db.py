"""
学生与档口相关数据库模型
"""

from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from canteen.core.database import Base


class StudentDB(Base):
    """学生数据库表"""

    __tablename__ = "students"

    student_id = Column(String(12), primary_key=True, comment="学号")
    name = Column(String(50), nullable=False, comment="姓名")
    sex = Column(String(2), comment="性别")
    major = Column(String(50), comment="专业")

    # 账户信息
    balance = Column(Numeric(10, 2), nullable=False, default=0, comment="账户余额")
    points = Column(Integer, nullable=False, default=0, comment="消费积分")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="chk_student_balance"),
        CheckConstraint("points >= 0", name="chk_student_points"),
        {'comment': '学生表'}
    )


class MerchantDB(Base):
    """档口数据库表"""

    __tablename__ = "merchants"

    merchant_id = Column(String(5), primary_key=True, comment="档口编号")
    name = Column(String(50), nullable=False, comment="档口名称")
    location = Column(String(50), comment="所在位置")
    manager = Column(String(20), comment="负责人")
    phone = Column(String(20), comment="联系电话")

    dishes = relationship("DishDB", back_populates="merchant")

    __table_args__ = (
        {'comment': '档口表'}
    )


class DishDB(Base):
    """菜品数据库表"""

    __tablename__ = "dishes"

    dish_id = Column(String(10), primary_key=True, comment="菜品编号")
    name = Column(String(50), nullable=False, comment="菜品名称")
    price = Column(Numeric(8, 2), nullable=False, comment="单价")
    merchant_id = Column(String(5), ForeignKey("merchants.merchant_id"), nullable=False, index=True, comment="所属档口")

    merchant = relationship("MerchantDB", back_populates="dishes")

    __table_args__ = (
        CheckConstraint("price >= 0", name="chk_dish_price"),
        {'comment': '菜品表'}
    )
