"""
学生、档口与菜品数据库操作层
"""

from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.models.database.student_db import StudentDB, MerchantDB, DishDB


class StudentRepository:
    """学生数据库操作层"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_student_id(self, student_id: str, for_update: bool = False) -> Optional[StudentDB]:
        """根据学号获取学生，支付流程中加行锁"""
        query = select(StudentDB).where(StudentDB.student_id == student_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def settle_payment(self, student_id: str, amount: Decimal, points: int) -> bool:
        """
        扣减余额并增加积分

        余额不足时不更新任何行并返回 False。
        """
        result = await self.db.execute(
            update(StudentDB)
            .where(
                and_(
                    StudentDB.student_id == student_id,
                    StudentDB.balance >= amount
                )
            )
            .values(
                balance=StudentDB.balance - amount,
                points=StudentDB.points + points
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_balance_and_points(self, student_id: str) -> Optional[tuple]:
        result = await self.db.execute(
            select(StudentDB.balance, StudentDB.points).where(StudentDB.student_id == student_id)
        )
        row = result.one_or_none()
        return (row.balance, row.points) if row else None


class MerchantRepository:
    """档口与菜品数据库操作层（只读）"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def exists(self, merchant_id: str) -> bool:
        result = await self.db.execute(
            select(MerchantDB.merchant_id).where(MerchantDB.merchant_id == merchant_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_dish_prices(self, dish_ids: Iterable[str]) -> Dict[str, Decimal]:
        """获取菜品单价，不存在的菜品不会出现在结果中"""
        dish_ids = list(dish_ids)
        if not dish_ids:
            return {}
        result = await self.db.execute(
            select(DishDB.dish_id, DishDB.price).where(DishDB.dish_id.in_(dish_ids))
        )
        return {row.dish_id: row.price for row in result.fetchall()}
