"""
订单数据库操作层
"""

from typing import Optional, Dict, Any
from datetime import datetime

from sqlalchemy import select, update, delete, and_, desc, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from canteen.models.order import OrderCreate
from canteen.models.database.order_db import OrderDB, OrderDetailDB, PointRecordDB

SEQUENCE_WIDTH = 4


class OrderRepository:
    """订单数据库操作层"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_order_id(self, order_id: str, for_update: bool = False) -> Optional[OrderDB]:
        """根据订单编号获取订单（不加载关联）"""
        query = select(OrderDB).where(OrderDB.order_id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_order_with_relations(self, order_id: str, for_update: bool = False) -> Optional[OrderDB]:
        """获取订单及学生、档口、明细、菜品信息（总是读取数据库最新值）"""
        query = (
            select(OrderDB)
            .options(
                selectinload(OrderDB.student),
                selectinload(OrderDB.merchant),
                selectinload(OrderDB.details).selectinload(OrderDetailDB.dish)
            )
            .where(OrderDB.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update(of=OrderDB)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_max_sequence(self, prefix: str) -> int:
        """
        获取指定前缀（档口编号 + YYMMDD）当日已用的最大序号

        只统计 前缀 + 4位数字 形式的编号，没有订单时返回 0。
        """
        result = await self.db.execute(
            select(OrderDB.order_id).where(
                and_(
                    OrderDB.order_id.like(f"{prefix}%"),
                    func.length(OrderDB.order_id) == len(prefix) + SEQUENCE_WIDTH
                )
            )
        )
        sequences = [
            int(order_id[-SEQUENCE_WIDTH:])
            for order_id in result.scalars().all()
            if order_id[-SEQUENCE_WIDTH:].isdigit()
        ]
        return max(sequences, default=0)

    async def create_order_with_details(
        self,
        order_id: str,
        order_data: OrderCreate,
        order_time: datetime
    ) -> OrderDB:
        """创建订单及订单明细"""
        db_order = OrderDB(
            order_id=order_id,
            student_id=order_data.student_id,
            merchant_id=order_data.merchant_id,
            order_time=order_time,
            total_amount=order_data.total_amount,
            status=order_data.status.value
        )

        self.db.add(db_order)
        await self.db.flush()

        for detail in order_data.details:
            self.db.add(OrderDetailDB(
                order_id=order_id,
                dish_id=detail.dish_id,
                quantity=detail.quantity
            ))
        await self.db.flush()

        return db_order

    async def update_order_fields(self, order_id: str, values: Dict[str, Any]) -> bool:
        """更新订单字段"""
        result = await self.db.execute(
            update(OrderDB)
            .where(OrderDB.order_id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def mark_completed(self, order_id: str, pending_status: str, completed_status: str) -> bool:
        """待支付订单标记为已完成，状态不是待支付时不更新"""
        result = await self.db.execute(
            update(OrderDB)
            .where(
                and_(
                    OrderDB.order_id == order_id,
                    OrderDB.status == pending_status
                )
            )
            .values(status=completed_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete_order_details(self, order_id: str) -> int:
        result = await self.db.execute(
            delete(OrderDetailDB).where(OrderDetailDB.order_id == order_id)
        )
        return result.rowcount

    async def delete_order(self, order_id: str) -> int:
        result = await self.db.execute(
            delete(OrderDB).where(OrderDB.order_id == order_id)
        )
        return result.rowcount

    async def get_latest_order(self) -> Optional[OrderDB]:
        """获取最新的一笔订单（按下单时间、订单编号倒序）"""
        result = await self.db.execute(
            select(OrderDB)
            .options(
                selectinload(OrderDB.student),
                selectinload(OrderDB.merchant)
            )
            .order_by(desc(OrderDB.order_time), desc(OrderDB.order_id))
            .limit(1)
        )
        return result.scalar_one_or_none()


class PointRecordRepository:
    """积分流水数据库操作层"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_record(self, student_id: str, order_id: str, points: int, created_at: datetime) -> PointRecordDB:
        """追加一条积分流水"""
        record = PointRecordDB(
            student_id=student_id,
            order_id=order_id,
            points=points,
            created_at=created_at
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def get_order_points(self, order_id: str) -> int:
        """订单累计获得的积分"""
        result = await self.db.execute(
            select(func.coalesce(func.sum(PointRecordDB.points), 0))
            .where(PointRecordDB.order_id == order_id)
        )
        return int(result.scalar_one())

    async def get_latest_record(self) -> Optional[PointRecordDB]:
        """获取编号最大的积分流水"""
        result = await self.db.execute(
            select(PointRecordDB)
            .options(selectinload(PointRecordDB.student))
            .order_by(desc(PointRecordDB.record_id))
            .limit(1)
        )
        return result.scalar_one_or_none()
