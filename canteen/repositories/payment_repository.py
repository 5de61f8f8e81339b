"""
支付记录数据库操作层
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import Table, select, insert, delete, inspect
from sqlalchemy.ext.asyncio import AsyncSession, AsyncConnection

from canteen.core.config import settings
from canteen.models.database.order_db import PaymentDB, build_legacy_payment_table

logger = logging.getLogger(__name__)


class PaymentSource:
    """
    支付记录来源

    支付表存在新旧两种表名。启动时按候选顺序检查实际库结构，第一个存在的表即为
    后续所有读写使用的表；都不存在时使用主表 payments（由建表脚本创建）。
    """

    def __init__(self, candidates: Optional[Sequence[str]] = None):
        self.candidates = list(candidates or settings.payment_table_candidates)
        self.table: Table = PaymentDB.__table__

    def _table_for(self, name: str) -> Table:
        if name == PaymentDB.__tablename__:
            return PaymentDB.__table__
        return build_legacy_payment_table(name)

    async def resolve(self, conn: AsyncConnection) -> Table:
        """按候选顺序解析支付表"""
        existing = await conn.run_sync(
            lambda sync_conn: {
                name for name in self.candidates if inspect(sync_conn).has_table(name)
            }
        )

        for name in self.candidates:
            if name in existing:
                self.table = self._table_for(name)
                logger.info(f"支付记录表解析为: {name}")
                return self.table

        self.table = PaymentDB.__table__
        logger.warning(f"未找到候选支付表 {self.candidates}，使用默认表 {self.table.name}")
        return self.table

    @property
    def table_name(self) -> str:
        return self.table.name


class PaymentRepository:
    """支付记录数据库操作层"""

    def __init__(self, db: AsyncSession, source: Optional[PaymentSource] = None):
        self.db = db
        self.table = (source or payment_source).table

    async def create_payment(
        self,
        pay_id: str,
        order_id: str,
        pay_method: str,
        amount: Decimal,
        pay_time: datetime
    ) -> None:
        """插入一条支付记录"""
        await self.db.execute(
            insert(self.table).values(
                pay_id=pay_id,
                order_id=order_id,
                pay_method=pay_method,
                amount=amount,
                pay_time=pay_time
            )
        )

    async def get_order_payments(self, order_id: str) -> List[dict]:
        """获取订单的支付记录"""
        result = await self.db.execute(
            select(self.table)
            .where(self.table.c.order_id == order_id)
            .order_by(self.table.c.pay_time)
        )
        return [dict(row._mapping) for row in result.fetchall()]

    async def delete_order_payments(self, order_id: str) -> int:
        """删除订单的全部支付记录"""
        result = await self.db.execute(
            delete(self.table).where(self.table.c.order_id == order_id)
        )
        return result.rowcount


# 全局支付记录来源（应用启动时解析）
payment_source = PaymentSource()
