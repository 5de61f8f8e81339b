"""
轮询数据源：查询最新订单 / 积分流水并转换为推送内容
"""

from typing import Any, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from canteen.core.database import get_session_maker
from canteen.models.order import OrderSummary, normalize_status
from canteen.models.payment import PointRecordSummary
from canteen.repositories.order_repository import OrderRepository, PointRecordRepository


def order_summary_from_db(db_order) -> OrderSummary:
    return OrderSummary(
        order_id=db_order.order_id,
        student_id=db_order.student_id,
        student_name=db_order.student.name if db_order.student else None,
        merchant_id=db_order.merchant_id,
        merchant_name=db_order.merchant.name if db_order.merchant else None,
        order_time=db_order.order_time,
        total_amount=db_order.total_amount,
        status=normalize_status(db_order.status)
    )


class LatestOrderFeed:
    """最新订单，高水位为 (下单时间, 订单编号)"""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self.session_maker = session_maker

    async def __call__(self) -> Optional[Tuple[Any, dict]]:
        async with (self.session_maker or get_session_maker())() as session:
            db_order = await OrderRepository(session).get_latest_order()
            if db_order is None:
                return None
            summary = order_summary_from_db(db_order)
        return (db_order.order_time, db_order.order_id), summary.model_dump(by_alias=True, mode="json")


class LatestPointRecordFeed:
    """最新积分流水，高水位为流水编号"""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self.session_maker = session_maker

    async def __call__(self) -> Optional[Tuple[Any, dict]]:
        async with (self.session_maker or get_session_maker())() as session:
            record = await PointRecordRepository(session).get_latest_record()
            if record is None:
                return None
            summary = PointRecordSummary(
                record_id=str(record.record_id),
                student_id=record.student_id,
                student_name=record.student.name if record.student else None,
                order_id=record.order_id,
                points=record.points,
                created_at=record.created_at
            )
        return record.record_id, summary.model_dump(by_alias=True, mode="json")
