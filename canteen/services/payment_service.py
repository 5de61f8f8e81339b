"""
支付业务服务层

学生支付订单在一个事务中完成：
1. 检查订单存在、归属该学生、状态为"待支付"
2. 检查学生存在且余额足够
3. 扣除余额，增加积分（每消费1元积1分，不足1元部分不计）
4. 订单状态更新为"已完成"
5. 写入支付记录和积分流水
任何一步失败整体回滚，不会出现扣了余额但订单未完成的中间状态。
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from canteen.core.database import get_session_maker, transactional
from canteen.core.exceptions import (
    OrderNotFound,
    StudentNotFound,
    OrderOwnershipMismatch,
    OrderNotPayable,
    InsufficientBalance
)
from canteen.models.order import OrderStatus, OrderSummary, quantize_money
from canteen.models.payment import PaymentRequest, PaymentResult
from canteen.realtime.broadcaster import TOPIC_ORDERS, EVENT_ORDER_UPDATED
from canteen.realtime.hub import dispatch
from canteen.repositories.order_repository import OrderRepository, PointRecordRepository
from canteen.repositories.payment_repository import PaymentRepository
from canteen.repositories.student_repository import StudentRepository
from canteen.services.common_cache import SimpleCache, order_cache
from canteen.services.identifiers import derive_payment_id
from canteen.services.order_service import Notifier, invalidate_order_detail

logger = logging.getLogger(__name__)


def points_for_amount(amount: Decimal) -> int:
    """消费金额换算积分"""
    return int(Decimal(amount).to_integral_value(rounding=ROUND_FLOOR))


class PaymentService:
    """支付业务服务"""

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        cache: Optional[SimpleCache] = None,
        notifier: Optional[Notifier] = None
    ):
        self._session_maker = session_maker
        self.cache = cache if cache is not None else order_cache
        self.notifier = notifier or dispatch

    @property
    def session_maker(self) -> async_sessionmaker:
        return self._session_maker or get_session_maker()

    async def pay_order(self, request: PaymentRequest) -> PaymentResult:
        """支付订单"""
        result, summary = await asyncio.shield(self._pay_order(request))

        await invalidate_order_detail(self.cache, request.order_id)
        try:
            await self.notifier(TOPIC_ORDERS, EVENT_ORDER_UPDATED, summary.model_dump(by_alias=True, mode="json"))
        except Exception as e:
            logger.error(f"推送支付结果失败 {request.order_id}: {e}")

        return result

    async def _pay_order(self, request: PaymentRequest):
        order_id = request.order_id
        student_id = request.student_id

        async with transactional(self.session_maker) as session:
            order_repo = OrderRepository(session)
            student_repo = StudentRepository(session)

            db_order = await order_repo.get_order_with_relations(order_id, for_update=True)
            if db_order is None:
                raise OrderNotFound()

            if db_order.student_id.strip() != student_id:
                raise OrderOwnershipMismatch()

            if (db_order.status or "").strip() != OrderStatus.PENDING_PAYMENT.value:
                raise OrderNotPayable()

            student = await student_repo.get_by_student_id(student_id, for_update=True)
            if student is None:
                raise StudentNotFound()

            amount = quantize_money(db_order.total_amount)
            if Decimal(student.balance) < amount:
                raise InsufficientBalance()

            points = points_for_amount(amount)
            if not await student_repo.settle_payment(student_id, amount, points):
                raise InsufficientBalance()

            if not await order_repo.mark_completed(
                order_id,
                OrderStatus.PENDING_PAYMENT.value,
                OrderStatus.COMPLETED.value
            ):
                raise OrderNotPayable()

            pay_time = datetime.now()
            pay_id = derive_payment_id(order_id, pay_time)
            await PaymentRepository(session).create_payment(
                pay_id=pay_id,
                order_id=order_id,
                pay_method=request.pay_method.value,
                amount=amount,
                pay_time=pay_time
            )
            if points > 0:
                await PointRecordRepository(session).add_record(student_id, order_id, points, pay_time)

            new_balance, new_points = await student_repo.get_balance_and_points(student_id)

            summary = OrderSummary(
                order_id=order_id,
                student_id=student_id,
                student_name=student.name,
                merchant_id=db_order.merchant_id,
                merchant_name=db_order.merchant.name if db_order.merchant else None,
                order_time=db_order.order_time,
                total_amount=amount,
                status=OrderStatus.COMPLETED
            )

        logger.info(f"订单支付成功: {order_id} 学生 {student_id} 金额 {amount} 支付编号 {pay_id}")
        result = PaymentResult(
            pay_id=pay_id,
            new_balance=quantize_money(new_balance),
            new_points=int(new_points)
        )
        return result, summary
