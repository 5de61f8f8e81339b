"""
订单业务服务层
负责订单的创建、查询、更新和删除，每个写操作在独立事务中完成
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from canteen.core.config import settings, OrderTotalCheck
from canteen.core.database import get_session_maker, transactional
from canteen.core.exceptions import (
    ValidationException,
    NoUpdatableFields,
    OrderNotFound,
    IllegalStatusTransition
)
from canteen.models.database.order_db import OrderDB
from canteen.models.order import (
    OrderCreate,
    OrderUpdate,
    OrderStatus,
    OrderDetailData,
    OrderDetailItem,
    OrderPaymentEntry,
    OrderSummary,
    normalize_status,
    quantize_money
)
from canteen.realtime.broadcaster import TOPIC_ORDERS, EVENT_ORDER_UPDATED
from canteen.realtime.hub import dispatch
from canteen.repositories.order_repository import OrderRepository, PointRecordRepository
from canteen.repositories.payment_repository import PaymentRepository
from canteen.repositories.student_repository import StudentRepository, MerchantRepository
from canteen.services.common_cache import SimpleCache, order_cache
from canteen.services.identifiers import (
    OrderSequenceGuard,
    order_sequence_guard,
    order_id_prefix,
    compose_order_id
)

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, dict], Awaitable[int]]

AMOUNT_TOLERANCE = Decimal("0.01")

ORDER_DETAIL_CACHE_PREFIX = "detail"


def build_order_detail_data(
    db_order: OrderDB,
    payments: List[dict],
    point_reward: int = 0
) -> OrderDetailData:
    """组装订单详情视图，明细小计按当前菜品单价实时计算"""
    details = []
    for detail in db_order.details:
        price = detail.dish.price if detail.dish is not None else Decimal("0")
        details.append(OrderDetailItem(
            order_id=detail.order_id,
            dish_id=detail.dish_id,
            dish_name=detail.dish.name if detail.dish is not None else None,
            price=quantize_money(price),
            quantity=detail.quantity,
            subtotal=quantize_money(Decimal(price) * detail.quantity)
        ))

    return OrderDetailData(
        order_id=db_order.order_id,
        student_id=db_order.student_id,
        student_name=db_order.student.name if db_order.student else None,
        merchant_id=db_order.merchant_id,
        merchant_name=db_order.merchant.name if db_order.merchant else None,
        location=db_order.merchant.location if db_order.merchant else None,
        total_amount=quantize_money(db_order.total_amount),
        status=normalize_status(db_order.status),
        order_time=db_order.order_time,
        payment=[
            OrderPaymentEntry(
                pay_id=payment["pay_id"],
                pay_method=payment["pay_method"],
                amount=quantize_money(payment["amount"]),
                pay_time=payment["pay_time"]
            )
            for payment in payments
        ],
        details=details,
        point_reward=point_reward
    )


def order_detail_cache_key(order_id: str, version: Optional[int] = None) -> str:
    key = f"{ORDER_DETAIL_CACHE_PREFIX}:{order_id}"
    return key if version is None else f"{key}:v{version}"


async def invalidate_order_detail(cache: SimpleCache, order_id: str) -> None:
    """订单写操作提交后使详情缓存失效"""
    base_key = order_detail_cache_key(order_id)
    version = await cache.get_version(base_key)
    await cache.bump_version(base_key)
    if version is not None:
        await cache.delete(order_detail_cache_key(order_id, version))


def summarize(order: OrderDetailData) -> OrderSummary:
    return OrderSummary(
        order_id=order.order_id,
        student_id=order.student_id,
        student_name=order.student_name,
        merchant_id=order.merchant_id,
        merchant_name=order.merchant_name,
        order_time=order.order_time,
        total_amount=order.total_amount,
        status=order.status
    )


class OrderService:
    """订单业务服务"""

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        cache: Optional[SimpleCache] = None,
        notifier: Optional[Notifier] = None,
        total_check: Optional[OrderTotalCheck] = None,
        max_retries: Optional[int] = None,
        sequence_guard: Optional[OrderSequenceGuard] = None
    ):
        self._session_maker = session_maker
        self.cache = cache if cache is not None else order_cache
        self.cache_ttl = settings.order_cache_ttl
        self.notifier = notifier or dispatch
        self.total_check = OrderTotalCheck(total_check or settings.order_total_check)
        self.max_retries = max(1, max_retries or settings.order_create_max_retries)
        self.sequence_guard = sequence_guard or order_sequence_guard

    @property
    def session_maker(self) -> async_sessionmaker:
        return self._session_maker or get_session_maker()

    async def create_order(self, order_data: OrderCreate) -> str:
        """创建订单，返回生成的订单编号"""
        return await asyncio.shield(self._create_order(order_data))

    async def _create_order(self, order_data: OrderCreate) -> str:
        order_time = order_data.order_time or datetime.now()
        prefix = order_id_prefix(order_data.merchant_id, order_time)

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.sequence_guard.hold(prefix):
                    async with transactional(self.session_maker) as session:
                        await self._check_references(session, order_data)
                        await self.sequence_guard.lock_in_transaction(session, prefix)

                        order_repo = OrderRepository(session)
                        max_sequence = await order_repo.get_max_sequence(prefix)
                        order_id = compose_order_id(prefix, max_sequence)
                        await order_repo.create_order_with_details(order_id, order_data, order_time)

                logger.info(f"订单创建成功: {order_id}")
                return order_id

            except IntegrityError as e:
                if attempt >= self.max_retries:
                    logger.error(f"订单创建失败，已重试{attempt}次: {e}")
                    raise
                logger.warning(f"订单编号冲突，第{attempt}次重试: {prefix}")

    async def _check_references(self, session: AsyncSession, order_data: OrderCreate) -> None:
        """校验学生、档口、菜品存在；严格模式下校验总金额"""
        if await StudentRepository(session).get_by_student_id(order_data.student_id) is None:
            raise ValidationException("学生不存在")

        merchant_repo = MerchantRepository(session)
        if not await merchant_repo.exists(order_data.merchant_id):
            raise ValidationException("档口不存在")

        prices = await merchant_repo.get_dish_prices(detail.dish_id for detail in order_data.details)
        missing = [detail.dish_id for detail in order_data.details if detail.dish_id not in prices]
        if missing:
            raise ValidationException(f"菜品不存在: {', '.join(missing)}")

        if self.total_check == OrderTotalCheck.STRICT:
            expected = quantize_money(sum(
                (Decimal(prices[detail.dish_id]) * detail.quantity for detail in order_data.details),
                Decimal("0")
            ))
            if abs(expected - order_data.total_amount) > AMOUNT_TOLERANCE:
                raise ValidationException(f"订单金额与明细不符，应为 {expected:.2f}")

    async def get_order(self, order_id: str, use_cache: bool = True) -> OrderDetailData:
        """获取订单详情"""
        order_id = (order_id or "").strip()
        if not order_id:
            raise ValidationException("缺少订单编号")

        # 版本号必须在读库之前取得
        cache_key = None
        if use_cache:
            version = await self.cache.get_version(order_detail_cache_key(order_id))
            if version is not None:
                cache_key = order_detail_cache_key(order_id, version)
                cached_order = await self.cache.get(cache_key)
                if cached_order:
                    return OrderDetailData.model_validate(cached_order)

        async with self.session_maker() as session:
            order = await self._load_order_detail(session, order_id)
        if order is None:
            raise OrderNotFound()

        if cache_key is not None:
            await self.cache.set(
                cache_key,
                order.model_dump(by_alias=True, mode="json"),
                ttl=self.cache_ttl
            )

        return order

    async def _load_order_detail(self, session: AsyncSession, order_id: str) -> Optional[OrderDetailData]:
        db_order = await OrderRepository(session).get_order_with_relations(order_id)
        if db_order is None:
            return None
        payments = await PaymentRepository(session).get_order_payments(order_id)
        point_reward = await PointRecordRepository(session).get_order_points(order_id)
        return build_order_detail_data(db_order, payments, point_reward)

    async def update_order(self, order_id: str, order_update: OrderUpdate) -> OrderDetailData:
        """部分更新订单，返回更新后的详情"""
        changes = order_update.changed_fields()
        if not changes:
            raise NoUpdatableFields()

        order = await asyncio.shield(self._update_order(order_id, changes))

        await invalidate_order_detail(self.cache, order_id)
        await self._publish_updated(order)
        return order

    async def _update_order(self, order_id: str, changes: Dict) -> OrderDetailData:
        async with transactional(self.session_maker) as session:
            order_repo = OrderRepository(session)
            db_order = await order_repo.get_by_order_id(order_id, for_update=True)
            if db_order is None:
                raise OrderNotFound()

            values = dict(changes)
            if "status" in values:
                new_status = OrderStatus(values["status"])
                if (new_status == OrderStatus.PENDING_PAYMENT
                        and normalize_status(db_order.status) == OrderStatus.COMPLETED):
                    raise IllegalStatusTransition()
                values["status"] = new_status.value

            if not await order_repo.update_order_fields(order_id, values):
                raise OrderNotFound()

            order = await self._load_order_detail(session, order_id)

        logger.info(f"订单更新成功: {order_id} {sorted(changes)}")
        return order

    async def delete_order(self, order_id: str) -> None:
        """删除订单及其支付记录、明细"""
        await asyncio.shield(self._delete_order(order_id))
        await invalidate_order_detail(self.cache, order_id)

    async def _delete_order(self, order_id: str) -> None:
        async with transactional(self.session_maker) as session:
            order_repo = OrderRepository(session)
            await PaymentRepository(session).delete_order_payments(order_id)
            await order_repo.delete_order_details(order_id)
            if await order_repo.delete_order(order_id) == 0:
                raise OrderNotFound()

        logger.info(f"订单删除成功: {order_id}")

    async def _publish_updated(self, order: OrderDetailData) -> None:
        """推送订单更新事件，推送失败不影响业务结果"""
        try:
            await self.notifier(
                TOPIC_ORDERS,
                EVENT_ORDER_UPDATED,
                summarize(order).model_dump(by_alias=True, mode="json")
            )
        except Exception as e:
            logger.error(f"推送订单更新失败 {order.order_id}: {e}")
