"""
PaymentService业务逻辑测试
"""

import pytest
from decimal import Decimal

from sqlalchemy import select

from canteen.core.exceptions import (
    OrderNotFound,
    StudentNotFound,
    OrderOwnershipMismatch,
    OrderNotPayable,
    InsufficientBalance
)
from canteen.models.database import StudentDB, OrderDB, PaymentDB, PointRecordDB
from canteen.models.order import PayMethod
from canteen.models.payment import PaymentRequest
from canteen.realtime.broadcaster import TOPIC_ORDERS, EVENT_ORDER_UPDATED
from canteen.repositories.payment_repository import PaymentRepository
from canteen.services.payment_service import points_for_amount


async def _load_state(session_maker, order_id: str, student_id: str):
    async with session_maker() as session:
        student = (await session.execute(
            select(StudentDB).where(StudentDB.student_id == student_id)
        )).scalar_one()
        order = (await session.execute(
            select(OrderDB).where(OrderDB.order_id == order_id)
        )).scalar_one_or_none()
        payments = (await session.execute(
            select(PaymentDB).where(PaymentDB.order_id == order_id)
        )).scalars().all()
        records = (await session.execute(
            select(PointRecordDB).where(PointRecordDB.order_id == order_id)
        )).scalars().all()
    return student, order, payments, records


def test_points_for_amount():
    """积分按消费金额向下取整"""
    assert points_for_amount(Decimal("22.00")) == 22
    assert points_for_amount(Decimal("22.99")) == 22
    assert points_for_amount(Decimal("0.50")) == 0


def test_payment_request_defaults_to_campus_card():
    """未提交支付方式时默认校园卡"""
    request = PaymentRequest.model_validate({"orderId": " 011012410280001 ", "studentId": "2022001"})
    assert request.order_id == "011012410280001"
    assert request.pay_method == PayMethod.CAMPUS_CARD

    request = PaymentRequest.model_validate({"orderId": "X", "studentId": "2022001", "payMethod": None})
    assert request.pay_method == PayMethod.CAMPUS_CARD


@pytest.mark.parametrize("payload, message", [
    ({"orderId": "", "studentId": "2022001"}, "订单ID不能为空"),
    ({"orderId": "011012410280001", "studentId": "   "}, "学号不能为空"),
])
def test_payment_request_rejects_blank_ids(payload, message):
    with pytest.raises(ValueError, match=message):
        PaymentRequest.model_validate(payload)


@pytest.mark.asyncio
class TestPaymentService:
    """PaymentService业务逻辑测试类"""

    async def test_pay_order_success(self, payment_service, seeded_session_maker, create_db_order,
                                     mock_cache, mock_notifier):
        """余额50.00支付22.00订单：余额28.00，积分+22，订单已完成"""
        await create_db_order("011012410280001", total_amount=Decimal("22.00"))

        result = await payment_service.pay_order(
            PaymentRequest(order_id="011012410280001", student_id="2022001")
        )

        assert result.success is True
        assert result.new_balance == Decimal("28.00")
        assert result.new_points == 22
        assert result.pay_id.startswith("P")
        assert len(result.pay_id) == 20

        student, order, payments, records = await _load_state(
            seeded_session_maker, "011012410280001", "2022001"
        )
        assert Decimal(student.balance) == Decimal("28.00")
        assert student.points == 22
        assert order.status == "已完成"
        assert len(payments) == 1
        assert payments[0].pay_id == result.pay_id
        assert payments[0].pay_method == "校园卡"
        assert Decimal(payments[0].amount) == Decimal("22.00")
        assert len(records) == 1
        assert records[0].points == 22

        mock_cache.bump_version.assert_awaited_once_with("detail:011012410280001")
        mock_cache.delete.assert_awaited_once_with("detail:011012410280001:v0")
        mock_notifier.assert_awaited_once()
        topic, event, payload = mock_notifier.await_args.args
        assert (topic, event) == (TOPIC_ORDERS, EVENT_ORDER_UPDATED)
        assert payload["orderId"] == "011012410280001"
        assert payload["status"] == "已完成"
        assert payload["totalAmount"] == "22.00"

    async def test_pay_order_json_shape(self, payment_service, create_db_order):
        """响应字段为驼峰，金额为两位小数字符串"""
        await create_db_order("011012410280001")

        result = await payment_service.pay_order(
            PaymentRequest(order_id="011012410280001", student_id="2022001", pay_method=PayMethod.WECHAT)
        )
        body = result.model_dump(by_alias=True, mode="json")

        assert body == {
            "success": True,
            "payId": result.pay_id,
            "newBalance": "28.00",
            "newPoints": 22
        }

    async def test_pay_order_exact_balance(self, payment_service, seeded_session_maker, create_db_order):
        """余额恰好等于订单金额时可以支付"""
        await create_db_order("022012410280001", student_id="2022002", merchant_id="02201",
                              total_amount=Decimal("10.00"), details=(("D003", 1),))

        result = await payment_service.pay_order(
            PaymentRequest(order_id="022012410280001", student_id="2022002")
        )

        assert result.new_balance == Decimal("0.00")
        assert result.new_points == 15

    async def test_insufficient_balance_has_no_effect(self, payment_service, seeded_session_maker,
                                                      create_db_order, mock_notifier):
        """余额不足时不产生任何变更"""
        await create_db_order("011012410280001", student_id="2022002", total_amount=Decimal("22.00"))

        with pytest.raises(InsufficientBalance):
            await payment_service.pay_order(
                PaymentRequest(order_id="011012410280001", student_id="2022002")
            )

        student, order, payments, records = await _load_state(
            seeded_session_maker, "011012410280001", "2022002"
        )
        assert Decimal(student.balance) == Decimal("10.00")
        assert student.points == 5
        assert order.status == "待支付"
        assert payments == []
        assert records == []
        mock_notifier.assert_not_awaited()

    async def test_pay_completed_order(self, payment_service, create_db_order):
        """已完成订单不能重复支付"""
        await create_db_order("011012410280001", status="已完成")

        with pytest.raises(OrderNotPayable):
            await payment_service.pay_order(
                PaymentRequest(order_id="011012410280001", student_id="2022001")
            )

    async def test_pay_twice(self, payment_service, seeded_session_maker, create_db_order):
        """第二次支付被拒绝，余额只扣一次"""
        await create_db_order("011012410280001")
        request = PaymentRequest(order_id="011012410280001", student_id="2022001")

        await payment_service.pay_order(request)
        with pytest.raises(OrderNotPayable):
            await payment_service.pay_order(request)

        student, _, payments, _ = await _load_state(seeded_session_maker, "011012410280001", "2022001")
        assert Decimal(student.balance) == Decimal("28.00")
        assert len(payments) == 1

    async def test_pay_unknown_status_is_rejected(self, payment_service, create_db_order):
        """状态不是待支付（包括无法识别的状态）时拒绝支付"""
        await create_db_order("011012410280001", status="已取消")

        with pytest.raises(OrderNotPayable):
            await payment_service.pay_order(
                PaymentRequest(order_id="011012410280001", student_id="2022001")
            )

    async def test_pay_other_students_order(self, payment_service, seeded_session_maker, create_db_order):
        """不能支付他人的订单"""
        await create_db_order("011012410280001", student_id="2022001")

        with pytest.raises(OrderOwnershipMismatch):
            await payment_service.pay_order(
                PaymentRequest(order_id="011012410280001", student_id="2022002")
            )

        student, _, _, _ = await _load_state(seeded_session_maker, "011012410280001", "2022002")
        assert Decimal(student.balance) == Decimal("10.00")

    async def test_pay_missing_order(self, payment_service):
        with pytest.raises(OrderNotFound):
            await payment_service.pay_order(
                PaymentRequest(order_id="011012410289999", student_id="2022001")
            )

    async def test_pay_missing_student(self, payment_service, seeded_session_maker, create_db_order):
        """订单存在但学生记录已不存在"""
        await create_db_order("011012410280001", student_id="2099999")

        with pytest.raises(StudentNotFound):
            await payment_service.pay_order(
                PaymentRequest(order_id="011012410280001", student_id="2099999")
            )

    async def test_failure_mid_transaction_rolls_back(self, payment_service, seeded_session_maker,
                                                      create_db_order, monkeypatch):
        """写支付记录失败时，扣款和状态变更全部回滚"""
        await create_db_order("011012410280001")

        async def broken_create_payment(self, **kwargs):
            raise RuntimeError("payment insert failed")

        monkeypatch.setattr(PaymentRepository, "create_payment", broken_create_payment)

        with pytest.raises(RuntimeError):
            await payment_service.pay_order(
                PaymentRequest(order_id="011012410280001", student_id="2022001")
            )

        student, order, payments, records = await _load_state(
            seeded_session_maker, "011012410280001", "2022001"
        )
        assert Decimal(student.balance) == Decimal("50.00")
        assert student.points == 0
        assert order.status == "待支付"
        assert payments == []
        assert records == []

    async def test_notifier_failure_does_not_fail_payment(self, payment_service, seeded_session_maker,
                                                          create_db_order, mock_notifier):
        """推送失败只记录日志"""
        await create_db_order("011012410280001")
        mock_notifier.side_effect = RuntimeError("broadcaster down")

        result = await payment_service.pay_order(
            PaymentRequest(order_id="011012410280001", student_id="2022001")
        )

        assert result.new_balance == Decimal("28.00")
