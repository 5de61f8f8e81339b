"""
学生支付接口
"""

from fastapi import APIRouter, Depends

from canteen.models.payment import PaymentRequest
from canteen.services.payment_service import PaymentService
from canteen.api.dependencies import get_payment_service

router = APIRouter(prefix="/api/student", tags=["支付"])


@router.post("/pay")
async def pay_order(
    request: PaymentRequest,
    service: PaymentService = Depends(get_payment_service)
):
    """学生使用余额支付订单，积分 = 消费金额"""
    result = await service.pay_order(request)
    return result.model_dump(by_alias=True, mode="json")
