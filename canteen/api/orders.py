"""
订单接口
"""

from fastapi import APIRouter, Depends, status

from canteen.core.exceptions import ValidationException
from canteen.models.order import OrderCreate, OrderCreated, OrderUpdate
from canteen.services.order_service import OrderService
from canteen.api.dependencies import get_order_service

router = APIRouter(prefix="/api/orders", tags=["订单"])


def _require_order_id(order_id: str) -> str:
    order_id = (order_id or "").strip()
    if not order_id:
        raise ValidationException("缺少订单编号")
    return order_id


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    service: OrderService = Depends(get_order_service)
):
    """创建订单，订单编号由 档口编号 + 日期 + 当日序号 生成"""
    order_id = await service.create_order(order_data)
    return OrderCreated(order_id=order_id).model_dump(by_alias=True)


@router.get("/{order_id}")
async def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    """获取订单详情"""
    order = await service.get_order(_require_order_id(order_id))
    return {"order": order.model_dump(by_alias=True, mode="json")}


@router.api_route("/{order_id}", methods=["PATCH", "PUT"])
async def update_order(
    order_id: str,
    order_update: OrderUpdate,
    service: OrderService = Depends(get_order_service)
):
    """更新订单状态、金额或下单时间"""
    order = await service.update_order(_require_order_id(order_id), order_update)
    return {"order": order.model_dump(by_alias=True, mode="json")}


@router.delete("/{order_id}")
async def delete_order(order_id: str, service: OrderService = Depends(get_order_service)):
    """删除订单（连同支付记录和订单明细）"""
    await service.delete_order(_require_order_id(order_id))
    return {"success": True}
