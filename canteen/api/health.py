from fastapi import APIRouter, HTTPException
import logging

from canteen.core.config import settings
from canteen.core.database import database_service
from canteen.repositories.payment_repository import payment_source
from canteen.realtime.hub import get_hub
from canteen.services.common_cache import order_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["健康检查"])


@router.get("")
async def health_check():
    """基础健康检查接口"""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }


@router.get("/database")
async def database_health():
    """数据库连接健康检查"""
    health_status = {
        "database": False,
        "redis": False,
        "realtime": get_hub() is not None,
        "overall": False,
        "details": {"payment_table": payment_source.table_name}
    }

    try:
        db_status = await database_service.health_check()
        health_status["database"] = db_status["status"] == "healthy"
        health_status["details"]["database"] = db_status["message"]

        # 缓存是可选组件，不参与整体状态
        if order_cache.redis_client:
            try:
                await order_cache.redis_client.ping()
                health_status["redis"] = True
                health_status["details"]["redis"] = "连接正常"
            except Exception as e:
                health_status["details"]["redis"] = f"连接失败: {str(e)}"
        else:
            health_status["details"]["redis"] = "未启用"

        health_status["overall"] = health_status["database"]

        if not health_status["overall"]:
            logger.warning("数据库连接检查失败", extra={"details": health_status["details"]})
            return health_status

        logger.info("数据库连接检查通过")
        return health_status

    except Exception as e:
        logger.error(f"数据库健康检查异常: {str(e)}")
        raise HTTPException(status_code=503, detail="数据库连接失败")
