from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from canteen.core import database
from canteen.core.config import settings
from canteen.core.database import init_database, close_database
from canteen.core.exceptions import BusinessException
from canteen.realtime.hub import init_realtime, shutdown_realtime
from canteen.repositories.payment_repository import payment_source
from canteen.services.common_cache import order_cache
from canteen.api.health import router as health_router
from canteen.api.orders import router as orders_router
from canteen.api.payments import router as payments_router
from canteen.api.realtime import router as realtime_router
from canteen.api.exceptions import (
    validation_exception_handler,
    http_exception_handler,
    database_exception_handler,
    general_exception_handler,
    business_exception_handler,
)

# 简化日志配置
import logging

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("正在启动校园食堂订单服务")

    try:
        await init_database()
        logger.info("数据库初始化成功")

        async with database.engine.connect() as conn:
            await payment_source.resolve(conn)

        if settings.cache_enabled:
            try:
                await order_cache.init_redis()
            except Exception as e:
                # 缓存不可用时按未命中处理，不阻止启动
                logger.warning(f"订单缓存不可用: {e}")
                await order_cache.close_redis()

        init_realtime()
        logger.info("应用启动完成")

    except Exception as e:
        logger.error(f"应用启动失败: {e}")
        raise

    yield

    logger.info("正在关闭应用")
    await shutdown_realtime()
    await order_cache.close_redis()
    await close_database()
    logger.info("应用关闭完成")


# 创建FastAPI应用
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="校园食堂订单与支付服务",
    debug=settings.debug,
    lifespan=lifespan
)

# CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 注册路由
app.include_router(health_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(realtime_router)

# 注册异常处理器
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(BusinessException, business_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": f"欢迎使用 {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "canteen.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
