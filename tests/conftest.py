"""
测试配置文件 - pytest fixtures和共用配置
"""

import pytest
import pytest_asyncio
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from canteen.core.database import Base
from canteen.models.database import StudentDB, MerchantDB, DishDB, OrderDB, OrderDetailDB, PaymentDB
from canteen.repositories.payment_repository import payment_source
from canteen.services.common_cache import SimpleCache
from canteen.services.identifiers import OrderSequenceGuard
from canteen.services.order_service import OrderService
from canteen.services.payment_service import PaymentService


# 配置pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


@pytest_asyncio.fixture(scope="function")
async def test_db_engine(tmp_path):
    """测试数据库引擎 - 每个测试使用独立的SQLite文件"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/canteen_test.db",
        echo=False,
        poolclass=NullPool
    )

    # 创建表结构
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_db_engine) -> async_sessionmaker:
    """测试session工厂"""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest_asyncio.fixture
async def seeded_session_maker(session_maker) -> async_sessionmaker:
    """预置学生、档口、菜品的session工厂"""
    async with session_maker() as session:
        session.add_all([
            StudentDB(student_id="2022001", name="张三", sex="男", major="计算机科学",
                      balance=Decimal("50.00"), points=0),
            StudentDB(student_id="2022002", name="李四", sex="女", major="软件工程",
                      balance=Decimal("10.00"), points=5),
            MerchantDB(merchant_id="01101", name="一食堂面食档", location="一食堂一楼"),
            MerchantDB(merchant_id="02201", name="二食堂快餐档", location="二食堂二楼"),
        ])
        await session.flush()
        session.add_all([
            DishDB(dish_id="D001", name="牛肉面", price=Decimal("12.00"), merchant_id="01101"),
            DishDB(dish_id="D002", name="炸酱面", price=Decimal("10.00"), merchant_id="01101"),
            DishDB(dish_id="D003", name="两荤一素", price=Decimal("15.00"), merchant_id="02201"),
        ])
        await session.commit()
    return session_maker


@pytest.fixture(autouse=True)
def reset_payment_source():
    """每个测试都从默认支付表开始"""
    payment_source.table = PaymentDB.__table__
    yield
    payment_source.table = PaymentDB.__table__


@pytest.fixture
def mock_cache():
    """模拟缓存（始终未命中）"""
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock(return_value=True)
    cache.delete = AsyncMock(return_value=True)
    cache.get_version = AsyncMock(return_value=0)
    cache.bump_version = AsyncMock(return_value=True)
    return cache


class MemoryRedis:
    """进程内的Redis替身，只实现订单缓存用到的命令"""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def incr(self, key):
        self.data[key] = str(int(self.data.get(key) or 0) + 1)
        return int(self.data[key])


@pytest.fixture
def memory_cache():
    """基于内存的真实SimpleCache"""
    return SimpleCache(MemoryRedis(), key_prefix="order:")


@pytest.fixture
def mock_notifier():
    """模拟实时推送"""
    return AsyncMock(return_value=0)


@pytest.fixture
def order_service(seeded_session_maker, mock_cache, mock_notifier) -> OrderService:
    return OrderService(
        session_maker=seeded_session_maker,
        cache=mock_cache,
        notifier=mock_notifier,
        sequence_guard=OrderSequenceGuard()
    )


@pytest.fixture
def payment_service(seeded_session_maker, mock_cache, mock_notifier) -> PaymentService:
    return PaymentService(
        session_maker=seeded_session_maker,
        cache=mock_cache,
        notifier=mock_notifier
    )


async def insert_order(
    session_maker,
    order_id: str,
    student_id: str = "2022001",
    merchant_id: str = "01101",
    total_amount: Decimal = Decimal("22.00"),
    status: str = "待支付",
    order_time: datetime = None,
    details=(("D001", 1), ("D002", 1))
) -> None:
    """直接写入一笔订单及明细"""
    async with session_maker() as session:
        session.add(OrderDB(
            order_id=order_id,
            student_id=student_id,
            merchant_id=merchant_id,
            order_time=order_time or datetime(2024, 10, 28, 12, 0),
            total_amount=total_amount,
            status=status
        ))
        await session.flush()
        for dish_id, quantity in details:
            session.add(OrderDetailDB(order_id=order_id, dish_id=dish_id, quantity=quantity))
        await session.commit()


@pytest.fixture
def create_db_order(seeded_session_maker):
    """直接写库创建订单的辅助函数"""
    async def _create(order_id: str, **kwargs) -> None:
        await insert_order(seeded_session_maker, order_id, **kwargs)
    return _create
