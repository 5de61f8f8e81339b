"""
订单编号与支付编号生成

订单编号 = 档口编号 + YYMMDD(下单日期) + 4位当日序号，例如 01101 + 241028 + 0004。
同一 (档口, 日期) 的 "查最大序号 -> 插入" 必须串行执行，由 OrderSequenceGuard 保证。
"""

import asyncio
import hashlib
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import SequenceExhausted
from canteen.repositories.order_repository import SEQUENCE_WIDTH

MAX_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1
PAYMENT_ID_PREFIX = "P"
PAYMENT_ID_DIGEST_LENGTH = 19


def order_id_prefix(merchant_id: str, order_time: datetime) -> str:
    """档口编号 + YYMMDD"""
    return f"{merchant_id}{order_time:%y%m%d}"


def compose_order_id(prefix: str, max_sequence: int) -> str:
    """在当日最大序号基础上加一，补零到4位"""
    sequence = max_sequence + 1
    if sequence > MAX_SEQUENCE:
        raise SequenceExhausted()
    return f"{prefix}{sequence:0{SEQUENCE_WIDTH}d}"


def derive_payment_id(order_id: str, pay_time: datetime) -> str:
    """由订单编号和支付时间派生支付编号（确定性，定长）"""
    digest = hashlib.sha1(f"payment:{order_id}:{pay_time.isoformat()}".encode("utf-8")).hexdigest()
    return PAYMENT_ID_PREFIX + digest[:PAYMENT_ID_DIGEST_LENGTH].upper()


class OrderSequenceGuard:
    """
    按订单编号前缀串行化序号分配

    进程内使用按前缀区分的 asyncio.Lock；数据库为 PostgreSQL 时另外在当前事务中获取
    pg_advisory_xact_lock，事务结束自动释放，覆盖多进程部署。
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, prefix: str) -> asyncio.Lock:
        lock = self._locks.get(prefix)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[prefix] = lock
        return lock

    @asynccontextmanager
    async def hold(self, prefix: str) -> AsyncIterator[None]:
        """进程内锁，需包住整个事务（含提交）"""
        async with self._lock_for(prefix):
            yield

    async def lock_in_transaction(self, session: AsyncSession, prefix: str) -> None:
        """PostgreSQL 事务级咨询锁，其他数据库不做处理"""
        if session.bind is not None and session.bind.dialect.name == "postgresql":
            await session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"order-seq:{prefix}"}
            )


# 全局序号锁
order_sequence_guard = OrderSequenceGuard()
