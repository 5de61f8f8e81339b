"""
数据库变更轮询器

定时查询最新一行，与记住的高水位比较：首次查询只记录高水位不推送；之后发现更大的
标识时更新高水位并推送一次。两次轮询之间插入多行时只能看到最新的一行。
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple

import structlog

logger = structlog.get_logger()

# 返回 (高水位标识, 推送内容)；没有数据时返回 None
FetchLatest = Callable[[], Awaitable[Optional[Tuple[Any, Any]]]]
OnChange = Callable[[Any], Awaitable[Any]]


class ChangePoller:
    """单个实体的变更轮询器"""

    def __init__(
        self,
        name: str,
        fetch_latest: FetchLatest,
        on_change: OnChange,
        interval: float = 3.0,
        tick_timeout: Optional[float] = None
    ):
        self.name = name
        self.fetch_latest = fetch_latest
        self.on_change = on_change
        self.interval = interval
        self.tick_timeout = tick_timeout
        self._mark: Any = None
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def mark(self) -> Any:
        """当前高水位"""
        return self._mark

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Optional[Any]:
        """
        执行一次轮询，返回本次推送的内容

        上一次轮询尚未结束时直接跳过。
        """
        if self._tick_lock.locked():
            logger.warning("上一次轮询尚未完成，跳过", poller=self.name)
            return None

        async with self._tick_lock:
            latest = await self.fetch_latest()
            if latest is None:
                return None

            mark, payload = latest
            if self._mark is None:
                self._mark = mark
                logger.info("轮询高水位初始化", poller=self.name, mark=str(mark))
                return None

            if mark > self._mark:
                self._mark = mark
                logger.info("检测到新记录", poller=self.name, mark=str(mark))
                await self.on_change(payload)
                return payload

            return None

    async def run(self) -> None:
        """轮询主循环，单次失败只记录日志"""
        logger.info("启动轮询", poller=self.name, interval=self.interval)
        while True:
            try:
                if self.tick_timeout:
                    await asyncio.wait_for(self.tick(), timeout=self.tick_timeout)
                else:
                    await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("轮询错误", poller=self.name, error=str(e), exc_info=True)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self.run(), name=f"poller:{self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("停止轮询", poller=self.name)
