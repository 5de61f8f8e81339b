"""
通用缓存工具
为订单详情提供简单的Redis缓存功能，缓存不可用时按未命中处理
"""

import json
import logging
from typing import Optional, Any
import redis.asyncio as redis

from canteen.core.config import settings

logger = logging.getLogger(__name__)


class SimpleCache:
    """简单缓存管理器"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, key_prefix: str = ""):
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    async def init_redis(self) -> None:
        """初始化Redis连接"""
        if not self.redis_client:
            self.redis_client = redis.from_url(
                settings.redis_url_computed,
                encoding='utf-8',
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                max_connections=20
            )

        # 测试连接
        try:
            await self.redis_client.ping()
            logger.info(f"{self.key_prefix}缓存Redis连接初始化成功")
        except Exception as e:
            logger.error(f"Redis连接失败: {e}")
            raise

    async def close_redis(self) -> None:
        """关闭Redis连接"""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    def _get_key(self, key: str) -> str:
        """获取完整的缓存key"""
        return f"{self.key_prefix}{key}" if self.key_prefix else key

    async def get(self, key: str) -> Optional[Any]:
        """获取缓存值"""
        if not self.redis_client:
            return None
        try:
            data = await self.redis_client.get(self._get_key(key))
            if data:
                return json.loads(data)
            return None

        except Exception as e:
            logger.error(f"获取缓存失败 {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """设置缓存值"""
        if not self.redis_client:
            return False
        try:
            data = json.dumps(value, default=str, ensure_ascii=False)
            await self.redis_client.setex(self._get_key(key), ttl, data)
            return True

        except Exception as e:
            logger.error(f"设置缓存失败 {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """删除缓存"""
        if not self.redis_client:
            return False
        try:
            result = await self.redis_client.delete(self._get_key(key))
            return result > 0

        except Exception as e:
            logger.error(f"删除缓存失败 {key}: {e}")
            return False

    async def get_version(self, key: str) -> Optional[int]:
        """
        获取key的失效版本号

        调用方把版本号拼进实际缓存key，失效时递增版本号即可；读到旧版本的并发请求
        写回的是旧key，之后不会再被读取。缓存不可用时返回None，调用方应跳过缓存。
        """
        if not self.redis_client:
            return None
        try:
            value = await self.redis_client.get(self._get_key(f"{key}:version"))
            return int(value or 0)

        except Exception as e:
            logger.error(f"获取缓存版本失败 {key}: {e}")
            return None

    async def bump_version(self, key: str) -> bool:
        """递增失效版本号"""
        if not self.redis_client:
            return False
        try:
            await self.redis_client.incr(self._get_key(f"{key}:version"))
            return True

        except Exception as e:
            logger.error(f"递增缓存版本失败 {key}: {e}")
            return False


# 订单详情缓存实例
order_cache = SimpleCache(key_prefix="order:")
