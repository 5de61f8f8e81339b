from pydantic_settings import BaseSettings
from typing import List, Optional
from enum import Enum


class Environment(str, Enum):

    """运行环境枚举"""
    TESTING = "testing"
    PRODUCTION = "production"


class OrderTotalCheck(str, Enum):
    """订单金额校验严格程度"""
    LENIENT = "lenient"  # 信任调用方提交的总金额
    STRICT = "strict"  # 总金额必须等于明细小计之和


class Settings(BaseSettings):

    # 应用基础配置
    app_name: str = "Campus Canteen"
    app_version: str = "1.0.0"
    environment: Environment = Environment.TESTING
    debug: bool = True

    # 数据库配置
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "canteen_db"
    db_user: str = "canteen_user"
    db_password: str = "canteen_password"

    # 支付记录表解析顺序 (主表优先，其次兼容旧表名)
    payment_table_candidates: List[str] = ["payments", "PayMentMethod"]

    # Redis配置 (订单详情缓存)
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    cache_enabled: bool = True
    order_cache_ttl: int = 1800

    # 订单配置
    order_total_check: OrderTotalCheck = OrderTotalCheck.LENIENT
    order_create_max_retries: int = 3

    # 实时通知配置
    poller_enabled: bool = True
    poll_interval_seconds: float = 3.0
    poll_tick_timeout_seconds: float = 10.0
    socket_send_timeout_seconds: float = 5.0

    # 日志配置
    log_level: str = "INFO"

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def database_url_computed(self) -> str:
        """计算数据库URL"""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def redis_url_computed(self) -> str:
        """计算Redis URL"""
        if self.redis_url:
            return self.redis_url
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    class Config:
        env_file = ".env"
        case_sensitive = False


# 全局配置实例
settings = Settings()
