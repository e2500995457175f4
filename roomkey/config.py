"""
应用配置
从环境变量 / .env 读取配置
"""
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "RoomKey"
    DEBUG: bool = False

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./roomkey.db"
    DB_TIMEOUT_SECONDS: float = 5.0          # 等待存储的上限，超时刷卡即拒绝

    # JWT 配置（管理员令牌由外部账号服务签发）
    SECRET_KEY: str = "roomkey-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    # 门禁读卡器共享密钥（X-API-Key），为空表示不校验
    READER_API_KEY: str = ""

    # 定时任务
    SCHEDULER_ENABLED: bool = True
    EXPIRY_INTERVAL_SECONDS: int = 30
    NO_SHOW_INTERVAL_MINUTES: int = 60

    # 住宿规则
    WARNING_WINDOW_MINUTES: int = 10
    DEFAULT_STAY_HOURS: float = 1.0
    NO_SHOW_GRACE_MINUTES: int = 60
    AMBIGUOUS_ROOM_POLICY: Literal["first", "deny"] = "first"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# 全局设置实例
settings = Settings()
