"""
app.core.settings
~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

加载优先级：环境变量 > ``.env.{ENVIRONMENT}`` > ``.env`` > 字段默认值。
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 在 Settings 定义之前读取，用于决定加载哪个 .env 文件
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")

_DEFAULT_LOG_LEVELS: dict[str, str] = {"dev": "INFO", "test": "DEBUG", "prod": "WARNING"}


class Settings(BaseSettings):
    """全局配置对象。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Collab Rooms Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(default="dev", description="运行环境")

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8080, description="服务监听端口")
    LOG_LEVEL: str | None = Field(default=None, description="日志级别，未设置时按环境推断")
    CORS_ALLOWED_ORIGINS: list[str] = Field(
        default_factory=list,
        description="prod 环境允许的跨域来源（JSON 数组）",
    )

    # ── MongoDB ───────────────────────────────────────────────────────
    MONGO_URI: str = Field(default="mongodb://localhost:27017", description="MongoDB 连接串")
    MONGO_DB_NAME: str = Field(default="collab_rooms", description="数据库名称")

    # ── 实时协作 ──────────────────────────────────────────────────────
    ROOM_KEY_PATTERN: str = Field(
        default=r"^[A-Za-z0-9_-]{1,64}$",
        description="房间 key 必须完整匹配的正则，不匹配时拒绝 WebSocket 升级",
    )
    WS_MAX_MESSAGE_CHARS: int = Field(
        default=5_000_000,
        description="单条入站消息的最大字符数，超出按畸形消息处理",
    )
    PERSIST_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="单次文档持久化调用的超时时间（秒），超时视为持久化失败",
    )
    REPLAY_CACHE_ON_JOIN: bool = Field(
        default=True,
        description="用户 JOIN 后是否向其回放房间内缓存的最新文档内容",
    )
    ECHO_UPDATES_TO_SENDER: bool = Field(
        default=False,
        description="文档更新是否也回发给发送者本人",
    )

    model_config = SettingsConfigDict(
        env_file=(".env", f".env.{_CURRENT_ENV}"),  # 后者覆盖前者
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_prod(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def is_dev(self) -> bool:
        return self.ENVIRONMENT == "dev"

    @property
    def debug(self) -> bool:
        """debug 与热重载只在 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """显式配置的 ``LOG_LEVEL`` 优先；否则 dev → INFO，test → DEBUG，prod → WARNING。"""
        return self.LOG_LEVEL or _DEFAULT_LOG_LEVELS.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
