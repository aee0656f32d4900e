"""
app.db
~~~~~~

文档存储的 MongoDB 连接。

进程内只维护一个 ``AsyncIOMotorClient``：lifespan 启动时 ``connect_mongo()``，关闭时 ``close_mongo()``。
实时通道只通过 ``DocumentRepository`` 写入，连不上库时启动直接失败。
"""
from __future__ import annotations

from urllib.parse import urlparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core.logging import get_logger
from app.core.settings import settings

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None
_db_name: str = settings.MONGO_DB_NAME


def mask_uri(uri: str) -> str:
    """隐藏 URI 中的密码，只用于日志。"""
    parsed = urlparse(uri)
    if not parsed.password:
        return uri
    return uri.replace(f":{parsed.password}@", ":***@", 1)


async def connect_mongo(uri: str | None = None, db_name: str | None = None) -> None:
    """建立连接并 ping 目标库，失败时抛出原始异常。"""
    global _client, _db_name
    uri = uri or settings.MONGO_URI
    _db_name = db_name or settings.MONGO_DB_NAME
    # 文档的 updated_at / created_at 以 UTC 写入，读取时保留时区
    _client = AsyncIOMotorClient(uri, tz_aware=True, appname=settings.PROJECT_NAME)

    try:
        await _client[_db_name].command("ping")
    except Exception as e:
        logger.error("MongoDB 连接失败 | uri=%s | %s", mask_uri(uri), e, exc_info=True)
        _client.close()
        _client = None
        raise
    logger.info("MongoDB 已连接 | uri=%s | db=%s", mask_uri(uri), _db_name)


async def close_mongo() -> None:
    global _client
    if _client is None:
        return
    _client.close()
    _client = None
    logger.info("MongoDB 连接已关闭")


def get_database() -> AsyncIOMotorDatabase:
    """返回文档存储所在的数据库。

    Raises:
        RuntimeError: 在 ``connect_mongo()`` 之前调用。
    """
    if _client is None:
        raise RuntimeError("MongoDB 尚未初始化，请先调用 connect_mongo()")
    return _client[_db_name]
