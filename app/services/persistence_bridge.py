"""
app.services.persistence_bridge
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

持久化桥 —— 把文档更新事件转换为对外部文档存储的一次更新调用。

只有 UUID 形态的文档 ID 才是持久化文档；其余 ID 视为客户端尚未保存的临时文档，
直接跳过持久化。持久化失败（存储异常、超时、文档不存在）只记日志，
结果仅供日志使用，绝不阻断房间内的广播。
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from app.core.logging import get_logger
from app.db.document_repository import DocumentPatch
from app.schemas.realtime import DocumentUpdateMessage

logger = get_logger(__name__)


class DocumentStore(Protocol):
    """实时通道依赖的外部文档存储接口。"""

    async def update_document(
        self,
        document_id: UUID,
        patch: DocumentPatch,
        author_name: str | None = None,
    ) -> Any | None: ...


class PersistOutcome(str, Enum):
    PERSISTED = "persisted"
    SKIPPED_TEMPORARY = "skipped_temporary"
    NOT_FOUND = "not_found"
    FAILED = "failed"


def parse_durable_id(document_id: str) -> UUID | None:
    """文档 ID 为标准 UUID 字符串时返回 ``UUID``，否则返回 ``None``。"""
    try:
        parsed = UUID(document_id)
    except (ValueError, TypeError, AttributeError):
        return None
    # 拒绝花括号、urn: 前缀、无连字符等非标准写法
    if str(parsed) != document_id.lower():
        return None
    return parsed


class PersistenceBridge:
    """文档更新的尽力而为持久化。

    Attributes:
        store: 外部文档存储。
        timeout: 单次存储调用的超时时间（秒）。
    """

    def __init__(self, store: DocumentStore, timeout: float = 5.0) -> None:
        self.store = store
        self.timeout = timeout

    async def apply_update(self, room_key: str, update: DocumentUpdateMessage) -> PersistOutcome:
        """尝试持久化一次文档更新。永不抛出业务异常。"""
        document_id = parse_durable_id(update.document_id)
        if document_id is None:
            logger.debug("临时文档，跳过持久化 | room=%s | document=%s", room_key, update.document_id)
            return PersistOutcome.SKIPPED_TEMPORARY

        if update.is_binary:
            patch = DocumentPatch(binary_content=update.binary_content, content_type=update.content_type)
        else:
            patch = DocumentPatch(content=update.content)

        try:
            record = await asyncio.wait_for(
                self.store.update_document(document_id, patch, author_name=update.author_name),
                timeout=self.timeout,
            )
        except Exception as e:
            # 持久化失败不应阻塞房间内广播
            logger.warning(
                "文档持久化失败: %s | room=%s | document=%s",
                e, room_key, update.document_id, exc_info=True,
            )
            return PersistOutcome.FAILED

        if record is None:
            logger.warning("持久化目标文档不存在 | room=%s | document=%s", room_key, update.document_id)
            return PersistOutcome.NOT_FOUND

        logger.debug("文档已持久化 | room=%s | document=%s", room_key, update.document_id)
        return PersistOutcome.PERSISTED
