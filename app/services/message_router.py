"""
app.services.message_router
~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息路由 —— 把一条入站消息分类为 {文档更新, JOIN, LEAVE, 透传}，并交给对应的处理器。

分类顺序固定，先匹配者优先:
  1. 同时带有 ``documentId`` 和内容字段（``content`` / ``binaryContent``）→ 文档更新
  2. ``type`` 标签为 ``join``（不区分大小写）→ JOIN
  3. ``type`` 标签为 ``leave`` / ``disconnect`` → LEAVE
  4. 其余 JSON 对象 → 原样透传给房间内其他成员

无法解码、或缺少对应类型必填字段的消息，只向来源连接回一条 ``ERROR`` 事件，
既不广播，也不会让路由器崩溃。
"""
from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import ValidationError

from app.core.logging import get_logger
from app.schemas.realtime import DocumentUpdateMessage, ErrorEvent, PresenceMessage
from app.services.connection import Connection
from app.services.connection_registry import ConnectionRegistry
from app.services.room_broadcaster import RoomBroadcaster

logger = get_logger(__name__)

JOIN_TAGS = frozenset({"join"})
LEAVE_TAGS = frozenset({"leave", "disconnect"})
_CONTENT_FIELDS = ("content", "binaryContent")

Handler = Callable[[Connection, str, Any], Awaitable[None]]


class MessageKind(str, Enum):
    DOCUMENT_UPDATE = "document_update"
    JOIN = "join"
    LEAVE = "leave"
    GENERIC = "generic"


def classify(payload: Mapping[str, Any]) -> MessageKind:
    """按固定优先级判断消息类型。"""
    if "documentId" in payload and any(field in payload for field in _CONTENT_FIELDS):
        return MessageKind.DOCUMENT_UPDATE

    tag = payload.get("type")
    tag = tag.lower() if isinstance(tag, str) else None
    if tag in JOIN_TAGS:
        return MessageKind.JOIN
    if tag in LEAVE_TAGS:
        return MessageKind.LEAVE
    return MessageKind.GENERIC


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


class MessageRouter:
    """入站消息分类器 + 分发器。

    Attributes:
        registry: 连接注册表，用于确认来源连接所在的房间。
        broadcaster: 用于向来源连接回错误事件。
        handlers: 每种 ``MessageKind`` 对应的异步处理器，
            签名为 ``handler(connection, room_key, message)``。
        max_message_chars: 单条消息最大字符数。
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: RoomBroadcaster,
        handlers: Mapping[MessageKind, Handler],
        max_message_chars: int = 5_000_000,
    ) -> None:
        missing = set(MessageKind) - set(handlers)
        if missing:
            raise ValueError(f"缺少消息处理器: {sorted(kind.value for kind in missing)}")
        self.registry = registry
        self.broadcaster = broadcaster
        self.handlers = dict(handlers)
        self.max_message_chars = max_message_chars

    async def route(self, connection: Connection, raw: str | bytes) -> MessageKind | None:
        """处理一条入站消息。

        Returns:
            被分发到的消息类型；消息被丢弃或拒绝时返回 ``None``。
        """
        room_key = self.registry.room_of(connection)
        if room_key is None:
            logger.warning("连接不属于任何房间，丢弃消息 | session=%s", connection.session_id)
            return None

        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                await self._reject(connection, room_key, "消息不是合法的 UTF-8 文本")
                return None

        if len(raw) > self.max_message_chars:
            await self._reject(connection, room_key, "消息过大")
            return None

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            await self._reject(connection, room_key, f"无法解析 JSON: {e.msg}")
            return None
        if not isinstance(payload, dict):
            await self._reject(connection, room_key, "消息必须是 JSON 对象")
            return None

        kind = classify(payload)
        try:
            if kind is MessageKind.DOCUMENT_UPDATE:
                message: Any = DocumentUpdateMessage.model_validate(payload)
            elif kind in (MessageKind.JOIN, MessageKind.LEAVE):
                message = PresenceMessage.model_validate(payload)
            else:
                message = raw
        except ValidationError as e:
            await self._reject(connection, room_key, f"{kind.value} 消息字段不合法（{_describe(e)}）")
            return None

        try:
            await self.handlers[kind](connection, room_key, message)
        except Exception as e:
            logger.error("处理消息失败: %s | room=%s | kind=%s", e, room_key, kind.value, exc_info=True)
            await self._reject(connection, room_key, "处理消息时发生内部错误")
            return None
        return kind

    async def _reject(self, connection: Connection, room_key: str, reason: str) -> None:
        logger.info("拒绝畸形消息 | room=%s | session=%s | %s", room_key, connection.session_id, reason)
        await self.broadcaster.send_to(connection, ErrorEvent(message=reason))
