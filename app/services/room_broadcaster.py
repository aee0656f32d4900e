"""
app.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间广播器 —— 把一条消息投递给房间内的部分或全部连接。

广播前先对成员集合做快照；某个连接发送失败时将其从注册表剔除（视为断开），
不影响其余成员的投递，也不重试、不向发送者报告。
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Union

from app.core.logging import get_logger
from app.schemas.realtime import RealtimeEvent
from app.services.connection import Connection
from app.services.connection_registry import ConnectionRegistry

logger = get_logger(__name__)

Message = Union[str, RealtimeEvent, dict[str, Any]]


def encode_message(message: Message) -> str:
    """把出站消息序列化为文本帧。字符串原样返回（用于透传）。"""
    if isinstance(message, str):
        return message
    if isinstance(message, RealtimeEvent):
        return message.to_json()
    return json.dumps(message, ensure_ascii=False)


class RoomBroadcaster:
    """基于 ``ConnectionRegistry`` 的房间广播器。

    Attributes:
        registry: 共享的连接注册表。
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        # room_key -> 已被剔除、但连接协程尚未执行 disconnect 的连接
        self._evicted: dict[str, set[Connection]] = {}
        registry.add_room_closed_listener(self._forget_room)

    async def broadcast(
        self,
        room_key: str,
        message: Message,
        exclude: Connection | None = None,
    ) -> int:
        """向房间广播消息。

        Args:
            room_key: 目标房间。
            message: 出站消息。
            exclude: 需要跳过的连接（通常是发送者本人）。

        Returns:
            成功投递的连接数。
        """
        targets = [
            conn for conn in self.registry.members_of(room_key)
            if conn is not exclude and conn.is_open
        ]
        if not targets:
            return 0

        text = encode_message(message)
        results = await asyncio.gather(
            *(conn.send_text(text) for conn in targets),
            return_exceptions=True,
        )
        delivered = 0
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    "广播失败，移除断开的连接 | room=%s | session=%s | %s",
                    room_key, conn.session_id, result,
                )
                self.evict(conn)
            else:
                delivered += 1
        return delivered

    async def send_to(self, connection: Connection, message: Message) -> bool:
        """只向单个连接发送消息，失败时同样剔除该连接。"""
        try:
            await connection.send_text(encode_message(message))
        except Exception as e:
            logger.warning("单播失败，移除断开的连接 | session=%s | %s", connection.session_id, e)
            self.evict(connection)
            return False
        return True

    def evict(self, connection: Connection) -> str | None:
        """把连接标记为关闭并从注册表移除，返回其原房间 key。

        房间仍有其他成员时保留 ``connection.room_key``，供连接协程稍后发出离开通知；
        房间一旦被回收就清空它，避免同 key 的新房间收到过期的离开通知。
        """
        connection.mark_closed()
        room_key = self.registry.unregister(connection)
        if room_key is None:
            return None
        if self.registry.has_room(room_key):
            self._evicted.setdefault(room_key, set()).add(connection)
        else:
            connection.room_key = None
        return room_key

    def release(self, connection: Connection) -> None:
        """连接协程完成清理后调用，不再跟踪该连接。"""
        evicted = self._evicted.get(connection.room_key or "")
        if evicted is None:
            return
        evicted.discard(connection)
        if not evicted:
            del self._evicted[connection.room_key]

    def _forget_room(self, room_key: str) -> None:
        for connection in self._evicted.pop(room_key, ()):
            connection.room_key = None
