"""
app.services.connection_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接注册表 —— 按房间 key 维护在线连接集合，以及连接到房间的反向映射。

纯内存簿记，不做任何 I/O。所有修改操作都是同步的、内部没有 ``await``，
在同一个事件循环里天然原子；状态按房间 key 分片存放，不存在串行化所有房间的全局锁。
房间在第一个连接注册时隐式创建，最后一个连接注销时立即回收，
并通知监听者（更新缓存、在线用户列表）清理该房间的状态。
"""
from __future__ import annotations

from collections.abc import Callable

from app.core.logging import get_logger
from app.services.connection import Connection

logger = get_logger(__name__)

RoomClosedListener = Callable[[str], None]


class ConnectionRegistry:
    """房间 → 连接集合 的注册表。

    每个连接任意时刻最多属于一个房间；房间条目存在当且仅当其连接集合非空。
    对未知连接 / 房间的操作都是无操作，返回 ``None`` 或空结果，不抛异常。
    """

    def __init__(self) -> None:
        # room_key -> {session_id: Connection}，dict 保留注册顺序
        self._rooms: dict[str, dict[str, Connection]] = {}
        # session_id -> room_key
        self._connection_rooms: dict[str, str] = {}
        self._room_closed_listeners: list[RoomClosedListener] = []

    def add_room_closed_listener(self, listener: RoomClosedListener) -> None:
        """注册房间被回收时的回调（参数为房间 key）。"""
        self._room_closed_listeners.append(listener)

    def register(self, connection: Connection, room_key: str) -> None:
        """把连接加入房间。对同一房间重复注册是幂等的；换房间时先从旧房间注销。"""
        current = self._connection_rooms.get(connection.session_id)
        if current == room_key:
            return
        if current is not None:
            self.unregister(connection)

        self._rooms.setdefault(room_key, {})[connection.session_id] = connection
        self._connection_rooms[connection.session_id] = room_key
        connection.room_key = room_key

    def unregister(self, connection: Connection) -> str | None:
        """把连接移出所在房间。

        Returns:
            连接原先所在的房间 key；连接未注册时返回 ``None``。
        """
        room_key = self._connection_rooms.pop(connection.session_id, None)
        if room_key is None:
            return None

        members = self._rooms.get(room_key)
        if members is not None:
            members.pop(connection.session_id, None)
            if not members:
                del self._rooms[room_key]
                self._close_room(room_key)
        return room_key

    def room_of(self, connection: Connection) -> str | None:
        return self._connection_rooms.get(connection.session_id)

    def members_of(self, room_key: str) -> list[Connection]:
        """返回房间成员的快照，调用方遍历期间注册表可以被并发修改。"""
        return list(self._rooms.get(room_key, {}).values())

    def has_room(self, room_key: str) -> bool:
        return room_key in self._rooms

    def room_keys(self) -> list[str]:
        return list(self._rooms)

    def online_count(self, room_key: str) -> int:
        return len(self._rooms.get(room_key, ()))

    def _close_room(self, room_key: str) -> None:
        logger.info("房间已空，回收 | room=%s", room_key)
        for listener in self._room_closed_listeners:
            try:
                listener(room_key)
            except Exception as e:
                logger.error("房间回收回调失败: %s | room=%s", e, room_key, exc_info=True)
