"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

在线用户追踪 —— 按房间维护已 JOIN 的用户名列表。

列表不去重：同名重复 JOIN 会追加多条，LEAVE 每次只移除一条。
每次 JOIN / LEAVE 之后都会向整个房间重新广播 ``USERS_LIST``。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.schemas.realtime import UsersListEvent
from app.services.room_broadcaster import RoomBroadcaster

logger = get_logger(__name__)


class PresenceTracker:
    """房间在线用户列表。

    Attributes:
        broadcaster: 用于推送刷新后的用户列表。
    """

    def __init__(self, broadcaster: RoomBroadcaster) -> None:
        self.broadcaster = broadcaster
        self._users: dict[str, list[str]] = {}

    async def join(self, room_key: str, user_name: str) -> list[str]:
        """记录用户进入房间，返回刷新后的用户列表。"""
        self._users.setdefault(room_key, []).append(user_name)
        users = self.list_users(room_key)
        await self._publish(room_key, users)
        return users

    async def leave(self, room_key: str, user_name: str) -> bool:
        """移除一条用户记录。用户不在列表中时不做修改，但仍会广播当前列表。

        Returns:
            是否确实移除了一条记录。
        """
        users = self._users.get(room_key)
        removed = False
        if users and user_name in users:
            users.remove(user_name)
            removed = True
            if not users:
                del self._users[room_key]
        await self._publish(room_key, self.list_users(room_key))
        return removed

    def list_users(self, room_key: str) -> list[str]:
        return list(self._users.get(room_key, ()))

    def clear_room(self, room_key: str) -> None:
        """房间回收时丢弃其在线列表。"""
        self._users.pop(room_key, None)

    async def _publish(self, room_key: str, users: list[str]) -> None:
        logger.debug("广播在线用户 | room=%s | users=%s", room_key, users)
        await self.broadcaster.broadcast(room_key, UsersListEvent(room_id=room_key, users=users))
