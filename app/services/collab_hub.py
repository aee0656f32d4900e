"""
app.services.collab_hub
~~~~~~~~~~~~~~~~~~~~~~~

实时协作中枢 —— 全局单例，组装注册表、在线用户、更新缓存、广播器、持久化桥与消息路由，
并实现每种消息的处理逻辑和连接的完整生命周期。

在 FastAPI lifespan 中创建并挂载于 ``app.state.collab_hub``。

- ``connect(connection, room_key)``    → 握手 + 注册 + 欢迎消息
- ``handle_message(connection, raw)``  → 交给 ``MessageRouter`` 分类分发
- ``disconnect(connection)``           → 注销 + 离开通知（正常关闭与异常断开同一路径）
"""
from __future__ import annotations

import re

from app.core.logging import get_logger
from app.core.settings import Settings, settings
from app.schemas.realtime import (
    ConnectedEvent,
    DocumentUpdateMessage,
    PresenceEvent,
    PresenceMessage,
)
from app.schemas.rooms import CachedDocumentInfo, RoomInfoData
from app.services.connection import Connection
from app.services.connection_registry import ConnectionRegistry
from app.services.message_router import MessageKind, MessageRouter
from app.services.persistence_bridge import DocumentStore, PersistenceBridge, parse_durable_id
from app.services.presence import PresenceTracker
from app.services.room_broadcaster import RoomBroadcaster
from app.services.update_cache import UpdateCache

logger = get_logger(__name__)


class CollabHub:
    """实时协作中枢。

    Attributes:
        registry: 连接注册表。
        broadcaster: 房间广播器。
        presence: 在线用户追踪。
        cache: 文档更新缓存。
        bridge: 持久化桥。
        router: 入站消息路由。
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        room_key_pattern: str = r"^[A-Za-z0-9_-]{1,64}$",
        persist_timeout: float = 5.0,
        replay_on_join: bool = True,
        echo_updates_to_sender: bool = False,
        max_message_chars: int = 5_000_000,
    ) -> None:
        self._room_key_re = re.compile(room_key_pattern)
        self.replay_on_join = replay_on_join
        self.echo_updates_to_sender = echo_updates_to_sender

        self.registry = ConnectionRegistry()
        self.broadcaster = RoomBroadcaster(self.registry)
        self.presence = PresenceTracker(self.broadcaster)
        self.cache = UpdateCache()
        self.bridge = PersistenceBridge(store, timeout=persist_timeout)
        self.router = MessageRouter(
            self.registry,
            self.broadcaster,
            handlers={
                MessageKind.DOCUMENT_UPDATE: self.handle_document_update,
                MessageKind.JOIN: self.handle_join,
                MessageKind.LEAVE: self.handle_leave,
                MessageKind.GENERIC: self.relay,
            },
            max_message_chars=max_message_chars,
        )
        self.registry.add_room_closed_listener(self._purge_room)

    @classmethod
    def from_settings(cls, store: DocumentStore, config: Settings = settings) -> CollabHub:
        return cls(
            store,
            room_key_pattern=config.ROOM_KEY_PATTERN,
            persist_timeout=config.PERSIST_TIMEOUT_SECONDS,
            replay_on_join=config.REPLAY_CACHE_ON_JOIN,
            echo_updates_to_sender=config.ECHO_UPDATES_TO_SENDER,
            max_message_chars=config.WS_MAX_MESSAGE_CHARS,
        )

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def is_valid_room_key(self, room_key: str | None) -> bool:
        return bool(room_key) and self._room_key_re.fullmatch(room_key) is not None

    async def connect(self, connection: Connection, room_key: str) -> None:
        """完成握手，把连接注册到房间，并只向该连接发送欢迎事件。"""
        if not self.is_valid_room_key(room_key):
            raise ValueError(f"非法房间 key: {room_key!r}")
        await connection.accept()
        self.registry.register(connection, room_key)
        logger.info(
            "连接已加入房间 | room=%s | session=%s | 在线: %d",
            room_key, connection.session_id, self.registry.online_count(room_key),
        )
        await self.broadcaster.send_to(
            connection,
            ConnectedEvent(
                room_id=room_key,
                session_id=connection.session_id,
                message=f"Connected to room {room_key}",
            ),
        )

    async def handle_message(self, connection: Connection, raw: str | bytes) -> MessageKind | None:
        return await self.router.route(connection, raw)

    async def disconnect(self, connection: Connection) -> str | None:
        """注销连接并通知房间其余成员。可重复调用。

        被广播剔除的连接此时已不在注册表中，只要它的房间没有被回收，``connection.room_key``
        仍指向原房间，离开通知照常发出。每个 JOIN 过的用户名各发一条 ``USER_LEFT``。

        Returns:
            连接原先所在的房间 key。
        """
        connection.mark_closing()
        room_key = self.registry.unregister(connection) or connection.room_key
        self.broadcaster.release(connection)
        connection.mark_closed()
        connection.room_key = None
        user_names, connection.user_names = connection.user_names, []
        if room_key is None:
            return None

        logger.info(
            "连接已离开房间 | room=%s | session=%s | users=%s | 在线: %d",
            room_key, connection.session_id, user_names,
            self.registry.online_count(room_key),
        )
        for name in user_names or [None]:
            if not self.registry.has_room(room_key):
                # 房间已被回收，没有需要通知的成员
                break
            await self.broadcaster.broadcast(
                room_key,
                PresenceEvent(
                    type="USER_LEFT",
                    username=name,
                    room_id=room_key,
                    session_id=connection.session_id,
                ),
            )
            if name is not None:
                await self.presence.leave(room_key, name)
        return room_key

    # ── 消息处理器 ────────────────────────────────────────────────────

    async def handle_join(self, connection: Connection, room_key: str, message: PresenceMessage) -> None:
        logger.info("用户加入 | room=%s | user=%s", room_key, message.username)

        await self.broadcaster.broadcast(
            room_key,
            PresenceEvent(
                type="USER_JOINED",
                username=message.username,
                room_id=room_key,
                session_id=connection.session_id,
            ),
        )
        if self.registry.room_of(connection) != room_key:
            # 广播时本连接发送失败已被剔除，不能再写入在线列表
            logger.info("JOIN 期间连接已被移除 | room=%s | user=%s", room_key, message.username)
            return
        connection.user_names.append(message.username)
        await self.presence.join(room_key, message.username)

        if self.replay_on_join:
            for cached in self.cache.documents(room_key):
                if not await self.broadcaster.send_to(connection, cached.to_event(replay=True)):
                    break

    async def handle_leave(self, connection: Connection, room_key: str, message: PresenceMessage) -> None:
        logger.info("用户离开 | room=%s | user=%s", room_key, message.username)
        if message.username in connection.user_names:
            connection.user_names.remove(message.username)

        await self.broadcaster.broadcast(
            room_key,
            PresenceEvent(
                type="USER_LEFT",
                username=message.username,
                room_id=room_key,
                session_id=connection.session_id,
            ),
        )
        await self.presence.leave(room_key, message.username)

    async def handle_document_update(
        self, connection: Connection, room_key: str, update: DocumentUpdateMessage,
    ) -> None:
        if update.author_name is None and connection.user_name is not None:
            update = update.model_copy(update={"author_name": connection.user_name})
        logger.info("文档更新 | room=%s | document=%s", room_key, update.document_id)

        cached = self.cache.put(room_key, update)
        outcome = await self.bridge.apply_update(room_key, update)
        logger.debug("持久化结果 | room=%s | document=%s | %s", room_key, update.document_id, outcome.value)

        exclude = None if self.echo_updates_to_sender else connection
        await self.broadcaster.broadcast(room_key, cached.to_event(replay=False), exclude=exclude)

    async def relay(self, connection: Connection, room_key: str, raw: str) -> None:
        await self.broadcaster.broadcast(room_key, raw, exclude=connection)

    # ── 房间状态查询 ──────────────────────────────────────────────────

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有活跃房间的摘要信息。"""
        return [info for key in self.registry.room_keys() if (info := self.room_info(key)) is not None]

    def room_info(self, room_key: str) -> RoomInfoData | None:
        if not self.registry.has_room(room_key):
            return None
        return RoomInfoData(
            room_key=room_key,
            online_count=self.registry.online_count(room_key),
            users=self.presence.list_users(room_key),
            cached_documents=len(self.cache.documents(room_key)),
        )

    def cached_documents(self, room_key: str) -> list[CachedDocumentInfo] | None:
        if not self.registry.has_room(room_key):
            return None
        return [
            CachedDocumentInfo(
                document_id=doc.document_id,
                kind="binary" if doc.is_binary else "text",
                content_type=doc.content_type,
                author_name=doc.author_name,
                durable=parse_durable_id(doc.document_id) is not None,
                updated_at=doc.updated_at,
            )
            for doc in self.cache.documents(room_key)
        ]

    def _purge_room(self, room_key: str) -> None:
        dropped = self.cache.clear_room(room_key)
        self.presence.clear_room(room_key)
        logger.info("房间状态已清理 | room=%s | 丢弃缓存文档: %d", room_key, dropped)
