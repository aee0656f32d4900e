"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

单条 WebSocket 连接的句柄与生命周期状态。

状态只能单向前进：``OPENING → OPEN → CLOSING → CLOSED``，进入 ``CLOSED`` 后不可恢复。
"""
from __future__ import annotations

import uuid
from enum import Enum

from fastapi import WebSocket


class ConnectionState(str, Enum):
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionClosedError(RuntimeError):
    """向已关闭（或正在关闭）的连接发送消息。"""


class Connection:
    """一个客户端接入房间的双工通道。

    Attributes:
        websocket: 底层 WebSocket 对象。
        session_id: 连接唯一标识。
        state: 生命周期状态。
        room_key: 注册到的房间 key（由 ``ConnectionRegistry`` 写入；被广播剔除后，只要原房间
            未被回收就保留，直到 ``CollabHub.disconnect`` 发出离开通知后清空）。
        user_names: 本连接 JOIN 过的用户名，按 JOIN 顺序（允许重复）。
    """

    def __init__(self, websocket: WebSocket, session_id: str | None = None) -> None:
        self.websocket = websocket
        self.session_id: str = session_id or uuid.uuid4().hex
        self.state: ConnectionState = ConnectionState.OPENING
        self.room_key: str | None = None
        self.user_names: list[str] = []

    def __repr__(self) -> str:
        return f"<Connection {self.session_id} room={self.room_key} state={self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def user_name(self) -> str | None:
        """最近一次 JOIN 使用的用户名。"""
        return self.user_names[-1] if self.user_names else None

    async def accept(self) -> None:
        """完成 WebSocket 握手，进入 ``OPEN`` 状态。"""
        if self.state is not ConnectionState.OPENING:
            raise ConnectionClosedError(f"连接 {self.session_id} 无法再次握手（{self.state.value}）")
        await self.websocket.accept()
        self.state = ConnectionState.OPEN

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise ConnectionClosedError(f"连接 {self.session_id} 已关闭")
        await self.websocket.send_text(text)

    def mark_closing(self) -> None:
        if self.state in (ConnectionState.OPENING, ConnectionState.OPEN):
            self.state = ConnectionState.CLOSING

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED
