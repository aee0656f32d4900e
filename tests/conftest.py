"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 内存版 WebSocket 替身、mock 文档存储、协作中枢，
使单元测试无需 MongoDB 和真实网络即可运行。
"""
from __future__ import annotations

import json
import os
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from app.services.collab_hub import CollabHub  # noqa: E402
from app.services.connection import Connection  # noqa: E402


class FakeWebSocket:
    """记录所有发出帧的 WebSocket 替身。``fail_on_send=True`` 时模拟对端已断开。"""

    def __init__(self, fail_on_send: bool = False) -> None:
        self.accepted = False
        self.fail_on_send = fail_on_send
        self.sent: list[str] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.fail_on_send:
            raise RuntimeError("socket is closed")
        self.sent.append(text)

    def events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        decoded = [json.loads(text) for text in self.sent]
        if event_type is None:
            return decoded
        return [event for event in decoded if event.get("type") == event_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture()
def mock_store() -> MagicMock:
    """返回一个 mock 文档存储，``update_document`` 默认返回一条已更新记录。"""
    store = MagicMock()
    store.update_document = AsyncMock(return_value={"_id": "updated"})
    return store


@pytest.fixture()
def hub(mock_store: MagicMock) -> CollabHub:
    return CollabHub(mock_store)


ClientFactory = Callable[..., Awaitable[tuple[Connection, FakeWebSocket]]]


@pytest.fixture()
def connect_client(hub: CollabHub) -> ClientFactory:
    """返回一个协程工厂：创建连接并加入房间，可选地以指定用户名 JOIN。"""

    async def _connect(
        room_key: str, user_name: str | None = None, fail_on_send: bool = False,
    ) -> tuple[Connection, FakeWebSocket]:
        websocket = FakeWebSocket()
        connection = Connection(websocket)
        await hub.connect(connection, room_key)
        if user_name is not None:
            await hub.handle_message(connection, json.dumps({"type": "JOIN", "username": user_name}))
        websocket.fail_on_send = fail_on_send
        return connection, websocket

    return _connect
