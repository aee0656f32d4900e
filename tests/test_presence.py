"""
tests.test_presence
~~~~~~~~~~~~~~~~~~~

PresenceTracker 单元测试 —— 在线列表不去重，且每次变化都会广播。
"""
from __future__ import annotations

import random
from collections import Counter

import pytest

from app.services.connection import Connection
from app.services.connection_registry import ConnectionRegistry
from app.services.presence import PresenceTracker
from app.services.room_broadcaster import RoomBroadcaster
from tests.conftest import FakeWebSocket


@pytest.fixture()
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def tracker(registry: ConnectionRegistry) -> PresenceTracker:
    return PresenceTracker(RoomBroadcaster(registry))


class TestPresenceTracker:
    """测试 join / leave / list_users。"""

    @pytest.mark.asyncio
    async def test_duplicate_joins_are_kept(self, tracker: PresenceTracker) -> None:
        await tracker.join("room", "alice")
        await tracker.join("room", "alice")
        await tracker.join("room", "bob")

        assert tracker.list_users("room") == ["alice", "alice", "bob"]

    @pytest.mark.asyncio
    async def test_leave_removes_single_entry(self, tracker: PresenceTracker) -> None:
        await tracker.join("room", "alice")
        await tracker.join("room", "alice")

        assert await tracker.leave("room", "alice") is True
        assert tracker.list_users("room") == ["alice"]

    @pytest.mark.asyncio
    async def test_leave_unknown_user_is_noop(self, tracker: PresenceTracker) -> None:
        await tracker.join("room", "alice")

        assert await tracker.leave("room", "mallory") is False
        assert await tracker.leave("elsewhere", "alice") is False
        assert tracker.list_users("room") == ["alice"]

    @pytest.mark.asyncio
    async def test_rooms_are_independent(self, tracker: PresenceTracker) -> None:
        await tracker.join("a", "alice")
        await tracker.join("b", "bob")

        assert tracker.list_users("a") == ["alice"]
        assert tracker.list_users("b") == ["bob"]

    @pytest.mark.asyncio
    async def test_join_and_leave_broadcast_users_list(
        self, registry: ConnectionRegistry, tracker: PresenceTracker,
    ) -> None:
        websocket = FakeWebSocket()
        member = Connection(websocket)
        await member.accept()
        registry.register(member, "room")

        await tracker.join("room", "alice")
        await tracker.leave("room", "alice")

        lists = websocket.events("USERS_LIST")
        assert [event["users"] for event in lists] == [["alice"], []]
        assert all(event["roomId"] == "room" for event in lists)

    @pytest.mark.asyncio
    async def test_clear_room(self, tracker: PresenceTracker) -> None:
        await tracker.join("room", "alice")
        tracker.clear_room("room")

        assert tracker.list_users("room") == []

    @pytest.mark.asyncio
    async def test_list_equals_joins_minus_leaves(self, tracker: PresenceTracker) -> None:
        """任意 join / leave 序列后，在线列表等于 join 多重集减去（有效的）leave。"""
        rng = random.Random(7)
        names = ["alice", "bob", "carol"]
        expected: Counter[str] = Counter()

        for _ in range(200):
            name = rng.choice(names)
            if rng.random() < 0.55:
                await tracker.join("room", name)
                expected[name] += 1
            else:
                await tracker.leave("room", name)
                if expected[name] > 0:
                    expected[name] -= 1
            assert Counter(tracker.list_users("room")) == +expected
