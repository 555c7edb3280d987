"""
tests.test_memory_gateway
~~~~~~~~~~~~~~~~~~~~~~~~~

MemoryGateway 单元测试：追加顺序、时间戳单调、分页、唯一性约束。
"""
from __future__ import annotations

import asyncio

import pytest

from chatrelay.core.errors import ConflictError
from chatrelay.db.memory_gateway import MemoryGateway


class TestChatLog:
    """聊天记录的追加与回放。"""

    @pytest.mark.asyncio
    async def test_history_returns_messages_in_insertion_order(self, gateway: MemoryGateway) -> None:
        for i in range(5):
            await gateway.append("r1", "alice", f"msg-{i}")

        history = await gateway.history("r1")

        assert [m.content for m in history] == [f"msg-{i}" for i in range(5)]
        timestamps = [m.timestamp for m in history]
        assert timestamps == sorted(timestamps)

    @pytest.mark.asyncio
    async def test_append_returns_timestamped_record(self, gateway: MemoryGateway) -> None:
        message = await gateway.append("r1", "alice", "hi")

        assert message.room_id == "r1"
        assert message.username == "alice"
        assert message.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_history_is_idempotent(self, gateway: MemoryGateway) -> None:
        """房间无变化时，连续两次读取历史结果一致。"""
        await gateway.append("r1", "alice", "a")
        await gateway.append("r1", "bob", "b")

        first = await gateway.history("r1")
        second = await gateway.history("r1")

        assert first == second

    @pytest.mark.asyncio
    async def test_rooms_do_not_share_history(self, gateway: MemoryGateway) -> None:
        await gateway.append("r1", "alice", "in r1")
        await gateway.append("r2", "bob", "in r2")

        assert [m.content for m in await gateway.history("r1")] == ["in r1"]
        assert [m.content for m in await gateway.history("r2")] == ["in r2"]
        assert await gateway.history("empty") == []

    @pytest.mark.asyncio
    async def test_history_pagination(self, gateway: MemoryGateway) -> None:
        for i in range(10):
            await gateway.append("r1", "alice", str(i))

        page = await gateway.history("r1", skip=3, limit=4)

        assert [m.content for m in page] == ["3", "4", "5", "6"]
        assert await gateway.count_messages("r1") == 10

    @pytest.mark.asyncio
    async def test_concurrent_appends_have_no_gaps_or_duplicates(self, gateway: MemoryGateway) -> None:
        await asyncio.gather(*(gateway.append("r1", "u", str(i)) for i in range(50)))

        history = await gateway.history("r1")

        assert sorted(int(m.content) for m in history) == list(range(50))
        timestamps = [m.timestamp for m in history]
        assert timestamps == sorted(timestamps)


class TestRegistries:
    """用户名与房间 ID 的唯一性。"""

    @pytest.mark.asyncio
    async def test_create_username_twice_conflicts(self, gateway: MemoryGateway) -> None:
        assert await gateway.username_exists("alice") is False

        await gateway.create_username("alice")
        with pytest.raises(ConflictError):
            await gateway.create_username("alice")

        assert await gateway.username_exists("alice") is True

    @pytest.mark.asyncio
    async def test_create_room_twice_conflicts(self, gateway: MemoryGateway) -> None:
        await gateway.create_room("r1")
        with pytest.raises(ConflictError):
            await gateway.create_room("r1")

        assert await gateway.room_exists("r1") is True
        assert await gateway.room_exists("r2") is False

    @pytest.mark.asyncio
    async def test_concurrent_creates_only_one_wins(self, gateway: MemoryGateway) -> None:
        results = await asyncio.gather(
            *(gateway.create_room("dup") for _ in range(5)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if r is None) == 1
        assert sum(1 for r in results if isinstance(r, ConflictError)) == 4
