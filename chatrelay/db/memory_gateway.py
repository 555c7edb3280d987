"""
chatrelay.db.memory_gateway
~~~~~~~~~~~~~~~~~~~~~~~~~~~

进程内存实现的持久化网关，语义与 ``MongoGateway`` 保持一致。
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone

from chatrelay.core.errors import ConflictError
from chatrelay.db.gateway import ChatMessage


class MemoryGateway:
    """内存持久化网关。

    每个房间一把写锁；用户名与房间注册表各一把锁，
    保证"检查是否存在 + 插入"在并发下仍然原子。
    """

    def __init__(self) -> None:
        self._usernames: set[str] = set()
        self._rooms: set[str] = set()
        self._messages: dict[str, list[ChatMessage]] = defaultdict(list)
        self._room_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._registry_lock = asyncio.Lock()

    async def append(self, room_id: str, username: str, content: str) -> ChatMessage:
        async with self._room_locks[room_id]:
            log = self._messages[room_id]
            now = datetime.now(timezone.utc)
            # 系统时钟回拨时沿用上一条的时间戳，保持单调不减
            if log and log[-1].timestamp > now:
                now = log[-1].timestamp
            message = ChatMessage(
                room_id=room_id, username=username, content=content, timestamp=now,
            )
            log.append(message)
            return message

    async def history(
        self, room_id: str, skip: int = 0, limit: int | None = None,
    ) -> list[ChatMessage]:
        log = self._messages.get(room_id, [])
        end = None if limit is None else skip + limit
        return list(log[skip:end])

    async def count_messages(self, room_id: str) -> int:
        return len(self._messages.get(room_id, []))

    async def username_exists(self, username: str) -> bool:
        return username in self._usernames

    async def create_username(self, username: str) -> None:
        async with self._registry_lock:
            if username in self._usernames:
                raise ConflictError(f"用户名已存在: {username}")
            self._usernames.add(username)

    async def room_exists(self, room_id: str) -> bool:
        return room_id in self._rooms

    async def create_room(self, room_id: str) -> None:
        async with self._registry_lock:
            if room_id in self._rooms:
                raise ConflictError(f"房间已存在: {room_id}")
            self._rooms.add(room_id)

    async def close(self) -> None:
        return None
