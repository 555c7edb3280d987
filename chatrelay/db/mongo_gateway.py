"""
chatrelay.db.mongo_gateway
~~~~~~~~~~~~~~~~~~~~~~~~~~

MongoDB 持久化网关 —— 封装 ``usernames`` / ``rooms`` / ``chat_messages``
三个集合的增查操作。

聊天记录每条消息一个文档（扁平设计），按 ``(room_id, seq)`` 建唯一索引，
``seq`` 是房间内的写入序号，回放时按它排序，不依赖时钟精度。
集合在首次操作时惰性建立索引。
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from urllib.parse import urlparse, urlunparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from chatrelay.core.errors import ConflictError, PersistenceError
from chatrelay.core.logging import get_logger
from chatrelay.db.gateway import ChatMessage

logger = get_logger(__name__)

# 集合名称
_USERNAMES = "usernames"
_ROOMS = "rooms"
_CHAT_MESSAGES = "chat_messages"


def _mask_uri(uri: str) -> str:
    """将 MongoDB URI 中的密码替换为 ``***``，防止日志泄漏凭证。"""
    parsed = urlparse(uri)
    if parsed.password:
        masked = parsed._replace(
            netloc=f"{parsed.username}:***@{parsed.hostname}"
            + (f":{parsed.port}" if parsed.port else ""),
        )
        return urlunparse(masked)
    return uri


def _as_utc(ts: datetime) -> datetime:
    # 未开启 tz_aware 的客户端读回来的是 naive UTC 时间
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """把 pymongo 异常统一转换为 ``PersistenceError``。"""
    try:
        yield
    except PyMongoError as e:
        logger.error("MongoDB 操作失败 | action=%s | %s", action, e, exc_info=True)
        raise PersistenceError(f"存储操作失败: {action}") from e


class MongoGateway:
    """基于 motor 的持久化网关。

    同一房间的聊天写入通过 ``asyncio.Lock`` 串行化；每个房间最后一条消息的
    ``(seq, timestamp)`` 缓存在内存中，首次写入某房间时从数据库读取。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        client: AsyncIOMotorClient | None = None,
    ) -> None:
        self.db = db
        self._client = client
        self._usernames = db[_USERNAMES]
        self._rooms = db[_ROOMS]
        self._messages = db[_CHAT_MESSAGES]
        self._indexes_created = False
        self._room_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tails: dict[str, tuple[int, datetime | None]] = {}

    @classmethod
    async def connect(cls, uri: str, db_name: str) -> MongoGateway:
        """创建连接池并 ping 目标数据库，成功后返回网关实例。"""
        client = AsyncIOMotorClient(uri, tz_aware=True)
        db = client[db_name]
        try:
            await db.command("ping")
        except Exception as e:
            logger.error("MongoDB 连接失败: %s", e, exc_info=True)
            client.close()
            raise
        logger.info("MongoDB 已连接 | uri=%s | db=%s", _mask_uri(uri), db_name)
        return cls(db, client=client)

    async def close(self) -> None:
        """关闭自己持有的连接池。"""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("MongoDB 连接已关闭")

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        with _store_errors("create_index"):
            await self._usernames.create_index("username", unique=True, name="uniq_username")
            await self._rooms.create_index("room_id", unique=True, name="uniq_room_id")
            await self._messages.create_index(
                [("room_id", 1), ("seq", 1)],
                unique=True,
                name="idx_room_seq",
            )
        self._indexes_created = True
        logger.debug("索引已就绪")

    # ── 聊天记录 ──────────────────────────────────────────────────────

    async def _room_tail(self, room_id: str) -> tuple[int, datetime | None]:
        if room_id not in self._tails:
            with _store_errors("room_tail"):
                last = await self._messages.find_one(
                    {"room_id": room_id},
                    {"_id": 0, "seq": 1, "timestamp": 1},
                    sort=[("seq", -1)],
                )
            if last is None:
                self._tails[room_id] = (0, None)
            else:
                self._tails[room_id] = (last["seq"], _as_utc(last["timestamp"]))
        return self._tails[room_id]

    async def append(self, room_id: str, username: str, content: str) -> ChatMessage:
        """保存一条聊天消息。

        Args:
            room_id: 房间唯一标识。
            username: 发送者用户名。
            content: 消息文本内容。

        Returns:
            带服务端时间戳的 ``ChatMessage``。

        Raises:
            PersistenceError: 写入失败（不会广播）。
        """
        await self._ensure_indexes()
        async with self._room_locks[room_id]:
            last_seq, last_ts = await self._room_tail(room_id)
            now = datetime.now(timezone.utc)
            if last_ts is not None and last_ts > now:
                now = last_ts
            doc = {
                "room_id": room_id,
                "username": username,
                "content": content,
                "timestamp": now,
                "seq": last_seq + 1,
            }
            try:
                with _store_errors("append"):
                    await self._messages.insert_one(doc)
            except PersistenceError:
                # 可能有其他进程写入了同一房间，下次重新读取尾部
                self._tails.pop(room_id, None)
                raise
            self._tails[room_id] = (last_seq + 1, now)
        return ChatMessage(room_id=room_id, username=username, content=content, timestamp=now)

    async def history(
        self, room_id: str, skip: int = 0, limit: int | None = None,
    ) -> list[ChatMessage]:
        """获取指定房间的聊天记录（按写入顺序正序，可分页）。"""
        await self._ensure_indexes()
        with _store_errors("history"):
            cursor = (
                self._messages
                .find(
                    {"room_id": room_id},
                    {"_id": 0, "room_id": 1, "username": 1, "content": 1, "timestamp": 1},
                )
                .sort("seq", 1)
                .skip(skip)
            )
            if limit is not None:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=limit)
        return [
            ChatMessage(
                room_id=doc["room_id"],
                username=doc["username"],
                content=doc["content"],
                timestamp=_as_utc(doc["timestamp"]),
            )
            for doc in docs
        ]

    async def count_messages(self, room_id: str) -> int:
        """获取指定房间的消息总数。"""
        await self._ensure_indexes()
        with _store_errors("count_messages"):
            return await self._messages.count_documents({"room_id": room_id})

    # ── 用户名 / 房间注册表 ────────────────────────────────────────────

    async def username_exists(self, username: str) -> bool:
        await self._ensure_indexes()
        with _store_errors("username_exists"):
            return await self._usernames.find_one({"username": username}) is not None

    async def create_username(self, username: str) -> None:
        await self._ensure_indexes()
        with _store_errors("create_username"):
            try:
                await self._usernames.insert_one({"username": username})
            except DuplicateKeyError as e:
                raise ConflictError(f"用户名已存在: {username}") from e

    async def room_exists(self, room_id: str) -> bool:
        await self._ensure_indexes()
        with _store_errors("room_exists"):
            return await self._rooms.find_one({"room_id": room_id}) is not None

    async def create_room(self, room_id: str) -> None:
        await self._ensure_indexes()
        with _store_errors("create_room"):
            try:
                await self._rooms.insert_one({"room_id": room_id})
            except DuplicateKeyError as e:
                raise ConflictError(f"房间已存在: {room_id}") from e
