"""
chatrelay.db.gateway
~~~~~~~~~~~~~~~~~~~~

持久化网关契约 —— 消息路由层只依赖这里定义的接口，不关心具体存储。

三类持久化数据:
  - ``usernames``     用户名注册表（唯一、永久）
  - ``rooms``         房间 ID 注册表（唯一、永久）
  - ``chat_messages`` 聊天记录（按房间追加写，按写入顺序回放）

所有实现都必须保证：同一房间的写入串行化，时间戳在写入时由网关分配，
并且在同一房间内按插入顺序单调不减。
"""
from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """一条已持久化的聊天消息（不可变）。"""

    model_config = ConfigDict(frozen=True)

    room_id: str = Field(..., description="所属房间 ID")
    username: str = Field(..., description="发送者用户名（客户端自报）")
    content: str = Field(..., description="消息文本")
    timestamp: datetime = Field(..., description="写入时间（UTC，由网关分配）")

    def to_wire(self) -> dict:
        """转换为 ``message-history`` 中的单条记录。"""
        return {
            "room_id": self.room_id,
            "username": self.username,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


class PersistenceGateway(Protocol):
    """持久化网关接口。

    所有方法对调用方而言都是"同步等待结果"的协程；实现内部可以串行化写入，
    但不能阻塞其他房间的并发调用。失败时抛出 ``PersistenceError``。
    """

    async def append(self, room_id: str, username: str, content: str) -> ChatMessage:
        """追加一条聊天消息并返回带时间戳的记录。"""
        ...

    async def history(
        self, room_id: str, skip: int = 0, limit: int | None = None,
    ) -> list[ChatMessage]:
        """按写入顺序返回房间的聊天记录。"""
        ...

    async def count_messages(self, room_id: str) -> int:
        ...

    async def username_exists(self, username: str) -> bool:
        ...

    async def create_username(self, username: str) -> None:
        """注册用户名。重复时抛出 ``ConflictError``。"""
        ...

    async def room_exists(self, room_id: str) -> bool:
        ...

    async def create_room(self, room_id: str) -> None:
        """注册房间 ID。重复时抛出 ``ConflictError``。"""
        ...

    async def close(self) -> None:
        ...
