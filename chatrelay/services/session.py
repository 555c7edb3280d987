"""
chatrelay.services.session
~~~~~~~~~~~~~~~~~~~~~~~~~~

连接会话 —— 每条 WebSocket 连接对应一个 ``Session``。

会话记录客户端身份（用户名）、当前所在房间，以及向该连接写出信封的通道。
会话状态由这两个字段推导:

  - ``ANONYMOUS``   尚未登记用户名
  - ``IDENTIFIED``  已登记用户名，不在任何房间
  - ``IN_ROOM``     已进入某个房间

写出通道是一个有界队列加一个专属写协程：``send`` 只负责入队，
真正的 ``send_text`` 由写协程逐条执行。对端迟迟不读取时，
只有它自己的队列会堆积；队列写满或单次写出超时，该会话即被关闭。
"""
from __future__ import annotations

import asyncio
import json
import uuid
from enum import Enum
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from chatrelay.core.logging import get_logger

logger = get_logger(__name__)


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    IDENTIFIED = "identified"
    IN_ROOM = "in-room"


def new_session_id() -> str:
    return f"ws-{uuid.uuid4().hex[:8]}"


class Session:
    """单条连接的会话状态。

    ``room_id`` 只应由 ``RoomRegistry`` 修改，保证会话与房间成员表一致。

    Attributes:
        session_id: 服务端分配的连接标识，同时作为日志请求 ID。
        transport: 底层 WebSocket 连接。
        username: 已登记的用户名。
        room_id: 当前所在房间。
        send_timeout: 单个帧写出的超时时间（秒）。
    """

    def __init__(
        self,
        transport: WebSocket,
        session_id: str | None = None,
        *,
        send_timeout: float = 5.0,
        max_pending: int = 256,
    ) -> None:
        self.session_id = session_id or new_session_id()
        self.transport = transport
        self.username: str | None = None
        self.room_id: str | None = None
        self.send_timeout = send_timeout
        self._closed = False
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._writer: asyncio.Task[None] | None = None

    @property
    def state(self) -> SessionState:
        if self.room_id is not None:
            return SessionState.IN_ROOM
        if self.username is not None:
            return SessionState.IDENTIFIED
        return SessionState.ANONYMOUS

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_writable(self) -> bool:
        """连接当前是否可写（未关闭且双方状态均为 CONNECTED）。"""
        return (
            not self._closed
            and self.transport.client_state == WebSocketState.CONNECTED
            and self.transport.application_state == WebSocketState.CONNECTED
        )

    def send(self, envelope: dict[str, Any]) -> bool:
        """序列化信封并放入写出队列，不等待实际写出。

        Returns:
            是否成功入队。会话已关闭或队列已满时返回 ``False``，
            队列已满时会话随即被关闭。
        """
        if self._closed:
            return False
        text = json.dumps(envelope, ensure_ascii=False)
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(
                "写出队列已满，关闭会话 | session=%s | 积压: %d",
                self.session_id, self._outbox.qsize(),
            )
            self._abandon()
            return False
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(
                self._write_loop(), name=f"writer-{self.session_id}",
            )
        return True

    async def _write_loop(self) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await asyncio.wait_for(self.transport.send_text(text), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "写出超时，关闭会话 | session=%s | timeout=%.1fs",
                    self.session_id, self.send_timeout,
                )
                self._abandon()
                return
            except Exception as e:
                logger.warning("写出失败，关闭会话 | session=%s | %s", self.session_id, e)
                self._abandon()
                return
            finally:
                self._outbox.task_done()

    def _abandon(self) -> None:
        """标记关闭并丢弃所有未写出的帧。"""
        self._closed = True
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._outbox.task_done()

    async def drain(self) -> None:
        """等待已入队的帧全部写出（或会话被关闭）。"""
        if self._closed:
            return
        await self._outbox.join()

    def close(self) -> None:
        """关闭会话：之后的广播会跳过它，未写出的帧被丢弃。"""
        self._abandon()
        if self._writer is not None and self._writer is not asyncio.current_task():
            self._writer.cancel()

    def __repr__(self) -> str:
        return (
            f"Session(id={self.session_id!r}, username={self.username!r}, "
            f"room_id={self.room_id!r}, state={self.state.value})"
        )
