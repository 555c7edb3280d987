"""
chatrelay.services.message_router
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息路由 —— 解码入站信封，按 ``type`` 分派到对应处理函数。

分派表:
  - ``check-username`` / ``create-username`` / ``identify``  → 身份登记
  - ``join-room`` / ``create-room``                          → 房间存在性检查与创建
  - ``enter-room`` / ``leave-room``                          → 进出房间（进入时回放历史）
  - ``message``                                              → 先持久化再广播
  - ``offer`` / ``answer`` / ``ice-candidate``               → 原样广播，不持久化

每个请求都有状态前置条件（见 ``SessionState``）。状态不符时一律回复
``invalid-state`` 错误信封，不产生其他副作用。
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from chatrelay.core.errors import (
    InvalidStateError,
    RateLimitedError,
    RelayError,
    TransportError,
    UsernameNotFoundError,
    WrongRoomError,
)
from chatrelay.core.logging import get_logger
from chatrelay.core.rate_limit import WebSocketRateLimiter
from chatrelay.db.gateway import PersistenceGateway
from chatrelay.schemas.envelopes import (
    ChatMessageIn,
    CheckUsername,
    CreateRoom,
    CreateUsername,
    EnterRoom,
    Identify,
    JoinRoom,
    LeaveRoom,
    chat_envelope,
    decode_frame,
    error_envelope,
    history_envelope,
    parse_envelope,
)
from chatrelay.services.room_registry import RoomRegistry
from chatrelay.services.session import Session, SessionState

logger = get_logger(__name__)

Handler = Callable[[Session, Any, dict[str, Any]], Awaitable[None]]

_IDENTIFIED_OR_IN_ROOM = (SessionState.IDENTIFIED, SessionState.IN_ROOM)


def _require(session: Session, *states: SessionState) -> None:
    if session.state not in states:
        raise InvalidStateError(f"当前状态 {session.state.value} 不允许该操作")


class MessageRouter:
    """按会话分派入站信封的路由器。

    同一会话的信封由传输层逐条交给 ``handle_frame``，处理完一条（包括其中的
    存储调用）才会读取下一条；不同会话之间并发执行。

    聊天消息在房间级的 ``asyncio.Lock`` 内完成"持久化 + 入队广播"，
    因此同一房间内广播顺序与写入完成顺序一致。进入房间时同样持有该锁，
    回放的历史与之后实时收到的消息之间既不重复也不遗漏。
    锁内只等待存储调用，从不等待任何 socket 写出（见 ``Session.send``）。

    Attributes:
        gateway: 持久化网关。
        registry: 房间注册表。
        limiter: 聊天消息限流器（为 None 时不限流）。
        echo_signaling: 信令消息是否回送给发送者本人。
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        registry: RoomRegistry,
        *,
        limiter: WebSocketRateLimiter | None = None,
        echo_signaling: bool = True,
        max_frame_bytes: int = 64 * 1024,
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.limiter = limiter
        self.echo_signaling = echo_signaling
        self.max_frame_bytes = max_frame_bytes
        self._chat_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._handlers: dict[str, Handler] = {
            "check-username": self._check_username,
            "create-username": self._create_username,
            "identify": self._identify,
            "join-room": self._join_room,
            "create-room": self._create_room,
            "enter-room": self._enter_room,
            "leave-room": self._leave_room,
            "message": self._chat_message,
            "offer": self._relay_signal,
            "answer": self._relay_signal,
            "ice-candidate": self._relay_signal,
        }

    async def handle_frame(self, session: Session, raw: str) -> None:
        """处理一个原始文本帧。

        Raises:
            TransportError: 帧无法解码，调用方应关闭连接。
        """
        data = decode_frame(raw, self.max_frame_bytes)
        await self.dispatch(session, data)

    async def dispatch(self, session: Session, data: dict[str, Any]) -> None:
        """校验并分派一个已解码的信封。业务异常以错误信封回复给该会话。"""
        kind = data.get("type") if isinstance(data.get("type"), str) else None
        try:
            envelope = parse_envelope(data)
            await self._handlers[envelope.type](session, envelope, data)
        except TransportError:
            raise
        except RelayError as e:
            logger.warning(
                "请求被拒绝 | type=%s | code=%s | state=%s | %s",
                kind, e.code, session.state.value, e.message,
            )
            session.send(error_envelope(e, request=kind))

    # ── 身份 ──────────────────────────────────────────────────────────

    async def _check_username(self, session: Session, envelope: CheckUsername, data: dict) -> None:
        _require(session, SessionState.ANONYMOUS)
        taken = await self.gateway.username_exists(envelope.username)
        session.send({"type": "username-taken" if taken else "username-available"})

    async def _create_username(self, session: Session, envelope: CreateUsername, data: dict) -> None:
        _require(session, SessionState.ANONYMOUS)
        await self.gateway.create_username(envelope.username)
        session.username = envelope.username
        logger.info("用户名已创建 | user=%s", envelope.username)
        session.send({"type": "user-created", "user": {"username": envelope.username}})

    async def _identify(self, session: Session, envelope: Identify, data: dict) -> None:
        _require(session, SessionState.ANONYMOUS)
        if not await self.gateway.username_exists(envelope.username):
            raise UsernameNotFoundError(f"用户名不存在: {envelope.username}")
        session.username = envelope.username
        session.send({"type": "identified", "user": {"username": envelope.username}})

    # ── 房间 ──────────────────────────────────────────────────────────

    async def _join_room(self, session: Session, envelope: JoinRoom, data: dict) -> None:
        """存在性检查；若请求的正是当前所在房间，再回复一份历史记录。"""
        _require(session, *_IDENTIFIED_OR_IN_ROOM)
        room_id = envelope.room_id
        if not await self.gateway.room_exists(room_id):
            session.send({"type": "room-not-found", "roomId": room_id})
            return
        session.send({"type": "room-exists", "roomId": room_id})
        if session.room_id == room_id:
            await self._send_history(session, room_id)

    async def _create_room(self, session: Session, envelope: CreateRoom, data: dict) -> None:
        _require(session, *_IDENTIFIED_OR_IN_ROOM)
        await self.gateway.create_room(envelope.room_id)
        self.registry.ensure_room(envelope.room_id)
        logger.info("房间已创建 | room=%s | by=%s", envelope.room_id, session.username)
        session.send({"type": "room-created", "roomId": envelope.room_id})

    async def _enter_room(self, session: Session, envelope: EnterRoom, data: dict) -> None:
        _require(session, *_IDENTIFIED_OR_IN_ROOM)
        room_id = envelope.room_id
        if not await self.gateway.room_exists(room_id):
            session.send({"type": "room-not-found", "roomId": room_id})
            return
        async with self._chat_locks[room_id]:
            self.registry.join(room_id, session)
            session.send({"type": "room-joined", "roomId": room_id})
            await self._send_history(session, room_id)

    async def _leave_room(self, session: Session, envelope: LeaveRoom, data: dict) -> None:
        _require(session, SessionState.IN_ROOM)
        room_id = self.registry.leave(session)
        session.send({"type": "room-left", "roomId": room_id})

    async def _send_history(self, session: Session, room_id: str) -> None:
        messages = await self.gateway.history(room_id)
        session.send(history_envelope(messages))

    # ── 聊天与信令 ────────────────────────────────────────────────────

    async def _chat_message(self, session: Session, envelope: ChatMessageIn, data: dict) -> None:
        """持久化成功后再广播（包括发送者本人）；持久化失败则不广播。"""
        _require(session, SessionState.IN_ROOM)
        if envelope.room_id != session.room_id:
            raise WrongRoomError(f"当前所在房间为 {session.room_id}")
        if self.limiter is not None and not self.limiter.is_allowed(session.session_id):
            raise RateLimitedError("您发送消息的速度太快啦，请慢一点~")

        username = envelope.username or session.username
        async with self._chat_locks[envelope.room_id]:
            message = await self.gateway.append(envelope.room_id, username, envelope.content)
            delivered = self.registry.broadcast(envelope.room_id, chat_envelope(message))
        logger.debug("聊天消息已广播 | room=%s | 投递: %d", envelope.room_id, delivered)

    async def _relay_signal(self, session: Session, envelope: Any, data: dict) -> None:
        """把 offer / answer / ice-candidate 原样转发给房间成员。"""
        _require(session, SessionState.IN_ROOM)
        if envelope.room_id is not None and envelope.room_id != session.room_id:
            raise WrongRoomError(f"当前所在房间为 {session.room_id}")
        exclude = None if self.echo_signaling else session
        delivered = self.registry.broadcast(session.room_id, data, exclude=exclude)
        logger.debug(
            "信令已转发 | type=%s | room=%s | 投递: %d", envelope.type, session.room_id, delivered,
        )
