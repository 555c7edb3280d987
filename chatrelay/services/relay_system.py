"""
chatrelay.services.relay_system
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

中继系统 —— 把持久化网关、房间注册表和消息路由组装在一起。

在 FastAPI lifespan 中创建并挂载到 ``app.state.relay``，
WebSocket 端点和 REST 接口都通过它访问中继状态。
"""
from __future__ import annotations

from fastapi import WebSocket

from chatrelay.core.config import Settings
from chatrelay.core.logging import get_logger
from chatrelay.core.rate_limit import WebSocketRateLimiter
from chatrelay.db.gateway import PersistenceGateway
from chatrelay.schemas.rooms import RoomInfoData
from chatrelay.services.message_router import MessageRouter
from chatrelay.services.room_registry import RoomRegistry
from chatrelay.services.session import Session

logger = get_logger(__name__)


class RelaySystem:
    """中继系统（每个 worker 一个实例）。

    - ``open_session(websocket)``  → 为新连接创建会话
    - ``disconnect(session)``      → 连接断开后的清理（离开房间、清理限流记录）
    - ``room_info(room_id)``       → 房间摘要（供 REST 接口使用）

    Attributes:
        gateway: 持久化网关。
        registry: 房间注册表。
        limiter: 聊天消息限流器。
        router: 消息路由。
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        rate_limit_interval: float = 0.0,
        echo_signaling: bool = True,
        max_frame_bytes: int = 64 * 1024,
        send_timeout: float = 5.0,
        send_queue_size: int = 256,
    ) -> None:
        self.gateway = gateway
        self.send_timeout = send_timeout
        self.send_queue_size = send_queue_size
        self.registry = RoomRegistry()
        self.limiter = WebSocketRateLimiter(interval_seconds=rate_limit_interval)
        self.router = MessageRouter(
            gateway,
            self.registry,
            limiter=self.limiter,
            echo_signaling=echo_signaling,
            max_frame_bytes=max_frame_bytes,
        )

    @classmethod
    def from_settings(cls, gateway: PersistenceGateway, settings: Settings) -> RelaySystem:
        return cls(
            gateway,
            rate_limit_interval=settings.WS_RATE_LIMIT_INTERVAL,
            echo_signaling=settings.RELAY_ECHO_SIGNALING,
            max_frame_bytes=settings.WS_MAX_FRAME_BYTES,
            send_timeout=settings.WS_SEND_TIMEOUT,
            send_queue_size=settings.WS_SEND_QUEUE_SIZE,
        )

    def open_session(self, websocket: WebSocket, session_id: str | None = None) -> Session:
        return Session(
            websocket,
            session_id=session_id,
            send_timeout=self.send_timeout,
            max_pending=self.send_queue_size,
        )

    def disconnect(self, session: Session) -> None:
        """连接断开时调用且只调用一次。"""
        session.close()
        room_id = self.registry.leave(session)
        self.limiter.remove_client(session.session_id)
        if room_id is None:
            logger.info("连接已断开 | user=%s", session.username)
        else:
            logger.info(
                "连接已断开 | user=%s | room=%s | 剩余在线: %d",
                session.username, room_id, self.registry.online_count(room_id),
            )

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有已登记房间的摘要信息。"""
        return [
            RoomInfoData(room_id=room_id, online_count=self.registry.online_count(room_id))
            for room_id in self.registry.room_ids()
        ]

    async def room_info(self, room_id: str) -> RoomInfoData | None:
        """返回房间摘要；房间既不在线也未持久化时返回 ``None``。"""
        if room_id not in self.registry and not await self.gateway.room_exists(room_id):
            return None
        return RoomInfoData(room_id=room_id, online_count=self.registry.online_count(room_id))

    async def close(self) -> None:
        await self.gateway.close()
