"""
chatrelay.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 维护 ``room_id → 在线会话集合`` 的映射，并负责房间内广播。

广播是扇出而不是队列：广播时不在线的会话会直接错过该消息。
聊天内容可以通过历史回放找回，信令消息则永久丢失。

所有成员变更（join / leave / ensure_room）和广播都在事件循环内同步完成，
中间没有 ``await``，因此相对其他连接的协程是原子的。广播只把信封放入
各成员自己的写出队列（见 ``Session.send``），实际写出由各会话的写协程完成。
房间创建后不会被删除，空房间保留到进程退出。
"""
from __future__ import annotations

from typing import Any

from chatrelay.core.logging import get_logger
from chatrelay.services.session import Session

logger = get_logger(__name__)


class RoomRegistry:
    """进程内房间注册表。

    Attributes:
        _rooms: 房间 ID 到会话集合的映射。
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[Session]] = {}

    def ensure_room(self, room_id: str) -> None:
        """登记一个（可能为空的）房间。"""
        self._rooms.setdefault(room_id, set())

    def join(self, room_id: str, session: Session) -> None:
        """把会话加入房间，房间不存在时自动创建。

        已在该房间内时为幂等操作；已在其他房间时先离开原房间。
        """
        if session.room_id == room_id and session in self._rooms.get(room_id, ()):
            return
        self.leave(session)
        self._rooms.setdefault(room_id, set()).add(session)
        session.room_id = room_id
        logger.info(
            "进入房间 | room=%s | user=%s | 在线: %d",
            room_id, session.username, len(self._rooms[room_id]),
        )

    def leave(self, session: Session) -> str | None:
        """把会话移出其所在房间。

        Returns:
            离开的房间 ID；会话不在任何房间时返回 ``None``。
        """
        room_id = session.room_id
        if room_id is None:
            return None
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(session)
        session.room_id = None
        logger.info(
            "离开房间 | room=%s | user=%s | 在线: %d",
            room_id, session.username, len(members or ()),
        )
        return room_id

    def members(self, room_id: str) -> frozenset[Session]:
        """房间成员的时间点快照。"""
        return frozenset(self._rooms.get(room_id, ()))

    def online_count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    def room_ids(self) -> list[str]:
        return sorted(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def broadcast(
        self,
        room_id: str,
        envelope: dict[str, Any],
        exclude: Session | None = None,
    ) -> int:
        """向房间内所有可写成员广播信封。

        只把信封放入各成员的写出队列，不等待任何 socket 写出，
        因此一个迟迟不读取的成员不会拖住发送者或其他成员。
        不可写的成员直接跳过；入队失败的成员已被会话自身关闭。

        Args:
            room_id: 目标房间。
            envelope: 待发送的信封。
            exclude: 不投递的会话（通常为发送者本人）。

        Returns:
            成功入队的会话数。
        """
        delivered = 0
        for session in self.members(room_id):
            if session is exclude or not session.is_writable:
                continue
            if session.send(envelope):
                delivered += 1
            else:
                logger.warning(
                    "广播跳过积压的连接 | room=%s | session=%s", room_id, session.session_id,
                )
        return delivered
