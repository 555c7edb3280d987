"""
chatrelay.core.errors
~~~~~~~~~~~~~~~~~~~~~

中继业务异常体系。

除 ``TransportError`` 外，所有 ``RelayError`` 都只回复给触发它的连接，
以 ``{"type": "error", "code": ..., "message": ...}`` 信封的形式下发。
``TransportError`` 表示帧本身不可用，由传输层直接关闭连接。
"""
from __future__ import annotations


class RelayError(Exception):
    """所有中继异常的基类。

    Attributes:
        code: 下发给客户端的机器可读错误码。
        message: 人类可读的错误描述。
    """

    code: str = "relay-error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class RelayValidationError(RelayError):
    """信封字段缺失或为空。"""

    code = "validation-error"


class UnknownEnvelopeError(RelayError):
    """无法识别的信封类型。"""

    code = "unknown-type"


class InvalidStateError(RelayError):
    """当前会话状态不允许该操作。"""

    code = "invalid-state"


class WrongRoomError(RelayError):
    """信封中的 room_id 与会话所在房间不一致。"""

    code = "wrong-room"


class UsernameNotFoundError(RelayError):
    code = "username-not-found"


class ConflictError(RelayError):
    """用户名或房间 ID 已存在。"""

    code = "conflict"


class RateLimitedError(RelayError):
    code = "rate-limited"


class PersistenceError(RelayError):
    """存储不可用或写入失败。不会自动重试。"""

    code = "persistence-error"


class TransportError(RelayError):
    """帧格式错误，连接需要被关闭。

    Attributes:
        close_code: 关闭连接时使用的 WebSocket 关闭码。
    """

    code = "transport-error"

    def __init__(self, message: str = "", close_code: int = 1007) -> None:
        super().__init__(message)
        self.close_code = close_code
