"""
chatrelay.schemas.envelopes
~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 信封模型 —— 入站帧的解码与校验、出站信封的构造。

每个帧是一个 UTF-8 JSON 对象，以 ``type`` 字段区分种类。注意历史原因，
房间类请求使用 ``roomId``，聊天与信令消息使用 ``room_id``。

信令消息（offer / answer / ice-candidate）只校验必需字段存在，
转发时使用客户端发来的原始对象，服务端不解释其内容。
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
)
from pydantic import ValidationError as PydanticValidationError

from chatrelay.core.errors import (
    RelayError,
    RelayValidationError,
    TransportError,
    UnknownEnvelopeError,
)
from chatrelay.db.gateway import ChatMessage


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("内容不能为空")
    return value


# 标识符（用户名、房间 ID）去掉首尾空白；消息正文保持原样，仅拒绝全空白
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
MessageText = Annotated[str, AfterValidator(_require_text)]

# WebSocket 关闭码
CLOSE_UNSUPPORTED_DATA = 1003
CLOSE_INVALID_PAYLOAD = 1007
CLOSE_MESSAGE_TOO_BIG = 1009


class _Inbound(BaseModel):
    """入站信封基类。未声明的字段保留，便于原样转发。"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ── 身份 ──────────────────────────────────────────────────────────────

class CheckUsername(_Inbound):
    type: Literal["check-username"]
    username: NonEmptyStr


class CreateUsername(_Inbound):
    type: Literal["create-username"]
    username: NonEmptyStr


class Identify(_Inbound):
    """以已注册的用户名登录（用户名即凭证，不做额外校验）。"""

    type: Literal["identify"]
    username: NonEmptyStr


# ── 房间 ──────────────────────────────────────────────────────────────

class JoinRoom(_Inbound):
    type: Literal["join-room"]
    room_id: NonEmptyStr = Field(..., alias="roomId")


class CreateRoom(_Inbound):
    type: Literal["create-room"]
    room_id: NonEmptyStr = Field(..., alias="roomId")


class EnterRoom(_Inbound):
    type: Literal["enter-room"]
    room_id: NonEmptyStr = Field(..., alias="roomId")


class LeaveRoom(_Inbound):
    type: Literal["leave-room"]


# ── 聊天与信令 ────────────────────────────────────────────────────────

class ChatMessageIn(_Inbound):
    type: Literal["message"]
    room_id: NonEmptyStr
    content: MessageText
    username: NonEmptyStr | None = None


class _Signal(_Inbound):
    username: str | None = None
    room_id: str | None = None


class Offer(_Signal):
    type: Literal["offer"]
    offer: Any = Field(...)


class Answer(_Signal):
    type: Literal["answer"]
    answer: Any = Field(...)


class IceCandidate(_Signal):
    type: Literal["ice-candidate"]
    candidate: Any = Field(...)


InboundEnvelope = Annotated[
    Union[
        CheckUsername,
        CreateUsername,
        Identify,
        JoinRoom,
        CreateRoom,
        EnterRoom,
        LeaveRoom,
        ChatMessageIn,
        Offer,
        Answer,
        IceCandidate,
    ],
    Field(discriminator="type"),
]

_ENVELOPE_ADAPTER: TypeAdapter[InboundEnvelope] = TypeAdapter(InboundEnvelope)

KNOWN_TYPES: frozenset[str] = frozenset({
    "check-username",
    "create-username",
    "identify",
    "join-room",
    "create-room",
    "enter-room",
    "leave-room",
    "message",
    "offer",
    "answer",
    "ice-candidate",
})

SIGNAL_TYPES: frozenset[str] = frozenset({"offer", "answer", "ice-candidate"})


def decode_frame(raw: str, max_bytes: int) -> dict[str, Any]:
    """把一个文本帧解码为 JSON 对象。

    Raises:
        TransportError: 帧过大、不是合法 JSON，或顶层不是对象。
    """
    if len(raw.encode("utf-8")) > max_bytes:
        raise TransportError(f"帧超过 {max_bytes} 字节", close_code=CLOSE_MESSAGE_TOO_BIG)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TransportError(f"无法解析 JSON: {e.msg}", close_code=CLOSE_INVALID_PAYLOAD) from e
    if not isinstance(data, dict):
        raise TransportError("帧必须是 JSON 对象", close_code=CLOSE_INVALID_PAYLOAD)
    return data


def parse_envelope(data: dict[str, Any]) -> InboundEnvelope:
    """按 ``type`` 校验入站信封。

    Raises:
        UnknownEnvelopeError: ``type`` 缺失或无法识别。
        RelayValidationError: 必需字段缺失或为空。
    """
    kind = data.get("type")
    if not isinstance(kind, str) or kind not in KNOWN_TYPES:
        raise UnknownEnvelopeError(f"未知的消息类型: {kind!r}")
    try:
        return _ENVELOPE_ADAPTER.validate_python(data)
    except PydanticValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0])
            for err in e.errors()
        )
        raise RelayValidationError(f"字段校验失败: {fields}") from e


# ── 出站信封 ──────────────────────────────────────────────────────────

def error_envelope(exc: RelayError, request: str | None = None) -> dict[str, Any]:
    """把业务异常转换为错误信封。"""
    return {
        "type": "error",
        "code": exc.code,
        "message": exc.message,
        "request": request,
    }


def history_envelope(messages: list[ChatMessage]) -> dict[str, Any]:
    return {
        "type": "message-history",
        "messages": [msg.to_wire() for msg in messages],
    }


def chat_envelope(message: ChatMessage) -> dict[str, Any]:
    """聊天广播信封（不含时间戳，与客户端发送的形状一致）。"""
    return {
        "type": "message",
        "room_id": message.room_id,
        "username": message.username,
        "content": message.content,
    }
