"""
chatrelay.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~~~

房间 REST 接口的 Pydantic 响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class RoomInfoData(BaseModel):
    """房间摘要信息数据类型"""

    room_id: str = Field(..., description="房间唯一标识")
    online_count: int = Field(..., description="当前在线连接数")


class ChatMessageData(BaseModel):
    """单条聊天消息。"""

    room_id: str = Field(..., description="房间 ID")
    username: str = Field(..., description="发送者用户名")
    content: str = Field(..., description="消息文本")
    timestamp: str = Field(..., description="写入时间（ISO 格式）")


class HistoryResponseData(BaseModel):
    """聊天历史响应数据。"""

    room_id: str = Field(..., description="房间 ID")
    messages: list[ChatMessageData] = Field(..., description="消息列表")
    total: int = Field(..., description="房间消息总数")
