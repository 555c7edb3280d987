"""
chatrelay.schemas
~~~~~~~~~~~~~~~~~
Pydantic schemas: WebSocket envelopes and REST responses.
"""
from chatrelay.schemas.api_response import ApiResponse
from chatrelay.schemas.rooms import (
    ChatMessageData,
    HistoryResponseData,
    RoomInfoData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
