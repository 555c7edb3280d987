"""
chatrelay.api.rooms
~~~~~~~~~~~~~~~~~~~

房间 REST 接口 —— 在线房间诊断 + 历史回看。

路由前缀 ``/api``。

端点:
  - ``GET  /rooms``                       → 获取在线房间列表
  - ``GET  /rooms/{room_id}``             → 获取房间详情
  - ``GET  /rooms/{room_id}/history``     → 获取聊天历史（分页）
"""
from fastapi import APIRouter, Depends, Query, Request

from chatrelay.api.deps import get_relay_system
from chatrelay.core.rate_limit import limiter
from chatrelay.schemas.api_response import ApiResponse
from chatrelay.schemas.rooms import ChatMessageData, HistoryResponseData, RoomInfoData
from chatrelay.services.relay_system import RelaySystem

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取在线房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, system: RelaySystem = Depends(get_relay_system)):
    """返回本进程内已登记的所有房间及其在线连接数。"""
    return ApiResponse.ok(data=system.list_rooms())


@router.get("/rooms/{room_id}", summary="获取房间详情", response_model=ApiResponse[RoomInfoData])
@limiter.limit("5/second")
async def room_info(request: Request, room_id: str, system: RelaySystem = Depends(get_relay_system)):
    """返回指定房间的在线人数。房间既不在线也未创建时返回 404。

    Args:
        room_id: 房间唯一标识。
    """
    info = await system.room_info(room_id)
    if info is None:
        return ApiResponse.not_found(f"房间 {room_id} ")
    return ApiResponse.ok(data=info)


@router.get(
    "/rooms/{room_id}/history",
    summary="获取聊天历史",
    response_model=ApiResponse[HistoryResponseData],
)
@limiter.limit("10/second")
async def get_history(
    request: Request,
    room_id: str,
    skip: int = Query(0, ge=0, description="跳过条数（分页偏移）"),
    limit: int = Query(100, ge=1, le=500, description="每页最大条数"),
    system: RelaySystem = Depends(get_relay_system),
):
    """获取指定房间的聊天记录（分页，按写入顺序正序）。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        room_id: 房间唯一标识。
        skip: 跳过条数（分页偏移）。
        limit: 每页最大条数（1-500）。
    """
    messages = await system.gateway.history(room_id, skip=skip, limit=limit)
    total = await system.gateway.count_messages(room_id)

    return ApiResponse.ok(
        data=HistoryResponseData(
            room_id=room_id,
            messages=[ChatMessageData(**msg.to_wire()) for msg in messages],
            total=total,
        ),
    )
