"""
chatrelay.api.relay_ws
~~~~~~~~~~~~~~~~~~~~~~

WebSocket 中继端点 —— 传输适配层。

提供 ``/`` 与 ``/ws`` 两个等价端点。每条连接:
  1. 接受连接，分配 ``session_id`` 并写入日志请求 ID
  2. 逐帧读取文本帧，交给 ``MessageRouter`` 处理（处理完一帧再读下一帧）
  3. 非文本帧、非 JSON 对象、超长帧 → 记录告警并以对应关闭码断开
  4. 无论以何种方式结束，都执行一次 ``RelaySystem.disconnect``
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from chatrelay.core.errors import TransportError
from chatrelay.core.logging import get_logger, request_id_ctx_var
from chatrelay.schemas.envelopes import CLOSE_UNSUPPORTED_DATA
from chatrelay.services.relay_system import RelaySystem
from chatrelay.services.session import Session, new_session_id

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def _receive_loop(system: RelaySystem, session: Session) -> None:
    websocket = session.transport
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(code=message.get("code", 1000))
        text = message.get("text")
        if text is None:
            raise TransportError("只接受文本帧", close_code=CLOSE_UNSUPPORTED_DATA)
        await system.router.handle_frame(session, text)


async def _close(websocket: WebSocket, code: int) -> None:
    if websocket.application_state == WebSocketState.DISCONNECTED:
        return
    try:
        await websocket.close(code=code)
    except RuntimeError as e:
        # 对端已先一步断开
        logger.debug("关闭连接失败: %s", e)


@router.websocket("/")
@router.websocket("/ws")
async def relay_endpoint(websocket: WebSocket) -> None:
    """WebSocket 信令与聊天中继端点。

    消息协议见 ``chatrelay.schemas.envelopes``。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    system: RelaySystem = websocket.app.state.relay
    session_id = new_session_id()
    token = request_id_ctx_var.set(session_id)

    try:
        await websocket.accept()
        session = system.open_session(websocket, session_id=session_id)
        logger.info("新连接 | client=%s", websocket.client)

        try:
            await _receive_loop(system, session)
        except WebSocketDisconnect as e:
            logger.debug("客户端断开 | code=%s", e.code)
        except TransportError as e:
            logger.warning("帧格式错误，关闭连接 | close_code=%d | %s", e.close_code, e.message)
            session.close()
            await _close(websocket, e.close_code)
        except Exception as e:
            logger.error("WebSocket 异常: %s", e, exc_info=True)
            session.close()
            await _close(websocket, 1011)
        finally:
            system.disconnect(session)
    finally:
        request_id_ctx_var.reset(token)
