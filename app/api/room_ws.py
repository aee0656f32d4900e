"""
app.api.room_ws
~~~~~~~~~~~~~~~

WebSocket 实时协作接口 —— 多房间模式。

提供 ``/ws/room/{room_key}`` 端点，客户端通过房间 key 加入指定房间。
房间 key 不合法时在握手前直接拒绝（不注册）。每条连接由一个协程按到达顺序处理入站消息；
正常关闭与传输异常走同一条清理路径。

消息协议（JSON 文本帧）:
  - ``{"type": "JOIN", "username": ...}``            —— 进入房间，广播在线列表
  - ``{"type": "LEAVE", "username": ...}``           —— 离开房间，广播在线列表
  - ``{"documentId": ..., "content": ...}``          —— 文档更新，缓存 + 持久化 + 广播
  - 其他 JSON 对象                                    —— 原样转发给房间内其他成员
"""
from __future__ import annotations

import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.core.logging import get_logger, request_id_ctx_var
from app.services.collab_hub import CollabHub
from app.services.connection import Connection

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def _receive_frame(websocket: WebSocket) -> str | bytes:
    """读取下一帧（文本或二进制）；对端断开时抛出 ``WebSocketDisconnect``。"""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
    if message.get("text") is not None:
        return message["text"]
    return message.get("bytes") or b""


@router.websocket("/ws/room/{room_key}")
async def websocket_room_endpoint(websocket: WebSocket, room_key: str) -> None:
    """WebSocket 协作房间端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        room_key: 房间 key。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(ws_req_id)

    try:
        hub: CollabHub = websocket.app.state.collab_hub
        if not hub.is_valid_room_key(room_key):
            logger.warning("非法房间 key，拒绝连接 | room=%r", room_key)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        connection = Connection(websocket, session_id=uuid.uuid4().hex)
        await hub.connect(connection, room_key)

        try:
            while True:
                raw = await _receive_frame(websocket)
                await hub.handle_message(connection, raw)
        except WebSocketDisconnect as e:
            logger.info("连接已关闭 | room=%s | code=%s", room_key, e.code)
        except Exception as e:
            logger.error("WebSocket 传输异常: %s | room=%s", e, room_key, exc_info=True)
        finally:
            await hub.disconnect(connection)

    finally:
        request_id_ctx_var.reset(token)
