"""
signaling.api.ws
~~~~~~~~~~~~~~~~

WebSocket 信令端点 —— 传输适配层的入口。

每个连接运行两个协程:
  - 读协程：逐帧读取入站消息，交给 ``EventRouter`` 处理
  - 写协程：按顺序发送该连接下行队列中的消息

任一协程结束（客户端断开、发送失败、队列溢出）即取消另一个，
随后执行断线清理，把连接从它涉及的所有房间中移除。
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from signaling.core.logging import conn_id_ctx_var, get_logger
from signaling.services.connection import Connection
from signaling.services.event_router import EventRouter

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def _receive_loop(websocket: WebSocket, connection: Connection, event_router: EventRouter) -> None:
    """读循环：一次处理一帧，直到客户端断开。"""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await event_router.handle(connection, raw)
    except WebSocketDisconnect:
        pass  # 正常断开


@router.websocket("/ws")
async def websocket_signaling_endpoint(websocket: WebSocket) -> None:
    """WebSocket 信令端点。

    连接建立后服务端先下发 ``connected {id}``，之后双方以
    ``{"kind": ..., "payload": ...}`` 形式的 JSON 文本帧通信。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    event_router: EventRouter = websocket.app.state.event_router
    connection = await event_router.manager.connect(websocket)
    token = conn_id_ctx_var.set(connection.id)

    try:
        logger.info("客户端已连接")
        reader = asyncio.create_task(_receive_loop(websocket, connection, event_router))
        writer = asyncio.create_task(connection.writer())
        try:
            done, _ = await asyncio.wait(
                {reader, writer}, return_when=asyncio.FIRST_COMPLETED,
            )
            for task in done:
                if task.exception() is not None:
                    logger.warning("连接异常结束: %s", task.exception())
        finally:
            for task in (reader, writer):
                task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)
            await event_router.disconnect(connection)
            await connection.close()
            logger.info("客户端已断开")
    finally:
        conn_id_ctx_var.reset(token)
