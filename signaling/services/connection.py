"""
signaling.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接管理器 —— 维护所有在线连接，提供单播与批量投递能力。

每个 ``Connection`` 拥有独立的下行队列和写协程，慢客户端只会堆积自己的队列，
不会阻塞房间状态的修改。投递（``send`` / ``dispatch``）是同步入队操作，
因此同一连接上消息的到达顺序与路由器产生它们的顺序一致。

队列溢出或写入失败都视为传输失败：连接被中止，读循环随之结束并执行断线清理。
"""
from __future__ import annotations

import asyncio
import itertools
import uuid
from collections.abc import Iterable

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from signaling.core.logging import get_logger
from signaling.schemas.events import OutboundEvent
from signaling.services.room import Effect

logger = get_logger(__name__)

DEFAULT_DISPLAY_NAME: str = "Guest"

_sequence = itertools.count(1)


def new_connection_id() -> str:
    """生成进程内永不复用的连接 ID。"""
    return f"{next(_sequence):x}-{uuid.uuid4().hex[:12]}"


class Connection:
    """一条在线连接。

    Attributes:
        id: 服务端分配的连接 ID。
        display_name: 最近一次自报的昵称。
        current_room: 当前已入会的房间（只由 ``EventRouter`` 写入）。
        rooms: 该连接进入过等候队列或入会的房间，断线时逐一清理。
        outbox: 下行消息队列，``None`` 为写协程的结束信号。
        closed: 连接已被中止。
    """

    def __init__(
        self,
        conn_id: str | None = None,
        websocket: WebSocket | None = None,
        max_queue: int = 0,
    ) -> None:
        self.id: str = conn_id or new_connection_id()
        self.websocket = websocket
        self.display_name: str = DEFAULT_DISPLAY_NAME
        self.current_room: str | None = None
        self.rooms: set[str] = set()
        self.outbox: asyncio.Queue[OutboundEvent | None] = asyncio.Queue(maxsize=max_queue)
        self.closed: bool = False

    def enqueue(self, event: OutboundEvent) -> bool:
        """把消息放入下行队列，队列已满或连接已中止时返回 ``False``。"""
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def abort(self) -> None:
        """中止连接：丢弃未发送的消息并通知写协程退出。"""
        if self.closed:
            return
        self.closed = True
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(None)

    async def writer(self) -> None:
        """写协程：按顺序把下行队列中的消息发送到 WebSocket。

        发送失败时中止连接并返回，由端点负责后续清理。
        """
        if self.websocket is None:
            return
        while True:
            event = await self.outbox.get()
            if event is None:
                return
            try:
                await self.websocket.send_text(event.to_json())
            except Exception as e:
                logger.warning("下行发送失败，中止连接: %s", e)
                self.abort()
                return

    async def close(self, code: int = 1000) -> None:
        """关闭底层 WebSocket（如仍处于连接状态）。"""
        if self.websocket is None:
            return
        if (
            self.websocket.application_state != WebSocketState.CONNECTED
            or self.websocket.client_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug("关闭 WebSocket 失败: %s", e)


class ConnectionManager:
    """WebSocket 连接管理器（传输适配层）。

    Attributes:
        active_connections: 连接 ID 到 ``Connection`` 的映射。
        max_queue: 每个连接下行队列的上限。
    """

    def __init__(self, max_queue: int = 0) -> None:
        self.max_queue = max_queue
        self.active_connections: dict[str, Connection] = {}

    async def connect(self, websocket: WebSocket) -> Connection:
        """接受新连接、分配 ID 并发送握手消息。"""
        await websocket.accept()
        connection = Connection(websocket=websocket, max_queue=self.max_queue)
        self.register(connection)
        connection.enqueue(OutboundEvent.connected(connection.id))
        return connection

    def register(self, connection: Connection) -> None:
        self.active_connections[connection.id] = connection
        logger.info("连接已建立 | 当前在线: %d", len(self.active_connections))

    def disconnect(self, conn_id: str) -> None:
        """从在线列表移除连接。"""
        connection = self.active_connections.pop(conn_id, None)
        if connection is not None:
            connection.abort()
            logger.info("连接已断开 | 当前在线: %d", len(self.active_connections))

    def get(self, conn_id: str) -> Connection | None:
        return self.active_connections.get(conn_id)

    def send(self, conn_id: str, event: OutboundEvent) -> bool:
        """单播一条消息。目标不在线时静默丢弃并返回 ``False``。"""
        connection = self.active_connections.get(conn_id)
        if connection is None:
            logger.debug("目标连接不在线，丢弃 %s", event.kind)
            return False
        if connection.enqueue(event):
            return True
        if not connection.closed:
            logger.warning("下行队列已满，中止连接 | target=%s", conn_id)
            connection.abort()
        return False

    def dispatch(self, effects: Iterable[Effect]) -> None:
        """按顺序投递一组 ``Effect``。"""
        for target, event in effects:
            self.send(target, event)

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self.active_connections)
