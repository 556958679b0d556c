"""
signaling.services.event_router
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

事件路由器 —— 解析每条入站消息，对照房间状态校验后产生下行消息。

处理流程（每条消息）:
  1. ``parse_event()`` 解码并校验 payload，格式错误记日志后丢弃
  2. 通过 ``RoomRegistry.mutate()`` 在房间锁内执行状态转换
  3. 锁释放后由 ``ConnectionManager.dispatch()`` 投递 ``Effect``

路由器是 ``Connection.current_room`` 的唯一写入者。一个连接同一时刻只能在一个房间入会，
向第二个房间 ``join-room`` 时会先隐式离开上一个房间。
"""
from __future__ import annotations

import hmac
from collections.abc import Awaitable, Callable
from typing import Any

from signaling.core.exceptions import MalformedEventError, UnknownEventError
from signaling.core.logging import get_logger
from signaling.core.rate_limit import WebSocketRateLimiter
from signaling.schemas.events import (
    ChatPayload,
    EmojiPayload,
    InboundKind,
    JoinRequestPayload,
    JoinRoomPayload,
    OutboundEvent,
    SignalPayload,
    parse_event,
)
from signaling.services.connection import Connection, ConnectionManager
from signaling.services.registry import RoomRegistry
from signaling.services.room import Effect

logger = get_logger(__name__)

HostGate = Callable[[Connection, JoinRoomPayload], bool]
Handler = Callable[[Connection, Any], Awaitable[None]]


def allow_any_host(connection: Connection, payload: JoinRoomPayload) -> bool:
    """默认策略：主持人身份完全自报。"""
    return True


def secret_host_gate(secret: str) -> HostGate:
    """要求 ``join-room`` 携带与 ``secret`` 一致的 token 才能成为主持人。"""

    def gate(connection: Connection, payload: JoinRoomPayload) -> bool:
        if payload.token is None:
            return False
        return hmac.compare_digest(payload.token.encode(), secret.encode())

    return gate


class EventRouter:
    """按连接分发入站事件。

    Attributes:
        registry: 房间注册表。
        manager: 连接管理器（传输适配层）。
        host_gate: 主持人身份校验钩子。
        chat_limiter: 聊天 / 表情限流器。
        allow_unadmitted_chat: 是否允许未入会连接广播聊天 / 表情。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        manager: ConnectionManager,
        *,
        host_gate: HostGate = allow_any_host,
        chat_limiter: WebSocketRateLimiter | None = None,
        allow_unadmitted_chat: bool = False,
    ) -> None:
        self.registry = registry
        self.manager = manager
        self.host_gate = host_gate
        self.chat_limiter = chat_limiter or WebSocketRateLimiter()
        self.allow_unadmitted_chat = allow_unadmitted_chat
        self._handlers: dict[InboundKind, Handler] = {
            "join-request": self._on_join_request,
            "join-room": self._on_join_room,
            "approve-all": self._on_approve_all,
            "signal": self._on_signal,
            "send-chat": self._on_chat,
            "send-emoji": self._on_emoji,
            "leave-room": self._on_leave_room,
        }

    async def handle(self, connection: Connection, raw: str | bytes) -> None:
        """处理一帧入站消息。任何错误都只记录日志，不影响连接。"""
        try:
            event = parse_event(raw)
        except UnknownEventError as e:
            logger.warning("未知消息类型，丢弃: %s", e.kind)
            return
        except MalformedEventError as e:
            logger.warning("消息格式错误，丢弃 | kind=%s | %s", e.kind, e.reason)
            return

        handler = self._handlers[event.kind]
        try:
            await handler(connection, event.payload)
        except Exception as e:
            logger.error("处理 %s 时出现异常: %s", event.kind, e, exc_info=True)

    async def disconnect(self, connection: Connection) -> None:
        """连接关闭后的清理：离开所有涉及的房间并移出在线列表。

        房间已被并发销毁时对应的清理为空操作。
        """
        for room in list(connection.rooms):
            await self._leave(connection, room)
        self.chat_limiter.remove_client(connection.id)
        self.manager.disconnect(connection.id)

    async def end_room(self, room_name: str) -> None:
        """管理接口：强制结束房间并通知所有成员与等候者。幂等。"""
        effects = await self.registry.end(room_name)
        self._deliver(room_name, effects)

    # ── 事件处理 ──────────────────────────────────────────────────────

    async def _on_join_request(self, connection: Connection, payload: JoinRequestPayload) -> None:
        if connection.current_room == payload.room:
            logger.debug("已入会连接重复申请，忽略 | room=%s", payload.room)
            return
        name = payload.user_name or connection.display_name
        connection.display_name = name
        connection.rooms.add(payload.room)
        effects = await self.registry.mutate(
            payload.room,
            lambda room: room.join_request(connection.id, name),
            create=True,
        )
        self._deliver(payload.room, effects)

    async def _on_join_room(self, connection: Connection, payload: JoinRoomPayload) -> None:
        as_host = payload.host
        if as_host and not self.host_gate(connection, payload):
            logger.warning("主持人身份校验失败，按访客入会 | room=%s", payload.room)
            as_host = False

        name = payload.user_name or connection.display_name
        connection.display_name = name

        previous = connection.current_room
        if previous is not None and previous != payload.room:
            logger.info("切换房间，先离开 %s", previous)
            await self._leave(connection, previous)

        connection.rooms.add(payload.room)
        connection.current_room = payload.room
        effects = await self.registry.mutate(
            payload.room,
            lambda room: room.join_room(connection.id, name, as_host),
            create=True,
        )
        self._deliver(payload.room, effects)

    async def _on_approve_all(self, connection: Connection, room_name: str) -> None:
        effects = await self.registry.mutate(
            room_name, lambda room: room.approve_all(connection.id),
        )
        self._deliver(room_name, effects)

    async def _on_signal(self, connection: Connection, payload: SignalPayload) -> None:
        delivered = self.manager.send(payload.to, OutboundEvent.signal(connection.id, payload.data))
        if not delivered:
            logger.debug("信令目标不可达，丢弃")

    async def _on_chat(self, connection: Connection, payload: ChatPayload) -> None:
        if not self._allow_chat(connection):
            return
        effects = await self.registry.mutate(
            payload.room,
            lambda room: room.chat(
                connection.id, payload.message, allow_unadmitted=self.allow_unadmitted_chat,
            ),
        )
        self._deliver(payload.room, effects)

    async def _on_emoji(self, connection: Connection, payload: EmojiPayload) -> None:
        if not self._allow_chat(connection):
            return
        effects = await self.registry.mutate(
            payload.room,
            lambda room: room.emoji(
                connection.id, payload.emoji, allow_unadmitted=self.allow_unadmitted_chat,
            ),
        )
        self._deliver(payload.room, effects)

    async def _on_leave_room(self, connection: Connection, room_name: str) -> None:
        await self._leave(connection, room_name)

    # ── 内部工具 ──────────────────────────────────────────────────────

    async def _leave(self, connection: Connection, room_name: str) -> None:
        connection.rooms.discard(room_name)
        if connection.current_room == room_name:
            connection.current_room = None
        effects = await self.registry.mutate(
            room_name, lambda room: room.leave(connection.id),
        )
        self._deliver(room_name, effects)

    def _allow_chat(self, connection: Connection) -> bool:
        if self.chat_limiter.is_allowed(connection.id):
            return True
        logger.debug("聊天 / 表情发送过快，丢弃")
        return False

    def _deliver(self, room_name: str, effects: list[Effect]) -> None:
        """投递 ``Effect``；收到 ``meeting-ended`` 的连接同时解除与该房间的关联。"""
        self.manager.dispatch(effects)
        for target, event in effects:
            if event.kind != "meeting-ended":
                continue
            member = self.manager.get(target)
            if member is None:
                continue
            member.rooms.discard(room_name)
            if member.current_room == room_name:
                member.current_room = None
