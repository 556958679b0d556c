"""
tests.test_ws
~~~~~~~~~~~~~

WebSocket 端点测试 —— 直接驱动 ``websocket_signaling_endpoint``，
覆盖读写协程的退出路径与随后的断线清理。

WebSocket 通过 mock 替代，入站帧按脚本依次返回，脚本用完后读协程一直阻塞。
"""
from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from conftest import drain, frame, kinds
from signaling.api.ws import websocket_signaling_endpoint
from signaling.services.connection import Connection
from signaling.services.event_router import EventRouter

Connect = Callable[[str], Connection]


def scripted_websocket(router: EventRouter, messages: list[dict[str, Any]]) -> MagicMock:
    script = list(messages)

    async def receive() -> dict[str, Any]:
        if script:
            return script.pop(0)
        await asyncio.Event().wait()
        return {"type": "websocket.disconnect"}

    websocket = MagicMock()
    websocket.app.state.event_router = router
    websocket.application_state = WebSocketState.CONNECTED
    websocket.client_state = WebSocketState.CONNECTED
    websocket.accept = AsyncMock()
    websocket.receive = AsyncMock(side_effect=receive)
    websocket.send_text = AsyncMock()
    websocket.close = AsyncMock()
    return websocket


def text(kind: str, payload: Any = None) -> dict[str, Any]:
    return {"type": "websocket.receive", "text": frame(kind, payload)}


def greeted_id(websocket: MagicMock) -> str:
    greeting = json.loads(websocket.send_text.call_args_list[0].args[0])
    assert greeting["kind"] == "connected"
    return greeting["payload"]["id"]


async def hosted_room(event_router: EventRouter, connect: Connect) -> Connection:
    host = connect("H")
    await event_router.handle(host, frame("join-room", {"room": "R", "userName": "Alice", "host": True}))
    drain(host)
    return host


class TestEndpoint:
    """端点在各种退出路径下都会完成断线清理。"""

    @pytest.mark.asyncio
    async def test_send_failure_triggers_cleanup(self, event_router: EventRouter, connect: Connect) -> None:
        """下行发送失败 → 写协程退出 → 读协程被取消 → 访客从房间中移除。"""
        host = await hosted_room(event_router, connect)
        websocket = scripted_websocket(
            event_router,
            [text("join-room", {"room": "R", "userName": "Bob", "host": False})],
        )
        # 握手成功，发送 peers 时连接已断
        websocket.send_text.side_effect = [None, RuntimeError("connection reset")]

        await asyncio.wait_for(websocket_signaling_endpoint(websocket), timeout=5)

        guest_id = greeted_id(websocket)
        assert websocket.send_text.await_count == 2
        assert kinds(drain(host)) == ["peer-joined", "waiting-user", "peer-left", "waiting-user"]

        room = event_router.registry.get("R")
        assert guest_id not in room.admitted
        assert list(room.admitted) == ["H"]
        assert event_router.manager.get(guest_id) is None
        assert event_router.manager.online_count == 1
        websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_client_disconnect_triggers_cleanup(self, event_router: EventRouter, connect: Connect) -> None:
        host = await hosted_room(event_router, connect)
        websocket = scripted_websocket(
            event_router,
            [
                text("join-room", {"room": "R", "userName": "Bob", "host": False}),
                {"type": "websocket.disconnect", "code": 1000},
            ],
        )

        await asyncio.wait_for(websocket_signaling_endpoint(websocket), timeout=5)

        events = drain(host)
        assert kinds(events) == ["peer-joined", "waiting-user", "peer-left", "waiting-user"]
        guest_id = events[0].payload["id"]
        assert events[2].payload == {"id": guest_id}
        assert guest_id not in event_router.registry.get("R").admitted
        assert event_router.manager.online_count == 1

    @pytest.mark.asyncio
    async def test_host_send_failure_ends_meeting(self, event_router: EventRouter, connect: Connect) -> None:
        guest = connect("G1")
        websocket = scripted_websocket(
            event_router,
            [text("join-room", {"room": "R", "userName": "Alice", "host": True})],
        )
        await event_router.handle(guest, frame("join-request", {"room": "R", "userName": "Bob"}))
        websocket.send_text.side_effect = [None, RuntimeError("connection reset")]

        await asyncio.wait_for(websocket_signaling_endpoint(websocket), timeout=5)

        assert kinds(drain(guest)) == ["meeting-ended"]
        assert "R" not in event_router.registry
        assert guest.rooms == set()
