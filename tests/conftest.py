"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 构造互相独立的注册表 / 连接管理器 / 事件路由器，
用不带 WebSocket 的 ``Connection`` 代替真实客户端，直接检查其下行队列。
"""
from __future__ import annotations

import json
import os
from collections.abc import Callable
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_RATE_LIMIT", "1000/second")  # 避免测试之间触发限流

from signaling.schemas.events import OutboundEvent  # noqa: E402
from signaling.services.connection import Connection, ConnectionManager  # noqa: E402
from signaling.services.event_router import EventRouter  # noqa: E402
from signaling.services.registry import RoomRegistry  # noqa: E402


def drain(connection: Connection) -> list[OutboundEvent]:
    """取出连接下行队列中的全部消息。"""
    events: list[OutboundEvent] = []
    while not connection.outbox.empty():
        event = connection.outbox.get_nowait()
        if event is not None:
            events.append(event)
    return events


def kinds(events: list[OutboundEvent]) -> list[str]:
    return [event.kind for event in events]


def frame(kind: str, payload: Any = None) -> str:
    """构造一帧入站 JSON 文本。"""
    return json.dumps({"kind": kind, "payload": payload})


def assert_invariants(registry: RoomRegistry) -> None:
    """检查所有房间的状态不变量。"""
    admitted_anywhere: set[str] = set()
    for name in list(registry._rooms):
        room = registry._rooms[name]
        assert not room.closed
        # 主持人一定是 is_host 的已入会成员
        if room.host is not None:
            assert room.admitted[room.host].is_host
        # 已入会与等候互斥
        waiting_ids = [w.conn_id for w in room.waiting]
        assert not set(waiting_ids) & set(room.admitted)
        assert len(waiting_ids) == len(set(waiting_ids))
        # 同一连接最多在一个房间入会
        assert not admitted_anywhere & set(room.admitted)
        admitted_anywhere |= set(room.admitted)
        # 最多一个主持人
        assert sum(1 for m in room.admitted.values() if m.is_host) <= 1
        # 空房间不应保留
        assert not room.is_empty


@pytest.fixture()
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture()
def manager() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture()
def event_router(registry: RoomRegistry, manager: ConnectionManager) -> EventRouter:
    return EventRouter(registry=registry, manager=manager)


@pytest.fixture()
def connect(manager: ConnectionManager) -> Callable[[str], Connection]:
    """返回一个工厂：按给定 ID 注册一条假连接。"""

    def _connect(conn_id: str) -> Connection:
        connection = Connection(conn_id)
        manager.register(connection)
        return connection

    return _connect
