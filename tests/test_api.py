"""
tests.test_api
~~~~~~~~~~~~~~

HTTP 管理接口与 WebSocket 端点集成测试（FastAPI ``TestClient``）。

``TestClient`` 需以上下文管理器方式使用，以便触发 lifespan 并让 HTTP 请求与
WebSocket 会话共享同一个事件循环。
"""
from __future__ import annotations

from fastapi.testclient import TestClient

from signaling.main import app


def test_health() -> None:
    with TestClient(app) as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_end_unknown_room_is_still_success() -> None:
    with TestClient(app) as client:
        resp = client.get("/endRoom", params={"room": "nobody-here"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True}


def test_end_room_requires_room() -> None:
    with TestClient(app) as client:
        resp = client.get("/endRoom")

    assert resp.status_code == 422


def test_room_info_not_found() -> None:
    with TestClient(app) as client:
        resp = client.get("/api/rooms/nope")

    assert resp.status_code == 404
    body = resp.json()
    assert body["code"] == 404
    assert body["data"] is None


def test_websocket_meeting_flow() -> None:
    """主持人入会 → 访客排队 → 查看房间 → 管理员结束会议。"""
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as host:
            hello = host.receive_json()
            assert hello["kind"] == "connected"
            host_id = hello["payload"]["id"]

            host.send_json({"kind": "join-room", "payload": {"room": "R", "userName": "Alice", "host": True}})
            assert host.receive_json() == {"kind": "peers", "payload": []}
            assert host.receive_json() == {"kind": "waiting-user", "payload": []}

            with client.websocket_connect("/ws") as guest:
                guest_id = guest.receive_json()["payload"]["id"]
                assert guest_id != host_id

                # 格式错误的帧被丢弃，连接保持可用
                guest.send_text("definitely not json")
                guest.send_json({"kind": "join-request", "payload": {"room": "R", "userName": "Bob"}})
                assert host.receive_json() == {
                    "kind": "waiting-user",
                    "payload": [{"id": guest_id, "name": "Bob"}],
                }

                rooms = client.get("/api/rooms").json()
                assert rooms["code"] == 200
                assert rooms["data"] == [
                    {"room": "R", "host": host_id, "participants": 1, "waiting": 1},
                ]

                resp = client.get("/endRoom", params={"room": "R"})
                assert resp.json() == {"success": True}

                assert host.receive_json() == {"kind": "meeting-ended", "payload": None}
                assert guest.receive_json() == {"kind": "meeting-ended", "payload": None}

        assert client.get("/api/rooms").json()["data"] == []


def test_websocket_signal_relay() -> None:
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            alice_id = alice.receive_json()["payload"]["id"]
            bob_id = bob.receive_json()["payload"]["id"]

            alice.send_json({"kind": "signal", "payload": {"to": bob_id, "data": {"candidate": "c1"}}})

            assert bob.receive_json() == {
                "kind": "signal",
                "payload": {"from": alice_id, "data": {"candidate": "c1"}},
            }
