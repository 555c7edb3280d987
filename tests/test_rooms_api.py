"""
tests.test_rooms_api
~~~~~~~~~~~~~~~~~~~~

房间 REST 接口与健康检查测试。
"""
from __future__ import annotations

from fastapi.testclient import TestClient


def _seed_room(client: TestClient, room_id: str, contents: list[str]) -> None:
    """通过 WebSocket 建房并发送若干聊天消息。"""
    with client.websocket_connect("/") as ws:
        ws.send_json({"type": "create-username", "username": "seeder"})
        ws.receive_json()
        ws.send_json({"type": "create-room", "roomId": room_id})
        ws.receive_json()
        ws.send_json({"type": "enter-room", "roomId": room_id})
        ws.receive_json()
        ws.receive_json()
        for content in contents:
            ws.send_json({"type": "message", "room_id": room_id, "content": content})
            assert ws.receive_json()["content"] == content


def test_health(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["store"] == "memory"


def test_list_rooms(client: TestClient) -> None:
    _seed_room(client, "lobby", [])

    body = client.get("/api/rooms").json()

    assert body["code"] == 200
    assert body["data"] == [{"room_id": "lobby", "online_count": 0}]


def test_room_info_not_found(client: TestClient) -> None:
    resp = client.get("/api/rooms/missing")

    assert resp.status_code == 404
    assert resp.json()["code"] == 404
    assert resp.json()["data"] is None
    assert resp.json()["msg"] == "房间 missing 不存在"


def test_room_info(client: TestClient) -> None:
    _seed_room(client, "r1", [])

    body = client.get("/api/rooms/r1").json()

    assert body["data"] == {"room_id": "r1", "online_count": 0}


def test_history_pagination(client: TestClient) -> None:
    _seed_room(client, "r1", ["m0", "m1", "m2"])

    body = client.get("/api/rooms/r1/history", params={"skip": 1, "limit": 1}).json()

    data = body["data"]
    assert data["room_id"] == "r1"
    assert data["total"] == 3
    assert [m["content"] for m in data["messages"]] == ["m1"]
    assert data["messages"][0]["username"] == "seeder"


def test_history_limit_validated(client: TestClient) -> None:
    resp = client.get("/api/rooms/r1/history", params={"limit": 1000})

    assert resp.status_code == 422
