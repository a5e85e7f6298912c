"""Tests for the WebSocket relay endpoint and HTTP routes."""
from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from meshcall.main import app


def _wait_for_members(client: TestClient, room_id: str, count: int) -> list[str]:
    for _ in range(100):
        body = client.get(f"/api/rooms/{room_id}").json()
        if body["count"] == count:
            return body["members"]
        time.sleep(0.01)
    raise AssertionError(f"room {room_id} never reached {count} members")


@pytest.mark.asyncio
async def test_health_endpoint() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/health")
        head = await client.head("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert head.status_code == 200


@pytest.mark.asyncio
async def test_unknown_room_is_empty() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/rooms/nowhere")

    assert response.json() == {"room_id": "nowhere", "members": [], "count": 0}


def test_relay_round_trip_between_two_clients():
    client = TestClient(app)

    with client.websocket_connect("/ws") as ws_a:
        hello_a = ws_a.receive_json()
        assert hello_a["event"] == "connected"
        alice_id = hello_a["data"]["id"]
        ws_a.send_json({"event": "join-room", "data": {"roomId": "ws-room", "username": "alice"}})
        _wait_for_members(client, "ws-room", 1)

        with client.websocket_connect("/ws") as ws_b:
            bob_id = ws_b.receive_json()["data"]["id"]
            assert bob_id != alice_id
            ws_b.send_json({"event": "join-room", "data": {"roomId": "ws-room", "username": "bob"}})

            joined = ws_a.receive_json()
            assert joined == {"event": "user-joined", "data": {"id": bob_id, "username": "bob"}}

            offer = {"sdp": {"type": "offer", "sdp": "v=0"}}
            ws_a.send_json({"event": "signal", "data": {"to": bob_id, "data": offer}})
            assert ws_b.receive_json() == {"event": "signal", "data": {"from": alice_id, "data": offer}}

            ws_b.send_text("{not json")
            ws_b.send_json({"event": "chat-message", "data": {"roomId": "ws-room", "username": "bob", "message": "hi"}})
            assert ws_a.receive_json() == {"event": "chat-message", "data": {"username": "bob", "message": "hi"}}

        left = ws_a.receive_json()
        assert left == {"event": "user-left", "data": bob_id}
        assert _wait_for_members(client, "ws-room", 1) == [alice_id]


def test_client_supplied_sender_is_overwritten():
    client = TestClient(app)

    with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
        alice_id = ws_a.receive_json()["data"]["id"]
        bob_id = ws_b.receive_json()["data"]["id"]

        ws_a.send_json({"event": "signal", "data": {"to": bob_id, "from": "mallory", "data": {"candidate": {}}}})

        delivered = ws_b.receive_json()
        assert delivered["data"]["from"] == alice_id
