import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import app


@pytest.fixture
def client():
    return TestClient(app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_and_fetch_room(client):
    created = client.post("/api/rooms", json={"game_type": "drawing", "is_public": True})
    assert created.status_code == 201
    code = created.json()["room_code"]

    room = client.get(f"/api/rooms/{code}")
    assert room.status_code == 200
    assert room.json()["game_type"] == "drawing"
    assert room.json()["player_count"] == 0

    public = client.get("/api/rooms/public").json()["rooms"]
    assert code in [r["room_code"] for r in public]


def test_private_rooms_are_not_listed(client):
    code = client.post("/api/rooms", json={"game_type": "adventure", "is_public": False}).json()["room_code"]
    public = client.get("/api/rooms/public").json()["rooms"]
    assert code not in [r["room_code"] for r in public]


def test_missing_room_is_404(client):
    assert client.get("/api/rooms/ZZZZZZ").status_code == 404


def test_websocket_connect_and_ping(client):
    code = client.post("/api/rooms", json={"game_type": "drawing"}).json()["room_code"]
    with client.websocket_connect(f"/ws/{code}?username=Ann") as ws:
        seen = []
        ws.send_json({"type": "ping"})
        while "pong" not in seen:
            seen.append(ws.receive_json()["type"])
        assert "connected" in seen or "playerJoined" in seen

    # last human out deletes the room
    assert client.get(f"/api/rooms/{code}").status_code == 404


def test_websocket_unknown_room_is_closed(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/NOPE00?username=Ann") as ws:
            ws.receive_json()
    assert exc.value.code == 4404
