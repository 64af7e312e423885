"""
WebSocket Hub — real-time connection management for game rooms.

URL: /ws/{room_code}?username={username}

Connection flow:
  1. Validate the room exists (close 4404 otherwise)
  2. Accept, then join the room under a fresh player id (name clash → error + close 4409)
  3. Queue a private "connected" message with the room snapshot and chat history
  4. Message loop (handle_message dispatcher)
  5. On disconnect: leave the room; the last human out deletes it

Client → server message types:
  ping              — keep-alive heartbeat → responds with "pong"
  chat              — chat line or /command (e.g. "/g a cat")
  drawing           — canvas data URL from the current drawer
  vote              — vote for the image / action owned by targetId
  end_round         — drawer finishes the drawing phase early
  add_ai_player     — host only
  remove_ai_player  — host only
  update_ai_player  — host only; rename or re-prompt an AI player
  update_prompts    — host only; room-level prompt overrides

Server → client messages are {"type": <event>, "data": <payload>} envelopes,
queued by the room and delivered in order.
"""
import json
import logging
import uuid
from typing import Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from services.room_host import Room, RoomError, get_room_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks active WebSocket connections per room.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {room_code: {player_id: WebSocket}}
        self._rooms: Dict[str, Dict[str, WebSocket]] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, room_code: str, player_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._rooms.setdefault(room_code, {})[player_id] = ws
        logger.debug("[%s] %s connected (%d total)", room_code, player_id, self.count(room_code))

    def disconnect(self, room_code: str, player_id: str) -> None:
        room_conns = self._rooms.get(room_code, {})
        room_conns.pop(player_id, None)
        if not room_conns:
            self._rooms.pop(room_code, None)

    def count(self, room_code: str) -> int:
        return len(self._rooms.get(room_code, {}))

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, room_code: str, player_id: str, message: Dict) -> None:
        """Send a private message to a single player."""
        ws = self._rooms.get(room_code, {}).get(player_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning("[%s] send_to %s failed: %s", room_code, player_id, exc)
                self.disconnect(room_code, player_id)

    async def broadcast(self, room_code: str, message: Dict, exclude: Optional[str] = None) -> None:
        """Broadcast a message to all connected players in a room."""
        for pid, ws in list(self._rooms.get(room_code, {}).items()):
            if pid == exclude:
                continue
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning("[%s] broadcast to %s failed: %s", room_code, pid, exc)
                self.disconnect(room_code, pid)


manager = ConnectionManager()
room_manager = get_room_manager()
room_manager.sink = manager


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{room_code}")
async def websocket_endpoint(
    ws: WebSocket,
    room_code: str,
    username: str = Query(..., description="Display name, unique within the room"),
):
    room = room_manager.get_room(room_code)
    if room is None:
        await ws.close(code=4404, reason="Room not found")
        return
    room_code = room.room_code

    # ── Accept and join ────────────────────────────────────────────────────────
    player_id = str(uuid.uuid4())
    await manager.connect(room_code, player_id, ws)
    try:
        room, info = room_manager.join(room_code, username, player_id=player_id)
    except RoomError as exc:
        await manager.send_to(room_code, player_id, {
            "type": "error", "message": exc.message, "code": exc.code,
        })
        manager.disconnect(room_code, player_id)
        await ws.close(code=4409, reason=exc.message)
        return

    room.emit_to_player(player_id, "connected", {
        "playerId": player_id,
        "username": info.username,
        "gameState": room.snapshot(),
        "chatHistory": [entry.to_public() for entry in room.get_chat_history()],
    })

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(room_code, player_id, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue
            if not isinstance(data, dict):
                continue

            msg_type = data.get("type", "")
            # Frontend sends { type, data: { ... } }; unwrap inner payload for handlers
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else {}
            await _handle_message(room, player_id, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(room_code, player_id)
        room_manager.leave(room_code, player_id)


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(room: Room, player_id: str, msg_type: str, data: Dict) -> None:
    try:
        await _dispatch_message(room, player_id, msg_type, data)
    except WebSocketDisconnect:
        raise
    except RoomError as exc:
        await manager.send_to(room.room_code, player_id, {
            "type": "error", "message": exc.message, "code": exc.code,
        })
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", room.room_code, msg_type)
        await manager.send_to(room.room_code, player_id, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR"
        })


async def _dispatch_message(room: Room, player_id: str, msg_type: str, data: Dict) -> None:
    if msg_type == "ping":
        await manager.send_to(room.room_code, player_id, {"type": "pong"})

    elif msg_type == "chat":
        room.handle_chat(player_id, str(data.get("message", "")))

    elif msg_type == "drawing":
        drawing = data.get("drawing")
        if isinstance(drawing, str):
            room.handle_drawing(player_id, drawing)

    elif msg_type == "vote":
        room.handle_vote(player_id, str(data.get("targetId", "")))

    elif msg_type == "end_round":
        room.end_round(player_id)

    elif msg_type == "add_ai_player":
        room.add_ai_player(player_id, data.get("personality"))

    elif msg_type == "remove_ai_player":
        room.remove_ai_player(player_id, str(data.get("playerId", "")))

    elif msg_type == "update_ai_player":
        room.update_ai_player(player_id, str(data.get("playerId", "")), data)

    elif msg_type == "update_prompts":
        room.update_prompts(player_id, data)

    else:
        await manager.send_to(room.room_code, player_id, {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })
