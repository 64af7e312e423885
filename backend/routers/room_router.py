"""
Room HTTP endpoints.

Routes:
  POST /api/rooms                — Create a room (drawing or adventure, public or private)
  GET  /api/rooms/public         — Public rooms that can be joined
  GET  /api/rooms/{room_code}    — Room snapshot (players, phase, timers)

Players join over the websocket (/ws/{room_code}?username=...), not here.
"""
import logging

from fastapi import APIRouter, HTTPException

from models.game import CreateRoomRequest, CreateRoomResponse, RoomListResponse
from services.room_host import get_room_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


@router.post("/rooms", response_model=CreateRoomResponse, status_code=201)
async def create_room(body: CreateRoomRequest):
    """Create an empty room; the first human to connect becomes its host."""
    room = get_room_manager().create_room(game_type=body.game_type, is_public=body.is_public)
    return CreateRoomResponse(room_code=room.room_code, game_type=room.game_type)


@router.get("/rooms/public", response_model=RoomListResponse)
async def list_public_rooms():
    return RoomListResponse(rooms=get_room_manager().public_rooms())


@router.get("/rooms/{room_code}")
async def get_room(room_code: str):
    room = get_room_manager().get_room(room_code)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return {
        "room_code": room.room_code,
        "game_type": room.game_type.value,
        "is_public": room.is_public,
        "player_count": len(room.players),
        "state": room.snapshot(),
    }
