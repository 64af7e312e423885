"""
Room host — authoritative per-room state and the GameHost the engines talk to.

Room
  - roster (PlayerInfo, join order), host player, chat history, canvas cache
  - named phase timers (TimerRegistry) routed to engine.on_timer_expired
  - AI personalities
  - outbound event queue, drained in order to the websocket sink
  - Gemini gateway passthrough, generated-image storage

RoomManager
  - create / look up / delete rooms, 6-character codes
  - join with unique usernames, leave, public listing
"""
import asyncio
import logging
import os
import random
import string
import uuid
from typing import Any, Dict, List, Optional, Protocol

from agents.adventure_game import AdventureGame
from agents.base_game import GameEngine
from agents.drawing_game import DrawingGame
from config import settings
from models.game import (
    AIDetails, ChatEntry, DrawingPhase, GameType, GenerationResult, PlayerInfo,
    RoomSummary, StructuredResult,
)
from services.gemini_service import GeminiService, get_gemini_service
from services.timers import LoopClock, TimerRegistry
from utils.images import decode_image_b64, to_data_url
from utils.sanitize import (
    CHAT_CHARS, MAX_AI_NAME_LENGTH, MAX_USERNAME_LENGTH, PROMPT_CHARS,
    parse_command, sanitize_message,
)

logger = logging.getLogger(__name__)

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CHAT_HISTORY = 100
MAX_CHAT_LENGTH = 500
AI_NAME_PREFIX = "🤖 "

AI_NAMES = [
    "Rusty", "Velgorath", "Spritz", "Junebug", "Flarp", "Tango", "Zorn", "Pippin",
    "Klyster", "Moxie", "Brontz", "Slyvie", "Cinder", "Raxus", "Twitch", "Larkspur",
    "Gizmo", "Vex", "Saffron", "Drifty", "Korvax", "Blitz",
]
PLAYER_COLORS = ["#3498db", "#2ecc71", "#e74c3c", "#9b59b6", "#f39c12", "#1abc9c"]

ENGINE_TYPES = {
    GameType.DRAWING: DrawingGame,
    GameType.ADVENTURE: AdventureGame,
}


class RoomError(Exception):
    """Rejected room operation; message is safe to show to the player."""

    def __init__(self, message: str, code: str = "ROOM_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class EventSink(Protocol):
    async def send_to(self, room_code: str, player_id: str, message: Dict) -> None: ...

    async def broadcast(self, room_code: str, message: Dict) -> None: ...


class Room:
    def __init__(
        self,
        code: str,
        game_type: GameType,
        is_public: bool = True,
        clock=None,
        gateway: Optional[GeminiService] = None,
        sink: Optional[EventSink] = None,
        engine_config: Optional[Dict[str, Any]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.room_code = code
        self.game_type = game_type
        self.is_public = is_public
        self.clock = clock or LoopClock()
        self.sink = sink
        self.rng = rng or random.Random()
        self._gateway = gateway
        self._engine_config = engine_config

        self.players: Dict[str, PlayerInfo] = {}
        self.host_player_id: Optional[str] = None
        self.chat_history: List[ChatEntry] = []
        self.drawing_data = ""
        self.ai_details: Dict[str, AIDetails] = {}
        self._last_chat_at: Dict[str, int] = {}

        self.timers = TimerRegistry(code, self.clock, self._on_timer_expired)
        self._outbox: "asyncio.Queue[tuple]" = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None

        self.engine: GameEngine = self._new_engine()

    def _new_engine(self) -> GameEngine:
        engine_cls = ENGINE_TYPES[self.game_type]
        logger.info("[%s] New %s engine", self.room_code, self.game_type.value)
        return engine_cls(self.room_code, self, self.clock, self._engine_config, self.rng)

    @property
    def gateway(self) -> GeminiService:
        if self._gateway is None:
            self._gateway = get_gemini_service()
        return self._gateway

    # ── Outbound events ───────────────────────────────────────────────────────

    def _enqueue(self, target: Optional[str], message: Dict[str, Any]) -> None:
        self._outbox.put_nowait((target, message))
        if self.sink is None:
            return
        if self._pump_task is None or self._pump_task.done():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("[%s] No running loop, %s stays queued", self.room_code, message.get("type"))
                return
            self._pump_task = loop.create_task(self._pump())

    async def _pump(self) -> None:
        while not self._outbox.empty():
            target, message = self._outbox.get_nowait()
            try:
                if target is None:
                    await self.sink.broadcast(self.room_code, message)
                else:
                    await self.sink.send_to(self.room_code, target, message)
            except Exception:
                logger.exception("[%s] Delivering %s failed", self.room_code, message.get("type"))

    # ── GameHost: events ──────────────────────────────────────────────────────

    def emit_to_room(self, event: str, payload: Any = None) -> None:
        self._enqueue(None, {"type": event, "data": payload})

    def emit_to_player(self, player_id: str, event: str, payload: Any = None) -> None:
        self._enqueue(player_id, {"type": event, "data": payload})

    def _remember(self, entry: ChatEntry) -> None:
        self.chat_history.append(entry)
        if len(self.chat_history) > MAX_CHAT_HISTORY:
            del self.chat_history[:-MAX_CHAT_HISTORY]

    def send_system_message(
        self, text: str, persist: bool = False, target_player_id: Optional[str] = None
    ) -> None:
        entry = ChatEntry(username="System", message=text, is_system=True, timestamp=self.clock.now_ms())
        if target_player_id is not None:
            self.emit_to_player(target_player_id, "chatMessage", entry.to_public())
            return
        if persist:
            self._remember(entry)
        self.emit_to_room("chatMessage", entry.to_public())

    def send_player_message(self, player_id: str, text: str, is_guess: bool = False) -> None:
        player = self.players.get(player_id)
        if player is None:
            return
        entry = ChatEntry(
            username=player.username,
            player_id=player_id,
            message=text,
            is_guess=is_guess,
            color=player.color,
            timestamp=self.clock.now_ms(),
        )
        self._remember(entry)
        self.emit_to_room("chatMessage", entry.to_public())

    def snapshot(self) -> Dict[str, Any]:
        return {
            "roomCode": self.room_code,
            "hostPlayerId": self.host_player_id,
            "players": [p.to_public() for p in self.players.values()],
            "timers": self.timers.active(),
            **self.engine.snapshot_state(),
        }

    def update_game_state(self) -> None:
        self.emit_to_room("gameState", self.snapshot())

    # ── GameHost: timers ──────────────────────────────────────────────────────

    def start_timer(self, duration_ms: int, name: str) -> None:
        end_time = self.timers.start(name, duration_ms)
        self.emit_to_room("timerStarted", {"name": name, "endTime": end_time})

    def clear_timer(self, name: str) -> None:
        self.timers.clear(name)

    def get_timer_end_time(self, name: str) -> Optional[int]:
        return self.timers.end_time(name)

    def _on_timer_expired(self, name: str) -> None:
        logger.debug("[%s] Timer %s expired", self.room_code, name)
        self.engine.on_timer_expired(name)

    # ── GameHost: roster, chat, canvas ────────────────────────────────────────

    def get_players(self) -> Dict[str, PlayerInfo]:
        return dict(self.players)

    def update_players_data(self, deltas: Dict[str, int]) -> None:
        for player_id, delta in deltas.items():
            player = self.players.get(player_id)
            if player is not None:
                player.score += delta

    def get_chat_history(self) -> List[ChatEntry]:
        return list(self.chat_history)

    def get_ai_details(self, player_id: str) -> Optional[AIDetails]:
        return self.ai_details.get(player_id)

    async def get_drawing_data(self) -> str:
        return self.drawing_data

    def set_drawing_data(self, data: str) -> None:
        self.drawing_data = data
        self.emit_to_room("drawingUpdate", data)

    def sanitize_message(self, text: str, allowed_extra_chars: str = "") -> str:
        return sanitize_message(text, allowed_extra_chars, MAX_CHAT_LENGTH)

    # ── GameHost: generation ──────────────────────────────────────────────────

    async def request_gemini_text(self, prompt: str, image: Optional[str] = None) -> GenerationResult:
        return await self.gateway.generate_text(prompt, image)

    async def request_gemini_image(self, prompt: str, image: Optional[str] = None) -> GenerationResult:
        return await self.gateway.generate_image(prompt, image)

    async def request_gemini_structured_text(self, prompt: str) -> StructuredResult:
        return await self.gateway.generate_structured_text(prompt)

    async def save_generated_image(self, image_b64: str, player_id: str, round_num: int) -> Optional[str]:
        """Write the PNG under generated_dir; fall back to an inline data URL if the disk write fails."""
        raw = decode_image_b64(image_b64)
        if raw is None:
            logger.warning("[%s] Undecodable image for %s", self.room_code, player_id)
            return None
        filename = f"generated-{self.room_code}-{round_num}-{player_id}.png"
        path = os.path.join(settings.generated_dir, filename)
        try:
            await asyncio.to_thread(_write_file, path, raw)
        except OSError:
            logger.warning("[%s] Could not save %s, sending inline", self.room_code, filename, exc_info=True)
            return to_data_url(image_b64)
        return f"/generated/{filename}"

    # ── Membership ────────────────────────────────────────────────────────────

    def human_ids(self) -> List[str]:
        return [pid for pid, p in self.players.items() if not p.is_ai]

    def ai_ids(self) -> List[str]:
        return [pid for pid, p in self.players.items() if p.is_ai]

    def _name_taken(self, username: str) -> bool:
        lowered = username.lower()
        return any(p.username.lower() == lowered for p in self.players.values())

    def add_player(self, username: str, is_ai: bool = False, player_id: Optional[str] = None) -> PlayerInfo:
        if self._name_taken(username):
            raise RoomError(f"The name '{username}' is already taken in this room", "NAME_TAKEN")

        player_id = player_id or str(uuid.uuid4())
        info = PlayerInfo(
            id=player_id,
            username=username,
            color=PLAYER_COLORS[len(self.players) % len(PLAYER_COLORS)],
            is_ai=is_ai,
            joined_at=self.clock.now_ms(),
        )
        if self.engine.ended and not is_ai:
            self._restart_engine()

        self.players[player_id] = info
        if not is_ai and self.host_player_id is None:
            self.host_player_id = player_id
        logger.info("[%s] %s joined (%s)", self.room_code, username, "AI" if is_ai else "human")

        self.emit_to_room("playerJoined", info.to_public())
        self.engine.on_player_join(player_id, info)
        if not is_ai:
            self.engine.start()
        self.update_game_state()
        return info

    def _restart_engine(self) -> None:
        self.timers.clear_all()
        self.drawing_data = ""
        self.engine = self._new_engine()
        for player_id, info in self.players.items():
            self.engine.on_player_join(player_id, info)

    def remove_player(self, player_id: str) -> Optional[PlayerInfo]:
        info = self.players.get(player_id)
        if info is None:
            return None
        # The engine still needs the departing player's name while it reacts
        self.engine.on_player_leave(player_id)
        self.players.pop(player_id, None)
        self.ai_details.pop(player_id, None)
        self._last_chat_at.pop(player_id, None)

        if player_id == self.host_player_id:
            humans = self.human_ids()
            self.host_player_id = humans[0] if humans else None
        logger.info("[%s] %s left (%d remaining)", self.room_code, info.username, len(self.players))
        self.emit_to_room("playerLeft", {"id": player_id, "username": info.username})
        self.update_game_state()
        return info

    def _require_host(self, player_id: str) -> None:
        if player_id != self.host_player_id:
            raise RoomError("Only the room host can do that", "NOT_HOST")

    # ── AI players ────────────────────────────────────────────────────────────

    def add_ai_player(self, requester_id: str, personality: Optional[str] = None) -> PlayerInfo:
        self._require_host(requester_id)
        if len(self.ai_ids()) >= settings.max_ai_players:
            raise RoomError(f"A room can have at most {settings.max_ai_players} AI players", "AI_LIMIT")

        free = [name for name in AI_NAMES if not self._name_taken(AI_NAME_PREFIX + name)]
        if not free:
            raise RoomError("No AI names left", "AI_LIMIT")
        username = AI_NAME_PREFIX + self.rng.choice(free)
        player_id = f"ai-{uuid.uuid4().hex[:12]}"
        self.ai_details[player_id] = AIDetails(
            player_id=player_id,
            username=username,
            core_personality_prompt=self._clean_prompt(personality),
        )
        return self.add_player(username, is_ai=True, player_id=player_id)

    def remove_ai_player(self, requester_id: str, ai_id: str) -> None:
        self._require_host(requester_id)
        if ai_id not in self.ai_details:
            raise RoomError("No such AI player", "NOT_FOUND")
        self.remove_player(ai_id)

    def update_ai_player(self, requester_id: str, ai_id: str, changes: Dict[str, Any]) -> AIDetails:
        self._require_host(requester_id)
        details = self.ai_details.get(ai_id)
        if details is None:
            raise RoomError("No such AI player", "NOT_FOUND")

        name = changes.get("username")
        if name:
            name = sanitize_message(str(name), "-_'", MAX_AI_NAME_LENGTH)
            if not name:
                raise RoomError("Invalid AI name", "INVALID_NAME")
            username = AI_NAME_PREFIX + name
            if username.lower() != details.username.lower() and self._name_taken(username):
                raise RoomError(f"The name '{username}' is already taken in this room", "NAME_TAKEN")
            details.username = username
            self.players[ai_id].username = username

        if "personality" in changes:
            details.core_personality_prompt = self._clean_prompt(changes.get("personality"))
        if "chatPrompt" in changes:
            details.chat_prompt = self._clean_prompt(changes.get("chatPrompt"))
        if "guessPrompt" in changes:
            details.guess_prompt = self._clean_prompt(changes.get("guessPrompt"))

        logger.info("[%s] AI %s updated", self.room_code, details.username)
        self.update_game_state()
        return details

    @staticmethod
    def _clean_prompt(value: Any) -> Optional[str]:
        if not value:
            return None
        cleaned = sanitize_message(str(value), PROMPT_CHARS, settings.max_prompt_length)
        return cleaned or None

    # ── Player actions ────────────────────────────────────────────────────────

    def handle_chat(self, player_id: str, message: str) -> None:
        player = self.players.get(player_id)
        if player is None:
            return

        now = self.clock.now_ms()
        last = self._last_chat_at.get(player_id)
        if last is not None and now - last < settings.chat_rate_limit_seconds * 1000:
            self.send_system_message("You're sending messages too fast.", target_player_id=player_id)
            return
        self._last_chat_at[player_id] = now

        text = self.sanitize_message(message, CHAT_CHARS)
        if not text:
            return

        command = parse_command(text)
        if command is not None:
            name, value = command
            if not value:
                self.send_system_message(f"Usage: /{name} [text]", target_player_id=player_id)
                return
            result = self.engine.on_command(player_id, name, value)
            if not result.handled:
                self.send_system_message(f"Unknown command: /{name}", target_player_id=player_id)
            elif result.display_message:
                self.send_player_message(player_id, result.display_message, result.is_guess)
            return

        if not self.engine.can_player_chat(player_id):
            self.send_system_message("You can't chat while you're drawing.", target_player_id=player_id)
            return
        self.send_player_message(player_id, text, False)

    def handle_vote(self, player_id: str, target_id: str) -> None:
        self.engine.on_vote(player_id, target_id)

    def handle_drawing(self, player_id: str, drawing_data: str) -> None:
        engine = self.engine
        if not isinstance(engine, DrawingGame):
            return
        if engine.phase != DrawingPhase.DRAWING or player_id != engine.current_drawer_id:
            logger.debug("[%s] Ignoring canvas from %s", self.room_code, player_id)
            return
        self.set_drawing_data(drawing_data)
        engine.on_drawing_update(drawing_data)

    def end_round(self, player_id: str) -> None:
        engine = self.engine
        if isinstance(engine, DrawingGame) and not engine.end_round_early(player_id):
            raise RoomError("Only the drawer can end the round", "NOT_DRAWER")

    def update_prompts(self, requester_id: str, prompts: Dict[str, Any]) -> Dict[str, str]:
        self._require_host(requester_id)
        cleaned = {
            key: sanitize_message(str(value), PROMPT_CHARS, settings.max_prompt_length)
            for key, value in prompts.items()
            if isinstance(value, str)
        }
        accepted = self.engine.update_custom_prompts(cleaned)
        if accepted:
            self.emit_to_room("promptsUpdated", accepted)
        return accepted

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def summary(self) -> RoomSummary:
        return RoomSummary(
            room_code=self.room_code,
            game_type=self.game_type,
            player_count=len(self.players),
            human_count=len(self.human_ids()),
            phase=getattr(self.engine.phase, "value", None),
            is_public=self.is_public,
        )

    def close(self) -> None:
        logger.info("[%s] Closing room", self.room_code)
        if not self.engine.ended:
            self.engine.cleanup()
        self.timers.clear_all()
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()


def _write_file(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as fh:
        fh.write(data)


class RoomManager:
    """In-process registry of live rooms."""

    def __init__(self, sink: Optional[EventSink] = None, clock=None, gateway: Optional[GeminiService] = None):
        self.sink = sink
        self._clock = clock
        self._gateway = gateway
        self._rooms: Dict[str, Room] = {}

    def _new_code(self) -> str:
        while True:
            code = "".join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))
            if code not in self._rooms:
                return code

    def create_room(
        self,
        game_type: GameType = GameType.DRAWING,
        is_public: bool = True,
        engine_config: Optional[Dict[str, Any]] = None,
    ) -> Room:
        code = self._new_code()
        room = Room(
            code,
            game_type,
            is_public=is_public,
            clock=self._clock,
            gateway=self._gateway,
            sink=self.sink,
            engine_config=engine_config,
        )
        self._rooms[code] = room
        logger.info("[%s] Room created (%s, %s)", code, game_type.value, "public" if is_public else "private")
        return room

    def get_room(self, code: str) -> Optional[Room]:
        return self._rooms.get(code.upper())

    def join(self, code: str, username: str, player_id: Optional[str] = None) -> tuple:
        room = self.get_room(code)
        if room is None:
            raise RoomError("Room not found", "NOT_FOUND")
        username = sanitize_message(username, "-_'", MAX_USERNAME_LENGTH)
        if not username:
            raise RoomError("Please choose a username", "INVALID_NAME")
        info = room.add_player(username, player_id=player_id)
        return room, info

    def leave(self, code: str, player_id: str) -> None:
        room = self.get_room(code)
        if room is None:
            return
        room.remove_player(player_id)
        if not room.human_ids():
            self.delete_room(room.room_code)

    def delete_room(self, code: str) -> None:
        room = self._rooms.pop(code, None)
        if room is not None:
            room.close()
            logger.info("[%s] Room deleted", code)

    def public_rooms(self) -> List[RoomSummary]:
        return [room.summary() for room in self._rooms.values() if room.is_public]

    def count(self) -> int:
        return len(self._rooms)

    def close_all(self) -> None:
        for code in list(self._rooms):
            self.delete_room(code)


_room_manager: Optional[RoomManager] = None


def get_room_manager() -> RoomManager:
    global _room_manager
    if _room_manager is None:
        _room_manager = RoomManager()
    return _room_manager
