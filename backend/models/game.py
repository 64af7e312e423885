from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum
import time


def _now_ms() -> int:
    """Wall-clock milliseconds since the epoch."""
    return int(time.time() * 1000)


class GameType(str, Enum):
    DRAWING = "drawing"
    ADVENTURE = "adventure"


class DrawingPhase(str, Enum):
    WAITING = "waiting"
    DRAWING = "drawing"
    GENERATING = "generating"
    VOTING = "voting"
    RESULTS = "results"
    ENDED = "ended"


class AdventurePhase(str, Enum):
    INITIALIZING = "initializing"
    DESCRIBING = "describing"
    INPUT = "input"
    GENERATING_ACTIONS = "generating_actions"
    VOTING = "voting"
    GENERATING_RESULT = "generating_result"
    RESULTS = "results"
    ENDED = "ended"


class AITimerKind(str, Enum):
    CHAT = "chat"
    GUESS = "guess"      # guesses in the drawing game, actions in the adventure
    VOTE = "vote"
    DRAWING = "drawing"  # only armed for the AI drawer
    LAST_CHANCE = "last_chance"  # room-wide, drawing game only


# ── Roster ────────────────────────────────────────────────────────────────────

class PlayerInfo(BaseModel):
    """Authoritative per-room player record, owned by the room host."""
    id: str
    username: str
    score: int = 0
    color: str = "#000000"
    is_ai: bool = False
    joined_at: int = Field(default_factory=_now_ms)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "score": self.score,
            "color": self.color,
            "isAI": self.is_ai,
        }


class AIDetails(BaseModel):
    """Personality for an AI-controlled player. None means "use the default prompt"."""
    player_id: str
    username: str
    core_personality_prompt: Optional[str] = None
    chat_prompt: Optional[str] = None
    guess_prompt: Optional[str] = None


class AIPlayerState(BaseModel):
    # ms since epoch, 0 = never
    last_guess_time: int = 0
    last_chat_time: int = 0
    last_action_time: int = 0


class ChatEntry(BaseModel):
    username: Optional[str] = None
    player_id: Optional[str] = None
    message: str
    is_system: bool = False
    is_guess: bool = False
    color: Optional[str] = None
    timestamp: int = Field(default_factory=_now_ms)

    def to_public(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "playerId": self.player_id,
            "message": self.message,
            "isSystem": self.is_system,
            "isGuess": self.is_guess,
            "color": self.color,
            "timestamp": self.timestamp,
        }


# ── Generation results ────────────────────────────────────────────────────────

class GenerationResult(BaseModel):
    text: str = ""
    image_data: Optional[str] = None  # raw base64, no data-URL prefix
    finish_reason: Optional[str] = None


class StructuredResult(BaseModel):
    text: str
    data: Dict[str, Any] = {}


class GeneratedImage(BaseModel):
    player_id: str
    player_name: str
    guess: str
    image_src: str
    text: str = ""

    def to_public(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "playerName": self.player_name,
            "guess": self.guess,
            "imageSrc": self.image_src,
        }


class ActionResult(BaseModel):
    player_id: str
    player_name: str
    action_prompt: str
    result_text: str
    result_image_src: str
    failed: bool = False

    def to_public(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "playerName": self.player_name,
            "actionPrompt": self.action_prompt,
            "resultText": self.result_text,
            "resultImageSrc": self.result_image_src,
            "failed": self.failed,
        }


class HistoryEntry(BaseModel):
    type: str = "world"  # world | chat
    content: str
    username: Optional[str] = None


class CommandResult(BaseModel):
    handled: bool = False
    display_message: Optional[str] = None
    is_guess: bool = False


# ── Per-game timing (ms) ──────────────────────────────────────────────────────

class DrawingTiming(BaseModel):
    round_ms: int = 45_000
    voting_ms: int = 20_000
    results_ms: int = 8_000
    drawing_start_ms: int = 3_000
    first_chat_min_ms: int = 2_000
    first_chat_max_ms: int = 7_000
    first_guess_min_ms: int = 3_000
    first_guess_max_ms: int = 8_000
    min_guess_ms: int = 4_000
    max_guess_ms: int = 12_000
    guess_interval_ms: int = 30_000
    chat_interval_min_ms: int = 10_000
    chat_interval_max_ms: int = 20_000
    chat_delay_min_ms: int = 1_000
    chat_delay_max_ms: int = 4_000
    chat_probability: float = 0.4
    vote_delay_min_ms: int = 2_000
    vote_delay_max_ms: int = 8_000
    last_chance_ms: int = 10_000
    last_chance_delay_min_ms: int = 500
    last_chance_delay_max_ms: int = 2_000


class AdventureTiming(BaseModel):
    input_ms: int = 40_000
    voting_ms: int = 15_000
    results_ms: int = 10_000
    first_chat_min_ms: int = 3_500
    first_chat_max_ms: int = 10_000
    action_min_ms: int = 15_000
    action_max_ms: int = 18_000
    chat_interval_min_ms: int = 10_000
    chat_interval_max_ms: int = 20_000
    chat_delay_min_ms: int = 1_000
    chat_delay_max_ms: int = 4_000
    chat_probability: float = 0.4
    vote_delay_min_ms: int = 2_000
    vote_delay_max_ms: int = 8_000
    all_submitted_grace_ms: int = 1_000
    inventory_notice_delay_ms: int = 2_000


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    game_type: GameType = GameType.DRAWING
    is_public: bool = True


class CreateRoomResponse(BaseModel):
    room_code: str
    game_type: GameType


class RoomSummary(BaseModel):
    room_code: str
    game_type: GameType
    player_count: int
    human_count: int
    phase: Optional[str] = None
    is_public: bool = True


class RoomListResponse(BaseModel):
    rooms: List[RoomSummary] = []
