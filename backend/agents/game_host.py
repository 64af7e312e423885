"""
Host interface an engine is given at construction.

The room host owns the roster, chat, canvas, phase timers and the Gemini
gateway; engines only ever reach them through these calls. Everything is
synchronous except the calls that may hit the network or disk.
"""
from typing import Any, Dict, List, Optional, Protocol

from models.game import AIDetails, ChatEntry, GenerationResult, PlayerInfo, StructuredResult


class GameHost(Protocol):
    room_code: str

    # ── Events ──────────────────────────────────────────────────────────────
    def emit_to_room(self, event: str, payload: Any = None) -> None: ...

    def emit_to_player(self, player_id: str, event: str, payload: Any = None) -> None: ...

    def send_system_message(
        self, text: str, persist: bool = False, target_player_id: Optional[str] = None
    ) -> None: ...

    def send_player_message(self, player_id: str, text: str, is_guess: bool = False) -> None: ...

    def update_game_state(self) -> None: ...

    # ── Phase timers ────────────────────────────────────────────────────────
    def start_timer(self, duration_ms: int, name: str) -> None: ...

    def clear_timer(self, name: str) -> None: ...

    def get_timer_end_time(self, name: str) -> Optional[int]: ...

    # ── Roster, chat, canvas ────────────────────────────────────────────────
    def get_players(self) -> Dict[str, PlayerInfo]: ...

    def update_players_data(self, deltas: Dict[str, int]) -> None: ...

    def get_chat_history(self) -> List[ChatEntry]: ...

    def get_ai_details(self, player_id: str) -> Optional[AIDetails]: ...

    async def get_drawing_data(self) -> str: ...

    def set_drawing_data(self, data: str) -> None: ...

    def sanitize_message(self, text: str, allowed_extra_chars: str = "") -> str: ...

    # ── Generation ──────────────────────────────────────────────────────────
    async def request_gemini_text(self, prompt: str, image: Optional[str] = None) -> GenerationResult: ...

    async def request_gemini_image(self, prompt: str, image: Optional[str] = None) -> GenerationResult: ...

    async def request_gemini_structured_text(self, prompt: str) -> StructuredResult: ...

    async def save_generated_image(self, image_b64: str, player_id: str, round_num: int) -> Optional[str]: ...
