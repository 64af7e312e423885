"""
Game engine contract shared by the drawing game and the text adventure.

An engine is a per-room phase state machine. The room host delivers events
(join, leave, command, vote, timer expiry, canvas update) by calling the
on_* methods; they mutate state synchronously and talk back through the
GameHost. Anything that waits on Gemini runs in a tracked asyncio task and,
after every await, re-checks that the phase epoch it captured is still current
before touching state. Every phase change bumps the epoch, so work belonging
to a phase that has already been left quietly drops out.
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Dict, Optional, Set

from agents.ai_scheduler import DEADLINE_GUARD_MS, AITimerBook
from agents.game_host import GameHost
from models.game import AIPlayerState, CommandResult, GameType, PlayerInfo

logger = logging.getLogger(__name__)


class GameEngine:
    game_type: GameType
    ENDED: Any = None          # the engine's terminal phase value
    TIMER_NAMES: tuple = ()    # host timers this engine arms

    def __init__(self, room_code: str, host: GameHost, clock, rng: Optional[random.Random] = None):
        self.room_code = room_code
        self.host = host
        self.clock = clock
        self.rng = rng or random.Random()

        self.players: Dict[str, int] = {}               # player_id → score, join order
        self.ai_players: Dict[str, AIPlayerState] = {}  # subset of players
        self.round = 1
        self.phase: Any = None
        self.epoch = 0

        self.ai_timers = AITimerBook(clock)
        self._tasks: Set[asyncio.Task] = set()

    # ── Phase bookkeeping ─────────────────────────────────────────────────────

    def _set_phase(self, phase) -> None:
        if phase != self.phase:
            logger.info("[%s] %s → %s (round %d)", self.room_code, self._phase_name(self.phase),
                        self._phase_name(phase), self.round)
        self.phase = phase
        self.epoch += 1

    @staticmethod
    def _phase_name(phase) -> str:
        return getattr(phase, "value", str(phase))

    def _is_current(self, epoch: int, *phases) -> bool:
        """True when no phase change happened since epoch was captured."""
        return self.epoch == epoch and (not phases or self.phase in phases)

    @property
    def ended(self) -> bool:
        return self.phase == self.ENDED

    # ── Task tracking ─────────────────────────────────────────────────────────

    def _spawn(self, coro: Awaitable, label: str = "") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        if label:
            task.set_name(f"{self.room_code}:{label}")
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[%s] Background task %s failed", self.room_code, task.get_name(), exc_info=exc)

    def _cancel_tasks(self) -> None:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    # ── Roster helpers ────────────────────────────────────────────────────────

    def add_player(self, player_id: str, info: PlayerInfo) -> None:
        self.players[player_id] = info.score
        if info.is_ai:
            self.ai_players[player_id] = AIPlayerState()
        logger.info("[%s] %s added (players=%d, ai=%d)", self.room_code, info.username,
                    len(self.players), len(self.ai_players))

    def remove_player(self, player_id: str) -> None:
        self.players.pop(player_id, None)
        if self.ai_players.pop(player_id, None) is not None:
            self.ai_timers.cancel_player(player_id)

    def human_count(self) -> int:
        return len(self.players) - len(self.ai_players)

    def display_name(self, player_id: str, default: str = "Someone") -> str:
        info = self.host.get_players().get(player_id)
        return info.username if info else default

    def _vote_delay(self, delay_ms: int, timer_name: str) -> Optional[int]:
        """Pull a delay in so it fires before the guard window; None if no room is left."""
        deadline = self.host.get_timer_end_time(timer_name)
        if not deadline:
            return delay_ms
        latest = deadline - self.clock.now_ms() - DEADLINE_GUARD_MS
        if latest <= 0:
            return None
        return min(delay_ms, latest)

    # ── Engine contract ───────────────────────────────────────────────────────

    def start(self) -> None:
        raise NotImplementedError

    def on_player_join(self, player_id: str, info: PlayerInfo) -> None:
        raise NotImplementedError

    def on_player_leave(self, player_id: str) -> None:
        raise NotImplementedError

    def on_command(self, player_id: str, name: str, value: str) -> CommandResult:
        return CommandResult()

    def on_vote(self, voter_id: str, target_id: str) -> None:
        raise NotImplementedError

    def on_timer_expired(self, name: str) -> None:
        raise NotImplementedError

    def on_drawing_update(self, drawing_data: str) -> None:
        pass

    def can_player_chat(self, player_id: str) -> bool:
        return True

    def update_custom_prompts(self, prompts: Dict[str, str]) -> Dict[str, str]:
        return {}

    def snapshot_state(self) -> Dict[str, Any]:
        raise NotImplementedError

    def cleanup(self) -> None:
        """Tear down: terminal phase, every timer cleared, in-flight work abandoned."""
        logger.info("[%s] Cleaning up %s engine", self.room_code, self.game_type.value)
        self._set_phase(self.ENDED)
        self.ai_timers.cancel_all()
        for name in self.TIMER_NAMES:
            self.host.clear_timer(name)
        self._cancel_tasks()
        self.players.clear()
        self.ai_players.clear()
