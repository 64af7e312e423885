"""
Shared fixtures for the engine, room and gateway tests.

Engines run against a real Room wired to a FakeClock (time only moves when a
test calls advance()) and a MagicMock gateway, so every scenario is
deterministic. Async scenarios are driven with asyncio.run().
"""
import asyncio
import heapq
import itertools
import random
from typing import Any, Callable, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import settings
from models.game import GameType, GenerationResult, StructuredResult
from services.room_host import Room
from utils.images import fallback_image_b64


async def settle(rounds: int = 50) -> None:
    """Let spawned tasks (and the tasks they spawn) run to completion."""
    for _ in range(3):
        for _ in range(rounds):
            await asyncio.sleep(0)
        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current and not t.done()]
        if not pending:
            return
        # image writes go through a worker thread and need real time
        await asyncio.wait(pending, timeout=1.0)


class FakeHandle:
    def __init__(self, when: int, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """Manual time source with the LoopClock interface."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self._now = start_ms
        self._seq = itertools.count()
        self._queue: List[Tuple[int, int, FakeHandle]] = []

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(self._now + max(0, int(delay_ms)), callback)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def pending(self) -> List[FakeHandle]:
        return sorted((h for _, _, h in self._queue if not h.cancelled), key=lambda h: h.when)

    async def advance(self, ms: int) -> None:
        """Move time forward, firing due callbacks in order and settling after each."""
        target = self._now + int(ms)
        await settle()
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = when
            handle.callback()
            await settle()
        self._now = target


class RecordingSink:
    """Stands in for the websocket ConnectionManager."""

    def __init__(self):
        self.sent: List[Tuple[Optional[str], dict]] = []

    async def send_to(self, room_code: str, player_id: str, message: dict) -> None:
        self.sent.append((player_id, message))

    async def broadcast(self, room_code: str, message: dict) -> None:
        self.sent.append((None, message))

    def of_type(self, event: str) -> List[Any]:
        return [message["data"] for _, message in self.sent if message["type"] == event]

    def private(self, player_id: str, event: str) -> List[Any]:
        return [
            message["data"] for target, message in self.sent
            if target == player_id and message["type"] == event
        ]


def chat_lines(room: Room) -> List[str]:
    return [entry.message for entry in room.chat_history]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    mock = MagicMock()
    mock.generate_text = AsyncMock(return_value=GenerationResult(text="a cat"))
    mock.generate_image = AsyncMock(return_value=GenerationResult(text="", image_data=fallback_image_b64()))
    mock.generate_structured_text = AsyncMock(
        return_value=StructuredResult(text="Nothing much happens.", data={})
    )
    return mock


@pytest.fixture
def generated_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "generated_dir", str(tmp_path))
    return tmp_path


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_room(clock, gateway, sink, generated_dir):
    """Factory; call it inside the running loop so the room's queue binds to it."""

    def _make(game_type: GameType = GameType.DRAWING, engine_config=None, seed: int = 7) -> Room:
        return Room(
            "ROOM01",
            game_type,
            clock=clock,
            gateway=gateway,
            sink=sink,
            engine_config=engine_config,
            rng=random.Random(seed),
        )

    return _make
