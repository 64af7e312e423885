"""
AI scheduling primitives shared by both games.

AITimerBook     — per-(player, kind) cancellable timers; re-arming a kind replaces it
random_delay    — uniform draw from a [min, max] ms range
fits_before     — "would this fire at least 1 s before the phase deadline?"
parse_vote_response — "Vote: <n> / Reason: <text>" → (option index, chat line)
"""
import logging
import random
import re
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from models.game import AITimerKind

logger = logging.getLogger(__name__)

DEADLINE_GUARD_MS = 1000

_VOTE_RE = re.compile(r"Vote:\s*(\d+)", re.IGNORECASE)
_REASON_RE = re.compile(r"Reason:\s*([\s\S]+)", re.IGNORECASE)
_VOTE_PREFIX_RE = re.compile(r"Vote:\s*\d+\s*", re.IGNORECASE)


def random_delay(rng: random.Random, low_ms: float, high_ms: float) -> int:
    if high_ms <= low_ms:
        return int(low_ms)
    return int(rng.uniform(low_ms, high_ms))


def fits_before(now_ms: int, delay_ms: int, deadline_ms: Optional[int]) -> bool:
    if not deadline_ms:
        return False
    return now_ms + delay_ms < deadline_ms - DEADLINE_GUARD_MS


def parse_vote_response(
    text: Optional[str],
    option_count: int,
    rng: random.Random,
    default_message: str = "Hmm, deciding is hard... I'll just pick this one!",
) -> Tuple[int, str]:
    """
    Pull a 0-based option index and a chat line out of a model's vote answer.

    A missing or out-of-range number falls back to a random option, so a vote
    is always produced while options exist. Returns (-1, message) only when
    option_count is 0.
    """
    text = (text or "").strip()
    index = -1
    match = _VOTE_RE.search(text)
    if match:
        number = int(match.group(1))
        if 1 <= number <= option_count:
            index = number - 1

    reason = _REASON_RE.search(text)
    if reason:
        message = reason.group(1).strip()
    elif index != -1:
        message = _VOTE_PREFIX_RE.sub("", text, count=1).strip()
    else:
        message = text

    if index == -1 and option_count > 0:
        index = rng.randrange(option_count)
        logger.debug("Unparseable vote %r; random pick %d", text[:80], index + 1)
        if not message:
            message = default_message
    return index, message or default_message


class AITimerBook:
    """Cancellable one-shot timers keyed by (player_id, kind)."""

    def __init__(self, clock):
        self._clock = clock
        self._handles: Dict[Tuple[str, AITimerKind], Any] = {}

    def schedule(
        self,
        player_id: str,
        kind: AITimerKind,
        delay_ms: int,
        callback: Callable[[], None],
    ) -> None:
        self.cancel(player_id, kind)
        key = (player_id, kind)
        token = object()

        def _fire() -> None:
            current = self._handles.get(key)
            if current is None or current[1] is not token:
                return
            del self._handles[key]
            callback()

        handle = self._clock.call_later(delay_ms, _fire)
        self._handles[key] = (handle, token)

    def is_armed(self, player_id: str, kind: AITimerKind) -> bool:
        return (player_id, kind) in self._handles

    def cancel(self, player_id: str, kind: AITimerKind) -> None:
        entry = self._handles.pop((player_id, kind), None)
        if entry is not None:
            entry[0].cancel()

    def cancel_player(self, player_id: str, kinds: Optional[Iterable[AITimerKind]] = None) -> None:
        for kind in list(kinds or AITimerKind):
            self.cancel(player_id, kind)

    def cancel_all(self) -> None:
        for player_id, kind in list(self._handles):
            self.cancel(player_id, kind)

    def armed(self) -> Dict[Tuple[str, AITimerKind], Any]:
        return dict(self._handles)
