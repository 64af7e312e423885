"""
Adventure engine — a shared text adventure steered by votes.

Round flow:
  initializing → describing → input → generating_actions → voting
               → generating_result → results → describing (round + 1)

- input:              every player may submit one /g action (first write wins)
- generating_actions: up to 8 actions, each expanded to outcome text + picture
- voting:             plurality over non-failed outcomes, random tie-break
- generating_result:  canonical narrative with an inventory delta
- results:            world, history (25 entries) and inventory updated

A narrative that says "you have died" or "eaten by a grue" ends the game.
"""
import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional

from agents import prompt_builder
from agents.ai_scheduler import fits_before, parse_vote_response, random_delay
from agents.base_game import GameEngine
from config import settings
from models.game import (
    ActionResult, AdventurePhase, AdventureTiming, AITimerKind, ChatEntry,
    CommandResult, GameType, HistoryEntry, PlayerInfo,
)
from utils.images import FALLBACK_BLANK_IMAGE, to_data_url
from utils.sanitize import CHAT_CHARS

logger = logging.getLogger(__name__)

INPUT_END = "inputEnd"
VOTING_END = "votingEnd"
NEXT_ROUND_START = "nextRoundStart"

MAX_HISTORY_LENGTH = 25
MAX_ACTION_RESULTS = 8
GAME_OVER_PHRASES = ("you have died", "eaten by a grue")

# System chat lines about game mechanics are kept out of prompt history
_MECHANICS_MARKERS = ("votes", "submitted an action", "Time to vote", "Time's up")


def tally_plurality(votes: Dict[str, str], results: List[ActionResult], rng) -> Dict[str, Any]:
    """
    Pick the winning action among non-failed results.

    Highest count wins; ties are broken at random among the tied; when nobody
    voted for a valid option a random non-failed result wins.

    Returns:
    {
        "result": "winner" | "tie" | "no_votes" | "no_valid_actions",
        "winner": Optional[str],   # player_id of the winning action
        "tally": Dict[str, int],
        "tied": List[str],
    }
    """
    valid = [r.player_id for r in results if not r.failed]
    tally = {player_id: 0 for player_id in valid}
    for target in votes.values():
        if target in tally:
            tally[target] += 1

    if not valid:
        return {"result": "no_valid_actions", "winner": None, "tally": {}, "tied": []}
    if not any(tally.values()):
        return {"result": "no_votes", "winner": rng.choice(valid), "tally": tally, "tied": []}

    max_votes = max(tally.values())
    leaders = [player_id for player_id, count in tally.items() if count == max_votes]
    if len(leaders) == 1:
        return {"result": "winner", "winner": leaders[0], "tally": tally, "tied": []}
    return {"result": "tie", "winner": rng.choice(leaders), "tally": tally, "tied": leaders}


def apply_inventory_delta(inventory: List[str], added, removed) -> List[str]:
    """
    Mutate inventory in place: removals first, then additions. Matching is
    case-insensitive, stored items keep the casing they were added with.
    Returns the notice lines for the changes that actually happened.
    """
    notices: List[str] = []
    for item in removed or []:
        if not isinstance(item, str) or not item.strip():
            continue
        lowered = item.strip().lower()
        for index, held in enumerate(inventory):
            if held.lower() == lowered:
                notices.append(f"📤 You lost: {held}")
                del inventory[index]
                break
    for item in added or []:
        if not isinstance(item, str) or not item.strip():
            continue
        item = item.strip()
        if not any(held.lower() == item.lower() for held in inventory):
            inventory.append(item)
            notices.append(f"📥 You gained: {item}")
    return notices


def is_game_over(description: str) -> bool:
    lowered = description.lower()
    return any(phrase in lowered for phrase in GAME_OVER_PHRASES)


class AdventureGame(GameEngine):
    game_type = GameType.ADVENTURE
    ENDED = AdventurePhase.ENDED
    TIMER_NAMES = (INPUT_END, VOTING_END, NEXT_ROUND_START)

    def __init__(self, room_code, host, clock, config: Optional[Dict[str, Any]] = None, rng=None):
        super().__init__(room_code, host, clock, rng)
        config = dict(config or {})
        self.image_style = config.pop("image_style", settings.adventure_image_style)
        defaults = {
            "input_ms": settings.adventure_input_seconds * 1000,
            "voting_ms": settings.adventure_voting_seconds * 1000,
            "results_ms": settings.adventure_results_seconds * 1000,
        }
        self.timing = AdventureTiming(**{**defaults, **config})
        self.phase = AdventurePhase.INITIALIZING

        self.world_description = prompt_builder.INITIAL_WORLD_DESCRIPTION
        self.world_image_src: Optional[str] = None
        self.history: List[HistoryEntry] = []
        self.inventory: List[str] = []

        self.player_actions: Dict[str, str] = {}    # player_id → action, submission order
        self.action_results: List[ActionResult] = []
        self.votes: Dict[str, str] = {}
        self.winning_action: Optional[Dict[str, str]] = None
        self._advance_scheduled = False

    # ── World helpers ─────────────────────────────────────────────────────────

    def _world_payload(self) -> Dict[str, Any]:
        return {
            "description": self.world_description,
            "imageSrc": self.world_image_src,
            "inventory": list(self.inventory),
        }

    def push_history(self, entry: HistoryEntry) -> None:
        self.history.append(entry)
        if len(self.history) > MAX_HISTORY_LENGTH:
            del self.history[:-MAX_HISTORY_LENGTH]

    def _prompt_history(self) -> List[HistoryEntry]:
        """Stored world log merged with recent chat, newest 25 entries."""
        entries = list(self.history)
        for message in self.host.get_chat_history():
            if message.is_system:
                if any(marker in message.message for marker in _MECHANICS_MARKERS):
                    continue
                entries.append(HistoryEntry(type="world", content=message.message))
            else:
                entries.append(HistoryEntry(type="chat", username=message.username, content=message.message))
        return entries[-MAX_HISTORY_LENGTH:]

    # ── Core flow ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self.phase != AdventurePhase.INITIALIZING or self._tasks:
            return
        self._spawn(self._initialize(self.epoch), "initialize")

    async def _initialize(self, epoch: int) -> None:
        logger.info("[%s] Initializing adventure", self.room_code)
        prompt = prompt_builder.build_scene_image_prompt(self.world_description, self.image_style)
        try:
            result = await self.host.request_gemini_image(prompt)
            image_data = result.image_data
        except Exception:
            logger.warning("[%s] Opening scene image failed", self.room_code, exc_info=True)
            image_data = None
        if not self._is_current(epoch, AdventurePhase.INITIALIZING):
            return
        self.world_image_src = to_data_url(image_data) if image_data else FALLBACK_BLANK_IMAGE
        self._start_round()

    def _start_round(self) -> None:
        self._set_phase(AdventurePhase.DESCRIBING)
        self.player_actions.clear()
        self.action_results = []
        self.votes.clear()
        self.winning_action = None
        self._advance_scheduled = False

        self.host.emit_to_room("zoobWorldUpdate", self._world_payload())
        if self.round > 1:
            self.host.send_system_message(f"🧙‍♂️ Beginning round {self.round} of your adventure!", persist=True)
        else:
            self.host.send_system_message("🧙‍♂️ Welcome! Your text adventure begins now.", persist=True)
        self._start_input_phase()

    def _start_input_phase(self) -> None:
        if self.phase != AdventurePhase.DESCRIBING:
            return
        self._set_phase(AdventurePhase.INPUT)
        self.host.update_game_state()

        inventory = ", ".join(self.inventory) if self.inventory else "Empty"
        self.host.send_system_message(
            f"Round {self.round}. {self.world_description}\n\n📦 Inventory: {inventory}\n\n🔍 What do you do?",
            persist=True,
        )
        self.host.start_timer(self.timing.input_ms, INPUT_END)
        self.host.emit_to_room("startDisplayTimer", self.timing.input_ms // 1000)

        self.ai_timers.cancel_all()
        for ai_id, state in self.ai_players.items():
            state.last_chat_time = 0
            state.last_action_time = 0
            self._schedule_ai_chat(ai_id)
            self._schedule_ai_action(ai_id)

    def _next_round(self) -> None:
        self.round += 1
        for name in self.TIMER_NAMES:
            self.host.clear_timer(name)
        self.ai_timers.cancel_all()
        self._start_round()

    def end_input_phase(self) -> None:
        if self.phase != AdventurePhase.INPUT:
            return
        self.host.clear_timer(INPUT_END)
        self.ai_timers.cancel_all()
        self._set_phase(AdventurePhase.GENERATING_ACTIONS)
        self.host.update_game_state()
        self.host.emit_to_room("stopDisplayTimer")

        if not self.player_actions:
            self.host.send_system_message(
                "🧙‍♂️ No actions submitted this round. The world remains unchanged.", persist=True
            )
            self._next_round()
            return

        count = len(self.player_actions)
        self.host.send_system_message(
            f"🧙‍♂️ Time's up! Received {count} action{'' if count == 1 else 's'} to process. "
            "Imagining the possibilities...",
            persist=True,
        )
        batch = list(self.player_actions.items())
        self._spawn(self._generate_action_results(self.epoch, batch), "action_results")

    async def _generate_action_results(self, epoch: int, batch: List[tuple]) -> None:
        try:
            roster = self.host.get_players()
            jobs = [
                self._generate_one(player_id, roster[player_id].username, action)
                for player_id, action in batch
                if player_id in roster
            ]
            results = await asyncio.gather(*jobs, return_exceptions=True)
            if not self._is_current(epoch, AdventurePhase.GENERATING_ACTIONS):
                return
            self.action_results = [r for r in results if isinstance(r, ActionResult)]
            if not self.action_results:
                self.host.send_system_message("Failed to generate results for any actions this round.", persist=True)
                self._next_round()
                return
            self._start_voting()
        except Exception:
            logger.exception("[%s] Action result batch failed", self.room_code)
            if self._is_current(epoch, AdventurePhase.GENERATING_ACTIONS):
                self.host.send_system_message("An error occurred while processing actions.", persist=True)
                self._next_round()

    async def _generate_one(self, player_id: str, player_name: str, action: str) -> ActionResult:
        try:
            text_prompt = prompt_builder.build_action_result_prompt(
                self.world_description, self.inventory, action, player_name, self._prompt_history(),
            )
            text_result = await self.host.request_gemini_text(text_prompt)
            description = (text_result.text or "").strip()
            if not description:
                raise ValueError("empty action description")
        except Exception:
            logger.warning("[%s] Outcome text failed for %s: %r", self.room_code, player_name, action, exc_info=True)
            return ActionResult(
                player_id=player_id,
                player_name=player_name,
                action_prompt=action,
                result_text=f"(An error occurred trying to '{action}')",
                result_image_src=FALLBACK_BLANK_IMAGE,
                failed=True,
            )

        image_src = FALLBACK_BLANK_IMAGE
        try:
            image_prompt = prompt_builder.build_action_image_prompt(description, self.image_style)
            image_result = await self.host.request_gemini_image(image_prompt)
            if image_result.image_data:
                image_src = to_data_url(image_result.image_data)
            else:
                logger.warning("[%s] No image for %s's action, using text only", self.room_code, player_name)
        except Exception:
            logger.warning("[%s] Outcome image failed for %s", self.room_code, player_name, exc_info=True)

        return ActionResult(
            player_id=player_id,
            player_name=player_name,
            action_prompt=action,
            result_text=description,
            result_image_src=image_src,
        )

    def _start_voting(self) -> None:
        self._set_phase(AdventurePhase.VOTING)
        self.votes.clear()
        self.host.emit_to_room("zoobActionResults", [r.to_public() for r in self.action_results])
        self.host.start_timer(self.timing.voting_ms, VOTING_END)
        self.host.emit_to_room("startDisplayTimer", self.timing.voting_ms // 1000)
        self.host.send_system_message(
            f"🔮 Choose your path! {len(self.action_results)} possible futures await. "
            f"You have {self.timing.voting_ms // 1000} seconds to vote for the action you want the group to take!",
            persist=True,
        )
        self.host.update_game_state()
        self.ai_timers.cancel_all()
        self._schedule_ai_votes()

    def _check_voting_complete(self) -> None:
        if self.phase != AdventurePhase.VOTING:
            return
        if self.players and len(self.votes) >= len(self.players):
            logger.info("[%s] All %d votes in, ending voting early", self.room_code, len(self.players))
            self._tally_votes()

    def _tally_votes(self) -> None:
        self._set_phase(AdventurePhase.GENERATING_RESULT)
        self.host.clear_timer(VOTING_END)
        self.ai_timers.cancel_all()
        self.host.emit_to_room("stopDisplayTimer")
        count = len(self.votes)
        self.host.send_system_message(
            f"🧮 Time's up! Counting {count} vote{'' if count == 1 else 's'}...", persist=True
        )

        outcome = tally_plurality(self.votes, self.action_results, self.rng)
        logger.info("[%s] Vote result: %s → %s (%s)", self.room_code, outcome["result"],
                    outcome["winner"], outcome["tally"])
        winner = next((r for r in self.action_results if r.player_id == outcome["winner"]), None)
        if winner is None:
            self.host.send_system_message(
                "No valid action chosen this round. The world remains unchanged.", persist=True
            )
            self._next_round()
            return

        self.winning_action = {"player_id": winner.player_id, "action_prompt": winner.action_prompt}
        self.host.send_system_message(
            f'🏆 The votes are in! "{winner.action_prompt}" by {self.display_name(winner.player_id)} '
            "will be our path forward! Creating your adventure...",
            persist=True,
        )
        self.host.update_game_state()
        self._spawn(self._generate_winning_result(self.epoch), "winning_result")

    async def _generate_winning_result(self, epoch: int) -> None:
        player_id = self.winning_action["player_id"]
        action = self.winning_action["action_prompt"]
        player_name = self.display_name(player_id)
        try:
            prompt = prompt_builder.build_canonical_result_prompt(
                self.world_description, self.inventory, action, player_name, self._prompt_history(),
            )
            structured = await self.host.request_gemini_structured_text(prompt)
            narrative = (structured.text or "").strip()
            if not narrative:
                raise ValueError("empty narrative")
        except Exception:
            logger.warning("[%s] Winning result failed for %r", self.room_code, action, exc_info=True)
            if self._is_current(epoch, AdventurePhase.GENERATING_RESULT):
                self.host.send_system_message(
                    f'An error occurred processing the action: "{action}". The world remains unchanged.',
                    persist=True,
                )
                self._next_round()
            return
        if not self._is_current(epoch, AdventurePhase.GENERATING_RESULT):
            return

        image_src = FALLBACK_BLANK_IMAGE
        try:
            image_prompt = prompt_builder.build_action_image_prompt(narrative, self.image_style)
            image_result = await self.host.request_gemini_image(image_prompt)
            if image_result.image_data:
                image_src = to_data_url(image_result.image_data)
        except Exception:
            logger.warning("[%s] Winning result image failed", self.room_code, exc_info=True)
        if not self._is_current(epoch, AdventurePhase.GENERATING_RESULT):
            return

        self._apply_winning_result(narrative, image_src, structured.data)

    def _apply_winning_result(self, narrative: str, image_src: str, data: Dict[str, Any]) -> None:
        self._set_phase(AdventurePhase.RESULTS)
        self.world_description = narrative
        self.world_image_src = image_src
        self.push_history(HistoryEntry(type="world", content=narrative))

        notices = apply_inventory_delta(
            self.inventory, data.get("items_added") or [], data.get("items_removed") or [],
        )
        if notices:
            logger.info("[%s] Inventory now %s", self.room_code, self.inventory)
            self.clock.call_later(
                self.timing.inventory_notice_delay_ms,
                functools.partial(self._send_inventory_notice, "\n".join(notices), self.epoch),
            )

        self.host.emit_to_room("zoobFinalResult", {
            **self._world_payload(),
            "winningAction": self.winning_action["action_prompt"],
            "winnerPlayerId": self.winning_action["player_id"],
            "winnerPlayerName": self.display_name(self.winning_action["player_id"]),
        })

        if is_game_over(narrative):
            logger.info("[%s] Game over", self.room_code)
            self.host.send_system_message(f"GAME OVER. {narrative}", persist=True)
            self.cleanup()
            self.host.update_game_state()
            return

        self.host.start_timer(self.timing.results_ms, NEXT_ROUND_START)
        self.host.update_game_state()

    def _send_inventory_notice(self, text: str, epoch: int) -> None:
        if self.epoch == epoch:
            self.host.send_system_message(text, persist=True)

    # ── Host events ───────────────────────────────────────────────────────────

    def on_player_join(self, player_id: str, info: PlayerInfo) -> None:
        if player_id in self.players or self.ended:
            return
        self.add_player(player_id, info)
        if info.is_ai and self.phase == AdventurePhase.INPUT:
            self._schedule_ai_chat(player_id)
            self._schedule_ai_action(player_id)

        if self.phase != AdventurePhase.INITIALIZING:
            self.host.emit_to_player(player_id, "zoobWorldUpdate", self._world_payload())
            if self.phase == AdventurePhase.VOTING:
                self.host.emit_to_player(
                    player_id, "zoobActionResults", [r.to_public() for r in self.action_results]
                )
        self.host.send_system_message(
            f'🧙‍♂️ Welcome, {info.username}! Use "/g [action]" to submit an action during the input '
            'phase (e.g. "/g open mailbox" or "/g go north"). After everyone submits, '
            "you'll vote on which one to take!",
            target_player_id=player_id,
        )
        self.host.update_game_state()

    def on_player_leave(self, player_id: str) -> None:
        if player_id not in self.players:
            return
        username = self.display_name(player_id)
        self.remove_player(player_id)
        self.player_actions.pop(player_id, None)
        self.votes.pop(player_id, None)

        if not self.players:
            logger.info("[%s] Last player left", self.room_code)
            self.cleanup()
            self.host.update_game_state()
            return

        if self.phase == AdventurePhase.VOTING:
            before = len(self.action_results)
            self.action_results = [r for r in self.action_results if r.player_id != player_id]
            if len(self.action_results) != before:
                logger.info("[%s] Removed %s's action from the ballot", self.room_code, username)
                self.host.emit_to_room("zoobActionResults", [r.to_public() for r in self.action_results])
            self._check_voting_complete()
        elif self.phase == AdventurePhase.INPUT:
            self._maybe_all_submitted()

        if self.human_count() == 0 and self.ai_players:
            logger.info("[%s] Only AI players remain, stopping", self.room_code)
            self.host.send_system_message("All human players have left. Ending the adventure.", persist=True)
            self.cleanup()

        self.host.update_game_state()

    def on_command(self, player_id: str, name: str, value: str) -> CommandResult:
        if self.phase != AdventurePhase.INPUT or not name.lower().startswith("g"):
            return CommandResult()
        if player_id not in self.players:
            return CommandResult()
        if player_id in self.player_actions:
            self.host.send_system_message("Action already submitted this round.", target_player_id=player_id)
            return CommandResult(handled=True)
        if len(self.player_actions) >= MAX_ACTION_RESULTS:
            self.host.send_system_message(
                f"Action limit ({MAX_ACTION_RESULTS}) reached for this round. Please wait.",
                target_player_id=player_id,
            )
            return CommandResult(handled=True)

        self.player_actions[player_id] = value
        logger.debug("[%s] %s action %r", self.room_code, player_id, value)
        if player_id not in self.ai_players:
            self.host.send_system_message(
                f'✅ Your action has been recorded: "{value}"', target_player_id=player_id
            )
        self._maybe_all_submitted()
        return CommandResult(handled=True, display_message=value, is_guess=True)

    def _maybe_all_submitted(self) -> None:
        """Advance after a short grace period once every present human has acted."""
        if self._advance_scheduled or self.phase != AdventurePhase.INPUT:
            return
        humans = [pid for pid in self.players if pid not in self.ai_players]
        if not humans or not all(pid in self.player_actions for pid in humans):
            return
        self._advance_scheduled = True
        self.clock.call_later(
            self.timing.all_submitted_grace_ms,
            functools.partial(self._all_submitted, self.epoch),
        )

    def _all_submitted(self, epoch: int) -> None:
        if self._is_current(epoch, AdventurePhase.INPUT):
            self.host.send_system_message("🧙‍♂️ All players have submitted their actions!", persist=True)
            self.end_input_phase()

    def on_vote(self, voter_id: str, target_id: str) -> None:
        if self.phase != AdventurePhase.VOTING or voter_id in self.votes:
            return
        if voter_id not in self.players:
            return
        if not any(r.player_id == target_id and not r.failed for r in self.action_results):
            logger.debug("[%s] %s voted for invalid action owner %s", self.room_code, voter_id, target_id)
            return

        self.votes[voter_id] = target_id
        voter = self.host.get_players().get(voter_id)
        if voter:
            self.host.emit_to_room("zoobPlayerVoted", {
                "votedForPlayerId": target_id,
                "voterName": voter.username,
                "voterColor": voter.color,
            })
        self._check_voting_complete()

    def on_timer_expired(self, name: str) -> None:
        if name == INPUT_END and self.phase == AdventurePhase.INPUT:
            self.end_input_phase()
        elif name == VOTING_END and self.phase == AdventurePhase.VOTING:
            self._tally_votes()
        elif name == NEXT_ROUND_START and self.phase == AdventurePhase.RESULTS:
            self._next_round()
        else:
            logger.debug("[%s] Ignoring %s in phase %s", self.room_code, name, self.phase.value)

    def update_custom_prompts(self, prompts: Dict[str, str]) -> Dict[str, str]:
        description = prompts.get("worldDescription")
        if description and len(description) <= settings.max_prompt_length:
            self.world_description = description
            return {"worldDescription": description}
        return {}

    def snapshot_state(self) -> Dict[str, Any]:
        return {
            "gameType": self.game_type.value,
            "gameState": self.phase.value,
            "round": self.round,
            "currentDrawerId": None,
            "voting": self.phase == AdventurePhase.VOTING,
            "epoch": self.epoch,
            "inventory": list(self.inventory),
        }

    def cleanup(self) -> None:
        super().cleanup()
        self.player_actions.clear()
        self.votes.clear()

    # ── AI players ────────────────────────────────────────────────────────────

    def _schedule_ai_chat(self, ai_id: str) -> None:
        state = self.ai_players.get(ai_id)
        if state is None or self.phase != AdventurePhase.INPUT:
            return
        now = self.clock.now_ms()
        deadline = self.host.get_timer_end_time(INPUT_END) or 0
        if deadline - now <= 5000:
            return
        t = self.timing
        if state.last_chat_time == 0:
            delay = random_delay(self.rng, t.first_chat_min_ms, t.first_chat_max_ms)
        elif now - state.last_chat_time > random_delay(self.rng, t.chat_interval_min_ms, t.chat_interval_max_ms):
            if self.rng.random() >= t.chat_probability:
                return
            delay = random_delay(self.rng, t.chat_delay_min_ms, t.chat_delay_max_ms)
        else:
            return
        if fits_before(now, delay, deadline):
            self.ai_timers.schedule(
                ai_id, AITimerKind.CHAT, delay, functools.partial(self._fire_chat, ai_id, self.epoch)
            )

    def _schedule_ai_action(self, ai_id: str) -> None:
        if ai_id not in self.ai_players or self.phase != AdventurePhase.INPUT or ai_id in self.player_actions:
            return
        now = self.clock.now_ms()
        deadline = self.host.get_timer_end_time(INPUT_END) or 0
        time_left = deadline - now
        if time_left <= 5000:
            return
        delay = random_delay(self.rng, self.timing.action_min_ms, self.timing.action_max_ms)
        if not fits_before(now, delay, deadline):
            # Too close to the deadline for the normal window: act late rather than never
            delay = max(1000, time_left - 3000)
        self.ai_timers.schedule(
            ai_id, AITimerKind.GUESS, delay, functools.partial(self._fire_action, ai_id, self.epoch)
        )

    def _fire_chat(self, ai_id: str, epoch: int) -> None:
        if self._is_current(epoch, AdventurePhase.INPUT) and ai_id in self.ai_players:
            self._spawn(self._make_ai_chat(ai_id, epoch), f"chat:{ai_id}")

    def _fire_action(self, ai_id: str, epoch: int) -> None:
        if (self._is_current(epoch, AdventurePhase.INPUT) and ai_id in self.ai_players
                and ai_id not in self.player_actions):
            self._spawn(self._make_ai_action(ai_id, epoch), f"action:{ai_id}")

    async def _make_ai_chat(self, ai_id: str, epoch: int) -> None:
        details = self.host.get_ai_details(ai_id)
        if details is None:
            return
        prompt = prompt_builder.build_adventure_chat_prompt(
            details.username, details.core_personality_prompt, self.world_description,
            self.inventory, self.host.get_chat_history(),
        )
        try:
            result = await self.host.request_gemini_text(prompt)
        except Exception:
            logger.warning("[%s] AI chat failed for %s", self.room_code, ai_id, exc_info=True)
            return
        if not self._is_current(epoch, AdventurePhase.INPUT) or ai_id not in self.ai_players:
            return
        message = (result.text or "").strip()
        if message:
            self.ai_players[ai_id].last_chat_time = self.clock.now_ms()
            self.host.send_player_message(ai_id, message, False)
        self._schedule_ai_chat(ai_id)

    async def _make_ai_action(self, ai_id: str, epoch: int) -> None:
        details = self.host.get_ai_details(ai_id)
        if details is None:
            return
        prompt = prompt_builder.build_adventure_action_prompt(
            details.username, details.core_personality_prompt, self.world_description,
            self.inventory, self.host.get_chat_history(),
        )
        try:
            result = await self.host.request_gemini_text(prompt)
        except Exception:
            logger.warning("[%s] AI action failed for %s", self.room_code, ai_id, exc_info=True)
            return
        if not self._is_current(epoch, AdventurePhase.INPUT) or ai_id not in self.ai_players:
            return
        action = self.host.sanitize_message((result.text or "").strip(), CHAT_CHARS)
        if not action:
            logger.warning("[%s] AI %s produced no action", self.room_code, ai_id)
            return
        handled = self.on_command(ai_id, "g", action)
        if handled.is_guess:
            self.ai_players[ai_id].last_action_time = self.clock.now_ms()
            self.host.send_system_message(f"📝 {details.username} has submitted an action.", persist=True)

    def _schedule_ai_votes(self) -> None:
        if self.phase != AdventurePhase.VOTING or not self.action_results:
            return
        for ai_id in self.ai_players:
            if ai_id in self.votes:
                continue
            delay = self._vote_delay(
                random_delay(self.rng, self.timing.vote_delay_min_ms, self.timing.vote_delay_max_ms),
                VOTING_END,
            )
            if delay is None:
                continue
            self.ai_timers.schedule(
                ai_id, AITimerKind.VOTE, delay, functools.partial(self._fire_vote, ai_id, self.epoch)
            )

    def _fire_vote(self, ai_id: str, epoch: int) -> None:
        if self._is_current(epoch, AdventurePhase.VOTING) and ai_id in self.ai_players:
            self._spawn(self._make_ai_vote(ai_id, epoch), f"vote:{ai_id}")

    async def _make_ai_vote(self, ai_id: str, epoch: int) -> None:
        options = [r for r in self.action_results if not r.failed]
        if not options:
            return
        details = self.host.get_ai_details(ai_id)
        text = None
        if details is not None:
            prompt = prompt_builder.build_adventure_vote_prompt(
                details.username, details.core_personality_prompt, self.world_description, options,
            )
            try:
                text = (await self.host.request_gemini_text(prompt)).text
            except Exception:
                logger.warning("[%s] AI vote request failed for %s", self.room_code, ai_id, exc_info=True)
        if not self._is_current(epoch, AdventurePhase.VOTING) or ai_id not in self.ai_players:
            return
        if ai_id in self.votes:
            return
        # The ballot may have shrunk while the request was in flight
        options = [r for r in options if r in self.action_results]
        if not options:
            return
        index, message = parse_vote_response(text, len(options), self.rng)
        if index < 0:
            return
        self.host.send_player_message(ai_id, message, False)
        self.on_vote(ai_id, options[index].player_id)
