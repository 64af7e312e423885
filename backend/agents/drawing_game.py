"""
Drawing game engine — one player sketches, everyone else guesses with /g.

Round flow:
  waiting → drawing → generating → voting → results → drawing (round + 1)

- drawing:    roundEnd timer; guesses via /g (last write wins); AI guessers react
              to canvas updates; an AI drawer asks Gemini for a doodle
- generating: one image per guess, generated from the sketch, all concurrently
- voting:     votingEnd timer; ends early once every eligible voter has voted
- results:    strict majority of cast votes earns a point; resultsEnd timer

The drawer rotates through players in join order. Missing sketch, no guesses or
no successful images all skip straight to the next round with a chat notice.
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
    AITimerKind, CommandResult, DrawingPhase, DrawingTiming, GameType,
    GeneratedImage, PlayerInfo,
)
from utils.images import FALLBACK_BLANK_IMAGE, to_data_url
from utils.sanitize import CHAT_CHARS

logger = logging.getLogger(__name__)

ROUND_END = "roundEnd"
VOTING_END = "votingEnd"
RESULTS_END = "resultsEnd"

ROOM_KEY = "__room__"  # owner key for room-wide AI timers

WELCOME_TIP = (
    "TIP: Use /g followed by your guess to submit a guess that will be used for image "
    "generation. Regular chat messages won't be used for generating images."
)


def tally_majority(votes: Dict[str, str], candidates: List[str]) -> Dict[str, Any]:
    """
    Count votes per image owner; a winner needs strictly more than half of the
    votes cast. Every winner earns exactly one point.

    Returns:
    {
        "result": "winner" | "multiple_winners" | "no_majority",
        "winners": List[str],
        "tally": Dict[str, int],   # every candidate, zero included
        "votes_cast": int,
    }
    """
    tally = {player_id: 0 for player_id in candidates}
    for target in votes.values():
        if target in tally:
            tally[target] += 1
    votes_cast = len(votes)
    winners = [player_id for player_id, count in tally.items() if count > votes_cast / 2]
    if not winners:
        result = "no_majority"
    elif len(winners) == 1:
        result = "winner"
    else:
        result = "multiple_winners"
    return {"result": result, "winners": winners, "tally": tally, "votes_cast": votes_cast}


class DrawingGame(GameEngine):
    game_type = GameType.DRAWING
    ENDED = DrawingPhase.ENDED
    TIMER_NAMES = (ROUND_END, VOTING_END, RESULTS_END)

    def __init__(self, room_code, host, clock, config: Optional[Dict[str, Any]] = None, rng=None):
        super().__init__(room_code, host, clock, rng)
        defaults = {
            "round_ms": settings.drawing_round_seconds * 1000,
            "voting_ms": settings.drawing_voting_seconds * 1000,
            "results_ms": settings.drawing_results_seconds * 1000,
        }
        self.timing = DrawingTiming(**{**defaults, **(config or {})})
        self.phase = DrawingPhase.WAITING

        self.current_drawer_id: Optional[str] = None
        self.last_guesses: Dict[str, str] = {}   # player_id → guess, submission order
        self.votes: Dict[str, str] = {}          # voter_id → image owner id
        self.generated_images: List[GeneratedImage] = []

        self.custom_image_prompt: Optional[str] = None
        self.custom_chat_prompt: Optional[str] = None
        self.custom_guess_prompt: Optional[str] = None

    # ── Core flow ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self.phase != DrawingPhase.WAITING:
            return
        if self.players:
            logger.info("[%s] Starting drawing game with %d player(s)", self.room_code, len(self.players))
            self._start_turn()
        else:
            self.host.send_system_message("Waiting for players...")

    def _select_drawer(self) -> Optional[str]:
        ids = list(self.players)
        roster = self.host.get_players()
        for attempt in range(len(ids)):
            candidate = ids[(self.round - 1 + attempt) % len(ids)]
            if candidate in roster:
                return candidate
            logger.warning("[%s] Drawer candidate %s no longer in room, trying next", self.room_code, candidate)
        return None

    def _start_turn(self) -> None:
        self.ai_timers.cancel_all()
        self.votes.clear()
        self.last_guesses.clear()
        self.generated_images = []

        drawer_id = self._select_drawer() if self.players else None
        if drawer_id is None:
            logger.info("[%s] No valid drawer, waiting for players", self.room_code)
            self.current_drawer_id = None
            self._set_phase(DrawingPhase.WAITING)
            self.host.update_game_state()
            return

        self.current_drawer_id = drawer_id
        self._set_phase(DrawingPhase.DRAWING)
        self.host.emit_to_room("newTurn", {
            "drawer": self.display_name(drawer_id, "Unknown Drawer"),
            "drawerId": drawer_id,
            "round": self.round,
        })
        self.host.start_timer(self.timing.round_ms, ROUND_END)
        self.host.emit_to_room("startDisplayTimer", self.timing.round_ms // 1000)

        self._reset_ai_guess_timers()
        if drawer_id in self.ai_players:
            self._schedule_ai_drawing()

        self.host.set_drawing_data("")
        self.host.update_game_state()

    def end_round(self) -> None:
        if self.phase != DrawingPhase.DRAWING:
            return
        self.host.clear_timer(ROUND_END)
        self.ai_timers.cancel_all()

        if self.players and any(self.last_guesses.values()):
            self._set_phase(DrawingPhase.GENERATING)
            self.host.update_game_state()
            self._spawn(self._generate_images(self.epoch), "generate_images")
        else:
            logger.info("[%s] Skipping generation (players=%d, guesses=%d)",
                        self.room_code, len(self.players), len(self.last_guesses))
            self.host.send_system_message(
                "Not enough players or guesses to generate images this round.", persist=True
            )
            self._next_turn()

    def end_round_early(self, player_id: str) -> bool:
        """The drawer may finish the drawing phase before roundEnd."""
        if self.phase != DrawingPhase.DRAWING or player_id != self.current_drawer_id:
            return False
        logger.info("[%s] Drawer ended round %d early", self.room_code, self.round)
        self.end_round()
        return True

    async def _generate_images(self, epoch: int) -> None:
        try:
            drawing_data = await self.host.get_drawing_data()
            if not self._is_current(epoch, DrawingPhase.GENERATING):
                return
            if not drawing_data:
                self.host.send_system_message("No drawing was submitted this round.", persist=True)
                self._next_turn()
                return

            roster = self.host.get_players()
            valid = [
                (player_id, roster[player_id].username, guess)
                for player_id, guess in self.last_guesses.items()
                if guess and player_id != self.current_drawer_id and player_id in roster
            ]
            if not valid:
                self.host.send_system_message("No valid guesses to generate images from.", persist=True)
                self._next_turn()
                return

            self.host.send_system_message("Generating images based on guesses...", persist=True)
            results = await asyncio.gather(
                *(self._generate_one(pid, name, guess, drawing_data) for pid, name, guess in valid),
                return_exceptions=True,
            )
            if not self._is_current(epoch, DrawingPhase.GENERATING):
                return

            images = [r for r in results if isinstance(r, GeneratedImage)]
            if not images:
                logger.warning("[%s] All image generations failed", self.room_code)
                self.host.send_system_message("Failed to generate any images from the guesses.", persist=True)
                self._next_turn()
                return

            self.generated_images = images
            logger.info("[%s] Generated %d/%d images", self.room_code, len(images), len(valid))
            self._start_voting()
        except Exception:
            logger.exception("[%s] Image generation batch failed", self.room_code)
            if self._is_current(epoch, DrawingPhase.GENERATING):
                self.host.send_system_message("An error occurred while generating images.", persist=True)
                self._next_turn()

    async def _generate_one(self, player_id: str, player_name: str, guess: str,
                            drawing_data: str) -> Optional[GeneratedImage]:
        prompt = prompt_builder.build_image_generation_prompt(guess, self.custom_image_prompt)
        try:
            result = await self.host.request_gemini_image(prompt, drawing_data)
            if not result.image_data:
                logger.warning("[%s] No image data for %s's guess '%s'", self.room_code, player_name, guess)
                return None
            image_src = await self.host.save_generated_image(result.image_data, player_id, self.round)
            if not image_src:
                return None
        except Exception:
            logger.warning("[%s] Image generation failed for %s", self.room_code, player_id, exc_info=True)
            return None
        return GeneratedImage(
            player_id=player_id,
            player_name=player_name,
            guess=guess,
            image_src=image_src,
            text=result.text,
        )

    def _start_voting(self) -> None:
        self._set_phase(DrawingPhase.VOTING)
        self.votes.clear()
        self.host.emit_to_room("startVoting", [image.to_public() for image in self.generated_images])
        self.host.start_timer(self.timing.voting_ms, VOTING_END)
        self.host.emit_to_room("startDisplayTimer", self.timing.voting_ms // 1000)
        self._schedule_ai_votes()
        self.host.update_game_state()

    def _eligible_voters(self) -> int:
        return sum(1 for player_id in self.players if player_id != self.current_drawer_id)

    def _check_voting_complete(self) -> None:
        if self.phase != DrawingPhase.VOTING:
            return
        eligible = self._eligible_voters()
        if eligible > 0 and len(self.votes) >= eligible:
            logger.info("[%s] All %d votes in, ending voting early", self.room_code, eligible)
            self._tally_votes()

    def _tally_votes(self) -> None:
        self._set_phase(DrawingPhase.RESULTS)
        self.host.clear_timer(VOTING_END)
        self.ai_timers.cancel_all()

        outcome = tally_majority(self.votes, [image.player_id for image in self.generated_images])
        roster = self.host.get_players()
        # A voter leaving can trigger this tally before the room drops them
        winners = [player_id for player_id in outcome["winners"] if player_id in roster and player_id in self.players]
        tally = outcome["tally"]

        if len(winners) == 1:
            count = tally[winners[0]]
            message = (f"{roster[winners[0]].username}'s image won with {count} "
                       f"vote{'' if count == 1 else 's'}! They get a point!")
        elif winners:
            listing = ", ".join(f"{roster[w].username} ({tally[w]} votes)" for w in winners)
            message = f"Multiple winners! {listing} each get a point!"
        else:
            message = "No image received a majority of votes (>50%). No points awarded."
        logger.info("[%s] Vote result: %s (%s)", self.room_code, outcome["result"], tally)

        if winners:
            self.host.update_players_data({player_id: 1 for player_id in winners})
            for player_id in winners:
                if player_id in self.players:
                    self.players[player_id] += 1

        final_roster = self.host.get_players()
        self.host.emit_to_room("votingResults", {
            "message": message,
            "scores": [{"id": pid, "score": info.score} for pid, info in final_roster.items() if pid in self.players],
            "votes": tally,
        })
        self.host.start_timer(self.timing.results_ms, RESULTS_END)
        self.host.update_game_state()

    def _next_turn(self) -> None:
        self.round += 1
        for name in self.TIMER_NAMES:
            self.host.clear_timer(name)
        self.ai_timers.cancel_all()
        self._start_turn()

    # ── Host events ───────────────────────────────────────────────────────────

    def on_player_join(self, player_id: str, info: PlayerInfo) -> None:
        if player_id in self.players or self.ended:
            return
        self.add_player(player_id, info)
        self.host.send_system_message(WELCOME_TIP, target_player_id=player_id)

        if self.phase == DrawingPhase.WAITING:
            self.start()
        else:
            self.host.update_game_state()
            self._spawn(self._send_canvas(player_id), "send_canvas")

    async def _send_canvas(self, player_id: str) -> None:
        drawing_data = await self.host.get_drawing_data()
        self.host.emit_to_player(player_id, "drawingUpdate", drawing_data or "")

    def on_player_leave(self, player_id: str) -> None:
        if player_id not in self.players:
            return
        username = self.display_name(player_id)
        was_drawer = player_id == self.current_drawer_id
        had_vote = player_id in self.votes

        self.remove_player(player_id)
        self.last_guesses.pop(player_id, None)
        self.votes.pop(player_id, None)

        if not self.players:
            logger.info("[%s] Last player left", self.room_code)
            self.cleanup()
            self.host.update_game_state()
            return

        if was_drawer and self.phase == DrawingPhase.DRAWING:
            self.host.send_system_message(f"{username} (the drawer) left! Starting next turn.", persist=True)
            self._next_turn()
        elif self.phase == DrawingPhase.VOTING:
            if had_vote:
                self.host.send_system_message(f"{username}'s vote was removed as they left.", persist=True)
            self._check_voting_complete()
            self.host.update_game_state()
        else:
            self.host.update_game_state()

        if self.human_count() == 0 and self.ai_players and self.phase != DrawingPhase.WAITING:
            logger.info("[%s] Only AI players remain, stopping", self.room_code)
            self.host.send_system_message("All human players have left. Ending the drawing game.", persist=True)
            self.cleanup()
            self.host.update_game_state()

    def on_command(self, player_id: str, name: str, value: str) -> CommandResult:
        if (
            self.phase == DrawingPhase.DRAWING
            and player_id in self.players
            and player_id != self.current_drawer_id
            and name.lower().startswith("g")
        ):
            self.last_guesses[player_id] = value
            logger.debug("[%s] %s guessed %r", self.room_code, player_id, value)
            return CommandResult(handled=True, display_message=value, is_guess=True)
        return CommandResult()

    def on_vote(self, voter_id: str, target_id: str) -> None:
        if self.phase != DrawingPhase.VOTING:
            return
        if voter_id not in self.players or voter_id == self.current_drawer_id:
            return
        if voter_id in self.votes:
            return
        if not any(image.player_id == target_id for image in self.generated_images):
            return

        self.votes[voter_id] = target_id
        voter = self.host.get_players().get(voter_id)
        if voter:
            self.host.emit_to_room("playerVoted", {
                "playerId": target_id,
                "voterName": voter.username,
                "voterColor": voter.color,
            })
        self._check_voting_complete()

    def on_timer_expired(self, name: str) -> None:
        if name == ROUND_END and self.phase == DrawingPhase.DRAWING:
            self.end_round()
        elif name == VOTING_END and self.phase == DrawingPhase.VOTING:
            self._tally_votes()
        elif name == RESULTS_END and self.phase == DrawingPhase.RESULTS:
            self._next_turn()
        else:
            logger.debug("[%s] Ignoring %s in phase %s", self.room_code, name, self.phase.value)

    def on_drawing_update(self, drawing_data: str) -> None:
        if self.phase == DrawingPhase.DRAWING:
            self._schedule_ai_guesses_and_chats(drawing_data)

    def can_player_chat(self, player_id: str) -> bool:
        return not (player_id == self.current_drawer_id and self.phase != DrawingPhase.VOTING)

    def update_custom_prompts(self, prompts: Dict[str, str]) -> Dict[str, str]:
        accepted: Dict[str, str] = {}
        limit = settings.max_prompt_length
        image_prompt = prompts.get("imagePrompt")
        if image_prompt and "{guess}" in image_prompt and len(image_prompt) <= limit:
            self.custom_image_prompt = accepted["imagePrompt"] = image_prompt
        chat_prompt = prompts.get("chatPrompt")
        if chat_prompt and len(chat_prompt) <= limit:
            self.custom_chat_prompt = accepted["chatPrompt"] = chat_prompt
        guess_prompt = prompts.get("guessPrompt")
        if guess_prompt and len(guess_prompt) <= limit:
            self.custom_guess_prompt = accepted["guessPrompt"] = guess_prompt
        return accepted

    def snapshot_state(self) -> Dict[str, Any]:
        return {
            "gameType": self.game_type.value,
            "gameState": self.phase.value,
            "round": self.round,
            "currentDrawerId": self.current_drawer_id,
            "voting": self.phase == DrawingPhase.VOTING,
            "epoch": self.epoch,
        }

    def cleanup(self) -> None:
        super().cleanup()
        self.last_guesses.clear()
        self.votes.clear()
        self.generated_images = []

    # ── AI players ────────────────────────────────────────────────────────────

    def _reset_ai_guess_timers(self) -> None:
        self.ai_timers.cancel_all()
        for state in self.ai_players.values():
            state.last_guess_time = 0
            state.last_chat_time = 0

        deadline = self.host.get_timer_end_time(ROUND_END) or 0
        delay = deadline - self.clock.now_ms() - self.timing.last_chance_ms
        if delay > 1000:
            self.ai_timers.schedule(
                ROOM_KEY, AITimerKind.LAST_CHANCE, delay,
                functools.partial(self._on_last_chance, self.epoch),
            )

    def _on_last_chance(self, epoch: int) -> None:
        if self._is_current(epoch, DrawingPhase.DRAWING):
            self._spawn(self._last_chance(epoch), "last_chance")

    async def _last_chance(self, epoch: int) -> None:
        drawing_data = await self.host.get_drawing_data()
        if not drawing_data or not self._is_current(epoch, DrawingPhase.DRAWING):
            return
        now = self.clock.now_ms()
        for ai_id, state in self.ai_players.items():
            if ai_id == self.current_drawer_id:
                continue
            if now - state.last_guess_time > self.timing.round_ms * 0.5:
                delay = random_delay(self.rng, self.timing.last_chance_delay_min_ms,
                                     self.timing.last_chance_delay_max_ms)
                self.ai_timers.schedule(
                    ai_id, AITimerKind.GUESS, delay,
                    functools.partial(self._fire_guess, ai_id, drawing_data, epoch),
                )
        logger.info("[%s] Last-chance AI guesses armed", self.room_code)

    def _schedule_ai_guesses_and_chats(self, drawing_data: str) -> None:
        now = self.clock.now_ms()
        deadline = self.host.get_timer_end_time(ROUND_END) or 0
        if deadline - now <= max(self.timing.min_guess_ms, 5000):
            return
        t = self.timing
        epoch = self.epoch

        for ai_id, state in self.ai_players.items():
            if ai_id == self.current_drawer_id:
                continue
            first_chat = state.last_chat_time == 0
            chatted_not_guessed = state.last_chat_time > 0 and state.last_guess_time == 0
            guess_cb = functools.partial(self._fire_guess, ai_id, drawing_data, epoch)
            chat_cb = functools.partial(self._fire_chat, ai_id, drawing_data, epoch)

            if first_chat and not self.ai_timers.is_armed(ai_id, AITimerKind.CHAT):
                delay = random_delay(self.rng, t.first_chat_min_ms, t.first_chat_max_ms)
                if fits_before(now, delay, deadline):
                    self.ai_timers.schedule(ai_id, AITimerKind.CHAT, delay, chat_cb)
            elif chatted_not_guessed and not self.ai_timers.is_armed(ai_id, AITimerKind.GUESS):
                delay = random_delay(self.rng, t.first_guess_min_ms, t.first_guess_max_ms)
                if fits_before(now, delay, deadline):
                    self.ai_timers.schedule(ai_id, AITimerKind.GUESS, delay, guess_cb)
            elif (
                state.last_guess_time > 0
                and now - state.last_guess_time > t.guess_interval_ms
                and not self.ai_timers.is_armed(ai_id, AITimerKind.GUESS)
            ):
                delay = random_delay(self.rng, t.min_guess_ms, t.max_guess_ms)
                if fits_before(now, delay, deadline):
                    self.ai_timers.schedule(ai_id, AITimerKind.GUESS, delay, guess_cb)

            if (
                not first_chat
                and now - state.last_chat_time > random_delay(self.rng, t.chat_interval_min_ms, t.chat_interval_max_ms)
                and not self.ai_timers.is_armed(ai_id, AITimerKind.CHAT)
                and self.rng.random() < t.chat_probability
            ):
                delay = random_delay(self.rng, t.chat_delay_min_ms, t.chat_delay_max_ms)
                if fits_before(now, delay, deadline):
                    self.ai_timers.schedule(ai_id, AITimerKind.CHAT, delay, chat_cb)

    def _fire_guess(self, ai_id: str, drawing_data: str, epoch: int) -> None:
        if self._is_current(epoch, DrawingPhase.DRAWING) and ai_id in self.ai_players:
            self._spawn(self._make_ai_guess(ai_id, drawing_data, epoch), f"guess:{ai_id}")

    def _fire_chat(self, ai_id: str, drawing_data: str, epoch: int) -> None:
        if self._is_current(epoch, DrawingPhase.DRAWING) and ai_id in self.ai_players:
            self._spawn(self._make_ai_chat(ai_id, drawing_data, epoch), f"chat:{ai_id}")

    async def _make_ai_guess(self, ai_id: str, drawing_data: str, epoch: int) -> None:
        details = self.host.get_ai_details(ai_id)
        if details is None:
            logger.warning("[%s] AI details not found for %s", self.room_code, ai_id)
            return
        prompt = prompt_builder.build_ai_guess_prompt(
            self.host.get_chat_history(), details.username, details.core_personality_prompt,
            details.guess_prompt or self.custom_guess_prompt,
        )
        try:
            result = await self.host.request_gemini_text(prompt, drawing_data)
        except Exception:
            logger.warning("[%s] AI guess failed for %s", self.room_code, ai_id, exc_info=True)
            return
        if not self._is_current(epoch, DrawingPhase.DRAWING) or ai_id not in self.ai_players:
            return

        guess = self.host.sanitize_message((result.text or "").strip(), CHAT_CHARS)
        if not guess:
            logger.warning("[%s] AI %s produced no guess", self.room_code, ai_id)
            return
        self.ai_players[ai_id].last_guess_time = self.clock.now_ms()
        handled = self.on_command(ai_id, "g", guess)
        if handled.handled and handled.is_guess:
            self.host.send_player_message(ai_id, handled.display_message, True)

    async def _make_ai_chat(self, ai_id: str, drawing_data: str, epoch: int) -> None:
        details = self.host.get_ai_details(ai_id)
        if details is None:
            return
        prompt = prompt_builder.build_ai_chat_prompt(
            self.host.get_chat_history(), details.username, details.core_personality_prompt,
            details.chat_prompt or self.custom_chat_prompt,
        )
        try:
            result = await self.host.request_gemini_text(prompt, drawing_data)
        except Exception:
            logger.warning("[%s] AI chat failed for %s", self.room_code, ai_id, exc_info=True)
            return
        if not self._is_current(epoch, DrawingPhase.DRAWING) or ai_id not in self.ai_players:
            return
        message = (result.text or "").strip()
        if message:
            self.ai_players[ai_id].last_chat_time = self.clock.now_ms()
            self.host.send_player_message(ai_id, message, False)

    def _schedule_ai_drawing(self) -> None:
        drawer_id = self.current_drawer_id
        self.ai_timers.schedule(
            drawer_id, AITimerKind.DRAWING, self.timing.drawing_start_ms,
            functools.partial(self._fire_drawing, drawer_id, self.epoch),
        )

    def _fire_drawing(self, drawer_id: str, epoch: int) -> None:
        if self._is_current(epoch, DrawingPhase.DRAWING) and drawer_id == self.current_drawer_id:
            self._spawn(self._make_ai_drawing(drawer_id, epoch), f"draw:{drawer_id}")

    async def _make_ai_drawing(self, drawer_id: str, epoch: int) -> None:
        details = self.host.get_ai_details(drawer_id)
        if details is not None:
            prompt = prompt_builder.build_ai_drawing_concept_prompt(
                self.host.get_chat_history(), details.username, details.core_personality_prompt,
            )
            try:
                concept = (await self.host.request_gemini_text(prompt)).text.strip()
            except Exception:
                logger.warning("[%s] Drawing concept failed for %s", self.room_code, drawer_id, exc_info=True)
                concept = ""
            if not self._is_current(epoch, DrawingPhase.DRAWING):
                return
            if concept:
                self.host.send_player_message(drawer_id, concept, False)

        drawing_data = None
        try:
            result = await self.host.request_gemini_image(prompt_builder.DRAWING_CREATION_PROMPT)
            if result.image_data:
                drawing_data = to_data_url(result.image_data)
        except Exception:
            logger.warning("[%s] AI drawing failed for %s", self.room_code, drawer_id, exc_info=True)
        if not self._is_current(epoch, DrawingPhase.DRAWING):
            return

        self.host.set_drawing_data(drawing_data or FALLBACK_BLANK_IMAGE)
        if drawing_data:
            self.on_drawing_update(drawing_data)
        else:
            self.host.send_system_message(
                f"AI player {self.display_name(drawer_id, drawer_id)} had trouble drawing", persist=True
            )

    def _schedule_ai_votes(self) -> None:
        if self.phase != DrawingPhase.VOTING or not self.generated_images:
            return
        for ai_id in self.ai_players:
            if ai_id == self.current_drawer_id:
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
        if self._is_current(epoch, DrawingPhase.VOTING) and ai_id in self.ai_players:
            self._spawn(self._make_ai_vote(ai_id, epoch), f"vote:{ai_id}")

    async def _make_ai_vote(self, ai_id: str, epoch: int) -> None:
        details = self.host.get_ai_details(ai_id)
        images = list(self.generated_images)
        text = None
        if details is not None:
            prompt = prompt_builder.build_ai_voting_prompt(
                self.host.get_chat_history(), details.username, details.core_personality_prompt, images,
            )
            try:
                text = (await self.host.request_gemini_text(prompt)).text
            except Exception:
                logger.warning("[%s] AI vote request failed for %s", self.room_code, ai_id, exc_info=True)
        if not self._is_current(epoch, DrawingPhase.VOTING) or ai_id not in self.ai_players:
            return
        if ai_id in self.votes:
            return

        index, message = parse_vote_response(text, len(images), self.rng)
        if index < 0:
            return
        self.host.send_player_message(ai_id, message, False)
        self.on_vote(ai_id, images[index].player_id)
