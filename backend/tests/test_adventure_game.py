"""Text adventure: plurality rule, inventory, history and the full round flow."""
import asyncio
import random

from conftest import chat_lines, settle
from agents.adventure_game import (
    INPUT_END, MAX_ACTION_RESULTS, MAX_HISTORY_LENGTH, NEXT_ROUND_START, VOTING_END,
    AdventureGame, apply_inventory_delta, is_game_over, tally_plurality,
)
from models.game import (
    ActionResult, AdventurePhase, GameType, GenerationResult, HistoryEntry, StructuredResult,
)


def _result(player_id: str, failed: bool = False) -> ActionResult:
    return ActionResult(
        player_id=player_id,
        player_name=player_id.upper(),
        action_prompt=f"{player_id} does something",
        result_text="..." if not failed else "(An error occurred)",
        result_image_src="",
        failed=failed,
    )


# ── tally_plurality ───────────────────────────────────────────────────────────

def test_plurality_winner():
    results = [_result("a"), _result("b"), _result("c")]
    outcome = tally_plurality({"x": "a", "y": "b", "z": "b"}, results, random.Random(1))
    assert outcome["result"] == "winner"
    assert outcome["winner"] == "b"
    assert outcome["tally"] == {"a": 1, "b": 2, "c": 0}


def test_tie_is_broken_among_the_tied_only():
    results = [_result("a"), _result("b"), _result("c")]
    votes = {"x": "a", "y": "b"}
    winners = {tally_plurality(votes, results, random.Random(seed))["winner"] for seed in range(40)}
    assert winners == {"a", "b"}
    outcome = tally_plurality(votes, results, random.Random(3))
    assert outcome["result"] == "tie"
    assert sorted(outcome["tied"]) == ["a", "b"]


def test_no_votes_picks_a_random_valid_result():
    results = [_result("a"), _result("b", failed=True)]
    outcome = tally_plurality({}, results, random.Random(5))
    assert outcome["result"] == "no_votes"
    assert outcome["winner"] == "a"


def test_votes_for_failed_results_do_not_count():
    results = [_result("a"), _result("b", failed=True)]
    outcome = tally_plurality({"x": "b", "y": "b"}, results, random.Random(5))
    assert outcome["tally"] == {"a": 0}
    assert outcome["winner"] == "a"


def test_all_failed_has_no_winner():
    outcome = tally_plurality({"x": "a"}, [_result("a", failed=True)], random.Random(5))
    assert outcome["result"] == "no_valid_actions"
    assert outcome["winner"] is None


# ── Inventory and history ─────────────────────────────────────────────────────

def test_inventory_add_then_remove_round_trips():
    inventory = ["lamp"]
    gained = apply_inventory_delta(inventory, ["Leaflet"], [])
    assert inventory == ["lamp", "Leaflet"]
    assert gained == ["📥 You gained: Leaflet"]

    lost = apply_inventory_delta(inventory, [], ["leaflet"])
    assert inventory == ["lamp"]
    assert lost == ["📤 You lost: Leaflet"]


def test_inventory_removals_apply_before_additions():
    inventory = ["sword"]
    notices = apply_inventory_delta(inventory, ["sword"], ["SWORD"])
    assert inventory == ["sword"]
    assert notices == ["📤 You lost: sword", "📥 You gained: sword"]


def test_inventory_ignores_duplicates_and_unknown_removals():
    inventory = ["lamp"]
    assert apply_inventory_delta(inventory, ["LAMP", ""], ["rope"]) == []
    assert inventory == ["lamp"]


def test_history_keeps_the_newest_25_entries():
    game = AdventureGame("ROOM01", host=None, clock=None)
    for i in range(30):
        game.push_history(HistoryEntry(content=f"entry {i}"))
    assert len(game.history) == MAX_HISTORY_LENGTH
    assert game.history[0].content == "entry 5"
    assert game.history[-1].content == "entry 29"


def test_game_over_phrases():
    assert is_game_over("It is pitch black. You have been eaten by a grue.")
    assert is_game_over("YOU HAVE DIED.")
    assert not is_game_over("You open the mailbox.")


# ── Round flow ────────────────────────────────────────────────────────────────

async def _started_adventure(make_room, names=("Ann",), engine_config=None):
    room = make_room(GameType.ADVENTURE, engine_config=engine_config)
    ids = [room.add_player(name).id for name in names]
    await settle()
    assert room.engine.phase == AdventurePhase.INPUT
    return room, ids


def test_single_player_round_updates_world_and_inventory(make_room, clock, gateway, sink):
    gateway.generate_text.return_value.text = "You open the small mailbox. Inside is a leaflet."
    gateway.generate_structured_text.return_value = StructuredResult(
        text="Opening the small mailbox reveals a leaflet, which you take.",
        data={"items_added": ["leaflet"], "items_removed": []},
    )

    async def scenario():
        room, (ann,) = await _started_adventure(make_room)
        engine = room.engine
        assert engine.world_image_src.startswith("data:image/png;base64,")

        room.handle_chat(ann, "/g open mailbox")
        assert engine.player_actions == {ann: "open mailbox"}

        await clock.advance(engine.timing.all_submitted_grace_ms)
        assert "🧙‍♂️ All players have submitted their actions!" in chat_lines(room)
        assert engine.phase == AdventurePhase.VOTING
        assert len(engine.action_results) == 1
        assert not engine.action_results[0].failed

        room.handle_vote(ann, ann)
        await settle()
        assert engine.phase == AdventurePhase.RESULTS
        assert engine.world_description == "Opening the small mailbox reveals a leaflet, which you take."
        assert engine.inventory == ["leaflet"]
        assert engine.history[-1].content == engine.world_description
        assert room.get_timer_end_time(NEXT_ROUND_START) is not None

        final = sink.of_type("zoobFinalResult")[-1]
        assert final["winningAction"] == "open mailbox"
        assert final["winnerPlayerName"] == "Ann"
        assert final["inventory"] == ["leaflet"]

        await clock.advance(engine.timing.inventory_notice_delay_ms)
        assert "📥 You gained: leaflet" in chat_lines(room)

        await clock.advance(engine.timing.results_ms)
        assert engine.round == 2
        assert engine.phase == AdventurePhase.INPUT

    asyncio.run(scenario())


def test_no_actions_keeps_world_and_moves_on(make_room, clock):
    async def scenario():
        room, _ = await _started_adventure(make_room)
        engine = room.engine
        world = engine.world_description
        await clock.advance(engine.timing.input_ms)
        assert "🧙‍♂️ No actions submitted this round. The world remains unchanged." in chat_lines(room)
        assert engine.world_description == world
        assert engine.round == 2
        assert engine.phase == AdventurePhase.INPUT

    asyncio.run(scenario())


def test_duplicate_action_is_rejected_privately(make_room, clock, sink):
    async def scenario():
        room, (ann, ben) = await _started_adventure(make_room, ("Ann", "Ben"))
        engine = room.engine
        assert engine.on_command(ann, "g", "go north").is_guess
        second = engine.on_command(ann, "g", "go south")
        assert second.handled and second.display_message is None
        assert engine.player_actions[ann] == "go north"
        await settle()
        notices = [entry["message"] for entry in sink.private(ann, "chatMessage")]
        assert "Action already submitted this round." in notices

    asyncio.run(scenario())


def test_action_cap_limits_the_round(make_room, clock, sink):
    async def scenario():
        names = tuple(f"P{i}" for i in range(MAX_ACTION_RESULTS + 1))
        room, ids = await _started_adventure(make_room, names)
        engine = room.engine
        for pid in ids[:MAX_ACTION_RESULTS]:
            assert engine.on_command(pid, "g", "wait").is_guess
        last = engine.on_command(ids[-1], "g", "wait")
        assert last.handled and not last.is_guess
        assert len(engine.player_actions) == MAX_ACTION_RESULTS
        await settle()
        notices = [entry["message"] for entry in sink.private(ids[-1], "chatMessage")]
        assert f"Action limit ({MAX_ACTION_RESULTS}) reached for this round. Please wait." in notices

        await clock.advance(engine.timing.input_ms)
        assert engine.phase == AdventurePhase.VOTING
        assert len(engine.action_results) == MAX_ACTION_RESULTS

    asyncio.run(scenario())


def test_failed_outcome_is_not_votable(make_room, clock, gateway):
    gateway.generate_text.side_effect = [
        RuntimeError("boom"),
        GenerationResult(text="Ben climbs the tree."),
    ]

    async def scenario():
        room, (ann, ben) = await _started_adventure(make_room, ("Ann", "Ben"))
        engine = room.engine
        room.handle_chat(ann, "/g dig a hole")
        room.handle_chat(ben, "/g climb tree")
        await clock.advance(engine.timing.all_submitted_grace_ms)
        assert engine.phase == AdventurePhase.VOTING
        failed = {r.player_id: r.failed for r in engine.action_results}
        assert failed == {ann: True, ben: False}
        assert engine.action_results[0].result_text == "(An error occurred trying to 'dig a hole')"

        engine.on_vote(ann, ann)
        assert ann not in engine.votes

    asyncio.run(scenario())


def test_leaver_result_is_removed_from_ballot(make_room, clock, sink):
    async def scenario():
        room, (ann, ben, cal) = await _started_adventure(make_room, ("Ann", "Ben", "Cal"))
        engine = room.engine
        for pid, action in ((ann, "/g go north"), (ben, "/g go south"), (cal, "/g wait")):
            room.handle_chat(pid, action)
        await clock.advance(engine.timing.all_submitted_grace_ms)
        assert len(engine.action_results) == 3

        room.handle_vote(ann, ben)
        room.handle_vote(cal, ann)
        assert engine.phase == AdventurePhase.VOTING
        room.remove_player(ben)
        assert [r.player_id for r in engine.action_results] == [ann, cal]
        # Ann's vote stands even though Ben's action is gone
        assert engine.votes == {ann: ben, cal: ann}
        assert engine.phase == AdventurePhase.GENERATING_RESULT
        assert engine.winning_action["player_id"] == ann
        await settle()
        assert [r["playerId"] for r in sink.of_type("zoobActionResults")[-1]] == [ann, cal]
        assert engine.phase == AdventurePhase.RESULTS

    asyncio.run(scenario())


def test_departing_voter_loses_one_vote_and_voting_completes(make_room, clock):
    async def scenario():
        room, (ann, ben, cal) = await _started_adventure(make_room, ("Ann", "Ben", "Cal"))
        engine = room.engine
        for pid, action in ((ann, "/g go north"), (ben, "/g go south"), (cal, "/g wait")):
            room.handle_chat(pid, action)
        await clock.advance(engine.timing.all_submitted_grace_ms)

        room.handle_vote(ann, cal)
        room.handle_vote(ben, cal)
        room.remove_player(ann)
        assert engine.votes == {ben: cal}
        assert engine.phase == AdventurePhase.VOTING

        room.handle_vote(cal, ben)
        assert engine.phase == AdventurePhase.GENERATING_RESULT
        assert room.get_timer_end_time(VOTING_END) is None

    asyncio.run(scenario())


def test_voting_timeout_tallies_with_no_votes(make_room, clock, gateway):
    async def scenario():
        room, (ann, ben) = await _started_adventure(make_room, ("Ann", "Ben"))
        engine = room.engine
        room.handle_chat(ann, "/g go north")
        await clock.advance(engine.timing.input_ms)
        assert engine.phase == AdventurePhase.VOTING
        await clock.advance(engine.timing.voting_ms)
        assert gateway.generate_structured_text.await_count == 1
        assert engine.phase == AdventurePhase.RESULTS
        assert room.get_timer_end_time(VOTING_END) is None

    asyncio.run(scenario())


def test_death_ends_the_game(make_room, clock, gateway):
    gateway.generate_structured_text.return_value = StructuredResult(
        text="You wander into the dark and are eaten by a grue.", data={}
    )

    async def scenario():
        room, (ann,) = await _started_adventure(make_room)
        engine = room.engine
        room.handle_chat(ann, "/g go down")
        await clock.advance(engine.timing.all_submitted_grace_ms)
        room.handle_vote(ann, ann)
        await settle()
        assert engine.phase == AdventurePhase.ENDED
        assert any(line.startswith("GAME OVER.") for line in chat_lines(room))
        assert room.get_timer_end_time(NEXT_ROUND_START) is None

    asyncio.run(scenario())


def test_result_failure_keeps_the_world(make_room, clock, gateway):
    gateway.generate_structured_text.side_effect = RuntimeError("quota")

    async def scenario():
        room, (ann,) = await _started_adventure(make_room)
        engine = room.engine
        world = engine.world_description
        room.handle_chat(ann, "/g open mailbox")
        await clock.advance(engine.timing.all_submitted_grace_ms)
        room.handle_vote(ann, ann)
        await settle()
        assert 'An error occurred processing the action: "open mailbox". The world remains unchanged.' in chat_lines(room)
        assert engine.world_description == world
        assert engine.round == 2

    asyncio.run(scenario())


# ── AI players ────────────────────────────────────────────────────────────────

def test_ai_acts_late_when_normal_window_does_not_fit(make_room, clock, gateway):
    gateway.generate_text.return_value.text = "open mailbox"

    async def scenario():
        room, (ann,) = await _started_adventure(make_room, engine_config={"input_ms": 10_000})
        engine = room.engine
        ai = room.add_ai_player(ann).id

        await clock.advance(6_000)
        assert ai not in engine.player_actions
        await clock.advance(1_000)
        assert engine.player_actions.get(ai) == "open mailbox"
        assert any(line.endswith("has submitted an action.") for line in chat_lines(room))
        assert room.get_timer_end_time(INPUT_END) is not None

    asyncio.run(scenario())


def test_ai_only_votes_for_valid_results(make_room, clock, gateway):
    gateway.generate_text.return_value.text = "Vote: 7\nReason: feeling lucky"

    async def scenario():
        room, (ann,) = await _started_adventure(make_room)
        engine = room.engine
        ai = room.add_ai_player(ann).id
        room.handle_chat(ann, "/g go north")
        engine.on_timer_expired(INPUT_END)
        await settle()
        assert engine.phase == AdventurePhase.VOTING

        await clock.advance(engine.timing.voting_ms - 1000)
        assert engine.votes.get(ai) in {r.player_id for r in engine.action_results if not r.failed}

    asyncio.run(scenario())
