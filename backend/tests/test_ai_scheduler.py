import random

from conftest import FakeClock
from agents.ai_scheduler import AITimerBook, fits_before, parse_vote_response, random_delay
from models.game import AITimerKind


def test_parse_vote_with_reason():
    index, message = parse_vote_response("Vote: 2\nReason: the taco looks tasty", 3, random.Random(0))
    assert index == 1
    assert message == "the taco looks tasty"


def test_parse_vote_without_reason_strips_prefix():
    index, message = parse_vote_response("Vote: 1 definitely this one", 2, random.Random(0))
    assert index == 0
    assert message == "definitely this one"


def test_out_of_range_vote_falls_back_to_random_option():
    for seed in range(10):
        index, message = parse_vote_response("Vote: 9\nReason: hmm", 3, random.Random(seed))
        assert 0 <= index < 3
        assert message == "hmm"


def test_garbage_vote_uses_default_message():
    index, message = parse_vote_response("", 2, random.Random(0), default_message="pick!")
    assert 0 <= index < 2
    assert message == "pick!"


def test_no_options_means_no_vote():
    index, _ = parse_vote_response("Vote: 1", 0, random.Random(0))
    assert index == -1


def test_fits_before_keeps_a_one_second_guard():
    assert fits_before(0, 8_000, 10_000)
    assert not fits_before(0, 9_000, 10_000)
    assert not fits_before(0, 100, None)


def test_random_delay_within_bounds():
    rng = random.Random(4)
    assert all(1_000 <= random_delay(rng, 1_000, 4_000) <= 4_000 for _ in range(50))
    assert random_delay(rng, 500, 500) == 500


def test_timer_book_replaces_and_cancels():
    clock = FakeClock()
    book = AITimerBook(clock)
    fired = []

    book.schedule("ai", AITimerKind.CHAT, 1_000, lambda: fired.append("first"))
    book.schedule("ai", AITimerKind.CHAT, 2_000, lambda: fired.append("second"))
    book.schedule("ai", AITimerKind.VOTE, 500, lambda: fired.append("vote"))
    book.cancel("ai", AITimerKind.VOTE)
    assert book.is_armed("ai", AITimerKind.CHAT)
    assert not book.is_armed("ai", AITimerKind.VOTE)

    for handle in clock.pending():
        handle.callback()
    assert fired == ["second"]
    assert not book.armed()


def test_cancel_player_leaves_others_armed():
    clock = FakeClock()
    book = AITimerBook(clock)
    book.schedule("a", AITimerKind.GUESS, 1_000, lambda: None)
    book.schedule("b", AITimerKind.GUESS, 1_000, lambda: None)
    book.cancel_player("a")
    assert list(book.armed()) == [("b", AITimerKind.GUESS)]
