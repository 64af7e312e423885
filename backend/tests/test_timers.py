import asyncio
from unittest.mock import MagicMock

from conftest import FakeClock
from services.timers import LoopClock, TimerRegistry


def test_timer_fires_once_with_its_name():
    clock = FakeClock()
    on_expired = MagicMock()
    timers = TimerRegistry("ROOM01", clock, on_expired)

    end = timers.start("roundEnd", 45_000)
    assert end == clock.now_ms() + 45_000
    assert timers.remaining_ms("roundEnd") == 45_000

    asyncio.run(clock.advance(45_000))
    on_expired.assert_called_once_with("roundEnd")
    assert timers.end_time("roundEnd") is None


def test_restart_replaces_previous_timer():
    clock = FakeClock()
    on_expired = MagicMock()
    timers = TimerRegistry("ROOM01", clock, on_expired)

    timers.start("votingEnd", 1_000)
    timers.start("votingEnd", 5_000)
    asyncio.run(clock.advance(1_000))
    on_expired.assert_not_called()
    asyncio.run(clock.advance(4_000))
    on_expired.assert_called_once_with("votingEnd")


def test_cleared_timer_never_fires_even_if_handle_runs():
    clock = FakeClock()
    on_expired = MagicMock()
    timers = TimerRegistry("ROOM01", clock, on_expired)

    timers.start("resultsEnd", 1_000)
    stale = clock.pending()[0]
    timers.clear("resultsEnd")
    stale.callback()
    on_expired.assert_not_called()


def test_handler_errors_are_contained():
    clock = FakeClock()
    timers = TimerRegistry("ROOM01", clock, MagicMock(side_effect=RuntimeError("boom")))
    timers.start("roundEnd", 10)
    asyncio.run(clock.advance(10))
    assert timers.active() == {}


def test_loop_clock_schedules_on_running_loop():
    async def scenario():
        fired = asyncio.Event()
        handle = LoopClock().call_later(1, fired.set)
        await asyncio.wait_for(fired.wait(), timeout=1.0)
        handle.cancel()

    asyncio.run(scenario())
