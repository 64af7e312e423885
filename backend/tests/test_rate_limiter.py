from services.rate_limiter import RateLimiter


class ManualTime:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now


def test_budget_is_per_model_and_rolls_over():
    now = ManualTime()
    limiter = RateLimiter({"fast": 2}, default_limit=1, window_seconds=60, now=now)

    assert limiter.try_acquire("fast")
    assert limiter.try_acquire("fast")
    assert not limiter.try_acquire("fast")
    assert limiter.try_acquire("other")
    assert not limiter.try_acquire("other")

    now.now += 61
    assert limiter.try_acquire("fast")
    assert limiter.usage("fast") == 1


def test_paused_model_is_unavailable_until_pause_ends():
    now = ManualTime()
    limiter = RateLimiter({"m": 10}, now=now)

    limiter.pause_for("m", 30)
    assert limiter.is_paused("m")
    assert not limiter.try_acquire("m")

    now.now += 30
    assert not limiter.is_paused("m")
    assert limiter.try_acquire("m")


def test_mark_paused_uses_absolute_time():
    now = ManualTime()
    limiter = RateLimiter({}, now=now)
    limiter.mark_paused("m", now.now + 5)
    assert not limiter.available("m")
    now.now += 5
    assert limiter.available("m")
