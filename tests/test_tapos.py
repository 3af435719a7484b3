import random

from wax_unit import HarnessConfig
from wax_unit.models import ChainClock
from wax_unit.tapos import next_window


class SequenceRng:
    def __init__(self, values):
        self.values = list(values)
        self.bounds = []

    def randrange(self, stop):
        self.bounds.append(stop)
        return self.values.pop(0)


def test_fresh_clock_window_bounds():
    rng = random.Random(42)
    for _ in range(200):
        window = next_window(ChainClock(), rng=rng)
        assert window.blocks_behind == 3
        assert 300 <= window.expire_seconds < 3600


def test_random_range_is_max_minus_min():
    rng = SequenceRng([0])
    next_window(ChainClock(), HarnessConfig(), rng)
    assert rng.bounds == [3300]


def test_consecutive_windows_differ():
    rng = SequenceRng([5, 17])
    clock = ChainClock()

    first = next_window(clock, rng=rng)
    second = next_window(clock, rng=rng)

    assert (first.blocks_behind, first.expire_seconds) != (second.blocks_behind, second.expire_seconds)


def test_collisions_are_rare():
    rng = random.Random(1234)
    clock = ChainClock()
    expiries = [next_window(clock, rng=rng).expire_seconds for _ in range(200)]

    assert len(set(expiries)) > 180


def test_padded_by_last_jump():
    clock = ChainClock()
    clock.apply(598, 601)

    window = next_window(clock, rng=SequenceRng([0]))

    assert window.expire_seconds == 601 + 300


def test_pad_does_not_accumulate():
    clock = ChainClock()
    clock.apply(297, 300)
    clock.apply(300, 301)

    window = next_window(clock, rng=SequenceRng([10]))

    assert window.expire_seconds == 301 + 300 + 10


def test_configured_bounds():
    config = HarnessConfig(min_expire_seconds=30, max_expire_seconds=30, tapos_blocks_behind=6)
    window = next_window(ChainClock(), config)

    assert window == next_window(ChainClock(), config)
    assert window.blocks_behind == 6
    assert window.expire_seconds == 30
    assert window.as_dict() == {"blocksBehind": 6, "expireSeconds": 30}
