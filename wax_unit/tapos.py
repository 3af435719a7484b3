from __future__ import annotations

import random
from typing import Optional

from .config import HarnessConfig
from .models import ChainClock, ExpirationWindow


def next_window(
    clock: ChainClock,
    config: Optional[HarnessConfig] = None,
    rng: Optional[random.Random] = None,
) -> ExpirationWindow:
    """
    TAPOS fields with a randomised expiry.

    Identical test transactions sent close together would share a hash and
    be rejected as duplicates; the random expiry keeps them apart. The clock
    padding keeps a transaction sent right after a time jump from already
    looking expired to the node.
    """
    config = config or HarnessConfig()
    rng = rng or random
    pad = max(clock.last_offset_applied_seconds, clock.last_requested_seconds)
    jitter = rng.randrange(config.expire_random_multiplier) if config.expire_random_multiplier > 0 else 0
    return ExpirationWindow(
        blocks_behind=config.tapos_blocks_behind,
        expire_seconds=pad + config.min_expire_seconds + jitter,
    )
