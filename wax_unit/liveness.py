from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple

from .errors import ReadinessTimeout, RpcError
from .models import ChainInfo
from .retry import retry_until
from .rpc import ChainRpc

logger = logging.getLogger(__name__)


def is_lively(
    rpc: ChainRpc,
    window_seconds: float = 0.6,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Return True iff the head block number grows across ``window_seconds``.

    An unreachable node counts as not lively.
    """
    try:
        before = rpc.get_info().head_block_num
        sleep(window_seconds)
        after = rpc.get_info().head_block_num
    except RpcError as exc:
        logger.debug("Liveness probe failed: %s", exc)
        return False
    logger.debug("Liveness: head %d -> %d", before, after)
    return after > before


def wait_for_blocks(
    rpc: ChainRpc,
    count: int,
    poll_seconds: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
    timeout: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Tuple[ChainInfo, int]:
    """
    Block until ``count`` more blocks exist past the current head.

    Returns the final chain info and how many blocks actually elapsed.
    """
    first = rpc.get_info()
    target = first.head_block_num + count

    outcome = retry_until(
        rpc.get_info,
        lambda info: info.head_block_num >= target,
        backoff=poll_seconds,
        deadline=timeout,
        exceptions=(RpcError,),
        sleep=sleep,
        clock=clock,
        label=f"waiting for block {target}",
    )
    if not outcome.ok:
        raise ReadinessTimeout(
            f"Chain did not reach block {target} within {timeout}s "
            f"(started at {first.head_block_num})"
        )
    info = outcome.value
    return info, info.head_block_num - first.head_block_num
