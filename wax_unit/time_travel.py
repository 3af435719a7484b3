from __future__ import annotations

import logging
import math
import re
import shlex
import time
from typing import Callable, Optional

from .config import HarnessConfig
from .errors import ChainWedged, InvalidArgument, ProvisioningFailure
from .liveness import is_lively, wait_for_blocks
from .models import ChainClock, Timestamp, parse_block_time
from .process import TIMED_OUT_RETURNCODE, ProcessController
from .retry import retry_until
from .rpc import ChainRpc

logger = logging.getLogger(__name__)


def net_offset_seconds(
    requested_seconds: float,
    anchor,
    start_time,
    elapsed_blocks: int,
    block_latency_seconds: float = 0.5,
) -> int:
    """
    Seconds still to add once the time already passed since ``anchor`` is deducted.

    Each block produced while draining counts for ``block_latency_seconds``.
    Never negative.
    """
    already_elapsed = (start_time - anchor).total_seconds()
    remaining = requested_seconds - already_elapsed - block_latency_seconds * elapsed_blocks
    return int(math.floor(max(0.0, remaining)))


def _offset_pattern(template: str) -> re.Pattern:
    # The word of set_time_command that carries {offset}, e.g. '+{offset}s'
    word = next(w for w in shlex.split(template.replace("{offset}", "\0")) if "\0" in w)
    prefix, suffix = word.split("\0", 1)
    return re.compile(re.escape(prefix) + r"(\d+)" + re.escape(suffix))


def read_clock_offset(controller: ProcessController) -> int:
    """
    Offset the container's clock already carries, in seconds.

    A container whose clock was never moved (no offset file yet) reads as 0.
    A timed-out read, or output that does not match ``set_time_command``,
    raises ProvisioningFailure.
    """
    config = controller.config
    cp = controller.shell_in_node(config.get_time_command, check=False)
    if cp.returncode == TIMED_OUT_RETURNCODE:
        raise ProvisioningFailure.from_completed(cp)
    output = (cp.stdout or "").strip()
    if cp.returncode != 0 or not output:
        logger.debug("No clock offset in %s (exit %d)", controller.name, cp.returncode)
        return 0
    match = _offset_pattern(config.set_time_command).search(output)
    if match is None:
        raise ProvisioningFailure(
            config.get_time_command, cp.returncode, stdout=f"unrecognised clock offset {output!r}"
        )
    return int(match.group(1))


def set_clock_offset(controller: ProcessController, offset_seconds: int) -> bool:
    command = controller.config.set_time_command.format(offset=offset_seconds)
    cp = controller.shell_in_node(command, check=False)
    if cp.returncode != 0:
        logger.warning(
            "Clock command exited with %d: %s", cp.returncode, (cp.stderr or "").strip()
        )
        return False
    return True


def advance_time(
    controller: ProcessController,
    rpc: ChainRpc,
    clock: ChainClock,
    config: HarnessConfig,
    seconds: float,
    anchor: Optional[Timestamp] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Move the chain clock forward so that at least ``seconds`` have passed since ``anchor``.

    ``anchor`` is a ledger timestamp (e.g. a receipt's ``processed.block_time``)
    and defaults to the head block time once pending transactions have been
    drained. Returns the milliseconds between the anchor and the new head
    block time. That figure is usually more than requested; do not rely on
    sub-second precision.

    Raises InvalidArgument for ``seconds <= 0`` and ChainWedged if the node
    stops producing blocks after the clock change.
    """
    if not seconds > 0:
        raise InvalidArgument(f"Time to add must be positive, got {seconds!r}")

    # Let in-flight transactions land so the head time is settled.
    info, elapsed_blocks = wait_for_blocks(
        rpc, config.drain_blocks, poll_seconds=config.block_poll_seconds, sleep=sleep
    )
    start_time = info.head_block_time
    effective_anchor = start_time if anchor is None else parse_block_time(anchor)

    net = net_offset_seconds(
        seconds, effective_anchor, start_time, elapsed_blocks, config.block_latency_seconds
    )
    if net == 0:
        logger.info("Chain already %ss past %s, not moving clock", seconds, effective_anchor)
        return 0

    target_offset = clock.cumulative_offset_seconds + net
    logger.info("Moving chain clock to +%ds (adding %ds)", target_offset, net)

    def attempt() -> bool:
        if not set_clock_offset(controller, target_offset):
            return False
        return is_lively(rpc, config.liveness_window_seconds, sleep=sleep)

    outcome = retry_until(
        attempt,
        max_attempts=config.time_travel_attempts,
        backoff=0,
        sleep=sleep,
        label="clock change",
    )
    if not outcome.ok:
        raise ChainWedged(outcome.attempts, target_offset)

    clock.apply(net, int(math.ceil(seconds)))
    new_head_time = rpc.get_info().head_block_time
    applied_ms = int(round((new_head_time - effective_anchor).total_seconds() * 1000))
    logger.info(
        "Chain clock at +%ds after %d attempt(s); head is %dms past anchor",
        clock.cumulative_offset_seconds,
        outcome.attempts,
        applied_ms,
    )
    return applied_ms
