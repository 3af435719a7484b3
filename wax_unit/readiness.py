from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Iterator, Optional

from .config import HarnessConfig
from .errors import ReadinessTimeout, RpcError
from .models import AddressResolution, NodeHandle, Reachable, Unreachable
from .process import ProcessController
from .retry import retry_until
from .rpc import ChainRpc

logger = logging.getLogger(__name__)


def probe_initialized(controller: ProcessController) -> bool:
    cp = controller.exec_in_node([controller.config.ready_script], check=False)
    return cp.returncode == 0


def wait_for_initialized(
    controller: ProcessController,
    config: HarnessConfig,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Run the in-container readiness probe until it passes; return the attempt count.
    """
    outcome = retry_until(
        lambda: probe_initialized(controller),
        backoff=config.ready_backoff_seconds,
        deadline=config.ready_timeout_seconds,
        sleep=sleep,
        clock=clock,
        label="readiness probe",
    )
    if not outcome.ok:
        raise ReadinessTimeout(
            f"{config.container_name} not initialized after {outcome.attempts} probes "
            f"({config.ready_timeout_seconds}s)"
        )
    logger.info("Chain initialized after %d probe(s)", outcome.attempts)
    return outcome.attempts


def address_candidates(controller: ProcessController, config: HarnessConfig) -> Iterator[Optional[str]]:
    # The container address is only looked up when localhost is not reachable,
    # i.e. when the harness itself runs inside a container.
    yield config.primary_address
    yield controller.resolve_address()


def resolve_address(rpc: ChainRpc, candidates: Iterable[Optional[str]]) -> AddressResolution:
    """
    Bind ``rpc`` to the first candidate that answers ``get_info``.
    """
    reasons = []
    for candidate in candidates:
        if not candidate:
            reasons.append("container has no network address")
            continue
        rpc.rebind(candidate)
        try:
            info = rpc.get_info()
        except RpcError as exc:
            logger.info("Chain not reachable at %s, trying next address", candidate)
            reasons.append(f"{candidate}: {exc}")
            continue
        return Reachable(candidate, info)
    return Unreachable(reasons)


def await_ready(
    controller: ProcessController,
    rpc: ChainRpc,
    config: HarnessConfig,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> NodeHandle:
    """
    Wait until the node is initialized, reachable and producing blocks.
    """
    wait_for_initialized(controller, config, sleep=sleep, clock=clock)

    resolution = resolve_address(rpc, address_candidates(controller, config))
    if isinstance(resolution, Unreachable):
        raise ReadinessTimeout(
            "Chain is initialized but no address answered: " + "; ".join(resolution.reasons)
        )
    logger.info("Chain reachable at %s", resolution.address)

    first_head = resolution.info.head_block_num
    margin = config.tapos_blocks_behind + 2
    outcome = retry_until(
        rpc.get_info,
        lambda info: info.head_block_num > first_head + margin,
        backoff=config.block_poll_seconds,
        deadline=config.ready_timeout_seconds,
        exceptions=(RpcError,),
        sleep=sleep,
        clock=clock,
        label="block production",
    )
    if not outcome.ok:
        raise ReadinessTimeout(
            f"Chain at {resolution.address} is not producing blocks "
            f"(stuck near block {first_head})"
        )
    logger.info("Chain producing blocks, head at %d", outcome.value.head_block_num)
    return NodeHandle(container=config.container_name, address=resolution.address, ready=True)
