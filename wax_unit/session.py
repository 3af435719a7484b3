from __future__ import annotations

import logging
import random
import shlex
import subprocess
import time
from typing import Callable, Optional

from . import liveness, readiness, tapos, time_travel
from .config import HarnessConfig, load_config
from .errors import HarnessError, ProvisioningFailure
from .models import ChainClock, ChainInfo, ExpirationWindow, NodeHandle, Timestamp
from .process import ProcessController
from .rpc import ChainRpc

logger = logging.getLogger(__name__)


def _tolerate(completed: subprocess.CompletedProcess, expected: str) -> None:
    # cleos exits non-zero for "nothing to do"; only that message is accepted
    if completed.returncode != 0 and expected not in (completed.stderr or "") + (completed.stdout or ""):
        raise ProvisioningFailure.from_completed(completed)


class ChainSession:
    """
    One ephemeral chain and the clock offsets applied to it.

    Each session owns its own :class:`ChainClock`, so independent sessions
    can live in the same process. The container itself is shared by name.
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        controller: Optional[ProcessController] = None,
        rpc: Optional[ChainRpc] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or load_config()
        self.controller = controller or ProcessController(self.config)
        self.rpc = rpc or ChainRpc(self.config.primary_address, timeout=self.config.rpc_timeout)
        self.chain_clock = ChainClock()
        self.handle: Optional[NodeHandle] = None
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    @property
    def is_ready(self) -> bool:
        return self.handle is not None and self.handle.ready

    def setup(self) -> "ChainSession":
        """
        Start (or restart) the chain and wait until it produces blocks.

        A freshly created container starts with the real clock. A container
        restarted in place keeps the offset already written to it, and the
        session clock resumes from there.
        """
        self.handle = None
        action = self.controller.start()
        logger.info("Chain container %s %s", self.config.container_name, action)
        handle = readiness.await_ready(
            self.controller, self.rpc, self.config, sleep=self._sleep, clock=self._clock
        )
        if action == "created":
            self.chain_clock.reset()
        else:
            self.chain_clock.resume(time_travel.read_clock_offset(self.controller))
            logger.info(
                "Chain clock resumed at +%ds", self.chain_clock.cumulative_offset_seconds
            )
        self.unlock_wallet()
        self.handle = handle
        return self

    def unlock_wallet(self) -> None:
        """
        Make the testing key available to cleos inside the container.

        Creating the wallet must succeed. Unlock and import may only fail
        because the wallet is already unlocked or the key already imported.
        The wallet must list the testing public key afterwards.
        """
        cfg = self.config
        name = shlex.quote(cfg.wallet_name)
        pwfile = shlex.quote(cfg.wallet_password_file)
        self.controller.shell_in_node(
            f"[ -f {pwfile} ] || {cfg.cleos} wallet create -n {name} --file {pwfile}"
        )
        unlocked = self.controller.shell_in_node(
            f"{cfg.cleos} wallet unlock -n {name} --password \"$(cat {pwfile})\"", check=False
        )
        _tolerate(unlocked, "Already unlocked")
        imported = self.controller.exec_in_node(
            [cfg.cleos, "wallet", "import", "-n", cfg.wallet_name, "--private-key", cfg.testing_key],
            check=False,
        )
        _tolerate(imported, "Key already exists")

        keys = self.controller.exec_in_node([cfg.cleos, "wallet", "keys"])
        if cfg.testing_public_key not in keys.stdout:
            raise ProvisioningFailure(
                keys.args,
                keys.returncode,
                stderr=f"wallet {cfg.wallet_name} does not hold {cfg.testing_public_key}",
                stdout=keys.stdout,
            )

    def teardown(self) -> None:
        if self.controller.is_running():
            self.controller.stop()
        self.controller.remove()
        self.handle = None
        logger.info("Chain container %s removed", self.config.container_name)

    def require_ready(self) -> None:
        if not self.is_ready:
            raise HarnessError("Test chain is not set up; call setup_test_chain() first")

    def get_info(self) -> ChainInfo:
        self.require_ready()
        return self.rpc.get_info()

    def is_lively(self) -> bool:
        self.require_ready()
        return liveness.is_lively(self.rpc, self.config.liveness_window_seconds, sleep=self._sleep)

    def add_time(self, seconds: float, anchor: Optional[Timestamp] = None) -> int:
        """
        Advance chain time by ``seconds`` measured from ``anchor``.

        See :func:`wax_unit.time_travel.advance_time`.
        """
        self.require_ready()
        return time_travel.advance_time(
            self.controller,
            self.rpc,
            self.chain_clock,
            self.config,
            seconds,
            anchor,
            sleep=self._sleep,
        )

    def next_window(self) -> ExpirationWindow:
        return tapos.next_window(self.chain_clock, self.config, self._rng)

    def __enter__(self) -> "ChainSession":
        if not self.is_ready:
            self.setup()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()


def setup_test_chain(config: Optional[HarnessConfig] = None, **kwargs) -> ChainSession:
    """
    Set up the test chain. Call once, before anything else in a suite::

        @pytest.fixture(scope="session")
        def chain():
            return setup_test_chain()
    """
    return ChainSession(config, **kwargs).setup()
