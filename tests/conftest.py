"""
Shared fixtures: an in-memory docker CLI, chain RPC and clock.

Nothing here talks to a real docker daemon or node. ``FakeDocker`` stands in
for ``subprocess.run`` and ``FakeChain`` for the node's HTTP API; they share
the clock offset written by the time-travel command so the fake chain's head
time jumps like the real one.
"""

import datetime as _dt
import json
import random
import re
import subprocess
from typing import Callable, Dict, List, Optional

import pytest

from wax_unit import ChainSession, HarnessConfig, ProcessController
from wax_unit.config import TESTING_KEY, TESTING_PUBLIC_KEY
from wax_unit.errors import RpcError
from wax_unit.models import ChainInfo

BASE_TIME = _dt.datetime(2024, 1, 1, 12, 0, 0, tzinfo=_dt.timezone.utc)
START_BLOCK = 100


def block_time_str(value: _dt.datetime) -> str:
    # Chain API format: no zone designator, millisecond precision
    return value.astimezone(_dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self, events: Optional[list] = None):
        self.now = 0.0
        self.sleeps: List[float] = []
        self.events = events if events is not None else []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.events.append(("sleep", seconds))
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class FakeChain:
    """
    Chain RPC double. Every ``get_info`` produces one block (0.5 s of chain
    time) unless the chain is stalled.
    """

    def __init__(self, address: str = "http://localhost:8888", reachable=("http://localhost:8888",)):
        self.address = address
        self.reachable = set(reachable)
        self.head = START_BLOCK
        self.offset = 0
        self.stalled = False
        self.stall_clock_sets = 0
        self.clock_sets: List[int] = []
        self.info_calls = 0
        self.tables: Dict[tuple, List[dict]] = {}

    def block_time(self, block_num: Optional[int] = None) -> _dt.datetime:
        block_num = self.head if block_num is None else block_num
        return BASE_TIME + _dt.timedelta(seconds=0.5 * (block_num - START_BLOCK) + self.offset)

    def set_offset(self, offset: int) -> None:
        self.clock_sets.append(offset)
        self.offset = offset
        if self.stall_clock_sets > 0:
            self.stall_clock_sets -= 1
            self.stalled = True
        else:
            self.stalled = False

    def rebind(self, address: str) -> None:
        self.address = address

    def get_info(self) -> ChainInfo:
        self.info_calls += 1
        if self.address not in self.reachable:
            raise RpcError(f"connection refused by {self.address}")
        if not self.stalled:
            self.head += 1
        return ChainInfo.from_dict(
            {
                "head_block_num": self.head,
                "head_block_time": block_time_str(self.block_time()),
                "last_irreversible_block_num": self.head - 2,
                "chain_id": "f16b1833c747c43682f4386fca9cbb327929334a762755ebec17f6f23c9b8a12",
                "server_version_string": "v4.0.4wax01",
            }
        )

    def get_table_rows(self, code, table, scope, limit=100, **extra):
        rows = self.tables.get((code, table, scope), [])
        return {"rows": rows[:limit], "more": len(rows) > limit, "next_key": ""}


class FakeDocker:
    """
    Replacement for ``subprocess.run`` that understands the docker commands
    the harness issues and keeps container state in memory.
    """

    def __init__(self, config: HarnessConfig, chain: FakeChain, events: Optional[list] = None):
        self.config = config
        self.chain = chain
        self.events = events if events is not None else []
        self.commands: List = []
        self.containers: set = set()
        self.running: set = set()
        self.ip = "172.17.0.2"
        self.ready_failures = 0
        self.ready_probes = 0
        self.failures: Dict[tuple, int] = {}
        self.timeouts: Dict[tuple, Optional[int]] = {}
        self.cleos_handler: Callable[[list], subprocess.CompletedProcess] = self._default_cleos
        self.cleos_calls: List[list] = []
        self.shell_scripts: List[str] = []
        # /etc/faketimerc contents per container
        self.clock_files: Dict[str, str] = {}
        self.wallets: set = set()
        self.wallet_create_error = ""
        self.unlocked: set = set()
        self.wallet_keys: set = set()

    def fail(self, *prefix: str, returncode: int = 1) -> None:
        self.failures[prefix] = returncode

    def hang(self, *prefix: str, times: Optional[int] = None) -> None:
        """Make matching commands time out, ``times`` times or forever."""
        self.timeouts[prefix] = times

    def _result(self, cmd, returncode=0, stdout="", stderr=""):
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def _default_cleos(self, args: list) -> subprocess.CompletedProcess:
        receipt = {
            "transaction_id": f"{len(self.cleos_calls):064x}",
            "processed": {
                "block_num": self.chain.head,
                "block_time": block_time_str(self.chain.block_time()),
                "receipt": {"status": "executed"},
            },
        }
        return self._result(args, stdout=json.dumps(receipt))

    def __call__(self, cmd, shell=False, capture_output=False, text=False, timeout=None):
        self.commands.append(cmd)
        self.events.append(("run", cmd))
        parts = cmd.split() if isinstance(cmd, str) else list(cmd)

        for prefix, returncode in self.failures.items():
            if tuple(parts[: len(prefix)]) == prefix:
                return self._result(cmd, returncode, stderr=f"{' '.join(prefix)} failed")
        for prefix, remaining in self.timeouts.items():
            if tuple(parts[: len(prefix)]) == prefix and remaining != 0:
                if remaining is not None:
                    self.timeouts[prefix] = remaining - 1
                raise subprocess.TimeoutExpired(cmd, timeout or 0)

        if isinstance(cmd, str):
            return self._result(cmd, stdout="Login Succeeded\n")

        verb = parts[1] if len(parts) > 1 else ""
        if verb == "ps":
            return self._result(cmd, stdout="".join(f"{name}\n" for name in sorted(self.containers)))
        if verb == "inspect":
            name = parts[-1]
            if name not in self.containers:
                return self._result(cmd, 1, stderr=f"Error: No such object: {name}")
            if parts[3] == "{{.State.Running}}":
                return self._result(cmd, stdout="true\n" if name in self.running else "false\n")
            return self._result(cmd, stdout=f"{self.ip}\n")
        if verb == "run":
            name = parts[parts.index("--name") + 1]
            self.containers.add(name)
            self.running.add(name)
            self.clock_files.pop(name, None)
            self.chain.offset = 0
            self.wallets.clear()
            self.unlocked.clear()
            self.wallet_keys.clear()
            return self._result(cmd, stdout="0123456789ab\n")
        if verb == "start":
            self.running.add(parts[2])
            return self._result(cmd, stdout=f"{parts[2]}\n")
        if verb == "stop":
            self.running.discard(parts[2])
            return self._result(cmd, stdout=f"{parts[2]}\n")
        if verb == "rm":
            self.containers.discard(parts[2])
            self.clock_files.pop(parts[2], None)
            return self._result(cmd, stdout=f"{parts[2]}\n")
        if verb == "exec":
            rest = parts[2:]
            if rest and rest[0] == "-d":
                rest = rest[1:]
            name, rest = rest[0], rest[1:]
            if name not in self.running:
                return self._result(cmd, 1, stderr=f"Error: container {name} is not running")
            return self._exec(cmd, name, rest)
        return self._result(cmd)

    def _exec(self, cmd, name, rest):
        if rest[0] == self.config.ready_script:
            self.ready_probes += 1
            if self.ready_failures > 0:
                self.ready_failures -= 1
                return self._result(cmd, 1, stderr="chain not initialized yet")
            return self._result(cmd)
        if rest[:2] == ["sh", "-c"]:
            script = rest[2]
            self.shell_scripts.append(script)
            return self._shell(cmd, name, script)
        if rest[:2] == [self.config.cleos, "wallet"]:
            return self._wallet(cmd, rest[2:])
        if rest[0] == self.config.cleos:
            self.cleos_calls.append(rest)
            return self.cleos_handler(rest)
        return self._result(cmd)

    def _shell(self, cmd, name, script):
        if script == self.config.get_time_command:
            if name not in self.clock_files:
                return self._result(cmd, 1, stderr="cat: /etc/faketimerc: No such file or directory")
            return self._result(cmd, stdout=self.clock_files[name])
        match = re.fullmatch(r"echo '(\+(\d+)s)' > /etc/faketimerc", script)
        if match:
            self.clock_files[name] = match.group(1) + "\n"
            self.chain.set_offset(int(match.group(2)))
            return self._result(cmd)
        if "wallet create" in script:
            if self.config.wallet_name in self.wallets:
                return self._result(cmd)
            if self.wallet_create_error:
                return self._result(cmd, 1, stderr=self.wallet_create_error)
            self.wallets.add(self.config.wallet_name)
            return self._result(cmd, stdout=f'Creating wallet: {self.config.wallet_name}\n')
        if "wallet unlock" in script:
            return self._wallet(cmd, ["unlock"])
        return self._result(cmd)

    def _wallet(self, cmd, args):
        wallet = self.config.wallet_name
        if args[0] == "unlock":
            if wallet not in self.wallets:
                return self._result(cmd, 1, stderr=f"Error 3120002: Nonexistent wallet: {wallet}")
            if wallet in self.unlocked:
                return self._result(cmd, 1, stderr=f"Error 3120007: Already unlocked: {wallet}")
            self.unlocked.add(wallet)
            return self._result(cmd, stdout=f"Unlocked: {wallet}\n")
        if args[0] == "import":
            if wallet not in self.unlocked:
                return self._result(cmd, 1, stderr=f"Error 3120003: Locked wallet: {wallet}")
            key = args[args.index("--private-key") + 1]
            public = TESTING_PUBLIC_KEY if key == TESTING_KEY else f"EOS{key[-10:]}"
            if public in self.wallet_keys:
                return self._result(cmd, 1, stderr=f"Error 3120008: Key already exists: {public}")
            self.wallet_keys.add(public)
            return self._result(cmd, stdout=f"imported private key for: {public}\n")
        if args[0] == "keys":
            keys = sorted(self.wallet_keys) if self.unlocked else []
            return self._result(cmd, stdout=json.dumps(keys, indent=2))
        return self._result(cmd)


@pytest.fixture
def events():
    return []


@pytest.fixture
def fake_clock(events):
    return FakeClock(events)


@pytest.fixture
def config():
    return HarnessConfig(skip_registry_login=True)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def docker(config, chain, events):
    return FakeDocker(config, chain, events)


@pytest.fixture
def controller(config, docker):
    return ProcessController(config, runner=docker)


@pytest.fixture
def session(config, controller, chain, fake_clock):
    return ChainSession(
        config,
        controller=controller,
        rpc=chain,
        sleep=fake_clock.sleep,
        clock=fake_clock,
        rng=random.Random(7),
    )


@pytest.fixture
def ready_session(session):
    return session.setup()
