from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

CONFIG_PATH_ENV_VAR = "WAX_UNIT_CONFIG"
NO_AWS_LOGIN_ENV_VAR = "NO_AWS_LOGIN"

DEFAULT_REGISTRY = "731278070712.dkr.ecr.us-east-2.amazonaws.com"

# Key every test account is created with. Use it for owner and active when
# updating auth on accounts you create.
TESTING_PUBLIC_KEY = "EOS6MRyAjQq8ud7hVNYcfnVPJqcVpscN5So8BhtHuGYqET5GDW5CV"
TESTING_KEY = "5KQwrPbwdL6PhXujxW37FSSQZ1JiwsST4cqQzDeyXtP79zkvFD3"

TAPOS_BLOCKS_BEHIND = 3


@dataclass(slots=True)
class HarnessConfig:
    """
    Every knob the harness exposes.

    The timing constants (600 ms liveness window, 10 clock attempts,
    300/3600 s expiry bounds) are empirically tuned against the light chain
    image; change them only when a chain image needs it.
    """

    container_name: str = "wax-light"
    stale_container_name: str = "wax-all"
    image: str = f"{DEFAULT_REGISTRY}/wax-all:latest"
    registry: str = DEFAULT_REGISTRY
    registry_region: str = "us-east-2"
    entrypoint: str = "/opt/wax-all/run-light-chain.sh"
    restart_script: str = "/opt/wax-all/rerun-light-chain.sh"
    ready_script: str = "/opt/wax-all/wait-a-bit-for-chain-initialized.sh"
    published_ports: List[int] = field(default_factory=lambda: [8080, 8888])
    log_options: List[str] = field(
        default_factory=lambda: ["max-size=10m", "max-file=3"]
    )

    rpc_port: int = 8888
    primary_host: str = "localhost"
    rpc_timeout: float = 10.0
    command_timeout: Optional[float] = 120.0

    # {offset} is the total number of seconds the node clock sits ahead of real time.
    set_time_command: str = "echo '+{offset}s' > /etc/faketimerc"
    # Prints what set_time_command last wrote; read back when a container is
    # restarted in place.
    get_time_command: str = "cat /etc/faketimerc"

    cleos: str = "cleos"
    wallet_name: str = "wax-unit"
    wallet_password_file: str = "/root/wax-unit-wallet.pwd"
    contracts_dir: str = "/tmp/wax-unit-contracts"
    testing_key: str = TESTING_KEY
    testing_public_key: str = TESTING_PUBLIC_KEY

    skip_registry_login: bool = False

    ready_backoff_seconds: float = 1.0
    ready_timeout_seconds: Optional[float] = 300.0
    liveness_window_seconds: float = 0.6
    block_poll_seconds: float = 0.25
    time_travel_attempts: int = 10
    drain_blocks: int = 2
    block_latency_seconds: float = 0.5

    tapos_blocks_behind: int = TAPOS_BLOCKS_BEHIND
    min_expire_seconds: int = 300
    max_expire_seconds: int = 3600

    @property
    def primary_address(self) -> str:
        return f"http://{self.primary_host}:{self.rpc_port}"

    @property
    def expire_random_multiplier(self) -> int:
        return self.max_expire_seconds - self.min_expire_seconds

    def replace(self, **changes: Any) -> "HarnessConfig":
        return dataclasses.replace(self, **changes)


def _env_flag(value: Optional[str]) -> bool:
    # Any non-empty value counts, "0" and "false" included.
    return bool(value)


def config_from_mapping(data: Mapping[str, Any], base: Optional[HarnessConfig] = None) -> HarnessConfig:
    """
    Overlay a mapping (as loaded from YAML) on top of ``base``.
    """
    base = base or HarnessConfig()
    known = {f.name for f in dataclasses.fields(HarnessConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown harness config keys: {', '.join(unknown)}")
    return dataclasses.replace(base, **dict(data))


def load_config(
    path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> HarnessConfig:
    """
    Build the harness configuration.

    Order of precedence, lowest first: dataclass defaults, the YAML file at
    ``path`` (or ``$WAX_UNIT_CONFIG``), then environment flags.
    """
    env = os.environ if environ is None else environ
    config = HarnessConfig()

    config_path = path or env.get(CONFIG_PATH_ENV_VAR)
    if config_path:
        with open(config_path, "r", encoding="utf-8") as f:
            loaded: Dict[str, Any] = yaml.safe_load(f) or {}
        config = config_from_mapping(loaded.get("harness", loaded), config)

    if _env_flag(env.get(NO_AWS_LOGIN_ENV_VAR)):
        config.skip_registry_login = True
    return config
