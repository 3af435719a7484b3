"""
Ephemeral WAX chain harness for integration tests.

``setup_test_chain()`` brings up (or recovers) a single light-chain docker
container and returns a :class:`ChainSession`. The session advances chain
time on demand with ``add_time`` and hands out TAPOS windows that stay valid
across those jumps. The helpers in :mod:`wax_unit.actions` cover accounts,
contracts and table reads.
"""

from . import actions, liveness, readiness, retry, tapos, time_travel
from .actions import (
    create_account,
    generic_action,
    get_table_rows,
    linkauth,
    random_wam_account,
    set_contract,
    sleep,
    transact,
    transfer,
    update_auth,
)
from .config import TAPOS_BLOCKS_BEHIND, TESTING_PUBLIC_KEY, HarnessConfig, load_config
from .errors import (
    ChainWedged,
    HarnessError,
    InvalidArgument,
    ProvisioningFailure,
    ReadinessTimeout,
    RpcError,
    TransactionError,
)
from .models import ChainClock, ChainInfo, ExpirationWindow, NodeHandle, TimeTravelRequest
from .process import ProcessController
from .rpc import ChainRpc
from .session import ChainSession, setup_test_chain

__all__ = [
    "actions",
    "liveness",
    "readiness",
    "retry",
    "tapos",
    "time_travel",
    "create_account",
    "generic_action",
    "get_table_rows",
    "linkauth",
    "random_wam_account",
    "set_contract",
    "sleep",
    "transact",
    "transfer",
    "update_auth",
    "TAPOS_BLOCKS_BEHIND",
    "TESTING_PUBLIC_KEY",
    "HarnessConfig",
    "load_config",
    "ChainWedged",
    "HarnessError",
    "InvalidArgument",
    "ProvisioningFailure",
    "ReadinessTimeout",
    "RpcError",
    "TransactionError",
    "ChainClock",
    "ChainInfo",
    "ExpirationWindow",
    "NodeHandle",
    "TimeTravelRequest",
    "ProcessController",
    "ChainRpc",
    "ChainSession",
    "setup_test_chain",
]
