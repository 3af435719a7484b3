"""
Thin helpers for driving a test chain: accounts, contracts, auth and tokens.

Every transaction goes through ``cleos`` inside the chain container, which
signs with the testing key unlocked at setup and serializes action data with
the on-chain ABI. Each one gets fresh TAPOS fields from the session so
repeated identical actions are not rejected as duplicates.
"""

from __future__ import annotations

import json
import logging
import posixpath
import random
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import TESTING_PUBLIC_KEY
from .errors import TransactionError
from .session import ChainSession

logger = logging.getLogger(__name__)

Authorization = List[Dict[str, str]]

WAM_CHARS = "abcdefghijklmnopqrstuvwxyz12345."


def sleep(milliseconds: float) -> None:
    time.sleep(milliseconds / 1000)


def random_wam_account(rng: Optional[random.Random] = None) -> str:
    """Random ``*.wam`` account name, 4 to 8 characters before the suffix."""
    rng = rng or random
    length = rng.randint(4, 8)
    return "".join(rng.choice(WAM_CHARS) for _ in range(length)) + ".wam"


def _cleos_error(output: str) -> str:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        return "cleos failed without output"
    for index, line in enumerate(lines):
        if line.startswith("Error Details:") and index + 1 < len(lines):
            detail = lines[index + 1]
            prefix = "assertion failure with message:"
            if detail.startswith(prefix):
                detail = detail[len(prefix):].strip()
            return detail
    return lines[0]


def _push(session: ChainSession, args: Sequence[str]) -> Dict[str, Any]:
    session.require_ready()
    window = session.next_window()
    head = session.rpc.get_info().head_block_num
    ref_block = max(1, head - window.blocks_behind)
    cmd = [
        session.config.cleos,
        *args,
        "-j",
        "-x",
        str(window.expire_seconds),
        "-r",
        str(ref_block),
    ]
    cp = session.controller.exec_in_node(cmd, check=False)
    if cp.returncode != 0:
        output = (cp.stderr or "") + (cp.stdout or "")
        raise TransactionError(_cleos_error(output), output)
    try:
        return json.loads(cp.stdout)
    except json.JSONDecodeError as exc:
        raise TransactionError(f"Unreadable cleos output: {cp.stdout[:200]}", cp.stdout) from exc


def transact(session: ChainSession, actions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Push a transaction made of ``actions`` and return its receipt."""
    trx = json.dumps({"actions": actions}, separators=(",", ":"))
    receipt = _push(session, ["push", "transaction", trx])
    logger.debug("Transaction %s accepted", receipt.get("transaction_id"))
    return receipt


def _eosio_auth(actor: str = "eosio", permission: str = "active") -> Authorization:
    return [{"actor": actor, "permission": permission}]


def _key_authority(key: str = TESTING_PUBLIC_KEY) -> Dict[str, Any]:
    return {"threshold": 1, "keys": [{"key": key, "weight": 1}], "accounts": [], "waits": []}


def create_account(session: ChainSession, account: str, ram_bytes: int = 1_000_000) -> Dict[str, Any]:
    """
    Create ``account`` with the testing key as owner and active, some RAM and staked resources.
    """
    return transact(
        session,
        [
            {
                "account": "eosio",
                "name": "newaccount",
                "authorization": _eosio_auth(),
                "data": {
                    "creator": "eosio",
                    "name": account,
                    "owner": _key_authority(),
                    "active": _key_authority(),
                },
            },
            {
                "account": "eosio",
                "name": "buyrambytes",
                "authorization": _eosio_auth(),
                "data": {"payer": "eosio", "receiver": account, "bytes": ram_bytes},
            },
            {
                "account": "eosio",
                "name": "delegatebw",
                "authorization": _eosio_auth(),
                "data": {
                    "from": "eosio",
                    "receiver": account,
                    "stake_net_quantity": "10.00000000 WAX",
                    "stake_cpu_quantity": "10.00000000 WAX",
                    "transfer": 0,
                },
            },
        ],
    )


def set_contract(
    session: ChainSession, account: str, wasm_file: str | Path, abi_file: str | Path
) -> Dict[str, Any]:
    """Deploy the wasm/abi pair from the host onto ``account``."""
    wasm_path, abi_path = Path(wasm_file), Path(abi_file)
    for path in (wasm_path, abi_path):
        if not path.is_file():
            raise FileNotFoundError(f"Contract file not found: {path}")

    target_dir = posixpath.join(session.config.contracts_dir, account)
    session.controller.exec_in_node(["mkdir", "-p", target_dir])
    session.controller.copy_into(wasm_path, posixpath.join(target_dir, wasm_path.name))
    session.controller.copy_into(abi_path, posixpath.join(target_dir, abi_path.name))
    return _push(
        session,
        ["set", "contract", account, target_dir, wasm_path.name, abi_path.name, "-p", f"{account}@active"],
    )


def update_auth(
    session: ChainSession,
    account: str,
    permission: str,
    parent: str,
    auth: Dict[str, Any],
) -> Dict[str, Any]:
    return transact(
        session,
        [
            {
                "account": "eosio",
                "name": "updateauth",
                "authorization": _eosio_auth(account, parent or "owner"),
                "data": {"account": account, "permission": permission, "parent": parent, "auth": auth},
            }
        ],
    )


def linkauth(session: ChainSession, account: str, requirement: str, code: str, type: str) -> Dict[str, Any]:
    return transact(
        session,
        [
            {
                "account": "eosio",
                "name": "linkauth",
                "authorization": _eosio_auth(account),
                "data": {"account": account, "requirement": requirement, "code": code, "type": type},
            }
        ],
    )


def generic_action(
    session: ChainSession,
    account: str,
    name: str,
    data: Dict[str, Any],
    authorization: Authorization,
) -> Dict[str, Any]:
    return transact(
        session,
        [{"account": account, "name": name, "authorization": authorization, "data": data}],
    )


def transfer(session: ChainSession, sender: str, to: str, quantity: str, memo: str = "") -> Dict[str, Any]:
    """Transfer tokens, e.g. ``quantity="1.00000000 WAX"``."""
    return generic_action(
        session,
        "eosio.token",
        "transfer",
        {"from": sender, "to": to, "quantity": quantity, "memo": memo},
        _eosio_auth(sender),
    )


def get_table_rows(session: ChainSession, code: str, table: str, scope: str, limit: int = 100) -> List[Dict[str, Any]]:
    session.require_ready()
    return session.rpc.get_table_rows(code, table, scope, limit=limit).get("rows", [])
