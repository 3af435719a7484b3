from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from .errors import RpcError
from .models import ChainInfo

logger = logging.getLogger(__name__)


def _error_message(payload: Any, fallback: str) -> tuple[str, list]:
    if not isinstance(payload, dict):
        return fallback, []
    error = payload.get("error")
    if not isinstance(error, dict):
        return payload.get("message") or fallback, []
    details = error.get("details") or []
    messages = [d.get("message", "") for d in details if isinstance(d, dict)]
    messages = [m for m in messages if m]
    what = error.get("what") or payload.get("message") or fallback
    if messages:
        return f"{what}: {'; '.join(messages)}", details
    return what, details


class ChainRpc:
    """Minimal client for the node's ``/v1/chain`` HTTP API."""

    def __init__(
        self,
        address: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.address = address.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def rebind(self, address: str) -> None:
        logger.debug("Rebinding chain RPC %s -> %s", self.address, address)
        self.address = address.rstrip("/")

    def call(self, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.address}/v1/chain/{endpoint}"
        try:
            r = self._session.post(url, json=body or {}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RpcError(f"{endpoint} failed against {self.address}: {exc}") from exc

        try:
            data = r.json()
        except ValueError:
            data = None

        if r.status_code >= 400:
            message, details = _error_message(data, f"HTTP {r.status_code} from {url}")
            raise RpcError(message, status_code=r.status_code, details=details)
        if isinstance(data, dict) and "error" in data:
            message, details = _error_message(data, f"RPC error from {url}")
            raise RpcError(message, status_code=r.status_code, details=details)
        if data is None:
            raise RpcError(f"Non-JSON response from {url}", status_code=r.status_code)
        return data

    def get_info(self) -> ChainInfo:
        return ChainInfo.from_dict(self.call("get_info"))

    def get_block(self, block_num_or_id: int | str) -> Dict[str, Any]:
        return self.call("get_block", {"block_num_or_id": block_num_or_id})

    def get_account(self, account_name: str) -> Dict[str, Any]:
        return self.call("get_account", {"account_name": account_name})

    def get_table_rows(
        self,
        code: str,
        table: str,
        scope: str,
        limit: int = 100,
        **extra: Any,
    ) -> Dict[str, Any]:
        body = {
            "json": True,
            "code": code,
            "scope": scope,
            "table": table,
            "limit": limit,
            "reverse": False,
            "show_payer": False,
        }
        body.update(extra)
        return self.call("get_table_rows", body)
