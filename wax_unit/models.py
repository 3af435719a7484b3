from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

Timestamp = Union[str, _dt.datetime]


def parse_block_time(value: Timestamp) -> _dt.datetime:
    """
    Parse a ledger timestamp (``2024-05-01T12:00:00.500``) into an aware UTC datetime.

    The chain API reports block times without a zone designator; they are
    always UTC.
    """
    if isinstance(value, _dt.datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1]
        parsed = _dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed.astimezone(_dt.timezone.utc)


@dataclass(slots=True)
class NodeHandle:
    """The running ephemeral node owned by one session."""

    container: str
    address: Optional[str] = None
    ready: bool = False


@dataclass(slots=True)
class ChainClock:
    """
    Logical view of how far the node's clock has been pushed forward.

    ``cumulative_offset_seconds`` only ever grows while the container lives.
    It is zeroed by :meth:`reset` when a container is created and seeded by
    :meth:`resume` when one is restarted in place.
    """

    cumulative_offset_seconds: int = 0
    last_offset_applied_seconds: int = 0
    last_requested_seconds: int = 0

    def apply(self, net_seconds: int, requested_seconds: int) -> None:
        if net_seconds < 0:
            raise ValueError("clock offsets only move forward")
        self.cumulative_offset_seconds += net_seconds
        self.last_offset_applied_seconds = net_seconds
        self.last_requested_seconds = requested_seconds

    def reset(self) -> None:
        self.cumulative_offset_seconds = 0
        self.last_offset_applied_seconds = 0
        self.last_requested_seconds = 0

    def resume(self, offset_seconds: int) -> None:
        if offset_seconds < 0:
            raise ValueError("clock offsets only move forward")
        self.reset()
        self.cumulative_offset_seconds = offset_seconds


@dataclass(slots=True)
class TimeTravelRequest:
    seconds: float
    anchor: Optional[Timestamp] = None


@dataclass(frozen=True, slots=True)
class ExpirationWindow:
    """TAPOS fields attached to every outgoing transaction."""

    blocks_behind: int
    expire_seconds: int

    def as_dict(self) -> Dict[str, int]:
        return {"blocksBehind": self.blocks_behind, "expireSeconds": self.expire_seconds}


@dataclass(slots=True)
class ChainInfo:
    """Subset of the ``get_info`` payload the harness relies on."""

    head_block_num: int
    head_block_time: _dt.datetime
    last_irreversible_block_num: int = 0
    chain_id: str = ""
    server_version_string: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ChainInfo":
        return ChainInfo(
            head_block_num=int(data["head_block_num"]),
            head_block_time=parse_block_time(data["head_block_time"]),
            last_irreversible_block_num=int(data.get("last_irreversible_block_num", 0)),
            chain_id=data.get("chain_id", ""),
            server_version_string=data.get("server_version_string", ""),
            raw=dict(data),
        )


@dataclass(frozen=True, slots=True)
class Reachable:
    address: str
    info: Optional[ChainInfo] = None


@dataclass(frozen=True, slots=True)
class Unreachable:
    reasons: List[str] = field(default_factory=list)


AddressResolution = Union[Reachable, Unreachable]
