from __future__ import annotations

"""
ClearNode wire types.

- `TypedDict` shapes mirror the JSON payloads exchanged with ClearNode.
- Frozen dataclasses are the local view with `to_wire()` / `from_wire()` helpers.

Amounts are carried as decimal strings on the wire so no precision is lost
for large integer balances.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence, Tuple, TypedDict

Address = str  # 0x-prefixed 20-byte hex


class AppDefinitionDict(TypedDict):
    protocol: str
    participants: List[Address]
    weights: List[int]
    quorum: int
    challenge: int
    nonce: int


class AllocationDict(TypedDict):
    participant: Address
    asset: str
    amount: str


class AppSessionDict(TypedDict):
    definition: AppDefinitionDict
    allocations: List[AllocationDict]


@dataclass(slots=True, frozen=True)
class AppDefinition:
    protocol: str
    participants: Tuple[Address, ...]
    weights: Tuple[int, ...]
    quorum: int
    challenge: int
    nonce: int

    def __post_init__(self) -> None:
        if len(self.participants) != len(self.weights):
            raise ValueError("participants and weights must be parallel lists")

    def to_wire(self) -> AppDefinitionDict:
        return {
            "protocol": self.protocol,
            "participants": list(self.participants),
            "weights": list(self.weights),
            "quorum": self.quorum,
            "challenge": self.challenge,
            "nonce": self.nonce,
        }


@dataclass(slots=True, frozen=True)
class SessionAllocation:
    participant: Address
    asset: str
    amount: int

    def to_wire(self) -> AllocationDict:
        return {"participant": self.participant, "asset": self.asset, "amount": str(self.amount)}


@dataclass(slots=True, frozen=True)
class AppSession:
    definition: AppDefinition
    allocations: Tuple[SessionAllocation, ...]

    def to_wire(self) -> AppSessionDict:
        return {
            "definition": self.definition.to_wire(),
            "allocations": [a.to_wire() for a in self.allocations],
        }


@dataclass(slots=True, frozen=True)
class LedgerBalance:
    asset: str
    amount: str

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "LedgerBalance":
        return cls(asset=str(data.get("asset", "")), amount=str(data.get("amount", "0")))


@dataclass(slots=True, frozen=True)
class Channel:
    channel_id: str
    participant: Address
    status: str  # open | closed | settling | ...
    token: str
    amount: str
    chain_id: int
    adjudicator: str = ""
    challenge: int = 0
    nonce: int = 0
    version: int = 0
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "Channel":
        return cls(
            channel_id=str(data.get("channel_id", "")),
            participant=str(data.get("participant", "")),
            status=str(data.get("status", "")),
            token=str(data.get("token", "")),
            amount=str(data.get("amount", "0")),
            chain_id=int(data.get("chain_id", 0) or 0),
            adjudicator=str(data.get("adjudicator", "")),
            challenge=int(data.get("challenge", 0) or 0),
            nonce=int(data.get("nonce", 0) or 0),
            version=int(data.get("version", 0) or 0),
            created_at=str(data.get("created_at", "")),
            updated_at=str(data.get("updated_at", "")),
        )


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED_UNAUTHENTICATED = "connected_unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(slots=True, frozen=True)
class ConnectionStatus:
    state: ConnectionState
    connected: bool
    authenticated: bool
    reconnect_attempts: int = 0
    channel_count: int = 0
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.connected,
            "authenticated": self.authenticated,
            "reconnectAttempts": self.reconnect_attempts,
            "channelCount": self.channel_count,
            "failed": self.failed,
        }


def balances_from_wire(payload: Any) -> List[LedgerBalance]:
    """Accept either ``{"ledger_balances": [...]}`` or a bare list."""
    if isinstance(payload, Mapping):
        payload = payload.get("ledger_balances", payload.get("balances", []))
    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
        return []
    return [LedgerBalance.from_wire(b) for b in payload if isinstance(b, Mapping)]


def channels_from_wire(payload: Any) -> List[Channel]:
    if isinstance(payload, Mapping):
        payload = payload.get("channels", [])
    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
        return []
    return [Channel.from_wire(c) for c in payload if isinstance(c, Mapping)]


__all__ = [
    "Address",
    "AppDefinition",
    "AppDefinitionDict",
    "AppSession",
    "AppSessionDict",
    "AllocationDict",
    "Channel",
    "ConnectionState",
    "ConnectionStatus",
    "LedgerBalance",
    "SessionAllocation",
    "balances_from_wire",
    "channels_from_wire",
]
