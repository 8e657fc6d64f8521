from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest

from gitstream.allocation.models import TierConfig
from gitstream.clearnode.client import ClearNodeClient
from gitstream.clearnode.registry import ClearNodeRegistry
from gitstream.clearnode.signer import EthRawSigner
from gitstream.config import Settings
from gitstream.services.store import (Contributor, InMemoryProjectStore,
                                      Project, RevenueEvent)

# Well-known throwaway key; never funded.
OPERATOR_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
DAVE = "0x" + "d4" * 20

SESSION_ID = "0x" + "5e" * 32

_CLOSED = object()


# ----------------------------
# Scripted ClearNode
# ----------------------------
class FakeTransport:
    """In-memory stand-in for a websocket: records what the client sends, replays scripted frames."""

    def __init__(self, on_send: Callable[["FakeTransport", Dict[str, Any]], None]) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._on_send = on_send

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("transport closed")
        frame = json.loads(message)
        self.sent.append(frame)
        self._on_send(self, frame)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise ConnectionError("connection closed by peer")
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)

    def push(self, frame: Any) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        """Server-side close."""
        self.closed = True
        self._inbox.put_nowait(_CLOSED)


def res(request_id: int, method: str, result: Any) -> Dict[str, Any]:
    return {"res": [request_id, method, result, int(time.time() * 1000)], "sig": []}


def error_res(request_id: int, message: str) -> Dict[str, Any]:
    return res(request_id, "error", {"error": message})


Handler = Callable[[FakeTransport, List[Any]], Optional[Dict[str, Any]]]


class ClearNodeStub:
    """
    Connector + server script. Each handler receives ``(transport, req)`` and
    returns the frame to push back, or None to stay silent.
    """

    def __init__(self) -> None:
        self.transports: List[FakeTransport] = []
        self.connects = 0
        self.refuse = False
        self.balances = [{"asset": "usdc", "amount": "42000000"}]
        self.handlers: Dict[str, Handler] = {
            "auth_request": lambda t, req: res(req[0], "auth_challenge", {"challenge_message": "challenge-123"}),
            "auth_verify": lambda t, req: res(req[0], "auth_verify", {"success": True, "jwt_token": "jwt"}),
            "get_ledger_balances": lambda t, req: res(req[0], "get_ledger_balances", {"ledger_balances": self.balances}),
            "get_channels": lambda t, req: res(
                req[0], "get_channels", {"channels": [{"channel_id": "0xch1", "status": "open", "chain_id": 137}]}
            ),
            "create_app_session": lambda t, req: res(req[0], "create_app_session", {"app_session_id": SESSION_ID}),
        }

    async def connect(self, url: str) -> FakeTransport:
        self.connects += 1
        if self.refuse:
            raise ConnectionRefusedError(f"refused: {url}")
        transport = FakeTransport(self._respond)
        self.transports.append(transport)
        return transport

    def _respond(self, transport: FakeTransport, frame: Dict[str, Any]) -> None:
        req = frame["req"]
        handler = self.handlers.get(req[1])
        reply = handler(transport, req) if handler else None
        if reply is not None:
            transport.push(reply)

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]

    def requests(self, method: str) -> List[Dict[str, Any]]:
        return [f for t in self.transports for f in t.sent if f["req"][1] == method]


class RecordingSleep:
    """Backoff timer that records delays; with ``hold=True`` it blocks until released."""

    def __init__(self, hold: bool = False) -> None:
        self.calls: List[float] = []
        self._gate = asyncio.Event()
        if not hold:
            self._gate.set()

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await self._gate.wait()

    def release(self) -> None:
        self._gate.set()


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


# ----------------------------
# Fixtures
# ----------------------------
@pytest.fixture()
def signer() -> EthRawSigner:
    return EthRawSigner(OPERATOR_KEY)


@pytest.fixture()
def stub() -> ClearNodeStub:
    return ClearNodeStub()


@pytest.fixture()
def make_client(signer: EthRawSigner, stub: ClearNodeStub) -> Callable[..., ClearNodeClient]:
    def _make(**kwargs: Any) -> ClearNodeClient:
        kwargs.setdefault("sleep", RecordingSleep())
        return ClearNodeClient(signer=signer, url="ws://clearnode.test/ws", connector=stub.connect, **kwargs)

    return _make


@pytest.fixture()
def registry(make_client: Callable[..., ClearNodeClient]) -> ClearNodeRegistry:
    return ClearNodeRegistry(make_client)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        clearnode_url="ws://clearnode.test/ws",
        operator_private_key=OPERATOR_KEY,
        log_level="WARNING",
    )


@pytest.fixture()
def tier_config() -> TierConfig:
    return TierConfig.parse(
        {
            "tiers": [
                {"name": "Core", "revenueShare": 60, "splitMethod": "equal"},
                {"name": "Community", "revenueShare": 30, "splitMethod": "weighted"},
            ],
            "treasuryShare": 10,
        }
    )


@pytest.fixture()
def store(tier_config: TierConfig) -> Iterator[InMemoryProjectStore]:
    """One project, four claimed contributors, one unclaimed, 100 USDC pending."""
    s = InMemoryProjectStore()
    s.add_project(Project(id="p1", repo_owner="acme", repo_name="widgets", owner_address=ALICE, tier_config=tier_config))
    s.add_contributor(Contributor("p1", "alice", tier="Core", wallet_address=ALICE))
    s.add_contributor(Contributor("p1", "bob", tier="Core", wallet_address=BOB))
    s.add_contributor(Contributor("p1", "carol", tier="Community", wallet_address=CAROL, weight=2))
    s.add_contributor(Contributor("p1", "dave", tier="Community", wallet_address=DAVE, weight=1))
    s.add_contributor(Contributor("p1", "eve", tier="Community"))
    s.add_revenue(RevenueEvent("p1", 100_000_000, tx_hash="0xfeed"))
    yield s
