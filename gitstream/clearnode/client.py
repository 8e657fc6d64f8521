from __future__ import annotations

"""
ClearNode client (async): one authenticated WebSocket session with reconnect.

- Uses the `websockets` package (any transport with ``send``/``recv``/``close``
  can be injected through ``connector`` for tests).
- States: DISCONNECTED -> CONNECTING -> CONNECTED_UNAUTHENTICATED -> AUTHENTICATED,
  and back to DISCONNECTED on close or fatal error.
- Authentication is a short-lived sub-state-machine bound to one transport:
  auth_request -> (auth_challenge) -> auth_verify -> success.
- Requests are correlated by id through a pending table; each waits at most
  ``request_timeout`` seconds.
- When the server drops the connection the client retries with exponential
  backoff (``reconnect_base_delay`` doubled per attempt, ``max_reconnect_attempts``
  in total). Once exhausted, every later operation raises NetworkError.

All state lives on the event loop that drives the client; nothing here is
thread-safe.

Example:
    import asyncio
    from gitstream.clearnode.client import ClearNodeClient
    from gitstream.clearnode.signer import EthRawSigner

    async def main():
        client = ClearNodeClient(EthRawSigner(key), "wss://clearnet-sandbox.yellow.com/ws")
        async with client:
            print(await client.get_ledger_balances())

    asyncio.run(main())
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (Any, Awaitable, Callable, Dict, List, Optional, Protocol,
                    Sequence, Union)

import websockets
from websockets.exceptions import ConnectionClosed

from ..errors import (AuthenticationError, GitStreamError, NetworkError,
                      RequestTimeout, ValidationError)
from ..logging import get_logger
from . import rpc
from .signer import RawSigner
from .types import (AppSession, Channel, ConnectionState, ConnectionStatus,
                    LedgerBalance, balances_from_wire, channels_from_wire)

log = get_logger(__name__)


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> Union[str, bytes]: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]
Sleep = Callable[[float], Awaitable[None]]


async def _websocket_connector(url: str) -> Transport:
    return await websockets.connect(url, open_timeout=None, max_size=2**22)


class _AuthPhase(str, Enum):
    AWAITING_CHALLENGE = "awaiting_challenge"
    AWAITING_RESULT = "awaiting_result"


@dataclass
class _AuthHandshake:
    transport: Transport
    future: asyncio.Future
    phase: _AuthPhase = _AuthPhase.AWAITING_CHALLENGE

    def fail(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)


@dataclass
class ClearNodeClient:
    signer: RawSigner
    url: str
    application: str = "GitStream"
    scope: str = "console"
    auth_expiry: int = 3600
    request_timeout: float = 30.0
    connect_timeout: float = 15.0
    reconnect_base_delay: float = 1.0
    max_reconnect_attempts: int = 5
    connector: Connector = _websocket_connector
    sleep: Sleep = asyncio.sleep
    reconnect_attempts: int = field(init=False, default=0)
    _state: ConnectionState = field(init=False, default=ConnectionState.DISCONNECTED)
    _transport: Optional[Transport] = field(init=False, default=None)
    _reader_task: Optional[asyncio.Task] = field(init=False, default=None)
    _reconnect_task: Optional[asyncio.Task] = field(init=False, default=None)
    _auth: Optional[_AuthHandshake] = field(init=False, default=None)
    _pending: Dict[int, asyncio.Future] = field(init=False, default_factory=dict)
    _ids: Any = field(init=False, default_factory=rpc.request_ids)
    _connect_lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)
    _attempt_cap: int = field(init=False, default=0)
    _closing: bool = field(init=False, default=False)
    _generation: int = field(init=False, default=0)
    _failure: Optional[NetworkError] = field(init=False, default=None)
    _channel_count: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self._attempt_cap = self.max_reconnect_attempts

    # ------------- context manager -------------

    async def __aenter__(self) -> "ClearNodeClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.disconnect()

    # ------------- introspection ---------------

    @property
    def address(self) -> str:
        return self.signer.address

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def authenticated(self) -> bool:
        return self._state is ConnectionState.AUTHENTICATED

    @property
    def failed(self) -> bool:
        return self._failure is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            connected=self._state in (ConnectionState.CONNECTED_UNAUTHENTICATED, ConnectionState.AUTHENTICATED),
            authenticated=self.authenticated,
            reconnect_attempts=self.reconnect_attempts,
            channel_count=self._channel_count,
            failed=self.failed,
        )

    # ------------- lifecycle -------------------

    async def connect(self) -> None:
        """
        Open the transport and authenticate. No-op when already authenticated.

        An explicit call re-arms the reconnect policy after ``disconnect()`` or
        after the retry budget ran out.
        """
        async with self._connect_lock:
            if self.authenticated:
                return
            self._closing = False
            self._failure = None
            self._attempt_cap = self.max_reconnect_attempts
            await self._open_and_authenticate()

    async def disconnect(self) -> None:
        """Close for good. Safe from any state and idempotent."""
        self._closing = True
        self._generation += 1
        # a backoff timer already sleeping must not reconnect after this
        self._attempt_cap = 0
        current = asyncio.current_task()
        if self._reconnect_task is not None and self._reconnect_task is not current and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        transport = self._transport
        self._transport = None
        was = self._state
        self._set_state(ConnectionState.DISCONNECTED)
        self._fail_outstanding(NetworkError("ClearNode client disconnected"))

        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not current and not reader.done():
            reader.cancel()
        if transport is not None:
            await self._close_transport(transport)
        if was is not ConnectionState.DISCONNECTED:
            log.info("clearnode_disconnected", url=self.url)

    # ------------- RPC operations --------------

    async def get_ledger_balances(self, address: Optional[str] = None) -> List[LedgerBalance]:
        self._require_authenticated()
        msg = rpc.create_get_ledger_balances(self.signer, address or self.address, request_id=next(self._ids))
        result = await self._send_and_wait(msg)
        return balances_from_wire(result)

    async def get_channels(self) -> List[Channel]:
        self._require_authenticated()
        msg = rpc.create_get_channels(self.signer, self.address, request_id=next(self._ids))
        channels = channels_from_wire(await self._send_and_wait(msg))
        self._channel_count = len(channels)
        return channels

    async def create_app_session(self, sessions: Union[AppSession, Sequence[AppSession]]) -> str:
        """
        Submit an application session and return the id ClearNode assigns.

        Accepts one session or a sequence (only the first is submitted, the
        network creates one session per request).
        """
        self._require_authenticated()
        if isinstance(sessions, AppSession):
            session = sessions
        else:
            if not sessions:
                raise ValidationError("No session provided")
            session = sessions[0]

        msg = rpc.create_app_session_request(self.signer, session, request_id=next(self._ids))
        result = await self._send_and_wait(msg)
        session_id = result.get("app_session_id") if isinstance(result, dict) else None
        if not session_id:
            raise NetworkError("ClearNode response carried no app_session_id", details={"method": msg.method})
        log.info(
            "app_session_created",
            app_session_id=session_id,
            participants=len(session.definition.participants),
        )
        return str(session_id)

    # ------------- internals: connection -------

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            log.debug("clearnode_state", old=self._state.value, new=state.value)
        self._state = state

    async def _open_and_authenticate(self) -> None:
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        try:
            transport = await asyncio.wait_for(self.connector(self.url), timeout=self.connect_timeout)
        except asyncio.CancelledError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise NetworkError(f"Could not connect to ClearNode: {e!r}", details={"url": self.url}) from e

        if generation != self._generation:
            # disconnect() ran while the connector was pending
            await self._close_transport(transport)
            self._set_state(ConnectionState.DISCONNECTED)
            raise NetworkError("ClearNode client disconnected while connecting")

        log.info("clearnode_connected", url=self.url)
        self._transport = transport
        self._set_state(ConnectionState.CONNECTED_UNAUTHENTICATED)
        handshake = _AuthHandshake(transport, asyncio.get_running_loop().create_future())
        self._auth = handshake
        self._reader_task = asyncio.create_task(self._reader_loop(transport), name="ClearNodeClient.reader")

        try:
            await asyncio.wait_for(self._authenticate(handshake), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            await self._abort(transport)
            raise RequestTimeout("Authentication with ClearNode timed out") from None
        except (AuthenticationError, NetworkError):
            await self._abort(transport)
            raise
        finally:
            if self._auth is handshake:
                self._auth = None

        if generation != self._generation:
            raise NetworkError("ClearNode client disconnected while authenticating")
        self._set_state(ConnectionState.AUTHENTICATED)
        self.reconnect_attempts = 0
        log.info("clearnode_authenticated", address=self.address)

    async def _authenticate(self, handshake: _AuthHandshake) -> None:
        msg = rpc.create_auth_request(
            address=self.address,
            session_key=self.address,
            application=self.application,
            expires_at=int(time.time()) + self.auth_expiry,
            scope=self.scope,
            allowances=[],
            request_id=next(self._ids),
        )
        await self._send_raw(handshake.transport, msg.text)
        await handshake.future

    async def _abort(self, transport: Transport) -> None:
        """Tear down a transport we gave up on, without scheduling a retry."""
        if self._transport is not transport:
            return
        self._transport = None
        self._set_state(ConnectionState.DISCONNECTED)
        reader = self._reader_task
        self._reader_task = None
        if reader is not None and not reader.done():
            reader.cancel()
        self._fail_outstanding(NetworkError("ClearNode connection aborted"))
        await self._close_transport(transport)

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            log.debug("transport_close_failed", error=repr(e))

    async def _on_transport_closed(self, transport: Transport) -> None:
        if transport is not self._transport:
            return
        self._transport = None
        self._reader_task = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._fail_outstanding(NetworkError("Connection to ClearNode lost"))
        log.warning("clearnode_connection_closed", url=self.url)
        if self._closing:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_attempts >= self._attempt_cap:
            if not self._closing:
                self._failure = NetworkError(
                    "ClearNode reconnection attempts exhausted",
                    details={"attempts": self.reconnect_attempts},
                )
                log.error("clearnode_reconnect_exhausted", attempts=self.reconnect_attempts)
            return
        delay = self.reconnect_base_delay * (2 ** self.reconnect_attempts)
        self.reconnect_attempts += 1
        log.info("clearnode_reconnect_scheduled", delay_ms=int(delay * 1000), attempt=self.reconnect_attempts)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay), name="ClearNodeClient.reconnect")

    async def _reconnect_after(self, delay: float) -> None:
        await self.sleep(delay)
        if self._closing or self._attempt_cap == 0:
            return
        try:
            async with self._connect_lock:
                if self.authenticated or self._closing:
                    return
                await self._open_and_authenticate()
        except GitStreamError as e:
            log.warning("clearnode_reconnect_failed", attempt=self.reconnect_attempts, error=e.message)
            # a server-side close during the attempt has already queued the next try
            if self._reconnect_task is asyncio.current_task() or self._reconnect_task is None or self._reconnect_task.done():
                self._schedule_reconnect()

    def _require_authenticated(self) -> None:
        if self._failure is not None:
            raise self._failure
        if not self.authenticated:
            raise AuthenticationError("Not authenticated with ClearNode")

    def _fail_outstanding(self, exc: GitStreamError) -> None:
        if self._auth is not None:
            self._auth.fail(exc)
            self._auth = None
        for fut in list(self._pending.values()):
            if not fut.done():
                fut.set_exception(exc)
        self._pending.clear()

    # ------------- internals: frames -----------

    async def _send_raw(self, transport: Transport, text: str) -> None:
        try:
            await transport.send(text)
        except Exception as e:
            raise NetworkError(f"ClearNode send failed: {e!r}") from e

    async def _send_and_wait(self, msg: rpc.OutboundRequest) -> Any:
        transport = self._transport
        if transport is None:
            raise NetworkError("Not connected to ClearNode")
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg.request_id] = fut
        try:
            await self._send_raw(transport, msg.text)
            return await asyncio.wait_for(fut, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            log.warning("clearnode_request_timeout", method=msg.method, request_id=msg.request_id)
            raise RequestTimeout(
                "Request timeout", details={"method": msg.method, "requestId": msg.request_id}
            ) from None
        finally:
            self._pending.pop(msg.request_id, None)

    async def _reader_loop(self, transport: Transport) -> None:
        while True:
            try:
                raw = await transport.recv()
            except asyncio.CancelledError:
                return
            except ConnectionClosed:
                break
            except Exception as e:
                log.warning("clearnode_recv_failed", error=repr(e))
                break

            try:
                frame = rpc.parse_frame(raw)
            except ValueError as e:
                log.warning("clearnode_frame_dropped", error=str(e))
                continue
            await self._dispatch(frame, transport)

        await self._on_transport_closed(transport)

    async def _dispatch(self, frame: rpc.Frame, transport: Transport) -> None:
        """Single entry point for every inbound frame: id match first, then auth, then drop."""
        request_id = getattr(frame, "request_id", None)
        if request_id is not None and request_id in self._pending:
            fut = self._pending[request_id]
            if not fut.done():
                if isinstance(frame, rpc.ErrorFrame):
                    fut.set_exception(NetworkError(frame.message, details={"requestId": request_id}))
                elif isinstance(frame, rpc.ResponseFrame):
                    fut.set_result(frame.result)
                elif isinstance(frame, rpc.AuthResultFrame):
                    fut.set_result(frame.payload)
                else:
                    fut.set_result(None)
            return

        handshake = self._auth
        if handshake is not None and handshake.transport is transport:
            if isinstance(frame, (rpc.ChallengeFrame, rpc.AuthResultFrame, rpc.ErrorFrame)):
                await self._advance_auth(handshake, frame)
                return

        if isinstance(frame, rpc.ErrorFrame):
            log.warning("clearnode_unmatched_error", message=frame.message, request_id=request_id)
        elif isinstance(frame, rpc.NoticeFrame):
            log.debug("clearnode_notice", method=frame.method)
        else:
            log.debug("clearnode_frame_unmatched", request_id=request_id)

    async def _advance_auth(self, handshake: _AuthHandshake, frame: rpc.Frame) -> None:
        if isinstance(frame, rpc.ErrorFrame):
            handshake.fail(AuthenticationError(frame.message))
            return

        if isinstance(frame, rpc.ChallengeFrame):
            if handshake.phase is not _AuthPhase.AWAITING_CHALLENGE:
                log.debug("clearnode_duplicate_challenge")
                return
            if not frame.challenge:
                handshake.fail(AuthenticationError("ClearNode sent an empty auth challenge"))
                return
            try:
                verify = rpc.create_auth_verify(self.signer, frame.challenge, request_id=next(self._ids))
            except Exception as e:
                handshake.fail(AuthenticationError(f"Could not sign auth challenge: {e!r}"))
                return
            handshake.phase = _AuthPhase.AWAITING_RESULT
            try:
                await self._send_raw(handshake.transport, verify.text)
            except NetworkError as e:
                handshake.fail(e)
            return

        if isinstance(frame, rpc.AuthResultFrame):
            if frame.success:
                if not handshake.future.done():
                    handshake.future.set_result(None)
            else:
                handshake.fail(AuthenticationError("ClearNode rejected the auth challenge signature"))


__all__ = ["ClearNodeClient", "Connector", "Transport"]
