from __future__ import annotations

import asyncio

import pytest

from gitstream.clearnode.client import ClearNodeClient
from gitstream.clearnode.rpc import canonical_json
from gitstream.clearnode.signer import recover_signer
from gitstream.clearnode.streaming import build_app_session
from gitstream.clearnode.types import ConnectionState, LedgerBalance
from gitstream.errors import (AuthenticationError, NetworkError,
                              RequestTimeout, ValidationError)

from .conftest import SESSION_ID, RecordingSleep, error_res, eventually, res


@pytest.mark.asyncio
async def test_connect_runs_challenge_handshake(make_client, stub):
    client = make_client()
    assert client.state is ConnectionState.DISCONNECTED

    await client.connect()
    try:
        assert client.state is ConnectionState.AUTHENTICATED
        assert client.status().to_dict()["authenticated"] is True

        [auth] = stub.requests("auth_request")
        assert auth["sig"] == []
        assert auth["req"][2]["address"] == client.address
        assert auth["req"][2]["application"] == "GitStream"

        [verify] = stub.requests("auth_verify")
        assert verify["req"][2] == {"challenge": "challenge-123"}
        assert recover_signer(canonical_json(verify["req"]).encode(), verify["sig"][0]) == client.address

        # a second connect is a no-op
        await client.connect()
        assert stub.connects == 1
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_error_frame_during_auth_fails_without_retry(make_client, stub):
    stub.handlers["auth_request"] = lambda t, req: error_res(req[0], "invalid application")
    sleep = RecordingSleep()
    client = make_client(sleep=sleep)

    with pytest.raises(AuthenticationError, match="invalid application"):
        await client.connect()

    assert client.state is ConnectionState.DISCONNECTED
    assert stub.last.closed
    await asyncio.sleep(0.01)
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_rejected_signature_is_authentication_error(make_client, stub):
    stub.handlers["auth_verify"] = lambda t, req: res(req[0], "auth_verify", {"success": False})
    client = make_client()
    with pytest.raises(AuthenticationError):
        await client.connect()
    assert not client.authenticated


@pytest.mark.asyncio
async def test_auth_timeout(make_client, stub):
    stub.handlers["auth_verify"] = lambda t, req: None
    sleep = RecordingSleep()
    client = make_client(request_timeout=0.05, sleep=sleep)

    with pytest.raises(RequestTimeout):
        await client.connect()
    assert client.state is ConnectionState.DISCONNECTED
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_close_before_auth_schedules_one_reconnect(make_client, stub):
    dropped = []

    def drop_first(transport, req):
        if not dropped:
            dropped.append(req[0])
            transport.drop()
            return None
        return res(req[0], "auth_challenge", {"challenge_message": "second-try"})

    stub.handlers["auth_request"] = drop_first
    sleep = RecordingSleep(hold=True)
    client = make_client(sleep=sleep)

    with pytest.raises(NetworkError):
        await client.connect()
    assert client.state is ConnectionState.DISCONNECTED

    await eventually(lambda: sleep.calls == [1.0])
    assert client.reconnect_attempts == 1

    sleep.release()
    await eventually(lambda: client.authenticated)
    try:
        assert sleep.calls == [1.0]
        assert stub.connects == 2
        assert client.reconnect_attempts == 0
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_reconnect_backoff_gives_up_after_five_attempts(make_client, stub):
    sleep = RecordingSleep()
    client = make_client(sleep=sleep)
    await client.connect()

    stub.refuse = True
    stub.last.drop()

    await eventually(lambda: client.failed)
    await asyncio.sleep(0.01)
    assert sleep.calls == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert stub.connects == 6
    assert client.state is ConnectionState.DISCONNECTED
    assert client.status().failed is True

    with pytest.raises(NetworkError, match="exhausted"):
        await client.get_ledger_balances()

    # an explicit connect re-arms the client
    stub.refuse = False
    await client.connect()
    try:
        assert client.authenticated
        assert not client.failed
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_request_timeout_clears_pending_and_ignores_late_reply(make_client, stub):
    stub.handlers["get_ledger_balances"] = lambda t, req: None
    client = make_client(request_timeout=0.05)
    await client.connect()
    try:
        with pytest.raises(RequestTimeout) as ei:
            await client.get_ledger_balances()
        assert ei.value.kind == "timeout"
        assert ei.value.message == "Request timeout"
        assert client.pending_count == 0

        [req] = stub.requests("get_ledger_balances")
        stub.last.push(res(req["req"][0], "get_ledger_balances", {"ledger_balances": []}))
        await asyncio.sleep(0.01)
        assert client.authenticated
        assert client.pending_count == 0
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_disconnect_is_idempotent_and_cancels_backoff(make_client, stub):
    sleep = RecordingSleep(hold=True)
    client = make_client(sleep=sleep)

    await client.disconnect()  # never connected

    await client.connect()
    stub.last.drop()
    await eventually(lambda: sleep.calls == [1.0])

    await client.disconnect()
    await client.disconnect()
    sleep.release()
    await asyncio.sleep(0.01)

    assert stub.connects == 1
    assert client.state is ConnectionState.DISCONNECTED
    with pytest.raises(AuthenticationError):
        await client.get_channels()


@pytest.mark.asyncio
async def test_operations_require_authentication(make_client, signer):
    client = make_client()
    session = build_app_session(signer.address, [], 10, nonce=1)
    with pytest.raises(AuthenticationError, match="Not authenticated"):
        await client.create_app_session(session)
    with pytest.raises(AuthenticationError):
        await client.get_ledger_balances()


@pytest.mark.asyncio
async def test_ledger_balances_and_channels(make_client, stub):
    client = make_client()
    async with client:
        balances = await client.get_ledger_balances()
        channels = await client.get_channels()
        assert client.status().channel_count == 1

    assert balances == [LedgerBalance("usdc", "42000000")]
    assert channels[0].channel_id == "0xch1"
    [req] = stub.requests("get_ledger_balances")
    assert req["req"][2] == {"participant": client.address}
    assert recover_signer(canonical_json(req["req"]).encode(), req["sig"][0]) == client.address


@pytest.mark.asyncio
async def test_error_frame_fails_only_that_request(make_client, stub):
    stub.handlers["get_channels"] = lambda t, req: error_res(req[0], "channel lookup failed")
    client = make_client()
    async with client:
        with pytest.raises(NetworkError, match="channel lookup failed"):
            await client.get_channels()
        assert client.authenticated
        assert await client.get_ledger_balances()


@pytest.mark.asyncio
async def test_server_close_fails_in_flight_requests(make_client, stub):
    stub.handlers["get_channels"] = lambda t, req: t.drop()
    client = make_client(sleep=RecordingSleep(hold=True))
    await client.connect()
    try:
        with pytest.raises(NetworkError, match="lost"):
            await client.get_channels()
        assert client.pending_count == 0
        assert client.state is ConnectionState.DISCONNECTED
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_create_app_session(make_client, stub, signer):
    client = make_client()
    session = build_app_session(signer.address, [], 5_000_000, nonce=99)
    async with client:
        assert await client.create_app_session([session]) == SESSION_ID
        with pytest.raises(ValidationError):
            await client.create_app_session([])

    [req] = stub.requests("create_app_session")
    assert req["req"][2] == session.to_wire()


@pytest.mark.asyncio
async def test_create_app_session_without_id_is_network_error(make_client, stub, signer):
    stub.handlers["create_app_session"] = lambda t, req: res(req[0], "create_app_session", {})
    client = make_client()
    async with client:
        with pytest.raises(NetworkError, match="app_session_id"):
            await client.create_app_session(build_app_session(signer.address, [], 1, nonce=1))


@pytest.mark.asyncio
async def test_garbage_frames_are_dropped(make_client, stub):
    client = make_client()
    async with client:
        stub.last.push("{not json")
        stub.last.push({"hello": "world"})
        assert await client.get_ledger_balances()


@pytest.mark.asyncio
async def test_disconnect_while_connector_pending(signer, stub):
    gate = asyncio.Event()

    async def gated(url):
        await gate.wait()
        return await stub.connect(url)

    client = ClearNodeClient(signer=signer, url="ws://clearnode.test/ws", connector=gated, sleep=RecordingSleep())
    task = asyncio.create_task(client.connect())
    await eventually(lambda: client.state is ConnectionState.CONNECTING)

    await client.disconnect()
    gate.set()

    with pytest.raises(NetworkError, match="disconnected while connecting"):
        await task
    assert client.state is ConnectionState.DISCONNECTED
    assert stub.last.closed
    assert stub.requests("auth_request") == []
    assert not client.authenticated


@pytest.mark.asyncio
async def test_disconnect_during_handshake(make_client, stub):
    stub.handlers["auth_request"] = lambda t, req: None
    sleep = RecordingSleep()
    client = make_client(sleep=sleep)
    task = asyncio.create_task(client.connect())
    await eventually(lambda: client.state is ConnectionState.CONNECTED_UNAUTHENTICATED and stub.requests("auth_request"))

    await client.disconnect()

    with pytest.raises(NetworkError, match="disconnected"):
        await task
    assert client.state is ConnectionState.DISCONNECTED
    assert stub.last.closed
    await asyncio.sleep(0.01)
    assert sleep.calls == []
    assert stub.requests("auth_verify") == []


@pytest.mark.asyncio
async def test_auth_send_failure_aborts_transport(make_client, stub):
    def reset(transport, req):
        raise ConnectionResetError("reset by peer")

    stub.handlers["auth_request"] = reset
    sleep = RecordingSleep()
    client = make_client(sleep=sleep)

    with pytest.raises(NetworkError, match="send failed"):
        await client.connect()

    assert client.state is ConnectionState.DISCONNECTED
    assert stub.last.closed
    await asyncio.sleep(0.01)
    assert sleep.calls == []
    assert stub.connects == 1
