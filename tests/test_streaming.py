from __future__ import annotations

import pytest

from gitstream.allocation.models import MemberShare, TierAllocation
from gitstream.clearnode.streaming import (build_app_session,
                                           create_streaming_session,
                                           get_session_balance,
                                           session_participants)
from gitstream.errors import ValidationError

from .conftest import ALICE, BOB, CAROL, SESSION_ID


def _allocations(operator):
    return [
        TierAllocation("Core", 60, (MemberShare(ALICE, 30), MemberShare(BOB, 30))),
        # BOB again in a second tier, plus the operator itself
        TierAllocation("Community", 30, (MemberShare(BOB, 10), MemberShare(CAROL, 10), MemberShare(operator.lower(), 10))),
    ]


def test_participants_are_distinct_and_operator_first(signer):
    assert session_participants(signer.address, _allocations(signer.address)) == [signer.address, ALICE, BOB, CAROL]


def test_session_shape(signer):
    session = build_app_session(signer.address, _allocations(signer.address), 100, nonce=1_700_000_000_000)
    wire = session.to_wire()
    assert wire["definition"] == {
        "protocol": "gitstream-payment-v1",
        "participants": [signer.address, ALICE, BOB, CAROL],
        "weights": [100, 0, 0, 0],
        "quorum": 100,
        "challenge": 86400,
        "nonce": 1_700_000_000_000,
    }
    assert wire["allocations"] == [
        {"participant": signer.address, "asset": "usdc", "amount": "100"},
        {"participant": ALICE, "asset": "usdc", "amount": "0"},
        {"participant": BOB, "asset": "usdc", "amount": "0"},
        {"participant": CAROL, "asset": "usdc", "amount": "0"},
    ]


def test_session_overrides_and_clock(signer):
    session = build_app_session(
        signer.address, [], 5, asset="usdt", protocol="custom-v2", challenge=3600, clock=lambda: 77
    )
    assert session.definition.nonce == 77
    assert session.definition.protocol == "custom-v2"
    assert session.definition.challenge == 3600
    assert session.definition.participants == (signer.address,)
    assert session.allocations[0].asset == "usdt"


def test_negative_amount_is_rejected(signer):
    with pytest.raises(ValidationError):
        build_app_session(signer.address, [], -1)


@pytest.mark.asyncio
async def test_create_streaming_session(make_client, stub):
    client = make_client()
    async with client:
        session_id = await create_streaming_session(client, "p1", _allocations(client.address), 100)
    assert session_id == SESSION_ID
    [req] = stub.requests("create_app_session")
    assert req["req"][2]["definition"]["participants"][0] == client.address
    assert req["req"][2]["allocations"][0]["amount"] == "100"


@pytest.mark.asyncio
async def test_session_balance_matches_asset_case_insensitively(make_client, stub):
    stub.balances = [{"asset": "ETH", "amount": "1"}, {"asset": "USDC", "amount": "250"}]
    client = make_client()
    async with client:
        assert await get_session_balance(client, asset="usdc") == "250"
        assert await get_session_balance(client, ALICE, asset="dai") == "0"
    participants = [r["req"][2]["participant"] for r in stub.requests("get_ledger_balances")]
    assert participants == [client.address, ALICE]
