"""
Turning tier allocations into a ClearNode application session.

Initial session shape (what ClearNode expects for an operator-funded payout):

- participant 0 is the operator wallet with weight 100 and the whole amount;
- every other distinct member wallet follows in allocation order with weight 0
  and a zero balance;
- quorum 100, so only the operator can sign state updates;
- a time-based nonce and the configured challenge period.

Member shares are *not* written into the opening allocations. They are paid
out by later off-chain state updates inside the session.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Sequence

from ..allocation.models import TierAllocation
from ..errors import ValidationError
from ..logging import get_logger
from .client import ClearNodeClient
from .types import AppDefinition, AppSession, SessionAllocation

log = get_logger(__name__)

DEFAULT_PROTOCOL = "gitstream-payment-v1"
DEFAULT_ASSET = "usdc"
CHALLENGE_PERIOD_SECONDS = 86400
OPERATOR_WEIGHT = 100
QUORUM = 100


def _nonce_ms() -> int:
    return int(time.time() * 1000)


def session_participants(operator: str, allocations: Sequence[TierAllocation]) -> List[str]:
    """Operator first, then each distinct member wallet in first-seen order."""
    participants = [operator]
    seen = {operator.lower()}
    for tier in allocations:
        for member in tier.members:
            key = member.wallet_address.lower()
            if key not in seen:
                seen.add(key)
                participants.append(member.wallet_address)
    return participants


def build_app_session(
    operator: str,
    allocations: Sequence[TierAllocation],
    total_amount: int,
    *,
    asset: str = DEFAULT_ASSET,
    protocol: str = DEFAULT_PROTOCOL,
    challenge: int = CHALLENGE_PERIOD_SECONDS,
    nonce: Optional[int] = None,
    clock: Callable[[], int] = _nonce_ms,
) -> AppSession:
    if total_amount < 0:
        raise ValidationError("Session amount must be non-negative")
    participants = session_participants(operator, allocations)
    definition = AppDefinition(
        protocol=protocol,
        participants=tuple(participants),
        weights=tuple(OPERATOR_WEIGHT if i == 0 else 0 for i in range(len(participants))),
        quorum=QUORUM,
        challenge=challenge,
        nonce=clock() if nonce is None else nonce,
    )
    opening = [SessionAllocation(operator, asset, total_amount)]
    opening.extend(SessionAllocation(p, asset, 0) for p in participants[1:])
    return AppSession(definition=definition, allocations=tuple(opening))


async def create_streaming_session(
    client: ClearNodeClient,
    project_id: str,
    allocations: Sequence[TierAllocation],
    total_amount: int,
    *,
    asset: str = DEFAULT_ASSET,
    protocol: str = DEFAULT_PROTOCOL,
    challenge: int = CHALLENGE_PERIOD_SECONDS,
) -> str:
    """Create the payout session for one distribution and return its id."""
    session = build_app_session(
        client.address, allocations, total_amount, asset=asset, protocol=protocol, challenge=challenge
    )
    session_id = await client.create_app_session(session)
    log.info(
        "streaming_session_created",
        project_id=project_id,
        session_id=session_id,
        participants=len(session.definition.participants),
        amount=str(total_amount),
    )
    return session_id


async def get_session_balance(
    client: ClearNodeClient, address: Optional[str] = None, *, asset: str = DEFAULT_ASSET
) -> str:
    """Ledger balance of ``asset`` (case-insensitive match) as a decimal string; "0" if absent."""
    balances = await client.get_ledger_balances(address)
    wanted = asset.lower()
    for balance in balances:
        if balance.asset.lower() == wanted:
            return balance.amount or "0"
    return "0"


__all__ = [
    "CHALLENGE_PERIOD_SECONDS",
    "DEFAULT_ASSET",
    "DEFAULT_PROTOCOL",
    "build_app_session",
    "create_streaming_session",
    "get_session_balance",
    "session_participants",
]
