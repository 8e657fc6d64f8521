"""
Tier-based revenue allocation.

Pure functions: no I/O, no clock, no randomness. The same inputs always
produce the same output, so concurrent distributions for different projects
can call in without coordination.

Rounding rules
--------------
- Tier amount: ``total * revenue_share // 100``.
- EQUAL tiers: every member gets ``amount // n``; the first-listed member also
  receives ``amount % n``. The tier total is conserved exactly; the
  first-listed member absorbing the remainder is intentional.
- WEIGHTED tiers: each member gets ``amount * weight // total_weight``. The
  sum may fall short of the tier amount by up to ``n - 1`` units. That dust
  is not reconciled here; it stays with the pool like an empty tier's amount.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Sequence

from ..errors import ValidationError
from ..logging import get_logger
from .models import (Member, MemberShare, SplitMethod, TierAllocation,
                     TierConfig, TierDefinition, ensure_valid_tier_config)

log = get_logger(__name__)


def _split_equal(amount: int, members: Sequence[Member]) -> List[MemberShare]:
    per_member, remainder = divmod(amount, len(members))
    return [
        MemberShare(m.wallet_address, per_member + remainder if i == 0 else per_member)
        for i, m in enumerate(members)
    ]


def _split_weighted(amount: int, members: Sequence[Member]) -> List[MemberShare]:
    total_weight = sum(m.effective_weight for m in members)
    if total_weight == 0:
        return [MemberShare(m.wallet_address, 0) for m in members]
    return [
        MemberShare(m.wallet_address, amount * m.effective_weight // total_weight)
        for m in members
    ]


def _tier_amount(total_amount: int, tier: TierDefinition) -> int:
    return total_amount * tier.revenue_share // 100


def compute_tier_allocations(
    total_amount: int,
    tier_config: TierConfig,
    members_by_tier: Mapping[str, Sequence[Member]],
) -> List[TierAllocation]:
    """
    Split ``total_amount`` across the configured tiers and their members.

    Tiers are processed in configuration order. A tier without members emits
    no entry. ``members_by_tier`` is read, never mutated.

    Raises ValidationError for a negative or non-integer amount, or a tier
    config that fails the sum-to-100 rule.
    """
    if isinstance(total_amount, bool) or not isinstance(total_amount, int):
        raise ValidationError("Total amount must be an integer in the smallest currency unit")
    if total_amount < 0:
        raise ValidationError("Total amount must be non-negative", details={"totalAmount": str(total_amount)})
    ensure_valid_tier_config(tier_config)

    allocations: List[TierAllocation] = []
    for tier in tier_config.tiers:
        amount = _tier_amount(total_amount, tier)
        members = members_by_tier.get(tier.name) or ()
        if not members:
            log.debug("tier_skipped_no_members", tier=tier.name, amount=str(amount))
            continue

        if tier.split_method is SplitMethod.EQUAL:
            shares = _split_equal(amount, members)
        else:
            shares = _split_weighted(amount, members)

        allocations.append(TierAllocation(tier=tier.name, amount=amount, members=tuple(shares)))

    return allocations


def total_allocated_amount(allocations: Sequence[TierAllocation]) -> int:
    """Sum of every member share across all tiers."""
    return sum(a.allocated for a in allocations)


def undistributed_amount(total_amount: int, allocations: Sequence[TierAllocation]) -> int:
    """
    What a call left in the pool: treasury share, skipped tiers, weighted dust
    and the truncation of each tier amount.
    """
    return total_amount - total_allocated_amount(allocations)


def format_allocation_for_display(allocation: TierAllocation) -> Dict[str, object]:
    return allocation.to_display()


__all__ = [
    "compute_tier_allocations",
    "total_allocated_amount",
    "undistributed_amount",
    "format_allocation_for_display",
]
