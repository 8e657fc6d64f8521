"""
gitstream.allocation
====================

Pure tier-based revenue split: a total amount, a :class:`TierConfig` and a
tier -> members map in, exact per-member integer shares out.
"""

from .engine import (compute_tier_allocations, format_allocation_for_display,
                     total_allocated_amount, undistributed_amount)
from .models import (MAX_TIERS, Member, MemberShare, SplitMethod,
                     TierAllocation, TierConfig, TierDefinition,
                     ensure_valid_tier_config, members_by_tier_from_mapping,
                     normalize_wallet, validate_tier_config)

__all__ = [
    "MAX_TIERS",
    "Member",
    "MemberShare",
    "SplitMethod",
    "TierAllocation",
    "TierConfig",
    "TierDefinition",
    "compute_tier_allocations",
    "ensure_valid_tier_config",
    "format_allocation_for_display",
    "members_by_tier_from_mapping",
    "normalize_wallet",
    "total_allocated_amount",
    "undistributed_amount",
    "validate_tier_config",
]
