"""
Data contracts for tier-based revenue allocation.

Inputs
------
- :class:`TierConfig` / :class:`TierDefinition`: a project's declarative split
  policy. Parsed with pydantic so the API's camelCase wire shape
  (``revenueShare``, ``splitMethod``, ``treasuryShare``) round-trips.
- :class:`Member`: one claimed contributor wallet inside a tier.

Outputs
-------
- :class:`TierAllocation` / :class:`MemberShare`: exact integer amounts in the
  asset's smallest unit. ``to_display()`` gives the decimal-string form used by
  the UI.

All amounts are Python ``int`` (arbitrary precision). Floats never appear.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from eth_utils import is_hex_address
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError

MAX_TIERS = 10


class SplitMethod(str, Enum):
    EQUAL = "equal"
    WEIGHTED = "weighted"


class TierDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, use_enum_values=False)

    name: str = Field(min_length=1, max_length=64)
    revenue_share: int = Field(ge=0, le=100, alias="revenueShare")
    split_method: SplitMethod = Field(default=SplitMethod.EQUAL, alias="splitMethod")


class TierConfig(BaseModel):
    """Ordered tiers plus the treasury's cut; percentages must total 100."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tiers: Tuple[TierDefinition, ...] = Field(min_length=1, max_length=MAX_TIERS)
    treasury_share: int = Field(default=0, ge=0, le=100, alias="treasuryShare")

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "TierConfig":
        """
        Build from the wire shape and enforce every configuration rule.

        Raises :class:`gitstream.errors.ValidationError` (never pydantic's) so
        callers see a single error kind at the configuration boundary.
        """
        try:
            cfg = cls.model_validate(dict(data))
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid tier configuration",
                details={"errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]},
            ) from e
        ensure_valid_tier_config(cfg)
        return cfg

    def to_wire(self) -> Dict[str, Any]:
        return {
            "tiers": [
                {"name": t.name, "revenueShare": t.revenue_share, "splitMethod": t.split_method.value}
                for t in self.tiers
            ],
            "treasuryShare": self.treasury_share,
        }

    @property
    def total_share(self) -> int:
        return sum(t.revenue_share for t in self.tiers) + self.treasury_share


def validate_tier_config(cfg: TierConfig) -> bool:
    """True when tier percentages plus the treasury share add up to exactly 100."""
    return cfg.total_share == 100


def ensure_valid_tier_config(cfg: TierConfig) -> None:
    if not 1 <= len(cfg.tiers) <= MAX_TIERS:
        raise ValidationError(f"Tier config must have between 1 and {MAX_TIERS} tiers")
    seen = set()
    for tier in cfg.tiers:
        if tier.name in seen:
            raise ValidationError(f"Duplicate tier name {tier.name!r}", details={"tier": tier.name})
        seen.add(tier.name)
    if not validate_tier_config(cfg):
        raise ValidationError(
            "Tier shares plus treasury share must equal 100",
            details={"total": cfg.total_share},
        )


@dataclass(frozen=True)
class Member:
    """
    A contributor with a claimed wallet.

    ``weight`` is only consulted by WEIGHTED tiers. ``None`` counts as 1; an
    explicit 0 is kept and earns a zero share.
    """

    wallet_address: str
    weight: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "wallet_address", normalize_wallet(self.wallet_address))
        if self.weight is not None and self.weight < 0:
            raise ValidationError(
                "Member weight must be non-negative",
                details={"walletAddress": self.wallet_address, "weight": self.weight},
            )

    @property
    def effective_weight(self) -> int:
        return 1 if self.weight is None else self.weight

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Member":
        wallet = data.get("walletAddress", data.get("wallet_address"))
        if not wallet:
            raise ValidationError("Member is missing walletAddress")
        weight = data.get("weight")
        return cls(wallet_address=str(wallet), weight=None if weight is None else int(weight))


def normalize_wallet(address: str) -> str:
    addr = str(address).strip().lower()
    if not addr.startswith("0x") or len(addr) != 42:
        raise ValidationError("Wallet address must be a 0x-prefixed 20-byte hex string", details={"walletAddress": address})
    if not is_hex_address(addr):
        raise ValidationError("Wallet address is not valid hex", details={"walletAddress": address})
    return addr


def members_by_tier_from_mapping(data: Mapping[str, Sequence[Mapping[str, Any]]]) -> Dict[str, List[Member]]:
    """Parse ``{"Core": [{"walletAddress": "0x.."}, ...], ...}`` into Members."""
    return {str(tier): [Member.from_mapping(m) for m in members] for tier, members in data.items()}


@dataclass(frozen=True)
class MemberShare:
    wallet_address: str
    share: int


@dataclass(frozen=True)
class TierAllocation:
    tier: str
    amount: int
    members: Tuple[MemberShare, ...] = field(default_factory=tuple)

    @property
    def allocated(self) -> int:
        return sum(m.share for m in self.members)

    def to_display(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "amount": str(self.amount),
            "members": [
                {"walletAddress": m.wallet_address, "share": str(m.share)} for m in self.members
            ],
        }


__all__ = [
    "MAX_TIERS",
    "SplitMethod",
    "TierDefinition",
    "TierConfig",
    "Member",
    "MemberShare",
    "TierAllocation",
    "normalize_wallet",
    "validate_tier_config",
    "ensure_valid_tier_config",
    "members_by_tier_from_mapping",
]
