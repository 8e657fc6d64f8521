"""
Distribution workflow: pending revenue -> tier allocations -> ClearNode session.

A distribution is triggered by a person (the project owner), never on a
schedule. One project has at most one outstanding session; a new one can be
created only after the previous session id has been cleared.
"""

from __future__ import annotations

import asyncio
import weakref
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..allocation.engine import (compute_tier_allocations,
                                 total_allocated_amount, undistributed_amount)
from ..allocation.models import Member, TierAllocation
from ..clearnode.registry import ClearNodeRegistry
from ..clearnode.streaming import (CHALLENGE_PERIOD_SECONDS, DEFAULT_ASSET,
                                   DEFAULT_PROTOCOL, create_streaming_session,
                                   get_session_balance)
from ..config import Settings
from ..errors import ConflictError, GitStreamError, ValidationError
from ..logging import bind_context, clear_context, get_logger
from .store import Contributor, Project, ProjectStore

log = get_logger(__name__)

DEFAULT_MIN_DISTRIBUTION_AMOUNT = 10_000_000
MAX_REVENUE_HISTORY = 100


@dataclass(frozen=True)
class DistributionPlan:
    project_id: str
    total_amount: int
    allocations: Sequence[TierAllocation]

    @property
    def allocated(self) -> int:
        return total_allocated_amount(self.allocations)

    @property
    def undistributed(self) -> int:
        return undistributed_amount(self.total_amount, self.allocations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "totalAmount": str(self.total_amount),
            "allocatedAmount": str(self.allocated),
            "undistributedAmount": str(self.undistributed),
            "allocations": [a.to_display() for a in self.allocations],
        }


@dataclass(frozen=True)
class DistributionResult:
    plan: DistributionPlan
    session_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "sessionId": self.session_id,
            "totalAmount": str(self.plan.total_amount),
            "allocations": [
                {"tier": a.tier, "amount": str(a.amount), "memberCount": len(a.members)}
                for a in self.plan.allocations
            ],
        }


def group_claimed_members(contributors: Sequence[Contributor]) -> Dict[str, List[Member]]:
    """Tier -> members, keeping only contributors with a tier and a claimed wallet."""
    grouped: Dict[str, List[Member]] = defaultdict(list)
    for c in contributors:
        if c.claimed:
            grouped[c.tier].append(Member(wallet_address=c.wallet_address, weight=c.weight))
    return dict(grouped)


class DistributionService:
    def __init__(
        self,
        store: ProjectStore,
        registry: ClearNodeRegistry,
        *,
        asset: str = DEFAULT_ASSET,
        protocol: str = DEFAULT_PROTOCOL,
        challenge_period: int = CHALLENGE_PERIOD_SECONDS,
        min_distribution_amount: int = DEFAULT_MIN_DISTRIBUTION_AMOUNT,
    ) -> None:
        self.store = store
        self.registry = registry
        self.asset = asset
        self.protocol = protocol
        self.challenge_period = challenge_period
        self.min_distribution_amount = min_distribution_amount
        # entries vanish once no create_stream/clear_session holds the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(cls, store: ProjectStore, registry: ClearNodeRegistry, settings: Settings) -> "DistributionService":
        return cls(
            store,
            registry,
            asset=settings.session_asset,
            protocol=settings.session_protocol,
            challenge_period=settings.challenge_period,
            min_distribution_amount=settings.min_distribution_amount,
        )

    def _lock_for(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    # ------------------------------------------------------------------ reads

    async def pending_revenue(self, project_id: str) -> int:
        total, distributed = await self.store.revenue_totals(project_id)
        return max(total - distributed, 0)

    async def project_status(self, project_id: str) -> Dict[str, Any]:
        project = await self.store.get_project(project_id)
        total, distributed = await self.store.revenue_totals(project_id)
        counts: Dict[str, int] = defaultdict(int)
        for c in await self.store.list_contributors(project_id):
            if c.claimed:
                counts[c.tier] += 1
        return {
            "projectId": project.id,
            "sessionId": project.session_id,
            "hasActiveSession": project.has_active_session,
            "totalRevenue": str(total),
            "distributedRevenue": str(distributed),
            "pendingRevenue": str(max(total - distributed, 0)),
            "tierConfig": project.tier_config.to_wire(),
            "tierStats": [{"tier": t, "claimedMemberCount": n} for t, n in counts.items()],
        }

    async def preview(self, project_id: str) -> DistributionPlan:
        """Allocations for the current pending revenue; no network traffic."""
        project = await self.store.get_project(project_id)
        members = group_claimed_members(await self.store.list_contributors(project_id))
        pending = await self.pending_revenue(project_id)
        allocations = compute_tier_allocations(pending, project.tier_config, members)
        return DistributionPlan(project.id, pending, allocations)

    async def revenue_history(self, project_id: str, limit: int = 50) -> Dict[str, Any]:
        """Recent revenue events, newest first; ``limit`` is capped at 100."""
        limit = max(1, min(limit, MAX_REVENUE_HISTORY))
        events = await self.store.list_revenue(project_id, limit)
        return {"projectId": project_id, "revenue": [e.to_dict() for e in events]}

    async def connection_status(self) -> Dict[str, Any]:
        """Settlement connection health; degrades to a disconnected report instead of raising."""
        try:
            client = await self.registry.get()
            balances = await client.get_ledger_balances()
        except GitStreamError as e:
            return {"status": "disconnected", "connected": False, "authenticated": False, "error": e.message}
        return {
            "status": "connected",
            **client.status().to_dict(),
            "balances": [{"asset": b.asset, "amount": b.amount} for b in balances],
        }

    async def session_balance(self, address: Optional[str] = None) -> str:
        client = await self.registry.get()
        return await get_session_balance(client, address, asset=self.asset)

    # ----------------------------------------------------------------- writes

    async def create_stream(self, project_id: str) -> DistributionResult:
        """
        Allocate the project's pending revenue and open a ClearNode session for it.

        Serialized per project so two owners clicking at once cannot open two
        sessions. The store is only written after ClearNode returns a session id.
        """
        async with self._lock_for(project_id):
            bind_context(project_id=project_id)
            try:
                return await self._create_stream(project_id)
            finally:
                clear_context("project_id")

    async def _create_stream(self, project_id: str) -> DistributionResult:
        project = await self.store.get_project(project_id)
        if project.has_active_session:
            raise ConflictError(
                "Project already has an active streaming session",
                details={"sessionId": project.session_id},
            )

        members = group_claimed_members(await self.store.list_contributors(project_id))
        if not members:
            raise ValidationError(
                "No contributors with claimed wallets. Contributors must claim their "
                "wallets before creating a streaming session."
            )

        # only these events are marked below; revenue landing mid-request waits for the next run
        events = await self.store.pending_revenue_events(project_id)
        pending = sum(e.amount for e in events)
        self._check_amount(project, pending)

        allocations = compute_tier_allocations(pending, project.tier_config, members)
        if not allocations:
            raise ValidationError("No eligible members in any configured tier")
        plan = DistributionPlan(project.id, pending, allocations)

        client = await self.registry.get()
        session_id = await create_streaming_session(
            client,
            project.id,
            allocations,
            pending,
            asset=self.asset,
            protocol=self.protocol,
            challenge=self.challenge_period,
        )

        await self.store.set_session_id(project.id, session_id)
        marked = await self.store.mark_revenue_distributed(project.id, [e.id for e in events])
        log.info(
            "distribution_completed",
            session_id=session_id,
            amount=str(pending),
            allocated=str(plan.allocated),
            revenue_events=marked,
        )
        return DistributionResult(plan, session_id)

    def _check_amount(self, project: Project, pending: int) -> None:
        minimum = project.min_distribution_amount
        if minimum is None:
            minimum = self.min_distribution_amount
        if pending == 0:
            raise ValidationError("No pending revenue to distribute")
        if pending < minimum:
            raise ValidationError(
                "Pending revenue is below the project's minimum distribution amount",
                details={"pending": str(pending), "minimum": str(minimum)},
            )

    async def clear_session(self, project_id: str) -> Optional[str]:
        """Forget a settled session so the next distribution can open a new one."""
        async with self._lock_for(project_id):
            project = await self.store.get_project(project_id)
            await self.store.set_session_id(project_id, None)
            if project.session_id:
                log.info("session_cleared", project_id=project_id, session_id=project.session_id)
            return project.session_id


__all__ = ["DistributionPlan", "DistributionResult", "DistributionService", "group_claimed_members"]
