"""
Project store boundary.

Persistence (projects, contributors, revenue events) belongs to the
surrounding API layer. The distribution service only needs the handful of
reads and writes in :class:`ProjectStore`; :class:`InMemoryProjectStore` is
the reference implementation used by tests, the CLI and local runs.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import (Any, Collection, Dict, List, Optional, Protocol,
                    Sequence, Tuple)

from ..allocation.models import TierConfig
from ..errors import NotFoundError


@dataclass(frozen=True)
class Project:
    id: str
    repo_owner: str
    repo_name: str
    owner_address: str
    tier_config: TierConfig
    session_id: Optional[str] = None
    # None: use the service-wide MIN_DISTRIBUTION_AMOUNT
    min_distribution_amount: Optional[int] = None

    @property
    def has_active_session(self) -> bool:
        return bool(self.session_id)


@dataclass(frozen=True)
class Contributor:
    project_id: str
    login: str
    tier: Optional[str] = None
    wallet_address: Optional[str] = None
    weight: Optional[int] = None

    @property
    def claimed(self) -> bool:
        return bool(self.tier and self.wallet_address)


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class RevenueEvent:
    project_id: str
    amount: int
    tx_hash: str = ""
    distributed: bool = False
    distributed_at: Optional[float] = None
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": str(self.amount),
            "txHash": self.tx_hash,
            "distributed": self.distributed,
            "distributedAt": _iso(self.distributed_at),
            "createdAt": _iso(self.created_at),
        }


class ProjectStore(Protocol):
    async def get_project(self, project_id: str) -> Project: ...

    async def list_contributors(self, project_id: str) -> List[Contributor]: ...

    async def revenue_totals(self, project_id: str) -> Tuple[int, int]:
        """(total, distributed) in the asset's smallest unit."""
        ...

    async def pending_revenue_events(self, project_id: str) -> List[RevenueEvent]:
        """Events not yet covered by a distribution."""
        ...

    async def list_revenue(self, project_id: str, limit: int) -> List[RevenueEvent]:
        """Newest first, at most ``limit`` events."""
        ...

    async def set_session_id(self, project_id: str, session_id: Optional[str]) -> None: ...

    async def mark_revenue_distributed(self, project_id: str, event_ids: Collection[str]) -> int:
        """Flag exactly ``event_ids`` as distributed; returns how many changed."""
        ...


class InMemoryProjectStore:
    def __init__(self) -> None:
        self._projects: Dict[str, Project] = {}
        self._contributors: Dict[str, List[Contributor]] = {}
        self._revenue: Dict[str, List[RevenueEvent]] = {}
        self._lock = asyncio.Lock()

    # --- seeding (sync; used by tests and the CLI) ---

    def add_project(self, project: Project) -> Project:
        self._projects[project.id] = project
        self._contributors.setdefault(project.id, [])
        self._revenue.setdefault(project.id, [])
        return project

    def add_contributor(self, contributor: Contributor) -> None:
        self._require(contributor.project_id)
        self._contributors[contributor.project_id].append(contributor)

    def add_revenue(self, event: RevenueEvent) -> RevenueEvent:
        self._require(event.project_id)
        self._revenue[event.project_id].append(event)
        return event

    def _require(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFoundError("Project", details={"projectId": project_id})
        return project

    # --- ProjectStore ---

    async def get_project(self, project_id: str) -> Project:
        return self._require(project_id)

    async def list_contributors(self, project_id: str) -> List[Contributor]:
        self._require(project_id)
        return list(self._contributors[project_id])

    async def revenue_totals(self, project_id: str) -> Tuple[int, int]:
        self._require(project_id)
        events = self._revenue[project_id]
        total = sum(e.amount for e in events)
        distributed = sum(e.amount for e in events if e.distributed)
        return total, distributed

    async def pending_revenue_events(self, project_id: str) -> List[RevenueEvent]:
        self._require(project_id)
        return [e for e in self._revenue[project_id] if not e.distributed]

    async def list_revenue(self, project_id: str, limit: int) -> List[RevenueEvent]:
        self._require(project_id)
        events: Sequence[RevenueEvent] = sorted(self._revenue[project_id], key=lambda e: e.created_at, reverse=True)
        return list(events[: max(limit, 0)])

    async def set_session_id(self, project_id: str, session_id: Optional[str]) -> None:
        async with self._lock:
            project = self._require(project_id)
            self._projects[project_id] = replace(project, session_id=session_id)

    async def mark_revenue_distributed(self, project_id: str, event_ids: Collection[str]) -> int:
        async with self._lock:
            self._require(project_id)
            wanted = set(event_ids)
            now = time.time()
            updated = 0
            events = self._revenue[project_id]
            for i, e in enumerate(events):
                if e.id in wanted and not e.distributed:
                    events[i] = replace(e, distributed=True, distributed_at=now)
                    updated += 1
            return updated


__all__ = ["Contributor", "InMemoryProjectStore", "Project", "ProjectStore", "RevenueEvent"]
