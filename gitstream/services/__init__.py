"""Distribution workflow and the project-store boundary it reads and writes."""

from .distribution import (DistributionPlan, DistributionResult,
                           DistributionService, group_claimed_members)
from .store import (Contributor, InMemoryProjectStore, Project, ProjectStore,
                    RevenueEvent)

__all__ = [
    "Contributor",
    "DistributionPlan",
    "DistributionResult",
    "DistributionService",
    "InMemoryProjectStore",
    "Project",
    "ProjectStore",
    "RevenueEvent",
    "group_claimed_members",
]
