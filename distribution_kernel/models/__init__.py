"""ORM models for the distribution kernel."""

from distribution_kernel.models.distribution import (
    ClaimantDirectoryModel,
    PublishedPlanModel,
    RuleProfileModel,
    TerritoryModel,
)

__all__ = [
    "TerritoryModel",
    "RuleProfileModel",
    "PublishedPlanModel",
    "ClaimantDirectoryModel",
]
