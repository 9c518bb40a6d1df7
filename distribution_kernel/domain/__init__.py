"""
Pure domain layer.

Rule data, summaries, conflict detection, profiles, the plan lifecycle
and the wire codec, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (``now`` is always passed in or read from a Clock)

All value objects are immutable and deterministic.
"""

from distribution_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from distribution_kernel.domain.conflicts import (
    AllowDenyConflict,
    AllowDenyKind,
    BudgetConflict,
    ConflictReport,
    assert_within_budget,
    detect_conflicts,
    effective_rule,
)
from distribution_kernel.domain.dtos import (
    Candidate,
    CandidateKind,
    DistributionReadModel,
    DistributionState,
    PublishResult,
    SaveResult,
)
from distribution_kernel.domain.percent import HUNDRED, ZERO, Percent, clamp_percent, round2
from distribution_kernel.domain.plan import PlanState, PublishedPlan, plan_state
from distribution_kernel.domain.profiles import (
    NormalizedProfiles,
    RuleProfile,
    RuleProfileStore,
    normalize,
)
from distribution_kernel.domain.projection import (
    Claimant,
    ClaimantPool,
    ClaimantProjection,
    ProjectionContext,
    project_claimant,
)
from distribution_kernel.domain.rule import (
    AllianceCapability,
    AllianceShare,
    AllocationRule,
    DistributionScope,
    MemberShare,
    UserShare,
    default_rule,
)
from distribution_kernel.domain.summary import AllocationSummary, compute_summary
from distribution_kernel.domain.wire import (
    profile_from_wire,
    profile_to_wire,
    rule_from_wire,
    rule_to_wire,
)
from distribution_kernel.domain.workflow import PUBLISH_PLAN_WORKFLOW, Workflow

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Percent
    "ZERO",
    "HUNDRED",
    "Percent",
    "clamp_percent",
    "round2",
    # Rule
    "AllocationRule",
    "AllianceCapability",
    "AllianceShare",
    "DistributionScope",
    "MemberShare",
    "UserShare",
    "default_rule",
    # Summary / conflicts
    "AllocationSummary",
    "compute_summary",
    "AllowDenyConflict",
    "AllowDenyKind",
    "BudgetConflict",
    "ConflictReport",
    "assert_within_budget",
    "detect_conflicts",
    "effective_rule",
    # Profiles
    "NormalizedProfiles",
    "RuleProfile",
    "RuleProfileStore",
    "normalize",
    # Plan
    "PlanState",
    "PublishedPlan",
    "plan_state",
    "PUBLISH_PLAN_WORKFLOW",
    "Workflow",
    # Projection
    "Claimant",
    "ClaimantPool",
    "ClaimantProjection",
    "ProjectionContext",
    "project_claimant",
    # Wire / DTOs
    "rule_to_wire",
    "rule_from_wire",
    "profile_to_wire",
    "profile_from_wire",
    "Candidate",
    "CandidateKind",
    "DistributionReadModel",
    "DistributionState",
    "PublishResult",
    "SaveResult",
]
