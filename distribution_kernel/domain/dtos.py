"""
Data Transfer Objects exchanged with the persistence gateway and the UI.

Responsibility:
    Frozen value objects for everything that crosses a boundary: the
    loaded distribution state, save/publish acknowledgements, identity
    lookup candidates, and the editor's read model.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  No ORM types leak through here;
    the gateway converts its rows into these objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from distribution_kernel.domain.conflicts import ConflictReport
from distribution_kernel.domain.percent import ZERO
from distribution_kernel.domain.plan import PlanState, PublishedPlan
from distribution_kernel.domain.profiles import RuleProfile
from distribution_kernel.domain.rule import AllianceCapability
from distribution_kernel.domain.summary import AllocationSummary


@dataclass(frozen=True)
class DistributionState:
    """Authoritative state returned by ``load_distribution_state``."""

    territory_id: str
    can_view: bool
    can_edit: bool
    is_locked: bool
    alliance_sync_percent: Decimal = ZERO
    has_alliance: bool = False
    alliance_name: str = ""
    locked_plan: PublishedPlan | None = None
    active_profile_id: str = ""
    profiles: tuple[RuleProfile, ...] = field(default_factory=tuple)
    controller_user_id: str | None = None

    @property
    def capability(self) -> AllianceCapability:
        return AllianceCapability(
            has_alliance=self.has_alliance,
            alliance_sync_percent=self.alliance_sync_percent,
        )


@dataclass(frozen=True)
class SaveResult:
    message: str
    is_locked: bool = False


@dataclass(frozen=True)
class PublishResult:
    message: str
    plan: PublishedPlan | None = None


class CandidateKind(str, Enum):
    USER = "user"
    ALLIANCE = "alliance"


@dataclass(frozen=True)
class Candidate:
    """Identity lookup hit used to populate allow and deny lists."""

    candidate_id: str
    kind: CandidateKind
    display_name: str
    alliance_id: str | None = None


@dataclass(frozen=True)
class DistributionReadModel:
    """Normalized snapshot the UI renders after every operation."""

    profiles: tuple[RuleProfile, ...]
    active_profile_id: str
    publish_profile_id: str
    summary: AllocationSummary
    conflicts: ConflictReport
    plan_state: PlanState
    locked_plan: PublishedPlan | None
    can_view: bool
    can_edit: bool
    is_dirty: bool
    is_saving: bool
    alliance_name: str = ""
    has_alliance: bool = False

    @property
    def editable(self) -> bool:
        """Edit affordances are shown only with the capability and no plan."""
        return self.can_edit and not self.plan_state.blocks_editing
