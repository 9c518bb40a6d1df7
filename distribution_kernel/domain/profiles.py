"""
RuleProfileStore -- named, switchable rule sets.

Responsibility:
    Ordered, never-empty collection of RuleProfiles with two foreign keys
    into it: the profile being edited (``active_profile_id``) and the
    profile chosen for the next publish (``publish_profile_id``).  Keeps a
    cached summary per profile, recomputed on every mutation.

Architecture position:
    Kernel > Domain -- in-memory aggregate, zero I/O.  Owned by a single
    editor session (single writer); the persistence gateway hydrates it and
    receives its contents on save.

Invariants enforced:
    - At least one profile exists at all times.
    - Profile ids are unique (first occurrence wins on hydrate).
    - ``active_profile_id`` and ``publish_profile_id`` always name stored
      profiles; unknown ids fall back silently instead of raising.
    - Mutations are atomic: the new rule is fully built before it replaces
      the old one, so a failing mutator leaves the store unchanged.
    - While a PublishedPlan is attached, rule edits raise PlanLockedError.
      Selection changes stay allowed.

Failure modes:
    - MinimumProfileViolationError when deleting the last profile.
    - PlanLockedError for edits while locked.
    - TypeError when a mutator returns something other than AllocationRule.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from distribution_kernel.config import DistributionConfig
from distribution_kernel.domain.conflicts import ConflictReport, detect_conflicts
from distribution_kernel.domain.plan import PublishedPlan
from distribution_kernel.domain.rule import (
    AllianceCapability,
    AllocationRule,
    default_rule,
    normalize_id,
)
from distribution_kernel.domain.summary import AllocationSummary, compute_summary
from distribution_kernel.exceptions import (
    MinimumProfileViolationError,
    PlanLockedError,
)
from distribution_kernel.logging_config import get_logger

logger = get_logger("domain.profiles")

RuleMutator = Callable[[AllocationRule], AllocationRule]


@dataclass(frozen=True)
class RuleProfile:
    """A named, complete AllocationRule."""

    profile_id: str
    name: str
    rule: AllocationRule = field(default_factory=AllocationRule)

    def renamed(self, name: str) -> RuleProfile:
        return dataclasses.replace(self, name=name)

    def with_rule(self, rule: AllocationRule) -> RuleProfile:
        return dataclasses.replace(self, rule=rule)


@dataclass(frozen=True)
class NormalizedProfiles:
    """Result of ``normalize``: profiles, a valid active id and summaries."""

    profiles: tuple[RuleProfile, ...]
    active_id: str
    summaries: dict[str, AllocationSummary]


def _default_profile(config: DistributionConfig) -> RuleProfile:
    return RuleProfile(
        profile_id=config.default_profile_id,
        name=config.default_profile_name,
        rule=default_rule(
            owner_percent=config.default_owner_percent,
            distribution_percent=config.default_distribution_percent,
        ),
    )


def normalize(
    profiles: Iterable[RuleProfile],
    active_id: Any,
    alliance_sync_percent: Any,
    config: DistributionConfig | None = None,
    capability: AllianceCapability | None = None,
) -> NormalizedProfiles:
    """
    Restore every store invariant on arbitrary input.

    - empty input -> one default profile
    - duplicate ids -> first occurrence wins; blank ids are dropped
    - blank names -> placeholder name
    - unknown ``active_id`` -> first profile
    """
    config = config or DistributionConfig.with_defaults()
    unique: dict[str, RuleProfile] = {}
    for profile in profiles:
        profile_id = normalize_id(profile.profile_id)
        if not profile_id or profile_id in unique:
            continue
        name = (profile.name or "").strip() or config.placeholder_profile_name
        unique[profile_id] = RuleProfile(profile_id=profile_id, name=name, rule=profile.rule)

    if not unique:
        fallback = _default_profile(config)
        unique[fallback.profile_id] = fallback

    ordered = tuple(unique.values())
    requested = normalize_id(active_id)
    resolved = requested if requested in unique else ordered[0].profile_id
    summaries = {
        p.profile_id: compute_summary(p.rule, alliance_sync_percent, capability)
        for p in ordered
    }
    return NormalizedProfiles(profiles=ordered, active_id=resolved, summaries=summaries)


class RuleProfileStore:
    """
    In-memory aggregate of rule profiles for one territory.

    Contract:
        Every public read observes a normalized store.  Every mutation bumps
        ``revision`` exactly once; no-op calls leave it untouched, which is
        what the editor's dirty tracking relies on.

    Non-goals:
        - Does NOT persist anything (PersistenceGateway does).
        - Does NOT check the edit capability (the editor does).
    """

    def __init__(
        self,
        profiles: Iterable[RuleProfile] = (),
        active_profile_id: str | None = None,
        capability: AllianceCapability | None = None,
        config: DistributionConfig | None = None,
        publish_profile_id: str | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._config = config or DistributionConfig.with_defaults()
        self._capability = capability or AllianceCapability()
        self._id_factory = id_factory or (lambda: str(uuid4()))
        self._plan: PublishedPlan | None = None
        self._revision = 0
        self._profiles: list[RuleProfile] = []
        self._summaries: dict[str, AllocationSummary] = {}
        self._active_id = ""
        self._publish_id = ""
        self._load(profiles, active_profile_id, publish_profile_id)

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    @property
    def profiles(self) -> tuple[RuleProfile, ...]:
        return tuple(self._profiles)

    @property
    def active_profile_id(self) -> str:
        return self._active_id

    @property
    def publish_profile_id(self) -> str:
        return self._publish_id

    @property
    def active_profile(self) -> RuleProfile:
        return self.get(self._active_id)

    @property
    def publish_profile(self) -> RuleProfile:
        return self.get(self._publish_id)

    @property
    def active_summary(self) -> AllocationSummary:
        return self._summaries[self._active_id]

    @property
    def capability(self) -> AllianceCapability:
        return self._capability

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def plan(self) -> PublishedPlan | None:
        return self._plan

    @property
    def is_locked(self) -> bool:
        return self._plan is not None

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, profile_id: object) -> bool:
        return any(p.profile_id == profile_id for p in self._profiles)

    def get(self, profile_id: str) -> RuleProfile:
        for profile in self._profiles:
            if profile.profile_id == profile_id:
                return profile
        raise KeyError(profile_id)

    def find(self, profile_id: Any) -> RuleProfile | None:
        profile_id = normalize_id(profile_id)
        for profile in self._profiles:
            if profile.profile_id == profile_id:
                return profile
        return None

    def summary_for(self, profile_id: str) -> AllocationSummary:
        return self._summaries[profile_id]

    def conflicts_for(self, profile_id: str) -> ConflictReport:
        profile = self.get(profile_id)
        return detect_conflicts(
            profile.profile_id,
            profile.name,
            profile.rule,
            self._capability,
            summary=self._summaries[profile_id],
        )

    def active_conflicts(self) -> ConflictReport:
        return self.conflicts_for(self._active_id)

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    def hydrate(
        self,
        profiles: Iterable[RuleProfile],
        active_profile_id: str | None,
        capability: AllianceCapability | None = None,
    ) -> None:
        """Replace the whole store with authoritative state."""
        if capability is not None:
            self._capability = capability
        self._load(profiles, active_profile_id, self._publish_id)
        self._revision += 1

    def with_capability(self, capability: AllianceCapability) -> None:
        """Swap the alliance capability and recompute every cached summary."""
        if capability == self._capability:
            return
        self._capability = capability
        self._recompute_all()

    def _load(
        self,
        profiles: Iterable[RuleProfile],
        active_profile_id: str | None,
        publish_profile_id: str | None,
    ) -> None:
        normalized = normalize(
            profiles,
            active_profile_id,
            self._capability.alliance_sync_percent,
            config=self._config,
            capability=self._capability,
        )
        self._profiles = list(normalized.profiles)
        self._summaries = dict(normalized.summaries)
        self._active_id = normalized.active_id
        requested_publish = normalize_id(publish_profile_id)
        self._publish_id = (
            requested_publish
            if any(p.profile_id == requested_publish for p in self._profiles)
            else self._active_id
        )

    def _recompute(self, profile: RuleProfile) -> None:
        self._summaries[profile.profile_id] = compute_summary(
            profile.rule, self._capability.alliance_sync_percent, self._capability
        )

    def _recompute_all(self) -> None:
        for profile in self._profiles:
            self._recompute(profile)

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    def attach_plan(self, plan: PublishedPlan) -> None:
        self._plan = plan

    def detach_plan(self) -> None:
        self._plan = None

    def _assert_editable(self, operation: str) -> None:
        if self._plan is not None:
            logger.warning(
                "rule_edit_rejected_locked",
                extra={
                    "operation": operation,
                    "profile_id": self._plan.rule_profile_id,
                },
            )
            raise PlanLockedError(
                rule_profile_id=self._plan.rule_profile_id,
                execute_at=self._plan.execute_at,
                operation=operation,
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _next_auto_name(self) -> str:
        taken = {p.name for p in self._profiles}
        n = len(self._profiles) + 1
        while f"{self._config.auto_profile_name_prefix} {n}" in taken:
            n += 1
        return f"{self._config.auto_profile_name_prefix} {n}"

    def create_profile(self, name: str | None = None) -> str:
        """Append a default-valued profile and make it active."""
        self._assert_editable("create profile")
        profile_id = self._id_factory()
        while profile_id in self:
            profile_id = self._id_factory()
        label = (name or "").strip() or self._next_auto_name()
        profile = RuleProfile(
            profile_id=profile_id,
            name=label,
            rule=default_rule(
                owner_percent=self._config.default_owner_percent,
                distribution_percent=self._config.default_distribution_percent,
            ),
        )
        self._profiles.append(profile)
        self._recompute(profile)
        self._active_id = profile_id
        self._revision += 1
        logger.info(
            "profile_created",
            extra={"profile_id": profile_id, "profile_name": label},
        )
        return profile_id

    def rename_active(self, name: str | None) -> None:
        """Rename the active profile; blank input falls back to a placeholder."""
        self._assert_editable("rename profile")
        label = (name or "").strip() or self._config.placeholder_profile_name
        current = self.active_profile
        if current.name == label:
            return
        index = self._index_of(current.profile_id)
        self._profiles[index] = current.renamed(label)
        self._revision += 1
        logger.info(
            "profile_renamed",
            extra={"profile_id": current.profile_id, "profile_name": label},
        )

    def delete_active(self) -> str:
        """
        Remove the active profile and activate the first remaining one.

        Returns the new active profile id.
        """
        self._assert_editable("delete profile")
        if len(self._profiles) <= 1:
            logger.warning(
                "profile_delete_rejected",
                extra={"profile_id": self._active_id, "reason": "minimum_one_profile"},
            )
            raise MinimumProfileViolationError(self._active_id)
        removed_id = self._active_id
        del self._profiles[self._index_of(removed_id)]
        self._summaries.pop(removed_id, None)
        self._active_id = self._profiles[0].profile_id
        if self._publish_id == removed_id:
            self._publish_id = self._active_id
        self._revision += 1
        logger.info(
            "profile_deleted",
            extra={"profile_id": removed_id, "active_profile_id": self._active_id},
        )
        return self._active_id

    def set_active(self, profile_id: Any) -> None:
        """Select the profile to edit; unknown ids are ignored."""
        profile_id = normalize_id(profile_id)
        if profile_id == self._active_id or profile_id not in self:
            return
        self._active_id = profile_id
        self._revision += 1

    def set_publish_profile(self, profile_id: Any) -> None:
        """
        Select the profile for the next publish; unknown ids are ignored.

        The publish selection is session state and is not persisted, so it
        does not bump ``revision``.
        """
        profile_id = normalize_id(profile_id)
        if profile_id == self._publish_id or profile_id not in self:
            return
        self._publish_id = profile_id

    def update_active_rule(self, mutator: RuleMutator) -> AllocationSummary:
        """
        Apply a pure transformation to the active rule.

        Returns the recomputed summary of the active profile.
        """
        self._assert_editable("edit rule")
        current = self.active_profile
        new_rule = mutator(current.rule)
        if not isinstance(new_rule, AllocationRule):
            raise TypeError(
                f"Rule mutator must return AllocationRule, got {type(new_rule).__name__}"
            )
        if new_rule == current.rule:
            return self.active_summary
        updated = current.with_rule(new_rule)
        self._profiles[self._index_of(current.profile_id)] = updated
        self._recompute(updated)
        self._revision += 1
        logger.debug(
            "active_rule_updated",
            extra={
                "profile_id": current.profile_id,
                "total": self._summaries[current.profile_id].total,
            },
        )
        return self.active_summary

    def _index_of(self, profile_id: str) -> int:
        for index, profile in enumerate(self._profiles):
            if profile.profile_id == profile_id:
                return index
        raise KeyError(profile_id)
