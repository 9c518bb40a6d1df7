"""
ConflictResolver -- contradictions inside a rule and against the budget.

Responsibility:
    Detects the three conflict kinds an operator can create while editing:

    * budget     -- category total above 100 (blocks save and publish)
    * allow/deny -- an id allowed by a share entry and denied by a blacklist
    * alliance   -- alliance-bound fields set while the controller has no
                    alliance

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Runs after every
    mutation (RuleProfileStore read model) and before save/publish.

Invariants enforced:
    - Deny wins.  The conflicting allow entry stays stored but contributes 0
      (see ``compute_summary``).  Nothing is deleted.
    - The alliance case is the only one corrected automatically, and only on
      read (``effective_rule``); re-enabling the alliance restores the values.
    - Budget conflicts are surfaced, never truncated.

Failure modes:
    - ``assert_within_budget`` raises BudgetExceededError naming the first
      offending profile and its exact two-decimal total.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from distribution_kernel.domain.percent import HUNDRED, ZERO
from distribution_kernel.domain.rule import AllianceCapability, AllocationRule
from distribution_kernel.domain.summary import AllocationSummary, compute_summary
from distribution_kernel.exceptions import BudgetExceededError
from distribution_kernel.logging_config import get_logger

logger = get_logger("domain.conflicts")


class AllowDenyKind(str, Enum):
    ADMIN_MEMBER = "admin_member"
    CUSTOM_USER = "custom_user"
    SPECIFIC_ALLIANCE = "specific_alliance"


@dataclass(frozen=True)
class AllowDenyConflict:
    """One id that is both allowed a share and blacklisted."""

    kind: AllowDenyKind
    subject_id: str
    stored_percent: Decimal

    @property
    def effective_percent(self) -> Decimal:
        return ZERO


@dataclass(frozen=True)
class BudgetConflict:
    profile_id: str
    profile_name: str
    total: Decimal

    @property
    def excess(self) -> Decimal:
        return self.total - HUNDRED


@dataclass(frozen=True)
class ConflictReport:
    """All conflicts found in one profile's rule."""

    summary: AllocationSummary
    budget: BudgetConflict | None = None
    allow_deny: tuple[AllowDenyConflict, ...] = field(default_factory=tuple)
    suppressed_alliance_fields: tuple[str, ...] = field(default_factory=tuple)

    @property
    def conflict_count(self) -> int:
        """Number of allow/deny conflicts."""
        return len(self.allow_deny)

    @property
    def blocks_save(self) -> bool:
        return self.budget is not None

    @property
    def has_conflicts(self) -> bool:
        return bool(self.budget or self.allow_deny or self.suppressed_alliance_fields)


def find_allow_deny_conflicts(rule: AllocationRule) -> tuple[AllowDenyConflict, ...]:
    blocked_users = set(rule.blacklist_user_ids)
    blocked_alliances = set(rule.blacklist_alliance_ids)
    conflicts: list[AllowDenyConflict] = []
    for share in rule.admin_pool:
        if share.member_id in blocked_users:
            conflicts.append(
                AllowDenyConflict(AllowDenyKind.ADMIN_MEMBER, share.member_id, share.percent)
            )
    for share in rule.custom_user_overrides:
        if share.user_id in blocked_users:
            conflicts.append(
                AllowDenyConflict(AllowDenyKind.CUSTOM_USER, share.user_id, share.percent)
            )
    for share in rule.specific_alliance_percents:
        if share.alliance_id in blocked_alliances:
            conflicts.append(
                AllowDenyConflict(
                    AllowDenyKind.SPECIFIC_ALLIANCE, share.alliance_id, share.percent
                )
            )
    return tuple(conflicts)


def suppressed_alliance_fields(
    rule: AllocationRule, capability: AllianceCapability
) -> tuple[str, ...]:
    """Names of stored alliance fields that read as zero without an alliance."""
    if capability.has_alliance:
        return ()
    suppressed = []
    if capability.alliance_sync_percent > ZERO:
        suppressed.append("alliance_sync_percent")
    if rule.non_hostile_alliance_percent > ZERO:
        suppressed.append("non_hostile_alliance_percent")
    if rule.specific_alliance_percents:
        suppressed.append("specific_alliance_percents")
    return tuple(suppressed)


def effective_rule(rule: AllocationRule, capability: AllianceCapability) -> AllocationRule:
    """The rule as read under ``capability``: alliance fields zeroed when disabled."""
    if capability.has_alliance:
        return rule
    return dataclasses.replace(
        rule, non_hostile_alliance_percent=ZERO, specific_alliance_percents=()
    )


def detect_conflicts(
    profile_id: str,
    profile_name: str,
    rule: AllocationRule,
    capability: AllianceCapability,
    summary: AllocationSummary | None = None,
) -> ConflictReport:
    """Run every conflict check against one profile."""
    summary = summary or compute_summary(
        rule, capability.alliance_sync_percent, capability
    )
    budget = None
    if summary.total > HUNDRED:
        budget = BudgetConflict(profile_id, profile_name, summary.total)
    return ConflictReport(
        summary=summary,
        budget=budget,
        allow_deny=find_allow_deny_conflicts(rule),
        suppressed_alliance_fields=suppressed_alliance_fields(rule, capability),
    )


def assert_within_budget(
    profiles: Iterable[tuple[str, str, AllocationRule]],
    capability: AllianceCapability,
) -> None:
    """
    Raise BudgetExceededError for the first profile whose total exceeds 100.

    ``profiles`` yields ``(profile_id, name, rule)`` triples.
    """
    for profile_id, name, rule in profiles:
        summary = compute_summary(rule, capability.alliance_sync_percent, capability)
        if summary.total > HUNDRED:
            logger.warning(
                "budget_exceeded",
                extra={
                    "profile_id": profile_id,
                    "profile_name": name,
                    "total": summary.total,
                },
            )
            raise BudgetExceededError(name, summary.total, profile_id=profile_id)
