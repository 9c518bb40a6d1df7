"""
Claimant projection -- effective allocation preview for one claimant.

Responsibility:
    Answers "what is the most this claimant can receive under this rule?"
    for UI affordances and announcements, applying the same pool
    preference the settlement service applies: one claimant draws from at
    most one custom pool, the one with the highest percent (ties broken by
    pool priority).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Deny beats allow: blacklisted users, members of blacklisted alliances
      and (when the controller has an alliance) members of hostile alliances
      project to 0.
    - Owner and admin-pool members draw only their fixed share.
    - Alliance pools read as 0 when the alliance capability is disabled.

Non-goals:
    - Does NOT split group pools between participants; the number of
      participants is only known to the settlement service at execute time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from distribution_kernel.domain.percent import ZERO, round2
from distribution_kernel.domain.rule import (
    AllianceCapability,
    AllocationRule,
    normalize_id,
)


class ClaimantPool(str, Enum):
    BLOCKED = "blocked"
    NONE = "none"
    OWNER = "owner"
    ADMIN_MEMBER = "admin_member"
    CUSTOM_USER = "custom_user"
    SPECIFIC_ALLIANCE = "specific_alliance"
    NON_HOSTILE_ALLIANCE = "non_hostile_alliance"
    NO_ALLIANCE = "no_alliance"


_POOL_PRIORITY = {
    ClaimantPool.CUSTOM_USER: 4,
    ClaimantPool.SPECIFIC_ALLIANCE: 3,
    ClaimantPool.NON_HOSTILE_ALLIANCE: 2,
    ClaimantPool.NO_ALLIANCE: 1,
}


@dataclass(frozen=True)
class Claimant:
    user_id: str
    alliance_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_id", normalize_id(self.user_id))
        object.__setattr__(self, "alliance_id", normalize_id(self.alliance_id) or None)


@dataclass(frozen=True)
class ProjectionContext:
    """Territory facts the projection needs besides the rule."""

    controller_user_id: str
    capability: AllianceCapability = field(default_factory=AllianceCapability)
    hostile_alliance_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ClaimantProjection:
    pool: ClaimantPool
    percent: Decimal

    @property
    def is_eligible(self) -> bool:
        return self.pool not in (ClaimantPool.BLOCKED, ClaimantPool.NONE)


_BLOCKED = ClaimantProjection(ClaimantPool.BLOCKED, round2(ZERO))
_NONE = ClaimantProjection(ClaimantPool.NONE, round2(ZERO))


def is_blocked(rule: AllocationRule, claimant: Claimant, context: ProjectionContext) -> bool:
    if not claimant.user_id:
        return True
    if rule.is_user_blacklisted(claimant.user_id):
        return True
    if claimant.alliance_id and rule.is_alliance_blacklisted(claimant.alliance_id):
        return True
    if (
        context.capability.has_alliance
        and claimant.alliance_id
        and claimant.alliance_id in context.hostile_alliance_ids
    ):
        return True
    return False


def candidate_pools(
    rule: AllocationRule, claimant: Claimant, context: ProjectionContext
) -> list[tuple[ClaimantPool, Decimal]]:
    """Custom pools the claimant qualifies for, unsorted."""
    candidates: list[tuple[ClaimantPool, Decimal]] = []
    custom = rule.custom_percent_for(claimant.user_id)
    if custom > ZERO:
        candidates.append((ClaimantPool.CUSTOM_USER, custom))

    has_alliance = context.capability.has_alliance
    if claimant.alliance_id:
        if has_alliance:
            specific = rule.specific_alliance_percent_for(claimant.alliance_id)
            if specific > ZERO:
                candidates.append((ClaimantPool.SPECIFIC_ALLIANCE, specific))
            if (
                claimant.alliance_id not in context.hostile_alliance_ids
                and rule.non_hostile_alliance_percent > ZERO
            ):
                candidates.append(
                    (ClaimantPool.NON_HOSTILE_ALLIANCE, rule.non_hostile_alliance_percent)
                )
    elif rule.no_alliance_percent > ZERO:
        candidates.append((ClaimantPool.NO_ALLIANCE, rule.no_alliance_percent))
    return candidates


def project_claimant(
    rule: AllocationRule, claimant: Claimant, context: ProjectionContext
) -> ClaimantProjection:
    """Maximum percent of the distributed pool ``claimant`` can receive."""
    if is_blocked(rule, claimant, context):
        return _BLOCKED
    if claimant.user_id == normalize_id(context.controller_user_id):
        return ClaimantProjection(ClaimantPool.OWNER, round2(rule.owner_percent))
    admin_share = rule.admin_percent_for(claimant.user_id)
    if admin_share > ZERO:
        return ClaimantProjection(ClaimantPool.ADMIN_MEMBER, round2(admin_share))

    candidates = candidate_pools(rule, claimant, context)
    if not candidates:
        return _NONE
    pool, percent = max(candidates, key=lambda c: (c[1], _POOL_PRIORITY[c[0]]))
    return ClaimantProjection(pool, round2(percent))
