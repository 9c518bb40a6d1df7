"""
SummaryComputer -- category breakdown of an AllocationRule.

Responsibility:
    Turns a rule plus the external alliance sync percent into the seven
    claimant-category sums and their total.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called on every
    keystroke by RuleProfileStore and before every save/publish by the
    conflict checks.

Invariants enforced:
    - Each category is ``round2`` of its raw sum; ``total`` is ``round2`` of
      the sum of the seven rounded categories.
    - Deny beats allow: blacklisted members, users and alliances contribute 0.
    - Without an alliance, the alliance sync, non-hostile and
      specific-alliance categories read as 0.  Stored values are untouched.
    - ``hostile_alliance`` is always 0.00.
    - ``scope_percent`` reports the rule's scope and never depends on the
      category figures.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from distribution_kernel.domain.percent import HUNDRED, ZERO, clamp_percent, round2
from distribution_kernel.domain.rule import AllianceCapability, AllocationRule


@dataclass(frozen=True)
class AllocationSummary:
    """Rounded per-category breakdown of one rule."""

    owner: Decimal
    member_pool: Decimal
    alliance_sync: Decimal
    custom_users: Decimal
    non_hostile_alliance: Decimal
    specific_alliances: Decimal
    no_alliance: Decimal
    total: Decimal
    scope_percent: Decimal
    hostile_alliance: Decimal = round2(ZERO)

    CATEGORY_FIELDS = (
        "owner",
        "member_pool",
        "alliance_sync",
        "custom_users",
        "non_hostile_alliance",
        "specific_alliances",
        "no_alliance",
    )

    @property
    def categories(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in self.CATEGORY_FIELDS}

    @property
    def is_within_budget(self) -> bool:
        return self.total <= HUNDRED

    @property
    def unallocated(self) -> Decimal:
        """Share of the distributed pool left unassigned (0 when over budget)."""
        return round2(max(ZERO, HUNDRED - self.total))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.categories)
        data["hostile_alliance"] = self.hostile_alliance
        data["total"] = self.total
        data["scope_percent"] = self.scope_percent
        return data


def compute_summary(
    rule: AllocationRule,
    alliance_sync_percent: Any,
    capability: AllianceCapability | None = None,
) -> AllocationSummary:
    """
    Compute the category breakdown of ``rule``.

    ``capability`` defaults to "has alliance"; when it says otherwise the
    alliance-bound categories are forced to zero.
    """
    has_alliance = True if capability is None else capability.has_alliance
    sync = clamp_percent(alliance_sync_percent) if has_alliance else ZERO

    blocked_users = set(rule.blacklist_user_ids)
    blocked_alliances = set(rule.blacklist_alliance_ids)

    member_pool = sum(
        (s.percent for s in rule.admin_pool if s.member_id not in blocked_users),
        ZERO,
    )
    custom_users = sum(
        (s.percent for s in rule.custom_user_overrides if s.user_id not in blocked_users),
        ZERO,
    )
    if has_alliance:
        non_hostile = rule.non_hostile_alliance_percent
        specific = sum(
            (
                s.percent
                for s in rule.specific_alliance_percents
                if s.alliance_id not in blocked_alliances
            ),
            ZERO,
        )
    else:
        non_hostile = ZERO
        specific = ZERO

    fields = {
        "owner": round2(rule.owner_percent),
        "member_pool": round2(member_pool),
        "alliance_sync": round2(sync),
        "custom_users": round2(custom_users),
        "non_hostile_alliance": round2(non_hostile),
        "specific_alliances": round2(specific),
        "no_alliance": round2(rule.no_alliance_percent),
    }
    total = round2(sum(fields.values(), ZERO))
    return AllocationSummary(
        total=total,
        scope_percent=round2(rule.scope_percent),
        **fields,
    )
