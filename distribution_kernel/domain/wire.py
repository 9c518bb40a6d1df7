"""
Wire format of rules and profiles.

Responsibility:
    Converts AllocationRule / RuleProfile to and from the persisted JSON
    shape shared with the persistence gateway:

        {
          "distributionScope": "all" | "partial",
          "distributionPercent": number,
          "ownerPercent": number,
          "adminPool": [{"memberId", "percent"}],
          "customUserOverrides": [{"userId", "percent"}],
          "nonHostileAlliancePercent": number,
          "specificAlliancePercents": [{"allianceId", "percent"}],
          "noAlliancePercent": number,
          "blacklistUserIds": [string],
          "blacklistAllianceIds": [string]
        }

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - Output numbers carry two-decimal precision.
    - Share entries with ``percent <= 0`` or a missing id are never written.
    - Reading is forgiving: malformed numbers clamp to defaults, malformed
      entries are skipped, unknown keys are ignored.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from distribution_kernel.domain.percent import ZERO, clamp_percent, round2
from distribution_kernel.domain.profiles import RuleProfile
from distribution_kernel.domain.rule import (
    DEFAULT_DISTRIBUTION_PERCENT,
    DEFAULT_OWNER_PERCENT,
    AllianceShare,
    AllocationRule,
    DistributionScope,
    MemberShare,
    UserShare,
    normalize_id,
)


def _number(value: Decimal) -> float:
    return float(round2(value))


def _entries(raw: Any) -> list[Mapping[str, Any]]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [item for item in raw if isinstance(item, Mapping)]


def _ids(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [normalize_id(item) for item in raw if normalize_id(item)]


def rule_to_wire(rule: AllocationRule) -> dict[str, Any]:
    return {
        "distributionScope": rule.distribution_scope.value,
        "distributionPercent": _number(rule.distribution_percent),
        "ownerPercent": _number(rule.owner_percent),
        "adminPool": [
            {"memberId": s.member_id, "percent": _number(s.percent)}
            for s in rule.admin_pool
            if s.member_id and s.percent > ZERO
        ],
        "customUserOverrides": [
            {"userId": s.user_id, "percent": _number(s.percent)}
            for s in rule.custom_user_overrides
            if s.user_id and s.percent > ZERO
        ],
        "nonHostileAlliancePercent": _number(rule.non_hostile_alliance_percent),
        "specificAlliancePercents": [
            {"allianceId": s.alliance_id, "percent": _number(s.percent)}
            for s in rule.specific_alliance_percents
            if s.alliance_id and s.percent > ZERO
        ],
        "noAlliancePercent": _number(rule.no_alliance_percent),
        "blacklistUserIds": list(rule.blacklist_user_ids),
        "blacklistAllianceIds": list(rule.blacklist_alliance_ids),
    }


def rule_from_wire(data: Mapping[str, Any] | None) -> AllocationRule:
    data = data if isinstance(data, Mapping) else {}
    return AllocationRule(
        distribution_scope=DistributionScope.parse(data.get("distributionScope")),
        distribution_percent=clamp_percent(
            data.get("distributionPercent"), DEFAULT_DISTRIBUTION_PERCENT
        ),
        owner_percent=clamp_percent(data.get("ownerPercent"), DEFAULT_OWNER_PERCENT),
        admin_pool=tuple(
            MemberShare(item.get("memberId"), clamp_percent(item.get("percent")))
            for item in _entries(data.get("adminPool"))
        ),
        custom_user_overrides=tuple(
            UserShare(item.get("userId"), clamp_percent(item.get("percent")))
            for item in _entries(data.get("customUserOverrides"))
            if clamp_percent(item.get("percent")) > ZERO
        ),
        non_hostile_alliance_percent=clamp_percent(data.get("nonHostileAlliancePercent")),
        specific_alliance_percents=tuple(
            AllianceShare(item.get("allianceId"), clamp_percent(item.get("percent")))
            for item in _entries(data.get("specificAlliancePercents"))
            if clamp_percent(item.get("percent")) > ZERO
        ),
        no_alliance_percent=clamp_percent(data.get("noAlliancePercent")),
        blacklist_user_ids=tuple(_ids(data.get("blacklistUserIds"))),
        blacklist_alliance_ids=tuple(_ids(data.get("blacklistAllianceIds"))),
    )


def profile_to_wire(profile: RuleProfile) -> dict[str, Any]:
    return {
        "profileId": profile.profile_id,
        "name": profile.name,
        "rule": rule_to_wire(profile.rule),
    }


def profile_from_wire(data: Mapping[str, Any]) -> RuleProfile:
    return RuleProfile(
        profile_id=normalize_id(data.get("profileId")),
        name=str(data.get("name") or ""),
        rule=rule_from_wire(data.get("rule")),
    )


def profiles_from_wire(raw: Any) -> tuple[RuleProfile, ...]:
    """Parse a wire list of profiles, skipping entries that are not objects."""
    return tuple(profile_from_wire(item) for item in _entries(raw))
