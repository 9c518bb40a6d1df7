"""
AllocationRule -- the percentage configuration of one distribution scheme.

Responsibility:
    Immutable rule value object: fixed owner share, admin (member) pool,
    custom per-user overrides, alliance pools, no-alliance pool and the two
    blacklists, plus the pure mutators the editor applies to it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Depends only on ``domain.percent``.

Invariants enforced:
    - Every percentage is clamped into [0, 100] and rounded to two decimal
      places on construction, whatever the input path (UI, wire, database).
    - ``admin_pool`` is unique by member id and holds percent > 0 only.
    - ``custom_user_overrides`` and ``specific_alliance_percents`` are unique
      by id.  Duplicate user ids keep the last percent (first position);
      duplicate alliance ids are summed, then clamped.
    - Blacklists are ordered, de-duplicated, and never contain blank ids.
    - ``hostile_alliance_percent`` is always 0.

Non-goals:
    - Does NOT enforce the 100% budget; the sum is checked at save/publish
      time by ``domain.conflicts`` so operators can pass through an
      over-budget state while typing.
    - Does NOT hold the alliance sync percent; that value is external and
      arrives through ``AllianceCapability``.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from distribution_kernel.domain.percent import HUNDRED, ZERO, clamp_percent

DEFAULT_OWNER_PERCENT = Decimal("10")
DEFAULT_DISTRIBUTION_PERCENT = Decimal("100")


class DistributionScope(str, Enum):
    """How much of the pool is distributed this cycle."""

    ALL = "all"
    PARTIAL = "partial"

    @classmethod
    def parse(cls, value: Any) -> DistributionScope:
        """Anything other than ``partial`` reads as ``all``."""
        if isinstance(value, DistributionScope):
            return value
        return cls.PARTIAL if str(value or "").strip().lower() == "partial" else cls.ALL


def normalize_id(value: Any) -> str:
    """Return a stripped string id, or '' for missing ids."""
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class MemberShare:
    """Admin-pool share of one member."""

    member_id: str
    percent: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "member_id", normalize_id(self.member_id))
        object.__setattr__(self, "percent", clamp_percent(self.percent))


@dataclass(frozen=True, slots=True)
class UserShare:
    """Custom override for one user."""

    user_id: str
    percent: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_id", normalize_id(self.user_id))
        object.__setattr__(self, "percent", clamp_percent(self.percent))


@dataclass(frozen=True, slots=True)
class AllianceShare:
    """Pool reserved for the members of one specific alliance."""

    alliance_id: str
    percent: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "alliance_id", normalize_id(self.alliance_id))
        object.__setattr__(self, "percent", clamp_percent(self.percent))


@dataclass(frozen=True, slots=True)
class AllianceCapability:
    """
    Derived capability describing the controlling user's alliance status.

    Passed explicitly into every computation so the same rule data behaves
    correctly when the controller joins or leaves an alliance between calls.
    """

    has_alliance: bool = True
    alliance_sync_percent: Decimal = ZERO

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "alliance_sync_percent", clamp_percent(self.alliance_sync_percent)
        )

    @property
    def effective_sync_percent(self) -> Decimal:
        return self.alliance_sync_percent if self.has_alliance else ZERO


_Share = TypeVar("_Share", MemberShare, UserShare, AllianceShare)


def _unique_shares(
    entries: Iterable[_Share],
    key: Callable[[_Share], str],
    merge: Callable[[_Share, _Share], _Share],
) -> tuple[_Share, ...]:
    ordered: dict[str, _Share] = {}
    for entry in entries:
        entry_id = key(entry)
        if not entry_id:
            continue
        if entry_id in ordered:
            ordered[entry_id] = merge(ordered[entry_id], entry)
        else:
            ordered[entry_id] = entry
    return tuple(ordered.values())


def _unique_ids(values: Iterable[Any]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        normalized = normalize_id(value)
        if normalized:
            seen.setdefault(normalized, None)
    return tuple(seen)


@dataclass(frozen=True)
class AllocationRule:
    """
    Full percentage configuration for one distribution scheme.

    Contract:
        Immutable.  Every mutator returns a new rule; callers swap the
        reference atomically so no reader ever observes a half-applied edit.

    Guarantees:
        - All invariants in the module docstring hold after construction.
        - Equality is structural, so ``rule == rule.with_owner_percent(x)``
          tells the editor whether an edit changed anything.
    """

    distribution_scope: DistributionScope = DistributionScope.ALL
    distribution_percent: Decimal = DEFAULT_DISTRIBUTION_PERCENT
    owner_percent: Decimal = DEFAULT_OWNER_PERCENT
    admin_pool: tuple[MemberShare, ...] = field(default_factory=tuple)
    custom_user_overrides: tuple[UserShare, ...] = field(default_factory=tuple)
    non_hostile_alliance_percent: Decimal = ZERO
    specific_alliance_percents: tuple[AllianceShare, ...] = field(default_factory=tuple)
    no_alliance_percent: Decimal = ZERO
    blacklist_user_ids: tuple[str, ...] = field(default_factory=tuple)
    blacklist_alliance_ids: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        set_ = object.__setattr__
        set_(self, "distribution_scope", DistributionScope.parse(self.distribution_scope))
        set_(
            self,
            "distribution_percent",
            clamp_percent(self.distribution_percent, DEFAULT_DISTRIBUTION_PERCENT),
        )
        set_(self, "owner_percent", clamp_percent(self.owner_percent, DEFAULT_OWNER_PERCENT))
        set_(
            self,
            "non_hostile_alliance_percent",
            clamp_percent(self.non_hostile_alliance_percent),
        )
        set_(self, "no_alliance_percent", clamp_percent(self.no_alliance_percent))

        admins = _unique_shares(
            self.admin_pool,
            key=lambda s: s.member_id,
            merge=lambda first, last: MemberShare(first.member_id, last.percent),
        )
        set_(self, "admin_pool", tuple(s for s in admins if s.percent > ZERO))
        set_(
            self,
            "custom_user_overrides",
            _unique_shares(
                self.custom_user_overrides,
                key=lambda s: s.user_id,
                merge=lambda first, last: UserShare(first.user_id, last.percent),
            ),
        )
        set_(
            self,
            "specific_alliance_percents",
            _unique_shares(
                self.specific_alliance_percents,
                key=lambda s: s.alliance_id,
                merge=lambda first, last: AllianceShare(
                    first.alliance_id, min(HUNDRED, first.percent + last.percent)
                ),
            ),
        )
        set_(self, "blacklist_user_ids", _unique_ids(self.blacklist_user_ids))
        set_(self, "blacklist_alliance_ids", _unique_ids(self.blacklist_alliance_ids))

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def hostile_alliance_percent(self) -> Decimal:
        """Display-only category: hostile claimants are always excluded."""
        return ZERO

    @property
    def scope_percent(self) -> Decimal:
        """Fraction of the pool subject to distribution this cycle."""
        if self.distribution_scope is DistributionScope.PARTIAL:
            return self.distribution_percent
        return HUNDRED

    def admin_percent_for(self, member_id: str) -> Decimal:
        member_id = normalize_id(member_id)
        for share in self.admin_pool:
            if share.member_id == member_id:
                return share.percent
        return ZERO

    def custom_percent_for(self, user_id: str) -> Decimal:
        user_id = normalize_id(user_id)
        for share in self.custom_user_overrides:
            if share.user_id == user_id:
                return share.percent
        return ZERO

    def specific_alliance_percent_for(self, alliance_id: str) -> Decimal:
        alliance_id = normalize_id(alliance_id)
        for share in self.specific_alliance_percents:
            if share.alliance_id == alliance_id:
                return share.percent
        return ZERO

    def is_user_blacklisted(self, user_id: str) -> bool:
        return normalize_id(user_id) in self.blacklist_user_ids

    def is_alliance_blacklisted(self, alliance_id: str) -> bool:
        return normalize_id(alliance_id) in self.blacklist_alliance_ids

    # ------------------------------------------------------------------
    # Pure mutators
    # ------------------------------------------------------------------

    def with_scope(
        self, scope: DistributionScope | str, percent: Any = None
    ) -> AllocationRule:
        parsed = DistributionScope.parse(scope)
        new_percent = (
            self.distribution_percent
            if percent is None
            else clamp_percent(percent, self.distribution_percent)
        )
        return dataclasses.replace(
            self, distribution_scope=parsed, distribution_percent=new_percent
        )

    def with_owner_percent(self, percent: Any) -> AllocationRule:
        return dataclasses.replace(
            self, owner_percent=clamp_percent(percent, self.owner_percent)
        )

    def set_admin_share(self, member_id: Any, percent: Any) -> AllocationRule:
        """Add or replace a member's share; a share of 0 removes the member."""
        member_id = normalize_id(member_id)
        if not member_id:
            return self
        value = clamp_percent(percent)
        if value <= ZERO:
            return self.remove_admin_share(member_id)
        return dataclasses.replace(
            self,
            admin_pool=_replace_or_append(
                self.admin_pool, MemberShare(member_id, value), lambda s: s.member_id
            ),
        )

    def remove_admin_share(self, member_id: Any) -> AllocationRule:
        member_id = normalize_id(member_id)
        return dataclasses.replace(
            self,
            admin_pool=tuple(s for s in self.admin_pool if s.member_id != member_id),
        )

    def set_custom_user_share(self, user_id: Any, percent: Any) -> AllocationRule:
        user_id = normalize_id(user_id)
        if not user_id:
            return self
        share = UserShare(user_id, clamp_percent(percent))
        return dataclasses.replace(
            self,
            custom_user_overrides=_replace_or_append(
                self.custom_user_overrides, share, lambda s: s.user_id
            ),
        )

    def remove_custom_user_share(self, user_id: Any) -> AllocationRule:
        user_id = normalize_id(user_id)
        return dataclasses.replace(
            self,
            custom_user_overrides=tuple(
                s for s in self.custom_user_overrides if s.user_id != user_id
            ),
        )

    def with_non_hostile_alliance_percent(self, percent: Any) -> AllocationRule:
        return dataclasses.replace(
            self,
            non_hostile_alliance_percent=clamp_percent(
                percent, self.non_hostile_alliance_percent
            ),
        )

    def set_specific_alliance_share(self, alliance_id: Any, percent: Any) -> AllocationRule:
        alliance_id = normalize_id(alliance_id)
        if not alliance_id:
            return self
        share = AllianceShare(alliance_id, clamp_percent(percent))
        return dataclasses.replace(
            self,
            specific_alliance_percents=_replace_or_append(
                self.specific_alliance_percents, share, lambda s: s.alliance_id
            ),
        )

    def remove_specific_alliance_share(self, alliance_id: Any) -> AllocationRule:
        alliance_id = normalize_id(alliance_id)
        return dataclasses.replace(
            self,
            specific_alliance_percents=tuple(
                s for s in self.specific_alliance_percents if s.alliance_id != alliance_id
            ),
        )

    def with_no_alliance_percent(self, percent: Any) -> AllocationRule:
        return dataclasses.replace(
            self, no_alliance_percent=clamp_percent(percent, self.no_alliance_percent)
        )

    def blacklist_user(self, user_id: Any) -> AllocationRule:
        return dataclasses.replace(
            self, blacklist_user_ids=self.blacklist_user_ids + (normalize_id(user_id),)
        )

    def unblacklist_user(self, user_id: Any) -> AllocationRule:
        user_id = normalize_id(user_id)
        return dataclasses.replace(
            self,
            blacklist_user_ids=tuple(i for i in self.blacklist_user_ids if i != user_id),
        )

    def blacklist_alliance(self, alliance_id: Any) -> AllocationRule:
        return dataclasses.replace(
            self,
            blacklist_alliance_ids=self.blacklist_alliance_ids + (normalize_id(alliance_id),),
        )

    def unblacklist_alliance(self, alliance_id: Any) -> AllocationRule:
        alliance_id = normalize_id(alliance_id)
        return dataclasses.replace(
            self,
            blacklist_alliance_ids=tuple(
                i for i in self.blacklist_alliance_ids if i != alliance_id
            ),
        )

    def without_blacklists(self) -> AllocationRule:
        """Blacklists are reset whenever the controlling user changes."""
        return dataclasses.replace(self, blacklist_user_ids=(), blacklist_alliance_ids=())


def _replace_or_append(
    entries: tuple[_Share, ...], share: _Share, key: Callable[[_Share], str]
) -> tuple[_Share, ...]:
    share_id = key(share)
    if any(key(existing) == share_id for existing in entries):
        return tuple(share if key(existing) == share_id else existing for existing in entries)
    return entries + (share,)


def default_rule(
    owner_percent: Decimal = DEFAULT_OWNER_PERCENT,
    distribution_percent: Decimal = DEFAULT_DISTRIBUTION_PERCENT,
) -> AllocationRule:
    """A fresh rule with the configured defaults."""
    return AllocationRule(
        owner_percent=owner_percent, distribution_percent=distribution_percent
    )
