"""
Distribution query selector.

Read-only access to territories, rule profiles, published plans and the
claimant directory.

Key design decisions:
- Returns domain values (RuleProfile, PublishedPlan) and frozen DTOs, never
  ORM rows
- Uses the caller's Session; the gateway decides the transaction scope
- Stored rule documents are parsed with the forgiving wire reader, so a
  hand-edited row degrades to clamped values instead of failing the load
- Datetimes read back from backends without timezone support are treated
  as UTC
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, or_, select

from distribution_kernel.domain.dtos import Candidate, CandidateKind
from distribution_kernel.domain.plan import PublishedPlan, ensure_aware
from distribution_kernel.domain.profiles import RuleProfile
from distribution_kernel.domain.rule import AllianceCapability, normalize_id
from distribution_kernel.domain.wire import rule_from_wire
from distribution_kernel.models.distribution import (
    ClaimantDirectoryModel,
    PublishedPlanModel,
    RuleProfileModel,
    TerritoryModel,
)
from distribution_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class TerritorySnapshot:
    """Territory facts needed to answer access and capability questions."""

    territory_key: str
    controller_user_id: str
    alliance_id: str | None
    alliance_name: str
    alliance_sync_percent: Decimal
    hostile_alliance_ids: frozenset[str]
    editor_user_ids: frozenset[str]
    viewer_user_ids: frozenset[str]
    active_profile_id: str
    rules_revision: int

    @property
    def has_alliance(self) -> bool:
        return bool(self.alliance_id)

    @property
    def capability(self) -> AllianceCapability:
        return AllianceCapability(
            has_alliance=self.has_alliance,
            alliance_sync_percent=self.alliance_sync_percent,
        )

    def can_edit(self, actor_id: str | None) -> bool:
        actor = normalize_id(actor_id)
        if not actor:
            return False
        return actor == self.controller_user_id or actor in self.editor_user_ids

    def can_view(self, actor_id: str | None) -> bool:
        return self.can_edit(actor_id) or normalize_id(actor_id) in self.viewer_user_ids


def _ids(values) -> frozenset[str]:
    return frozenset(normalize_id(v) for v in (values or ()) if normalize_id(v))


def territory_to_snapshot(row: TerritoryModel) -> TerritorySnapshot:
    return TerritorySnapshot(
        territory_key=row.territory_key,
        controller_user_id=row.controller_user_id,
        alliance_id=row.alliance_id or None,
        alliance_name=row.alliance_name or "",
        alliance_sync_percent=Decimal(row.alliance_sync_percent or 0),
        hostile_alliance_ids=_ids(row.hostile_alliance_ids),
        editor_user_ids=_ids(row.editor_user_ids),
        viewer_user_ids=_ids(row.viewer_user_ids),
        active_profile_id=row.active_profile_key or "",
        rules_revision=row.rules_revision or 0,
    )


def profile_from_row(row: RuleProfileModel) -> RuleProfile:
    return RuleProfile(
        profile_id=row.profile_key,
        name=row.name,
        rule=rule_from_wire(row.rule_document),
    )


def plan_from_row(row: PublishedPlanModel) -> PublishedPlan:
    return PublishedPlan(
        rule_profile_id=row.rule_profile_key,
        execute_at=ensure_aware(row.execute_at),
        rule_snapshot=rule_from_wire(row.rule_snapshot),
        published_at=ensure_aware(row.published_at),
        entry_close_at=ensure_aware(row.entry_close_at),
        end_at=ensure_aware(row.end_at),
        published_by=row.created_by_id,
        profile_name=row.profile_name or None,
    )


class DistributionSelector(BaseSelector[TerritoryModel]):
    """Selector for territory distribution state."""

    def territory_row(self, territory_key: str) -> TerritoryModel | None:
        """ORM row for the gateway's write path; other callers use ``territory``."""
        return self.session.scalars(
            select(TerritoryModel).where(TerritoryModel.territory_key == territory_key)
        ).one_or_none()

    def territory(self, territory_key: str) -> TerritorySnapshot | None:
        row = self.territory_row(territory_key)
        if row is None:
            return None
        return territory_to_snapshot(row)

    def profiles(self, territory_key: str) -> tuple[RuleProfile, ...]:
        rows = self.session.scalars(
            select(RuleProfileModel)
            .join(TerritoryModel, RuleProfileModel.territory_id == TerritoryModel.id)
            .where(TerritoryModel.territory_key == territory_key)
            .order_by(RuleProfileModel.position)
        ).all()
        return tuple(profile_from_row(row) for row in rows)

    def current_plan_row(self, territory_key: str) -> PublishedPlanModel | None:
        return self.session.scalars(
            select(PublishedPlanModel)
            .join(TerritoryModel, PublishedPlanModel.territory_id == TerritoryModel.id)
            .where(
                TerritoryModel.territory_key == territory_key,
                PublishedPlanModel.settled_at.is_(None),
            )
            .order_by(PublishedPlanModel.published_at.desc())
        ).first()

    def current_plan(self, territory_key: str) -> PublishedPlan | None:
        """The unsettled plan locking the territory, if any."""
        row = self.current_plan_row(territory_key)
        if row is None:
            return None
        return plan_from_row(row)

    def plan_history(self, territory_key: str, limit: int = 20) -> tuple[PublishedPlan, ...]:
        """Published plans for the territory, newest first (settled included)."""
        rows = self.session.scalars(
            select(PublishedPlanModel)
            .join(TerritoryModel, PublishedPlanModel.territory_id == TerritoryModel.id)
            .where(TerritoryModel.territory_key == territory_key)
            .order_by(PublishedPlanModel.execute_at.desc())
            .limit(limit)
        ).all()
        return tuple(plan_from_row(row) for row in rows)

    def search_candidates(
        self,
        keyword: str,
        kind: CandidateKind | None = None,
        limit: int = 20,
    ) -> tuple[Candidate, ...]:
        """
        Case-insensitive lookup by display name or exact id.

        A blank keyword returns nothing.
        """
        term = (keyword or "").strip()
        if not term or limit <= 0:
            return ()
        pattern = f"%{_escape_like(term.lower())}%"
        stmt = select(ClaimantDirectoryModel).where(
            or_(
                func.lower(ClaimantDirectoryModel.display_name).like(pattern, escape="\\"),
                ClaimantDirectoryModel.candidate_key == term,
            )
        )
        if kind is not None:
            stmt = stmt.where(ClaimantDirectoryModel.kind == CandidateKind(kind).value)
        stmt = stmt.order_by(
            ClaimantDirectoryModel.display_name, ClaimantDirectoryModel.candidate_key
        ).limit(limit)
        return tuple(
            Candidate(
                candidate_id=row.candidate_key,
                kind=CandidateKind(row.kind),
                display_name=row.display_name,
                alliance_id=row.alliance_id,
            )
            for row in self.session.scalars(stmt).all()
        )


def _escape_like(term: str) -> str:
    """Match ``%`` and ``_`` literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
