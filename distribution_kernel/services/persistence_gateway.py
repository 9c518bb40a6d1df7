"""
PersistenceGateway -- authoritative storage behind the editor.

Responsibility:
    Defines the gateway contract the editor talks to and ships the SQLAlchemy
    implementation: loading a territory's distribution state, saving rule
    profiles, publishing a plan, identity lookup, and the hooks used by the
    external collaborators (territory setup, ownership transfer, settlement).

Architecture position:
    Kernel > Services -- imperative shell.  Reads go through
    DistributionSelector; writes flush within the caller's transaction
    (``session_scope`` commits).

Invariants enforced:
    - Server-side validation repeats every client-side check: edit
      capability, lock, budget, execute time.  The editor is never trusted.
    - A territory has at most one unsettled plan.
    - Ownership transfer clears both blacklists on every stored profile and
      drops delegated editors.
    - Infrastructure failures surface as TransportError carrying the raw
      cause text; typed kernel errors pass through unchanged.

Failure modes:
    - PermissionDeniedError: actor lacks the edit capability (or the
      territory is unknown).
    - PlanLockedError: save/publish while a plan is pending.
    - PlanNotDueError: settlement before ``execute_at``.
    - BudgetExceededError / InvalidExecuteTimeError / ProfileNotFoundError.
    - TransportError: SQLAlchemyError, or a stored row that cannot be parsed.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from distribution_kernel.config import DistributionConfig
from distribution_kernel.domain.clock import Clock, SystemClock
from distribution_kernel.domain.conflicts import assert_within_budget
from distribution_kernel.domain.dtos import (
    Candidate,
    CandidateKind,
    DistributionState,
    PublishResult,
    SaveResult,
)
from distribution_kernel.domain.percent import Percent
from distribution_kernel.domain.plan import PublishedPlan
from distribution_kernel.domain.profiles import RuleProfile, RuleProfileStore, normalize
from distribution_kernel.domain.rule import normalize_id
from distribution_kernel.domain.wire import rule_from_wire, rule_to_wire
from distribution_kernel.exceptions import (
    DistributionValidationError,
    PermissionDeniedError,
    PlanLockedError,
    PlanNotDueError,
    TransportError,
)
from distribution_kernel.logging_config import LogContext, get_logger
from distribution_kernel.models.distribution import (
    ClaimantDirectoryModel,
    PublishedPlanModel,
    RuleProfileModel,
    TerritoryModel,
)
from distribution_kernel.selectors.distribution_selector import (
    DistributionSelector,
    TerritorySnapshot,
    plan_from_row,
    territory_to_snapshot,
)
from distribution_kernel.services.base import BaseService
from distribution_kernel.services.publish_scheduler import PublishScheduler

logger = get_logger("services.persistence_gateway")


class PersistenceGateway(Protocol):
    """Contract between the editor and authoritative storage."""

    def load_distribution_state(self, territory_id: str) -> DistributionState: ...

    def save_rules(
        self,
        territory_id: str,
        active_profile_id: str,
        profiles: Sequence[RuleProfile],
    ) -> SaveResult: ...

    def publish_plan(
        self,
        territory_id: str,
        profile_id: str,
        execute_at: datetime,
    ) -> PublishResult: ...

    def search_candidates(
        self,
        keyword: str,
        kind: CandidateKind | None = None,
        limit: int | None = None,
    ) -> tuple[Candidate, ...]: ...


class SqlPersistenceGateway(BaseService[TerritoryModel]):
    """
    SQLAlchemy-backed PersistenceGateway.

    Contract:
        One instance per request/session, bound to the acting user.  Every
        write flushes; the caller commits.

    Non-goals:
        - Does NOT authenticate ``actor_id``; it is taken as given.
        - Does NOT perform the point transfer at settlement.
    """

    def __init__(
        self,
        session: Session,
        actor_id: str,
        clock: Clock | None = None,
        config: DistributionConfig | None = None,
    ):
        super().__init__(session)
        self._actor_id = normalize_id(actor_id)
        self._clock = clock or SystemClock()
        self._config = config or DistributionConfig.with_defaults()
        self._selector = DistributionSelector(session)
        self._scheduler = PublishScheduler(self._clock, self._config)

    @property
    def actor_id(self) -> str:
        return self._actor_id

    @contextmanager
    def _transport(self, operation: str, territory_id: str | None = None) -> Iterator[None]:
        with LogContext.bind(territory_id=territory_id, actor_id=self._actor_id):
            try:
                yield
            except SQLAlchemyError as exc:
                logger.error(
                    "gateway_transport_failed",
                    extra={"operation": operation, "cause": str(exc)},
                )
                raise TransportError(operation, exc) from exc

    def _require_editable(self, territory_id: str) -> tuple[TerritoryModel, TerritorySnapshot]:
        row = self._selector.territory_row(territory_id)
        if row is None:
            logger.warning("territory_not_found", extra={"operation": "edit"})
            raise PermissionDeniedError("edit", territory_id)
        snapshot = territory_to_snapshot(row)
        if not snapshot.can_edit(self._actor_id):
            logger.warning("edit_capability_missing", extra={})
            raise PermissionDeniedError("edit", territory_id)
        return row, snapshot

    def _parse_plan(self, territory_id: str) -> PublishedPlan | None:
        try:
            return self._selector.current_plan(territory_id)
        except (ValueError, TypeError) as exc:
            logger.error("stored_plan_unreadable", extra={"cause": str(exc)})
            raise TransportError("load plan", exc) from exc

    # ------------------------------------------------------------------
    # Gateway contract
    # ------------------------------------------------------------------

    def load_distribution_state(self, territory_id: str) -> DistributionState:
        """
        Authoritative state as seen by the acting user.

        Unknown territories and callers without the view capability get an
        empty state with ``can_view`` False; no rule data is disclosed.
        """
        with self._transport("load distribution state", territory_id):
            snapshot = self._selector.territory(territory_id)
            if snapshot is None or not snapshot.can_view(self._actor_id):
                return DistributionState(
                    territory_id=territory_id,
                    can_view=False,
                    can_edit=False,
                    is_locked=False,
                )

            plan = self._parse_plan(territory_id)
            normalized = normalize(
                self._selector.profiles(territory_id),
                snapshot.active_profile_id,
                snapshot.alliance_sync_percent,
                config=self._config,
                capability=snapshot.capability,
            )
            logger.debug(
                "distribution_state_loaded",
                extra={
                    "profile_count": len(normalized.profiles),
                    "is_locked": plan is not None,
                },
            )
            return DistributionState(
                territory_id=territory_id,
                can_view=True,
                can_edit=snapshot.can_edit(self._actor_id),
                is_locked=plan is not None,
                alliance_sync_percent=snapshot.alliance_sync_percent,
                has_alliance=snapshot.has_alliance,
                alliance_name=snapshot.alliance_name,
                locked_plan=plan,
                active_profile_id=normalized.active_id,
                profiles=normalized.profiles,
                controller_user_id=snapshot.controller_user_id,
            )

    def save_rules(
        self,
        territory_id: str,
        active_profile_id: str,
        profiles: Sequence[RuleProfile],
    ) -> SaveResult:
        """Replace the territory's stored profiles.  Rejected while locked."""
        with self._transport("save rules", territory_id):
            row, snapshot = self._require_editable(territory_id)
            plan = self._parse_plan(territory_id)
            if plan is not None:
                logger.warning(
                    "save_rejected_locked",
                    extra={"profile_id": plan.rule_profile_id},
                )
                raise PlanLockedError(
                    rule_profile_id=plan.rule_profile_id,
                    execute_at=plan.execute_at,
                    operation="save rules",
                )

            normalized = normalize(
                profiles,
                active_profile_id,
                snapshot.alliance_sync_percent,
                config=self._config,
                capability=snapshot.capability,
            )
            assert_within_budget(
                ((p.profile_id, p.name, p.rule) for p in normalized.profiles),
                snapshot.capability,
            )

            self._replace_profiles(row, normalized.profiles)
            row.active_profile_key = normalized.active_id
            row.rules_revision = (row.rules_revision or 0) + 1
            row.updated_by_id = self._actor_id
            self.session.flush()

            logger.info(
                "rules_saved",
                extra={
                    "profile_count": len(normalized.profiles),
                    "active_profile_id": normalized.active_id,
                    "rules_revision": row.rules_revision,
                },
            )
            return SaveResult(
                message=f"Saved {len(normalized.profiles)} rule profile(s)",
                is_locked=False,
            )

    def publish_plan(
        self,
        territory_id: str,
        profile_id: str,
        execute_at: datetime,
    ) -> PublishResult:
        """Lock the territory on the stored rules of ``profile_id``."""
        with self._transport("publish plan", territory_id):
            row, snapshot = self._require_editable(territory_id)
            store = RuleProfileStore(
                self._selector.profiles(territory_id),
                snapshot.active_profile_id,
                capability=snapshot.capability,
                config=self._config,
            )
            with LogContext.bind(profile_id=normalize_id(profile_id)):
                plan = self._scheduler.publish(
                    store,
                    profile_id,
                    execute_at,
                    can_edit=True,
                    current_plan=self._parse_plan(territory_id),
                    published_by=self._actor_id,
                )

            self.session.add(
                PublishedPlanModel(
                    territory_id=row.id,
                    rule_profile_key=plan.rule_profile_id,
                    profile_name=plan.profile_name or "",
                    rule_snapshot=rule_to_wire(plan.rule_snapshot),
                    execute_at=plan.execute_at,
                    published_at=plan.published_at,
                    entry_close_at=plan.entry_close_at,
                    end_at=plan.end_at,
                    created_by_id=self._actor_id,
                )
            )
            self.session.flush()
            return PublishResult(
                message=(
                    f"Published '{plan.profile_name}' for {plan.execute_at.isoformat()}"
                ),
                plan=plan,
            )

    def search_candidates(
        self,
        keyword: str,
        kind: CandidateKind | None = None,
        limit: int | None = None,
    ) -> tuple[Candidate, ...]:
        cap = self._config.candidate_search_limit
        effective = cap if limit is None else max(0, min(limit, cap))
        with self._transport("search candidates"):
            return self._selector.search_candidates(keyword, kind, effective)

    # ------------------------------------------------------------------
    # Collaborator hooks
    # ------------------------------------------------------------------

    def register_territory(
        self,
        territory_id: str,
        controller_user_id: str,
        alliance_id: str | None = None,
        alliance_name: str = "",
        alliance_sync_percent: Any = Decimal("0"),
        hostile_alliance_ids: Iterable[str] = (),
        editor_user_ids: Iterable[str] = (),
        viewer_user_ids: Iterable[str] = (),
    ) -> TerritorySnapshot:
        """Create a territory seeded with the default profile."""
        with self._transport("register territory", territory_id):
            if self._selector.territory_row(territory_id) is not None:
                raise DistributionValidationError(
                    f"Territory {territory_id} is already registered"
                )
            sync_percent = _sync_percent(alliance_sync_percent)
            normalized = normalize((), None, sync_percent, config=self._config)
            row = TerritoryModel(
                territory_key=territory_id,
                controller_user_id=normalize_id(controller_user_id),
                alliance_id=normalize_id(alliance_id) or None,
                alliance_name=alliance_name or "",
                alliance_sync_percent=sync_percent,
                hostile_alliance_ids=_id_list(hostile_alliance_ids),
                editor_user_ids=_id_list(editor_user_ids),
                viewer_user_ids=_id_list(viewer_user_ids),
                active_profile_key=normalized.active_id,
                rules_revision=0,
                created_by_id=self._actor_id,
            )
            self.session.add(row)
            self._replace_profiles(row, normalized.profiles)
            self.session.flush()
            logger.info(
                "territory_registered",
                extra={"controller_user_id": row.controller_user_id},
            )
            return territory_to_snapshot(row)

    def register_candidate(
        self,
        candidate_id: str,
        kind: CandidateKind,
        display_name: str,
        alliance_id: str | None = None,
    ) -> Candidate:
        """Insert or update one identity directory entry."""
        kind = CandidateKind(kind)
        key = normalize_id(candidate_id)
        with self._transport("register candidate"):
            row = self.session.scalars(
                select(ClaimantDirectoryModel).where(
                    ClaimantDirectoryModel.kind == kind.value,
                    ClaimantDirectoryModel.candidate_key == key,
                )
            ).one_or_none()
            if row is None:
                row = ClaimantDirectoryModel(candidate_key=key, kind=kind.value)
                self.session.add(row)
            row.display_name = display_name
            row.alliance_id = normalize_id(alliance_id) or None
            self.session.flush()
            return Candidate(
                candidate_id=key,
                kind=kind,
                display_name=display_name,
                alliance_id=row.alliance_id,
            )

    def update_alliance_status(
        self,
        territory_id: str,
        alliance_id: str | None,
        alliance_name: str = "",
        alliance_sync_percent: Any = Decimal("0"),
    ) -> TerritorySnapshot:
        """The controller joined, left or changed alliance.  Rules are kept."""
        with self._transport("update alliance status", territory_id):
            row = self._selector.territory_row(territory_id)
            if row is None:
                raise PermissionDeniedError("edit", territory_id)
            new_alliance_id, sync_percent = _alliance_status(alliance_id, alliance_sync_percent)
            row.alliance_id = new_alliance_id
            row.alliance_name = (alliance_name or "") if new_alliance_id else ""
            row.alliance_sync_percent = sync_percent
            row.updated_by_id = self._actor_id
            self.session.flush()
            logger.info(
                "alliance_status_updated",
                extra={"has_alliance": row.alliance_id is not None},
            )
            return territory_to_snapshot(row)

    def transfer_control(
        self,
        territory_id: str,
        new_controller_id: str,
        alliance_id: str | None = None,
        alliance_name: str = "",
        alliance_sync_percent: Any = Decimal("0"),
    ) -> TerritorySnapshot:
        """
        Ownership transfer: new controller and alliance, blacklists reset.

        Delegated editors belonged to the previous controller and are
        dropped.  A pending plan is left untouched.
        """
        with self._transport("transfer control", territory_id):
            row = self._selector.territory_row(territory_id)
            if row is None:
                raise PermissionDeniedError("edit", territory_id)
            new_alliance_id, sync_percent = _alliance_status(alliance_id, alliance_sync_percent)
            previous = row.controller_user_id
            row.controller_user_id = normalize_id(new_controller_id)
            row.alliance_id = new_alliance_id
            row.alliance_name = (alliance_name or "") if new_alliance_id else ""
            row.alliance_sync_percent = sync_percent
            row.editor_user_ids = []
            for profile_row in row.profiles:
                cleared = rule_from_wire(profile_row.rule_document).without_blacklists()
                profile_row.rule_document = rule_to_wire(cleared)
                profile_row.updated_by_id = self._actor_id
            row.rules_revision = (row.rules_revision or 0) + 1
            row.updated_by_id = self._actor_id
            self.session.flush()
            logger.info(
                "territory_control_transferred",
                extra={
                    "previous_controller_id": previous,
                    "controller_user_id": row.controller_user_id,
                },
            )
            return territory_to_snapshot(row)

    def clear_settled_plan(self, territory_id: str) -> PublishedPlan | None:
        """
        Settlement hook: stamp the pending plan as settled (DUE -> IDLE).

        Returns the settled plan, or ``None`` when nothing was pending.
        """
        with self._transport("clear settled plan", territory_id):
            row = self._selector.current_plan_row(territory_id)
            if row is None:
                return None
            try:
                plan = plan_from_row(row)
            except (ValueError, TypeError) as exc:
                raise TransportError("load plan", exc) from exc
            now = self._clock.now()
            if now < plan.execute_at:
                logger.warning(
                    "settlement_rejected_not_due",
                    extra={"profile_id": plan.rule_profile_id, "execute_at": plan.execute_at},
                )
                raise PlanNotDueError(plan.rule_profile_id, plan.execute_at)
            row.settled_at = now
            row.updated_by_id = self._actor_id
            self.session.flush()
            logger.info(
                "plan_settled",
                extra={"profile_id": plan.rule_profile_id, "execute_at": plan.execute_at},
            )
            return plan

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _replace_profiles(self, row: TerritoryModel, profiles: Sequence[RuleProfile]) -> None:
        """Update rows in place by profile key; unlisted rows are orphaned."""
        existing = {p.profile_key: p for p in row.profiles}
        ordered: list[RuleProfileModel] = []
        for position, profile in enumerate(profiles):
            document = rule_to_wire(profile.rule)
            profile_row = existing.get(profile.profile_id)
            if profile_row is None:
                profile_row = RuleProfileModel(
                    profile_key=profile.profile_id,
                    name=profile.name,
                    position=position,
                    rule_document=document,
                    created_by_id=self._actor_id,
                )
            else:
                if (
                    profile_row.name != profile.name
                    or profile_row.position != position
                    or profile_row.rule_document != document
                ):
                    profile_row.updated_by_id = self._actor_id
                profile_row.name = profile.name
                profile_row.position = position
                profile_row.rule_document = document
            ordered.append(profile_row)
        row.profiles = ordered


def _sync_percent(value: Any) -> Decimal:
    """Strict: the alliance service must report a sync percent within 0..100."""
    try:
        return Percent(value).value
    except ValueError as exc:
        raise DistributionValidationError(str(exc)) from exc


def _alliance_status(alliance_id: Any, sync_percent: Any) -> tuple[str | None, Decimal]:
    key = normalize_id(alliance_id) or None
    return key, (_sync_percent(sync_percent) if key else Decimal("0"))


def _id_list(values: Iterable[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values or ():
        key = normalize_id(value)
        if key:
            seen.setdefault(key, None)
    return list(seen)
