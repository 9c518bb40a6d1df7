"""
DistributionEditor -- one operator's editing session for a territory.

Responsibility:
    Owns the in-memory RuleProfileStore, tracks unsaved edits, talks to the
    PersistenceGateway, and turns every outcome into an ``EditorResult`` the
    UI can render as plain text.  Exposes a normalized read model after
    every operation.

Architecture position:
    Kernel > Services -- orchestration over domain objects and the gateway.
    Single writer: one editor per session, no locking.

Invariants enforced:
    - Dirty tracking is revision based: ``is_dirty`` is True exactly when
      the store revision differs from the last hydrated/saved revision.
    - A background refresh never overwrites unsaved edits.  While dirty, the
      fetched snapshot is parked as pending (lock status and alliance
      capability are still applied)
      and replaces local state only on ``discard()``.
    - Responses carry a request token.  A response older than the latest
      token issued for the same operation kind is ignored.
    - ``is_saving`` is advisory; local edits are never blocked by it.
    - After a successful save or publish the authoritative state is
      reloaded.

Failure modes:
    Gateway and store errors are caught as DistributionKernelError and
    returned as failed EditorResults; nothing here is fatal.  A
    PermissionDeniedError additionally drops ``can_edit`` so edit
    affordances disappear.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from itertools import count
from typing import Any

from distribution_kernel.config import DistributionConfig
from distribution_kernel.domain.clock import Clock, SystemClock
from distribution_kernel.domain.dtos import (
    CandidateKind,
    DistributionReadModel,
    DistributionState,
)
from distribution_kernel.domain.percent import HUNDRED
from distribution_kernel.domain.plan import PlanState
from distribution_kernel.domain.profiles import RuleMutator, RuleProfileStore
from distribution_kernel.domain.rule import AllianceCapability
from distribution_kernel.exceptions import (
    BudgetExceededError,
    DistributionKernelError,
    DistributionValidationError,
    PermissionDeniedError,
    PlanLockedError,
    TransportError,
)
from distribution_kernel.logging_config import LogContext, get_logger
from distribution_kernel.services.persistence_gateway import PersistenceGateway
from distribution_kernel.services.publish_scheduler import PublishScheduler

logger = get_logger("services.distribution_editor")


class EditorStatus(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    FORBIDDEN = "forbidden"
    LOCKED = "locked"
    FAILED = "failed"
    DEFERRED = "deferred"
    STALE = "stale"


@dataclass(frozen=True)
class EditorResult:
    """Outcome of one editor operation, ready to show as plain text."""

    status: EditorStatus
    message: str = ""
    error_code: str | None = None
    value: Any = None

    @property
    def is_success(self) -> bool:
        return self.status in (EditorStatus.SUCCESS, EditorStatus.DEFERRED)


@dataclass(frozen=True)
class RequestToken:
    kind: str
    value: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.value}"


_STATUS_BY_ERROR: tuple[tuple[type[DistributionKernelError], EditorStatus], ...] = (
    (PermissionDeniedError, EditorStatus.FORBIDDEN),
    (PlanLockedError, EditorStatus.LOCKED),
    (DistributionValidationError, EditorStatus.REJECTED),
    (TransportError, EditorStatus.FAILED),
)


def result_from_error(exc: DistributionKernelError) -> EditorResult:
    status = EditorStatus.FAILED
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = mapped
            break
    return EditorResult(status=status, message=str(exc), error_code=exc.code)


class DistributionEditor:
    """
    Editing session over one territory's distribution rules.

    Contract:
        Every public operation returns an EditorResult; call
        ``read_model()`` afterwards for the state to render.

    Non-goals:
        - Does NOT deduplicate concurrent calls.
        - Does NOT retry failed gateway calls.
    """

    REFRESH = "refresh"
    SAVE = "save"
    PUBLISH = "publish"

    def __init__(
        self,
        gateway: PersistenceGateway,
        territory_id: str,
        clock: Clock | None = None,
        config: DistributionConfig | None = None,
        scheduler: PublishScheduler | None = None,
    ):
        self._gateway = gateway
        self._territory_id = territory_id
        self._clock = clock or SystemClock()
        self._config = config or DistributionConfig.with_defaults()
        self._scheduler = scheduler or PublishScheduler(self._clock, self._config)
        self._store = RuleProfileStore(config=self._config)
        self._saved_revision = self._store.revision
        self._last_state: DistributionState | None = None
        self._pending: DistributionState | None = None
        self._can_view = False
        self._can_edit = False
        self._alliance_name = ""
        self._is_saving = False
        self._counter = count(1)
        self._latest: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    @property
    def store(self) -> RuleProfileStore:
        return self._store

    @property
    def territory_id(self) -> str:
        return self._territory_id

    @property
    def is_dirty(self) -> bool:
        return self._store.revision != self._saved_revision

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    @property
    def can_edit(self) -> bool:
        return self._can_edit

    @property
    def can_view(self) -> bool:
        return self._can_view

    @property
    def has_pending_refresh(self) -> bool:
        return self._pending is not None

    @property
    def plan_state(self) -> PlanState:
        return self._scheduler.plan_state(self._store.plan)

    def read_model(self) -> DistributionReadModel:
        capability = self._store.capability
        return DistributionReadModel(
            profiles=self._store.profiles,
            active_profile_id=self._store.active_profile_id,
            publish_profile_id=self._store.publish_profile_id,
            summary=self._store.active_summary,
            conflicts=self._store.active_conflicts(),
            plan_state=self.plan_state,
            locked_plan=self._store.plan,
            can_view=self._can_view,
            can_edit=self._can_edit,
            is_dirty=self.is_dirty,
            is_saving=self._is_saving,
            alliance_name=self._alliance_name,
            has_alliance=capability.has_alliance,
        )

    def publish_slots(self, count: int = 6) -> list[datetime]:
        return self._scheduler.next_publish_slots(count)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _issue(self, kind: str) -> RequestToken:
        token = RequestToken(kind, next(self._counter))
        self._latest[kind] = token.value
        return token

    def _is_current(self, token: RequestToken) -> bool:
        return self._latest.get(token.kind) == token.value

    def _stale(self, token: RequestToken) -> EditorResult:
        logger.info(
            "stale_response_ignored",
            extra={"request_token": str(token), "latest": self._latest.get(token.kind)},
        )
        return EditorResult(EditorStatus.STALE, f"Ignored outdated {token.kind} response")

    def _context(self, token: RequestToken | None = None) -> Any:
        return LogContext.bind(
            territory_id=self._territory_id,
            request_token=token,
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _apply(self, state: DistributionState) -> None:
        capability = AllianceCapability(
            has_alliance=state.has_alliance,
            alliance_sync_percent=state.alliance_sync_percent,
        )
        self._store.hydrate(state.profiles, state.active_profile_id, capability)
        self._scheduler.observe(self._store, state.locked_plan)
        self._saved_revision = self._store.revision
        self._can_view = state.can_view
        self._can_edit = state.can_edit
        self._alliance_name = state.alliance_name
        self._last_state = state
        self._pending = None

    def _apply_lock_only(self, state: DistributionState) -> None:
        self._store.with_capability(
            AllianceCapability(
                has_alliance=state.has_alliance,
                alliance_sync_percent=state.alliance_sync_percent,
            )
        )
        self._scheduler.observe(self._store, state.locked_plan)
        self._can_view = state.can_view
        self._can_edit = state.can_edit
        self._alliance_name = state.alliance_name

    def load(self) -> EditorResult:
        """Fetch authoritative state and replace local state unconditionally."""
        token = self._issue(self.REFRESH)
        with self._context(token):
            try:
                state = self._gateway.load_distribution_state(self._territory_id)
            except DistributionKernelError as exc:
                logger.warning("distribution_load_failed", extra={"error_code": exc.code})
                return result_from_error(exc)
            if not self._is_current(token):
                return self._stale(token)
            self._apply(state)
            logger.info(
                "distribution_loaded",
                extra={"profile_count": len(state.profiles), "is_locked": state.is_locked},
            )
            return EditorResult(EditorStatus.SUCCESS, "Loaded")

    def begin_refresh(self) -> RequestToken:
        return self._issue(self.REFRESH)

    def complete_refresh(self, token: RequestToken, state: DistributionState) -> EditorResult:
        """
        Apply a fetched snapshot, or park it while there are unsaved edits.
        """
        with self._context(token):
            if not self._is_current(token):
                return self._stale(token)
            if self.is_dirty:
                self._pending = state
                self._apply_lock_only(state)
                logger.info("background_refresh_deferred", extra={})
                return EditorResult(
                    EditorStatus.DEFERRED,
                    "Newer rules are available; save or discard local changes",
                )
            self._apply(state)
            return EditorResult(EditorStatus.SUCCESS, "Refreshed")

    def refresh(self) -> EditorResult:
        token = self.begin_refresh()
        try:
            state = self._gateway.load_distribution_state(self._territory_id)
        except DistributionKernelError as exc:
            with self._context(token):
                logger.warning("distribution_refresh_failed", extra={"error_code": exc.code})
            return result_from_error(exc)
        return self.complete_refresh(token, state)

    def discard(self) -> EditorResult:
        """Drop unsaved edits in favour of the pending or last known state."""
        state = self._pending or self._last_state
        if state is None:
            return self.load()
        self._apply(state)
        logger.info("local_changes_discarded", extra={"territory_id": self._territory_id})
        return EditorResult(EditorStatus.SUCCESS, "Local changes discarded")

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------

    def _edit(self, operation: str, action: Callable[[], Any]) -> EditorResult:
        if not self._can_edit:
            return result_from_error(PermissionDeniedError("edit", self._territory_id))
        try:
            value = action()
        except DistributionKernelError as exc:
            return result_from_error(exc)
        return EditorResult(EditorStatus.SUCCESS, operation, value=value)

    def create_profile(self, name: str | None = None) -> EditorResult:
        return self._edit("Profile created", lambda: self._store.create_profile(name))

    def rename_active(self, name: str | None) -> EditorResult:
        return self._edit("Profile renamed", lambda: self._store.rename_active(name))

    def delete_active(self) -> EditorResult:
        return self._edit("Profile deleted", self._store.delete_active)

    def update_rule(self, mutator: RuleMutator) -> EditorResult:
        """Apply ``mutator`` to the active rule; the value is the new summary."""
        return self._edit("Rule updated", lambda: self._store.update_active_rule(mutator))

    def select_profile(self, profile_id: str) -> EditorResult:
        self._store.set_active(profile_id)
        return EditorResult(EditorStatus.SUCCESS, value=self._store.active_profile_id)

    def select_publish_profile(self, profile_id: str) -> EditorResult:
        self._store.set_publish_profile(profile_id)
        return EditorResult(EditorStatus.SUCCESS, value=self._store.publish_profile_id)

    # ------------------------------------------------------------------
    # Gateway operations
    # ------------------------------------------------------------------

    def search_candidates(
        self, keyword: str, kind: CandidateKind | None = None
    ) -> EditorResult:
        """Identity lookup; ``value`` holds the matching candidates."""
        try:
            candidates = self._gateway.search_candidates(
                keyword, kind, self._config.candidate_search_limit
            )
        except DistributionKernelError as exc:
            logger.warning("candidate_search_failed", extra={"error_code": exc.code})
            return result_from_error(exc)
        return EditorResult(
            EditorStatus.SUCCESS, f"{len(candidates)} candidate(s) found", value=candidates
        )

    def _precheck_save(self) -> None:
        if not self._can_edit:
            raise PermissionDeniedError("edit", self._territory_id)
        plan = self._store.plan
        if plan is not None:
            raise PlanLockedError(plan.rule_profile_id, plan.execute_at, "save rules")
        for profile in self._store.profiles:
            total = self._store.summary_for(profile.profile_id).total
            if total > HUNDRED:
                raise BudgetExceededError(profile.name, total, profile.profile_id)

    def save(self) -> EditorResult:
        """Persist all profiles, then reload authoritative state."""
        token = self._issue(self.SAVE)
        with self._context(token):
            self._is_saving = True
            try:
                self._precheck_save()
                saved_revision = self._store.revision
                result = self._gateway.save_rules(
                    self._territory_id,
                    self._store.active_profile_id,
                    self._store.profiles,
                )
            except DistributionKernelError as exc:
                logger.warning(
                    "rules_save_failed",
                    extra={"error_code": exc.code, "detail": str(exc)},
                )
                if isinstance(exc, PermissionDeniedError):
                    self._can_edit = False
                return result_from_error(exc)
            finally:
                self._is_saving = False

            if not self._is_current(token):
                return self._stale(token)
            self._saved_revision = saved_revision
            logger.info("rules_save_acknowledged", extra={"detail": result.message})
            reload = self.load()
            if not reload.is_success:
                return reload
            return EditorResult(EditorStatus.SUCCESS, result.message)

    def publish(self, execute_at: datetime, profile_id: str | None = None) -> EditorResult:
        """
        Publish the publish-selected profile (or ``profile_id``).

        Unsaved edits are saved first so the plan locks what the operator
        sees.
        """
        target = profile_id or self._store.publish_profile_id
        if self.is_dirty:
            saved = self.save()
            if not saved.is_success:
                return saved

        token = self._issue(self.PUBLISH)
        with self._context(token):
            self._is_saving = True
            try:
                result = self._gateway.publish_plan(self._territory_id, target, execute_at)
            except DistributionKernelError as exc:
                logger.warning(
                    "plan_publish_failed",
                    extra={"error_code": exc.code, "detail": str(exc)},
                )
                if isinstance(exc, PermissionDeniedError):
                    self._can_edit = False
                return result_from_error(exc)
            finally:
                self._is_saving = False

            if not self._is_current(token):
                return self._stale(token)
            if result.plan is not None:
                self._store.attach_plan(result.plan)
            reload = self.load()
            if not reload.is_success:
                return reload
            return EditorResult(EditorStatus.SUCCESS, result.message, value=result.plan)
