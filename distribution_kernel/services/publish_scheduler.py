"""
PublishScheduler -- the publish/lock state machine.

Responsibility:
    Validates a publish request, snapshots the chosen profile into an
    immutable PublishedPlan, attaches it to the store (which rejects edits
    from then on) and releases it when settlement is observed.

Architecture position:
    Kernel > Services -- pure with respect to I/O: time comes from the
    injected Clock, storage is the caller's concern.  The state graph is
    declared in ``domain.workflow.PUBLISH_PLAN_WORKFLOW``.

Invariants enforced:
    - Preconditions are checked in a fixed order, so the caller sees the
      same error for the same input every time:
        1. edit capability            -> PermissionDeniedError
        2. no plan pending            -> PlanLockedError
        3. timezone-aware, aligned    -> InvalidExecuteTimeError
        4. strictly in the future     -> InvalidExecuteTimeError
        5. profile exists             -> ProfileNotFoundError
        6. total <= 100               -> BudgetExceededError
    - LOCKED -> DUE is derived from ``now`` on every call; nothing is
      scheduled.
    - There is no operator transition out of LOCKED.  ``settle`` accepts
      only a DUE plan.

Failure modes:
    - Any failing precondition leaves the store untouched.
    - PlanNotDueError when settling before ``execute_at``.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from distribution_kernel.config import DistributionConfig
from distribution_kernel.domain.clock import Clock, SystemClock
from distribution_kernel.domain.percent import HUNDRED
from distribution_kernel.domain.plan import PlanState, PublishedPlan, plan_state
from distribution_kernel.domain.profiles import RuleProfileStore
from distribution_kernel.domain.rule import normalize_id
from distribution_kernel.domain.workflow import PUBLISH_PLAN_WORKFLOW
from distribution_kernel.exceptions import (
    BudgetExceededError,
    InvalidExecuteTimeError,
    PermissionDeniedError,
    PlanLockedError,
    PlanNotDueError,
    ProfileNotFoundError,
)
from distribution_kernel.logging_config import get_logger

logger = get_logger("services.publish_scheduler")


def _seconds_into_day(value: datetime) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


class PublishScheduler:
    """
    Publish/lock lifecycle for one territory's rule store.

    Contract:
        ``publish`` either returns a PublishedPlan already attached to the
        store, or raises without touching the store.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        config: DistributionConfig | None = None,
    ):
        self._clock = clock or SystemClock()
        self._config = config or DistributionConfig.with_defaults()

    @property
    def clock(self) -> Clock:
        return self._clock

    def plan_state(self, plan: PublishedPlan | None) -> PlanState:
        return plan_state(plan, self._clock.now())

    # ------------------------------------------------------------------
    # Execute time validation
    # ------------------------------------------------------------------

    def is_aligned(self, execute_at: datetime) -> bool:
        """Aligned on the caller's own wall clock, so 10:00+05:30 is a whole hour."""
        if execute_at.tzinfo is None or execute_at.microsecond:
            return False
        return _seconds_into_day(execute_at) % self._config.execute_alignment_seconds == 0

    def validate_execute_at(self, execute_at: datetime, now: datetime | None = None) -> datetime:
        """Return ``execute_at`` if it can be scheduled, else raise."""
        if not isinstance(execute_at, datetime):
            raise InvalidExecuteTimeError(None, "execute time must be a datetime")
        if execute_at.tzinfo is None:
            raise InvalidExecuteTimeError(execute_at, "execute time must be timezone-aware")
        if not self.is_aligned(execute_at):
            raise InvalidExecuteTimeError(
                execute_at,
                f"execute time must align to {self._config.execute_alignment_seconds}s boundaries",
            )
        now = now or self._clock.now()
        if execute_at <= now:
            raise InvalidExecuteTimeError(execute_at, "execute time must be in the future")
        lead = timedelta(seconds=self._config.min_publish_lead_seconds)
        if execute_at - now < lead:
            raise InvalidExecuteTimeError(
                execute_at,
                f"execute time must be at least {self._config.min_publish_lead_seconds}s ahead",
            )
        return execute_at

    def next_publish_slots(self, count: int = 6) -> list[datetime]:
        """The next ``count`` aligned instants that ``publish`` would accept."""
        if count <= 0:
            return []
        now = self._clock.now()
        step = self._config.execute_alignment_seconds
        earliest = now + timedelta(seconds=self._config.min_publish_lead_seconds)
        midnight = earliest.replace(hour=0, minute=0, second=0, microsecond=0)
        candidate = midnight + timedelta(seconds=_seconds_into_day(earliest) // step * step)
        slots: list[datetime] = []
        while len(slots) < count:
            if candidate > now and candidate >= earliest:
                slots.append(candidate)
            candidate = candidate + timedelta(seconds=step)
        return slots

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def publish(
        self,
        store: RuleProfileStore,
        profile_id: str,
        execute_at: datetime,
        can_edit: bool,
        current_plan: PublishedPlan | None = None,
        published_by: str | None = None,
    ) -> PublishedPlan:
        """Validate, snapshot and lock.  Returns the attached plan."""
        if not can_edit:
            logger.warning("publish_rejected", extra={"reason": "forbidden"})
            raise PermissionDeniedError("edit")

        existing = current_plan or store.plan
        state = self.plan_state(existing)
        if PUBLISH_PLAN_WORKFLOW.find_transition(state.value, "publish") is None:
            logger.warning(
                "publish_rejected",
                extra={"reason": "locked", "plan_state": state.value},
            )
            raise PlanLockedError(
                rule_profile_id=existing.rule_profile_id if existing else None,
                execute_at=existing.execute_at if existing else None,
                operation="publish",
            )

        now = self._clock.now()
        try:
            execute_at = self.validate_execute_at(execute_at, now)
        except InvalidExecuteTimeError as exc:
            logger.warning(
                "publish_rejected",
                extra={"reason": "invalid_execute_time", "detail": exc.reason},
            )
            raise

        profile = store.find(profile_id)
        if profile is None:
            logger.warning(
                "publish_rejected",
                extra={"reason": "profile_not_found", "profile_id": normalize_id(profile_id)},
            )
            raise ProfileNotFoundError(normalize_id(profile_id))

        summary = store.summary_for(profile.profile_id)
        if summary.total > HUNDRED:
            logger.warning(
                "publish_rejected",
                extra={
                    "reason": "budget_exceeded",
                    "profile_id": profile.profile_id,
                    "total": summary.total,
                },
            )
            raise BudgetExceededError(profile.name, summary.total, profile.profile_id)

        plan = PublishedPlan.create(
            rule_profile_id=profile.profile_id,
            execute_at=execute_at,
            rule_snapshot=profile.rule,
            published_at=now,
            entry_close_lead_seconds=self._config.entry_close_lead_seconds,
            settlement_grace_seconds=self._config.settlement_grace_seconds,
            published_by=published_by,
            profile_name=profile.name,
        )
        store.attach_plan(plan)
        logger.info(
            "plan_published",
            extra={
                "profile_id": plan.rule_profile_id,
                "execute_at": plan.execute_at,
                "total": summary.total,
            },
        )
        return plan

    def settle(self, store: RuleProfileStore) -> PublishedPlan | None:
        """
        DUE -> IDLE.  Detaches and returns the settled plan.

        A store without a plan is left as is and ``None`` is returned.
        """
        plan = store.plan
        if plan is None:
            return None
        if self.plan_state(plan) is not PlanState.DUE:
            raise PlanNotDueError(plan.rule_profile_id, plan.execute_at)
        store.detach_plan()
        logger.info(
            "plan_settled",
            extra={"profile_id": plan.rule_profile_id, "execute_at": plan.execute_at},
        )
        return plan

    def observe(self, store: RuleProfileStore, authoritative: PublishedPlan | None) -> PlanState:
        """
        Align the store's lock with the plan the gateway reports.

        A missing plan while the store holds one means settlement happened
        elsewhere.
        """
        current = store.plan
        if authoritative is None and current is not None:
            store.detach_plan()
            logger.info(
                "settlement_observed",
                extra={"profile_id": current.rule_profile_id, "execute_at": current.execute_at},
            )
        elif authoritative is not None and authoritative != current:
            store.attach_plan(authoritative)
        return self.plan_state(store.plan)
