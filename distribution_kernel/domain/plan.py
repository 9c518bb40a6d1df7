"""
PublishedPlan -- the lock.

Responsibility:
    Immutable scheduled allocation snapshot and the pure predicate that
    derives its lifecycle state from wall-clock time.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ``now`` is always a
    parameter; the caller obtains it from an injected Clock.

Invariants enforced:
    - A plan never changes after creation (frozen dataclass; the ORM row is
      guarded by ``db.immutability``).
    - LOCKED -> DUE is evaluated on every read, never by a timer, so a
      process restart cannot miss the transition.
    - ``entry_close_at <= execute_at <= end_at``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from distribution_kernel.domain.rule import AllocationRule


class PlanState(str, Enum):
    """Lifecycle state of the territory's distribution plan."""

    IDLE = "idle"
    LOCKED = "locked"
    DUE = "due"

    @property
    def blocks_editing(self) -> bool:
        return self is not PlanState.IDLE


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class PublishedPlan:
    """
    Scheduled, immutable allocation snapshot.

    The plan's authority over the cycle is by ``rule_profile_id``;
    ``rule_snapshot`` records the rule as it stood when publish succeeded.
    """

    rule_profile_id: str
    execute_at: datetime
    rule_snapshot: AllocationRule
    published_at: datetime
    entry_close_at: datetime
    end_at: datetime
    published_by: str | None = None
    profile_name: str | None = None

    def __post_init__(self) -> None:
        for name in ("execute_at", "published_at", "entry_close_at", "end_at"):
            object.__setattr__(self, name, ensure_aware(getattr(self, name)))
        if not self.entry_close_at <= self.execute_at <= self.end_at:
            raise ValueError(
                "PublishedPlan timeline must satisfy entry_close_at <= execute_at <= end_at"
            )

    @classmethod
    def create(
        cls,
        rule_profile_id: str,
        execute_at: datetime,
        rule_snapshot: AllocationRule,
        published_at: datetime,
        entry_close_lead_seconds: int = 60,
        settlement_grace_seconds: int = 60,
        published_by: str | None = None,
        profile_name: str | None = None,
    ) -> PublishedPlan:
        execute_at = ensure_aware(execute_at)
        return cls(
            rule_profile_id=rule_profile_id,
            execute_at=execute_at,
            rule_snapshot=rule_snapshot,
            published_at=published_at,
            entry_close_at=execute_at - timedelta(seconds=entry_close_lead_seconds),
            end_at=execute_at + timedelta(seconds=settlement_grace_seconds),
            published_by=published_by,
            profile_name=profile_name,
        )

    def state_at(self, now: datetime) -> PlanState:
        return PlanState.DUE if ensure_aware(now) >= self.execute_at else PlanState.LOCKED

    def seconds_until_execute(self, now: datetime) -> int:
        return max(0, int((self.execute_at - ensure_aware(now)).total_seconds()))

    def entry_open_at(self, now: datetime) -> bool:
        """Claimants may still enter before ``entry_close_at``."""
        return ensure_aware(now) < self.entry_close_at


def plan_state(plan: PublishedPlan | None, now: datetime) -> PlanState:
    """IDLE without a plan, LOCKED before ``execute_at``, DUE at or after it."""
    if plan is None:
        return PlanState.IDLE
    return plan.state_at(now)
