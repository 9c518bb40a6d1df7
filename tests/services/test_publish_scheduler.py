"""
Tests for the publish/lock state machine.

These tests verify:
- Execute time validation (aware, aligned, strictly future)
- Precondition order: capability, lock, time, profile, budget
- A rejected publish leaves the store untouched
- LOCKED -> DUE derives from the clock; settle only from DUE
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from distribution_kernel.config import DistributionConfig
from distribution_kernel.domain.clock import DeterministicClock
from distribution_kernel.domain.plan import PlanState
from distribution_kernel.domain.profiles import RuleProfile, RuleProfileStore
from distribution_kernel.domain.rule import AllianceCapability, default_rule
from distribution_kernel.exceptions import (
    BudgetExceededError,
    InvalidExecuteTimeError,
    PermissionDeniedError,
    PlanLockedError,
    PlanNotDueError,
    ProfileNotFoundError,
)
from distribution_kernel.services.publish_scheduler import PublishScheduler

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
ONE_PM = datetime(2024, 1, 1, 13, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler(clock, config):
    return PublishScheduler(clock, config)


@pytest.fixture
def store():
    return RuleProfileStore(
        [
            RuleProfile("day", "Day shift", default_rule().set_admin_share("m1", 20)),
            RuleProfile(
                "greedy", "Greedy", default_rule().with_owner_percent(60).set_admin_share("m1", 40)
            ),
        ],
        active_profile_id="day",
        capability=AllianceCapability(alliance_sync_percent=Decimal("5")),
    )


class TestValidateExecuteAt:
    def test_half_hour_rejected(self, scheduler):
        with pytest.raises(InvalidExecuteTimeError, match="align"):
            scheduler.validate_execute_at(NOW + timedelta(minutes=30))

    def test_naive_rejected(self, scheduler):
        with pytest.raises(InvalidExecuteTimeError, match="timezone-aware"):
            scheduler.validate_execute_at(datetime(2024, 1, 1, 13, 0, 0))

    def test_now_rejected(self, scheduler):
        with pytest.raises(InvalidExecuteTimeError, match="future"):
            scheduler.validate_execute_at(NOW)

    def test_past_rejected(self, scheduler):
        with pytest.raises(InvalidExecuteTimeError, match="future"):
            scheduler.validate_execute_at(NOW - timedelta(hours=1))

    def test_non_datetime_rejected(self, scheduler):
        with pytest.raises(InvalidExecuteTimeError):
            scheduler.validate_execute_at("2024-01-01T13:00:00Z")

    def test_microseconds_rejected(self, scheduler):
        with pytest.raises(InvalidExecuteTimeError):
            scheduler.validate_execute_at(ONE_PM.replace(microsecond=1))

    def test_next_hour_accepted(self, scheduler):
        assert scheduler.validate_execute_at(ONE_PM) == ONE_PM

    def test_other_timezone_on_the_hour_accepted(self, scheduler):
        plus_two = timezone(timedelta(hours=2))
        assert scheduler.validate_execute_at(datetime(2024, 1, 1, 15, 0, tzinfo=plus_two))

    def test_half_hour_offset_whole_hour_accepted(self, scheduler):
        india = timezone(timedelta(hours=5, minutes=30))
        execute_at = datetime(2024, 1, 1, 19, 0, tzinfo=india)
        assert scheduler.validate_execute_at(execute_at) == execute_at

    def test_half_hour_offset_half_past_rejected(self, scheduler):
        india = timezone(timedelta(hours=5, minutes=30))
        with pytest.raises(InvalidExecuteTimeError, match="align"):
            scheduler.validate_execute_at(datetime(2024, 1, 1, 18, 30, tzinfo=india))

    def test_minimum_lead(self, clock):
        scheduler = PublishScheduler(
            clock, DistributionConfig(min_publish_lead_seconds=7200)
        )
        with pytest.raises(InvalidExecuteTimeError, match="ahead"):
            scheduler.validate_execute_at(ONE_PM)
        assert scheduler.validate_execute_at(ONE_PM + timedelta(hours=1))


class TestPublishSlots:
    def test_slots_are_aligned_future_hours(self, scheduler):
        slots = scheduler.next_publish_slots(3)
        assert slots == [ONE_PM, ONE_PM + timedelta(hours=1), ONE_PM + timedelta(hours=2)]

    def test_slots_off_boundary(self, clock, scheduler):
        clock.advance(90)
        assert scheduler.next_publish_slots(1) == [ONE_PM]

    def test_zero_count(self, scheduler):
        assert scheduler.next_publish_slots(0) == []

    def test_slots_follow_caller_wall_clock(self, config):
        india = timezone(timedelta(hours=5, minutes=30))
        scheduler = PublishScheduler(
            DeterministicClock(datetime(2024, 1, 1, 17, 30, tzinfo=india)), config
        )

        slots = scheduler.next_publish_slots(2)

        assert slots == [
            datetime(2024, 1, 1, 18, 0, tzinfo=india),
            datetime(2024, 1, 1, 19, 0, tzinfo=india),
        ]
        assert all(scheduler.is_aligned(slot) for slot in slots)


class TestPublish:
    def test_publish_locks(self, scheduler, store, captured_logs):
        plan = scheduler.publish(store, "day", ONE_PM, can_edit=True, published_by="u-1")

        assert store.plan is plan
        assert scheduler.plan_state(store.plan) is PlanState.LOCKED
        assert plan.rule_profile_id == "day"
        assert plan.rule_snapshot == store.get("day").rule
        assert plan.published_at == NOW
        assert plan.entry_close_at == ONE_PM - timedelta(seconds=60)
        assert plan.profile_name == "Day shift"
        assert any(r["message"] == "plan_published" for r in captured_logs())

    def test_invalid_time_leaves_store_idle(self, scheduler, store):
        with pytest.raises(InvalidExecuteTimeError):
            scheduler.publish(store, "day", NOW + timedelta(minutes=30), can_edit=True)
        assert store.plan is None

    def test_second_publish_rejected_while_locked(self, scheduler, store):
        scheduler.publish(store, "day", ONE_PM, can_edit=True)

        with pytest.raises(PlanLockedError):
            scheduler.publish(store, "day", ONE_PM + timedelta(hours=1), can_edit=True)

    def test_publish_rejected_while_due(self, clock, scheduler, store):
        scheduler.publish(store, "day", ONE_PM, can_edit=True)
        clock.advance(3600)

        with pytest.raises(PlanLockedError):
            scheduler.publish(store, "day", ONE_PM + timedelta(hours=1), can_edit=True)

    def test_capability_checked_first(self, scheduler, store):
        scheduler.publish(store, "day", ONE_PM, can_edit=True)
        with pytest.raises(PermissionDeniedError):
            scheduler.publish(store, "missing", NOW, can_edit=False)

    def test_lock_checked_before_time(self, scheduler, store):
        scheduler.publish(store, "day", ONE_PM, can_edit=True)
        with pytest.raises(PlanLockedError):
            scheduler.publish(store, "day", NOW, can_edit=True)

    def test_time_checked_before_profile(self, scheduler, store):
        with pytest.raises(InvalidExecuteTimeError):
            scheduler.publish(store, "missing", NOW, can_edit=True)

    def test_unknown_profile(self, scheduler, store):
        with pytest.raises(ProfileNotFoundError):
            scheduler.publish(store, "missing", ONE_PM, can_edit=True)
        assert store.plan is None

    def test_over_budget_rejected(self, scheduler, store, captured_logs):
        with pytest.raises(BudgetExceededError) as exc_info:
            scheduler.publish(store, "greedy", ONE_PM, can_edit=True)

        assert "105.00" in str(exc_info.value)
        assert store.plan is None
        rejected = [r for r in captured_logs() if r["message"] == "publish_rejected"]
        assert rejected[-1]["reason"] == "budget_exceeded"

    def test_external_plan_counts_as_lock(self, scheduler, store):
        other = RuleProfileStore([RuleProfile("day", "Day")], "day")
        existing = scheduler.publish(other, "day", ONE_PM, can_edit=True)

        with pytest.raises(PlanLockedError):
            scheduler.publish(
                store, "day", ONE_PM + timedelta(hours=1), can_edit=True, current_plan=existing
            )


class TestSettle:
    def test_locked_becomes_due_on_read(self, clock, scheduler, store):
        scheduler.publish(store, "day", ONE_PM, can_edit=True)
        clock.advance(3599)
        assert scheduler.plan_state(store.plan) is PlanState.LOCKED
        clock.advance(1)
        assert scheduler.plan_state(store.plan) is PlanState.DUE

    def test_settle_before_due_rejected(self, scheduler, store):
        scheduler.publish(store, "day", ONE_PM, can_edit=True)
        with pytest.raises(PlanNotDueError):
            scheduler.settle(store)
        assert store.is_locked

    def test_settle_when_due(self, clock, scheduler, store):
        plan = scheduler.publish(store, "day", ONE_PM, can_edit=True)
        clock.set_time(ONE_PM)

        assert scheduler.settle(store) == plan
        assert store.plan is None
        assert scheduler.plan_state(store.plan) is PlanState.IDLE

    def test_settle_without_plan(self, scheduler, store):
        assert scheduler.settle(store) is None

    def test_observe_settlement_elsewhere(self, scheduler, store, captured_logs):
        scheduler.publish(store, "day", ONE_PM, can_edit=True)

        assert scheduler.observe(store, None) is PlanState.IDLE
        assert any(r["message"] == "settlement_observed" for r in captured_logs())

    def test_observe_attaches_authoritative_plan(self, scheduler, store):
        other = RuleProfileStore([RuleProfile("day", "Day")], "day")
        plan = scheduler.publish(other, "day", ONE_PM, can_edit=True)

        assert scheduler.observe(store, plan) is PlanState.LOCKED
        assert store.plan == plan
