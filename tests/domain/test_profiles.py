"""
Tests for RuleProfileStore and profile normalization.

These tests verify:
- normalize() restores every store invariant on arbitrary input
- At least one profile always exists
- Revision is bumped once per real mutation and never on no-ops
- Edits are rejected while a plan is attached; selection stays allowed
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

import pytest

from distribution_kernel.config import DistributionConfig
from distribution_kernel.domain.plan import PublishedPlan
from distribution_kernel.domain.profiles import RuleProfile, RuleProfileStore, normalize
from distribution_kernel.domain.rule import AllianceCapability, default_rule
from distribution_kernel.exceptions import MinimumProfileViolationError, PlanLockedError

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _sequential_ids():
    counter = count(1)
    return lambda: f"p-{next(counter)}"


@pytest.fixture
def store():
    return RuleProfileStore(
        [
            RuleProfile("day", "Day shift", default_rule()),
            RuleProfile("night", "Night shift", default_rule().set_admin_share("m1", 20)),
        ],
        active_profile_id="day",
        capability=AllianceCapability(alliance_sync_percent=Decimal("5")),
        id_factory=_sequential_ids(),
    )


def _plan(profile_id: str = "day") -> PublishedPlan:
    return PublishedPlan.create(
        rule_profile_id=profile_id,
        execute_at=NOW + timedelta(hours=1),
        rule_snapshot=default_rule(),
        published_at=NOW,
    )


class TestNormalize:
    def test_empty_yields_default_profile(self):
        result = normalize([], None, 0)
        config = DistributionConfig.with_defaults()

        assert len(result.profiles) == 1
        assert result.profiles[0].profile_id == config.default_profile_id
        assert result.profiles[0].name == config.default_profile_name
        assert result.active_id == config.default_profile_id
        assert result.profiles[0].rule.owner_percent == Decimal("10")

    def test_duplicate_ids_first_wins(self):
        result = normalize(
            [RuleProfile("a", "First"), RuleProfile("a", "Second")], "a", 0
        )
        assert [p.name for p in result.profiles] == ["First"]

    def test_blank_name_gets_placeholder(self):
        result = normalize([RuleProfile("a", "   ")], "a", 0)
        assert result.profiles[0].name == "Unnamed rule"

    def test_blank_id_dropped(self):
        result = normalize([RuleProfile("", "Ghost"), RuleProfile("b", "Real")], "b", 0)
        assert [p.profile_id for p in result.profiles] == ["b"]

    def test_unknown_active_falls_back_to_first(self):
        result = normalize([RuleProfile("a", "A"), RuleProfile("b", "B")], "zzz", 0)
        assert result.active_id == "a"

    def test_summaries_computed_for_every_profile(self):
        result = normalize([RuleProfile("a", "A"), RuleProfile("b", "B")], "a", 5)
        assert set(result.summaries) == {"a", "b"}
        assert result.summaries["a"].total == Decimal("15.00")


class TestReadModel:
    def test_initial_state(self, store):
        assert len(store) == 2
        assert store.active_profile_id == "day"
        assert store.publish_profile_id == "day"
        assert store.revision == 0
        assert not store.is_locked

    def test_summary_per_profile(self, store):
        assert store.summary_for("night").total == Decimal("35.00")
        assert store.active_summary.total == Decimal("15.00")

    def test_find_unknown_returns_none(self, store):
        assert store.find("missing") is None

    def test_get_unknown_raises(self, store):
        with pytest.raises(KeyError):
            store.get("missing")


class TestProfileLifecycle:
    def test_create_appends_and_activates(self, store, captured_logs):
        new_id = store.create_profile()

        assert new_id == "p-1"
        assert store.active_profile_id == "p-1"
        assert store.active_profile.name == "Rule 3"
        assert store.revision == 1
        assert any(r["message"] == "profile_created" for r in captured_logs())

    def test_auto_name_skips_taken_names(self):
        s = RuleProfileStore(
            [RuleProfile("a", "Rule 2")], active_profile_id="a", id_factory=_sequential_ids()
        )
        s.create_profile()
        assert s.active_profile.name == "Rule 3"

    def test_create_with_name(self, store):
        store.create_profile("  Weekend  ")
        assert store.active_profile.name == "Weekend"

    def test_rename(self, store):
        store.rename_active("Morning")
        assert store.get("day").name == "Morning"
        assert store.revision == 1

    def test_rename_blank_uses_placeholder(self, store):
        store.rename_active("")
        assert store.active_profile.name == "Unnamed rule"

    def test_rename_same_name_is_noop(self, store):
        store.rename_active("Day shift")
        assert store.revision == 0

    def test_delete_activates_first_remaining(self, store):
        store.set_active("night")
        assert store.delete_active() == "day"
        assert "night" not in store
        assert store.active_profile_id == "day"

    def test_delete_resets_publish_selection(self, store):
        store.set_active("night")
        store.set_publish_profile("night")
        store.delete_active()
        assert store.publish_profile_id == "day"

    def test_delete_last_profile_rejected(self, captured_logs):
        s = RuleProfileStore([RuleProfile("only", "Only")], active_profile_id="only")

        with pytest.raises(MinimumProfileViolationError):
            s.delete_active()

        assert len(s) == 1
        assert s.active_profile_id == "only"
        assert s.revision == 0
        assert any(r["message"] == "profile_delete_rejected" for r in captured_logs())


class TestSelection:
    def test_set_active_same_id_is_noop(self, store):
        store.set_active("day")
        assert store.revision == 0

    def test_set_active_unknown_is_ignored(self, store):
        store.set_active("nope")
        assert store.active_profile_id == "day"
        assert store.revision == 0

    def test_set_active_bumps_revision(self, store):
        store.set_active("night")
        assert store.revision == 1

    def test_publish_selection_does_not_bump_revision(self, store):
        store.set_publish_profile("night")
        assert store.publish_profile_id == "night"
        assert store.publish_profile.name == "Night shift"
        assert store.revision == 0


class TestRuleEdits:
    def test_update_active_rule(self, store):
        summary = store.update_active_rule(lambda r: r.set_admin_share("m2", 30))
        assert summary.total == Decimal("45.00")
        assert store.revision == 1

    def test_noop_mutator_keeps_revision(self, store):
        store.update_active_rule(lambda r: r)
        assert store.revision == 0

    def test_non_rule_result_rejected(self, store):
        with pytest.raises(TypeError):
            store.update_active_rule(lambda r: None)
        assert store.revision == 0

    def test_failing_mutator_leaves_store_unchanged(self, store):
        def explode(rule):
            rule.with_owner_percent(50)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update_active_rule(explode)
        assert store.active_profile.rule.owner_percent == Decimal("10")

    def test_blacklisted_custom_user_kept_and_reported(self, store):
        store.update_active_rule(lambda r: r.set_custom_user_share("u1", 15))
        before = store.active_conflicts().conflict_count

        store.update_active_rule(lambda r: r.blacklist_user("u1"))

        assert store.active_profile.rule.custom_percent_for("u1") == Decimal("15")
        assert store.active_summary.custom_users == Decimal("0.00")
        assert store.active_conflicts().conflict_count == before + 1

    def test_with_capability_recomputes(self, store):
        store.with_capability(AllianceCapability(has_alliance=False))
        assert store.active_summary.alliance_sync == Decimal("0.00")


class TestLock:
    def test_edits_rejected_while_locked(self, store, captured_logs):
        store.attach_plan(_plan())

        with pytest.raises(PlanLockedError):
            store.update_active_rule(lambda r: r.with_owner_percent(20))
        with pytest.raises(PlanLockedError):
            store.create_profile()
        with pytest.raises(PlanLockedError):
            store.rename_active("x")
        with pytest.raises(PlanLockedError):
            store.delete_active()

        assert store.revision == 0
        assert any(r["message"] == "rule_edit_rejected_locked" for r in captured_logs())

    def test_selection_allowed_while_locked(self, store):
        store.attach_plan(_plan())
        store.set_active("night")
        assert store.active_profile_id == "night"

    def test_detach_unlocks(self, store):
        store.attach_plan(_plan())
        store.detach_plan()
        store.create_profile()
        assert len(store) == 3

    def test_hydrate_replaces_contents(self, store):
        store.hydrate([RuleProfile("x", "X")], "x")
        assert [p.profile_id for p in store.profiles] == ["x"]
        assert store.publish_profile_id == "x"
        assert store.revision == 1
