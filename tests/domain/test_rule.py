"""
Tests for AllocationRule normalization and its pure mutators.
"""

from decimal import Decimal

import pytest

from distribution_kernel.domain.rule import (
    AllianceCapability,
    AllianceShare,
    AllocationRule,
    DistributionScope,
    MemberShare,
    UserShare,
    default_rule,
)


class TestDefaults:
    def test_default_rule(self):
        rule = default_rule()
        assert rule.distribution_scope is DistributionScope.ALL
        assert rule.owner_percent == Decimal("10")
        assert rule.distribution_percent == Decimal("100")
        assert rule.admin_pool == ()
        assert rule.hostile_alliance_percent == Decimal("0")

    def test_scope_percent_all_is_hundred(self):
        rule = AllocationRule(distribution_percent=Decimal("40"))
        assert rule.scope_percent == Decimal("100")

    def test_scope_percent_partial(self):
        rule = AllocationRule().with_scope("partial", "40")
        assert rule.distribution_scope is DistributionScope.PARTIAL
        assert rule.scope_percent == Decimal("40")

    def test_unknown_scope_reads_as_all(self):
        assert DistributionScope.parse("everything") is DistributionScope.ALL


class TestNormalization:
    def test_admin_duplicates_last_wins(self):
        rule = AllocationRule(
            admin_pool=(MemberShare("m1", Decimal("5")), MemberShare("m1", Decimal("8")))
        )
        assert rule.admin_pool == (MemberShare("m1", Decimal("8")),)

    def test_admin_zero_entries_dropped(self):
        rule = AllocationRule(admin_pool=(MemberShare("m1", Decimal("0")),))
        assert rule.admin_pool == ()

    def test_custom_duplicates_last_wins(self):
        rule = AllocationRule(
            custom_user_overrides=(UserShare("u1", Decimal("3")), UserShare("u1", Decimal("4")))
        )
        assert rule.custom_user_overrides == (UserShare("u1", Decimal("4")),)

    def test_specific_alliance_duplicates_are_summed(self):
        rule = AllocationRule(
            specific_alliance_percents=(
                AllianceShare("a1", Decimal("10")),
                AllianceShare("a1", Decimal("15")),
            )
        )
        assert rule.specific_alliance_percents == (AllianceShare("a1", Decimal("25")),)

    def test_blank_ids_dropped(self):
        rule = AllocationRule(
            admin_pool=(MemberShare("  ", Decimal("5")),),
            blacklist_user_ids=("", " u1 ", "u1"),
        )
        assert rule.admin_pool == ()
        assert rule.blacklist_user_ids == ("u1",)

    def test_percentages_rounded_to_cents(self):
        rule = AllocationRule(
            owner_percent="99.984",
            admin_pool=(MemberShare("m1", "0.005"), MemberShare("m2", "0.004")),
            custom_user_overrides=(UserShare("u1", "12.345"),),
        )
        assert rule.owner_percent == Decimal("99.98")
        assert rule.admin_pool == (MemberShare("m1", Decimal("0.01")),)
        assert rule.custom_percent_for("u1") == Decimal("12.35")

    def test_malformed_percent_fields_fall_back(self):
        rule = AllocationRule(owner_percent="abc", distribution_percent=float("inf"))
        assert rule.owner_percent == Decimal("10")
        assert rule.distribution_percent == Decimal("100")


class TestMutators:
    def test_mutators_do_not_touch_original(self):
        original = default_rule()
        changed = original.with_owner_percent("25")
        assert original.owner_percent == Decimal("10")
        assert changed.owner_percent == Decimal("25")

    def test_owner_percent_malformed_keeps_current(self):
        assert default_rule().with_owner_percent("nope").owner_percent == Decimal("10")

    def test_owner_percent_clamped(self):
        assert default_rule().with_owner_percent(-3).owner_percent == Decimal("0")

    def test_set_admin_share_replaces(self):
        rule = default_rule().set_admin_share("m1", 20).set_admin_share("m1", 30)
        assert rule.admin_percent_for("m1") == Decimal("30")
        assert len(rule.admin_pool) == 1

    def test_set_admin_share_zero_removes(self):
        rule = default_rule().set_admin_share("m1", 20).set_admin_share("m1", 0)
        assert rule.admin_pool == ()

    def test_custom_share_roundtrip(self):
        rule = default_rule().set_custom_user_share("u1", 7)
        assert rule.custom_percent_for("u1") == Decimal("7")
        assert rule.remove_custom_user_share("u1").custom_user_overrides == ()

    def test_specific_alliance_share(self):
        rule = default_rule().set_specific_alliance_share("a1", "12.5")
        assert rule.specific_alliance_percent_for("a1") == Decimal("12.5")
        assert rule.remove_specific_alliance_share("a1").specific_alliance_percents == ()

    def test_group_percents(self):
        rule = default_rule().with_non_hostile_alliance_percent(15).with_no_alliance_percent(5)
        assert rule.non_hostile_alliance_percent == Decimal("15")
        assert rule.no_alliance_percent == Decimal("5")

    def test_blacklists_deduplicated(self):
        rule = default_rule().blacklist_user("u1").blacklist_user("u1").blacklist_alliance("a1")
        assert rule.blacklist_user_ids == ("u1",)
        assert rule.is_alliance_blacklisted("a1")
        assert rule.unblacklist_user("u1").blacklist_user_ids == ()
        assert rule.unblacklist_alliance("a1").blacklist_alliance_ids == ()

    def test_without_blacklists(self):
        rule = default_rule().blacklist_user("u1").blacklist_alliance("a1")
        cleared = rule.without_blacklists()
        assert cleared.blacklist_user_ids == ()
        assert cleared.blacklist_alliance_ids == ()

    def test_structural_equality(self):
        assert default_rule().with_owner_percent(10) == default_rule()

    def test_rule_is_frozen(self):
        with pytest.raises(AttributeError):
            default_rule().owner_percent = Decimal("1")


class TestAllianceCapability:
    def test_effective_sync_zero_without_alliance(self):
        cap = AllianceCapability(has_alliance=False, alliance_sync_percent=Decimal("5"))
        assert cap.effective_sync_percent == Decimal("0")

    def test_sync_clamped(self):
        assert AllianceCapability(alliance_sync_percent="140").alliance_sync_percent == Decimal("100")
