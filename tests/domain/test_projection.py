"""Tests for the per-claimant projection."""

from decimal import Decimal

from distribution_kernel.domain.projection import (
    Claimant,
    ClaimantPool,
    ProjectionContext,
    project_claimant,
)
from distribution_kernel.domain.rule import AllianceCapability, default_rule

CONTEXT = ProjectionContext(
    controller_user_id="owner",
    capability=AllianceCapability(alliance_sync_percent=Decimal("5")),
    hostile_alliance_ids=frozenset({"a-enemy"}),
)
NO_ALLIANCE_CONTEXT = ProjectionContext(
    controller_user_id="owner",
    capability=AllianceCapability(has_alliance=False),
    hostile_alliance_ids=frozenset({"a-enemy"}),
)


class TestProjectClaimant:
    def test_owner_gets_owner_share(self):
        result = project_claimant(default_rule(), Claimant("owner"), CONTEXT)
        assert result.pool is ClaimantPool.OWNER
        assert result.percent == Decimal("10.00")

    def test_admin_member_fixed_share(self):
        rule = default_rule().set_admin_share("m1", 20).set_custom_user_share("m1", 50)
        result = project_claimant(rule, Claimant("m1"), CONTEXT)
        assert result.pool is ClaimantPool.ADMIN_MEMBER
        assert result.percent == Decimal("20.00")

    def test_highest_custom_pool_wins(self):
        rule = (
            default_rule()
            .set_custom_user_share("u1", 5)
            .set_specific_alliance_share("a1", 12)
            .with_non_hostile_alliance_percent(8)
        )
        result = project_claimant(rule, Claimant("u1", "a1"), CONTEXT)
        assert result.pool is ClaimantPool.SPECIFIC_ALLIANCE
        assert result.percent == Decimal("12.00")

    def test_tie_prefers_custom_user(self):
        rule = default_rule().set_custom_user_share("u1", 10).set_specific_alliance_share("a1", 10)
        result = project_claimant(rule, Claimant("u1", "a1"), CONTEXT)
        assert result.pool is ClaimantPool.CUSTOM_USER

    def test_no_alliance_pool(self):
        rule = default_rule().with_no_alliance_percent(6)
        result = project_claimant(rule, Claimant("u2"), CONTEXT)
        assert result.pool is ClaimantPool.NO_ALLIANCE
        assert result.percent == Decimal("6.00")

    def test_nothing_applies(self):
        result = project_claimant(default_rule(), Claimant("u2", "a1"), CONTEXT)
        assert result.pool is ClaimantPool.NONE
        assert not result.is_eligible


class TestDenyBeatsAllow:
    def test_blacklisted_user_blocked(self):
        rule = default_rule().set_custom_user_share("u1", 20).blacklist_user("u1")
        result = project_claimant(rule, Claimant("u1"), CONTEXT)
        assert result.pool is ClaimantPool.BLOCKED
        assert result.percent == Decimal("0.00")

    def test_blacklisted_alliance_blocks_members(self):
        rule = default_rule().with_non_hostile_alliance_percent(10).blacklist_alliance("a1")
        assert project_claimant(rule, Claimant("u1", "a1"), CONTEXT).pool is ClaimantPool.BLOCKED

    def test_hostile_alliance_blocked(self):
        rule = default_rule().set_custom_user_share("u1", 20)
        assert (
            project_claimant(rule, Claimant("u1", "a-enemy"), CONTEXT).pool
            is ClaimantPool.BLOCKED
        )

    def test_blacklisted_owner_blocked(self):
        rule = default_rule().blacklist_user("owner")
        assert project_claimant(rule, Claimant("owner"), CONTEXT).pool is ClaimantPool.BLOCKED

    def test_empty_user_blocked(self):
        assert project_claimant(default_rule(), Claimant("  "), CONTEXT).pool is ClaimantPool.BLOCKED


class TestAllianceDisabled:
    def test_alliance_pools_ignored(self):
        rule = default_rule().set_specific_alliance_share("a1", 12).with_non_hostile_alliance_percent(8)
        result = project_claimant(rule, Claimant("u1", "a1"), NO_ALLIANCE_CONTEXT)
        assert result.pool is ClaimantPool.NONE

    def test_hostile_not_applied_without_alliance(self):
        rule = default_rule().set_custom_user_share("u1", 20)
        result = project_claimant(rule, Claimant("u1", "a-enemy"), NO_ALLIANCE_CONTEXT)
        assert result.pool is ClaimantPool.CUSTOM_USER
