"""
Module: distribution_kernel.models.distribution
Responsibility: ORM persistence for territories, their rule profiles, the
    published plans that lock them, and the claimant directory used for
    identity lookup.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, or domain/.

Invariants enforced:
    - (territory_id, profile_key) is unique: a profile id names exactly one
      row per territory.
    - At most one unsettled PublishedPlanModel per territory (enforced by
      the gateway; the row itself is immutable, see db/immutability.py).
    - Rule documents are stored in the wire shape, never as pickled objects.

Failure modes:
    - IntegrityError on duplicate territory_key or profile key.
    - ImmutabilityViolationError on any change to a published plan other
      than its settlement stamp.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distribution_kernel.db.base import Base, TrackedBase, UUIDString


class TerritoryModel(TrackedBase):
    """
    A territory whose knowledge pool is distributed.

    Access is derived from the row: the controller and ``editor_user_ids``
    may edit; they and ``viewer_user_ids`` may view.
    """

    __tablename__ = "distribution_territories"

    __table_args__ = (
        UniqueConstraint("territory_key", name="uq_distribution_territory_key"),
    )

    territory_key: Mapped[str] = mapped_column(String(100), nullable=False)

    controller_user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    alliance_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    alliance_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    alliance_sync_percent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    hostile_alliance_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    editor_user_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    viewer_user_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    active_profile_key: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Bumped by every successful save_rules
    rules_revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    profiles: Mapped[list["RuleProfileModel"]] = relationship(
        back_populates="territory",
        cascade="all, delete-orphan",
        order_by="RuleProfileModel.position",
    )

    def __repr__(self) -> str:
        return f"<Territory {self.territory_key} controller={self.controller_user_id}>"


class RuleProfileModel(TrackedBase):
    """One named rule profile, stored as a wire-shaped JSON document."""

    __tablename__ = "distribution_rule_profiles"

    __table_args__ = (
        UniqueConstraint("territory_id", "profile_key", name="uq_distribution_profile_key"),
        Index("idx_distribution_profile_territory", "territory_id"),
    )

    territory_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("distribution_territories.id"),
        nullable=False,
    )

    profile_key: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    rule_document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    territory: Mapped[TerritoryModel] = relationship(back_populates="profiles")


class PublishedPlanModel(TrackedBase):
    """
    Persisted lock.  Immutable after INSERT except ``settled_at``.

    ``settled_at`` is stamped once by the settlement hook; a row with
    ``settled_at`` NULL is the territory's current plan.
    """

    __tablename__ = "distribution_published_plans"

    __table_args__ = (
        Index("idx_distribution_plan_territory", "territory_id", "settled_at"),
    )

    territory_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("distribution_territories.id"),
        nullable=False,
    )

    rule_profile_key: Mapped[str] = mapped_column(String(100), nullable=False)

    profile_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    rule_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    execute_at: Mapped[datetime] = mapped_column(nullable=False)

    published_at: Mapped[datetime] = mapped_column(nullable=False)

    entry_close_at: Mapped[datetime] = mapped_column(nullable=False)

    end_at: Mapped[datetime] = mapped_column(nullable=False)

    settled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None


class ClaimantDirectoryModel(Base):
    """Identity directory row: a user or an alliance that can be looked up."""

    __tablename__ = "distribution_claimant_directory"

    __table_args__ = (
        UniqueConstraint("kind", "candidate_key", name="uq_distribution_claimant"),
        Index("idx_distribution_claimant_name", "display_name"),
    )

    candidate_key: Mapped[str] = mapped_column(String(100), nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    alliance_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
