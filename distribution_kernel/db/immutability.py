"""
ORM-level immutability enforcement for published plans.

A published plan is the lock on a territory's rules: once it is written, the
rule snapshot and timeline it carries must not change.  SQLAlchemy fires
mapper events before UPDATE/DELETE reach the database; the listeners here
intercept them and raise ImmutabilityViolationError, aborting the flush.

    session.flush()
         |
         v
    [before_update] --> _check_published_plan_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_published_plan_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Mutable after INSERT:
    settled_at       -- stamped once by the settlement hook (NULL -> value)
    updated_at, updated_by_id -- audit metadata

Usage:

    from distribution_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from distribution_kernel.exceptions import ImmutabilityViolationError
from distribution_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

PUBLISHED_PLAN_MUTABLE_FIELDS = frozenset({
    "settled_at",
    "updated_at",
    "updated_by_id",
})


def _violation(target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "PublishedPlan",
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type="PublishedPlan",
        entity_id=str(target.id),
        reason=reason,
    )


def _check_published_plan_immutability(mapper, connection, target):
    """Only the settlement stamp may change, and only from NULL."""
    settled_history = get_history(target, "settled_at")
    if settled_history.deleted and settled_history.deleted[0] is not None:
        raise _violation(
            target,
            "UPDATE",
            "Settlement stamp cannot be changed once set",
            field="settled_at",
        )

    for attr in inspect(target).attrs:
        if attr.key in PUBLISHED_PLAN_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            raise _violation(
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on published plan",
                field=attr.key,
            )


def _check_published_plan_delete(mapper, connection, target):
    """Published plans are history; settlement stamps them instead."""
    raise _violation(target, "DELETE", "Published plans cannot be deleted")


def register_immutability_listeners():
    """Register the published plan listeners.  Safe to call repeatedly."""
    from distribution_kernel.models.distribution import PublishedPlanModel

    if not event.contains(
        PublishedPlanModel, "before_update", _check_published_plan_immutability
    ):
        event.listen(PublishedPlanModel, "before_update", _check_published_plan_immutability)
    if not event.contains(PublishedPlanModel, "before_delete", _check_published_plan_delete):
        event.listen(PublishedPlanModel, "before_delete", _check_published_plan_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the listeners.

    WARNING: Only use this in tests that intentionally violate immutability.
    """
    from distribution_kernel.models.distribution import PublishedPlanModel

    _safe_remove_listener(
        PublishedPlanModel, "before_update", _check_published_plan_immutability
    )
    _safe_remove_listener(PublishedPlanModel, "before_delete", _check_published_plan_delete)
