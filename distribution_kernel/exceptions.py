"""
Typed Exception Hierarchy for the distribution kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the rule engine (the editor session, the UI layer, the
persistence gateway) must branch on *what* went wrong, not on message text:

    try:
        scheduler.publish(store, profile_id, execute_at, can_edit=True)
    except BudgetExceededError as e:
        show_banner(f"{e.profile_name} allocates {e.total}%")
    except PlanLockedError as e:
        show_countdown(e.execute_at)

Every exception therefore carries:
  1. a CODE class attribute (machine-readable, API-safe)
  2. structured DATA as instance attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DistributionKernelError (base)
    |
    +-- DistributionValidationError
    |   +-- BudgetExceededError
    |   +-- InvalidExecuteTimeError
    |   +-- MinimumProfileViolationError
    |   +-- ProfileNotFoundError
    |
    +-- PermissionDeniedError
    |
    +-- PlanLockedError
    |   +-- PlanNotDueError
    |
    +-- TransportError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------------
Validation    | BUDGET_EXCEEDED             | Category total of a profile is above 100
              | INVALID_EXECUTE_TIME        | executeAt not hour-aligned / not in future
              | MINIMUM_PROFILE_VIOLATION   | Deleting the last remaining profile
              | PROFILE_NOT_FOUND           | Publishing a profile id that is not stored
--------------|-----------------------------|-------------------------------------------
Permission    | FORBIDDEN                   | Caller lacks the edit / view capability
--------------|-----------------------------|-------------------------------------------
Lock          | LOCKED                      | A published plan is active
              | PLAN_NOT_DUE                | Settlement attempted before executeAt
--------------|-----------------------------|-------------------------------------------
Transport     | TRANSPORT_ERROR             | Storage / network / parse failure
--------------|-----------------------------|-------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION      | Modifying a published plan row

===============================================================================
RECOVERABILITY
===============================================================================

    DistributionValidationError -> fix the rule and retry
    PermissionDeniedError       -> not recoverable within the session
    PlanLockedError             -> recoverable after external settlement
    TransportError              -> retried manually by the operator

None of these are fatal: the editor renders them as plain text and local
editing continues.
"""

from datetime import datetime
from decimal import Decimal


class DistributionKernelError(Exception):
    """
    Base exception for all distribution kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "DISTRIBUTION_KERNEL_ERROR"


# Validation


class DistributionValidationError(DistributionKernelError):
    """Base exception for errors fixable by editing the rule and retrying."""

    code: str = "VALIDATION_ERROR"


class BudgetExceededError(DistributionValidationError):
    """A profile allocates more than 100 percent of the distributed pool."""

    code: str = "BUDGET_EXCEEDED"

    def __init__(self, profile_name: str, total: Decimal, profile_id: str | None = None):
        self.profile_name = profile_name
        self.profile_id = profile_id
        self.total = total
        super().__init__(
            f"Rule profile '{profile_name}' allocates {total:.2f}% "
            f"which exceeds the 100% budget"
        )


class InvalidExecuteTimeError(DistributionValidationError):
    """The requested execute time cannot be scheduled."""

    code: str = "INVALID_EXECUTE_TIME"

    def __init__(self, execute_at: datetime | None, reason: str):
        self.execute_at = execute_at
        self.reason = reason
        super().__init__(f"Invalid execute time {execute_at}: {reason}")


class MinimumProfileViolationError(DistributionValidationError):
    """At least one rule profile must always exist."""

    code: str = "MINIMUM_PROFILE_VIOLATION"

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(
            f"Cannot delete rule profile {profile_id}: at least one profile must remain"
        )


class ProfileNotFoundError(DistributionValidationError):
    """No rule profile with the given id exists."""

    code: str = "PROFILE_NOT_FOUND"

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Rule profile not found: {profile_id}")


# Permission


class PermissionDeniedError(DistributionKernelError):
    """The caller lacks the capability required for the operation."""

    code: str = "FORBIDDEN"

    def __init__(self, capability: str, territory_id: str | None = None):
        self.capability = capability
        self.territory_id = territory_id
        where = f" on territory {territory_id}" if territory_id else ""
        super().__init__(f"Missing '{capability}' capability{where}")


# Lock


class PlanLockedError(DistributionKernelError):
    """A published plan is active; rule edits and new publishes are refused."""

    code: str = "LOCKED"

    def __init__(
        self,
        rule_profile_id: str | None = None,
        execute_at: datetime | None = None,
        operation: str | None = None,
    ):
        self.rule_profile_id = rule_profile_id
        self.execute_at = execute_at
        self.operation = operation
        detail = f" until {execute_at.isoformat()}" if execute_at else ""
        action = f"Cannot {operation}: " if operation else ""
        super().__init__(f"{action}distribution plan is locked{detail}")


class PlanNotDueError(PlanLockedError):
    """Settlement was attempted before the plan's execute time."""

    code: str = "PLAN_NOT_DUE"

    def __init__(self, rule_profile_id: str, execute_at: datetime):
        self.rule_profile_id = rule_profile_id
        self.execute_at = execute_at
        self.operation = "settle"
        DistributionKernelError.__init__(
            self,
            f"Distribution plan for profile {rule_profile_id} is not due "
            f"before {execute_at.isoformat()}",
        )


# Transport


class TransportError(DistributionKernelError):
    """Storage, network or payload parse failure behind the gateway."""

    code: str = "TRANSPORT_ERROR"

    def __init__(self, operation: str, cause: BaseException | str):
        self.operation = operation
        self.cause = str(cause)
        super().__init__(f"{operation} failed: {self.cause}")


# Immutability


class ImmutabilityViolationError(DistributionKernelError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
