"""
Canonical workflow types (``distribution_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for state machines, and the declaration of the
publish/lock lifecycle of a distribution plan.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* The plan lifecycle has no operator-initiated ``locked -> idle`` edge:
  only the external settlement observation leaves ``due``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the scheduler does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``automatic=True`` marks transitions driven by wall-clock time rather
    than by an actor.  ``external=True`` marks transitions driven by a
    collaborator outside the engine.
    """
    from_state: str
    to_state: str
    action: str
    guards: tuple[Guard, ...] = ()
    automatic: bool = False
    external: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} references unknown state"
                )

    def find_transition(self, from_state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def allowed_actions(self, from_state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == from_state)


CALLER_CAN_EDIT = Guard("caller_can_edit", "Caller holds the edit capability")
NO_ACTIVE_PLAN = Guard("no_active_plan", "No published plan is pending")
EXECUTE_AT_ALIGNED = Guard(
    "execute_at_aligned", "Execute time sits on a whole-hour boundary"
)
EXECUTE_AT_IN_FUTURE = Guard(
    "execute_at_in_future", "Execute time is strictly after the current time"
)
WITHIN_BUDGET = Guard(
    "within_budget", "Target profile allocates at most 100 percent"
)


PUBLISH_PLAN_WORKFLOW = Workflow(
    name="distribution_plan",
    description="Publish/lock lifecycle of a scheduled distribution plan",
    initial_state="idle",
    states=("idle", "locked", "due"),
    transitions=(
        Transition(
            "idle",
            "locked",
            action="publish",
            guards=(
                CALLER_CAN_EDIT,
                NO_ACTIVE_PLAN,
                EXECUTE_AT_ALIGNED,
                EXECUTE_AT_IN_FUTURE,
                WITHIN_BUDGET,
            ),
        ),
        Transition("locked", "due", action="execute_at_reached", automatic=True),
        Transition("due", "idle", action="settle", external=True),
    ),
)
