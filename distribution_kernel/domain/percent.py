"""
Percent -- the atomic allocation unit.

Responsibility:
    Bounded percentage value object plus the forgiving-input helpers used
    everywhere a number enters the engine (UI keystrokes, wire payloads,
    stored JSON).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by every
    other domain module.

Invariants enforced:
    - ``0 <= value <= 100`` for every Percent.
    - Decimal-only arithmetic; floats are converted through ``str()`` so
      that 0.1 stays 0.1.
    - Every percentage is held at two decimal places (ROUND_HALF_UP) from
      the moment it enters the engine, so stored and in-memory rules agree.

Failure modes:
    - ``Percent(...)`` raises ValueError on out-of-range or non-finite input.
    - ``clamp_percent`` never raises: malformed input is replaced by the
      caller's fallback, out-of-range input is pinned to the nearest bound.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal | None:
    """Parse ``value`` as a finite Decimal, or return None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except (InvalidOperation, ValueError):
            return None
    if not parsed.is_finite():
        return None
    return parsed


def round2(value: Any) -> Decimal:
    """Round to two decimal places (half up).  Non-numeric input reads as 0."""
    parsed = to_decimal(value)
    if parsed is None:
        return ZERO.quantize(_CENT)
    return parsed.quantize(_CENT, rounding=ROUND_HALF_UP)


def clamp_percent(value: Any, fallback: Decimal | int | str = ZERO) -> Decimal:
    """
    Coerce arbitrary input into a percentage in [0, 100].

    Non-numeric and non-finite input yields ``fallback``; finite input
    outside the range is clamped to 0 or 100.  The result is rounded to
    two decimal places.
    """
    parsed = to_decimal(value)
    if parsed is None:
        return round2(fallback)
    if parsed <= ZERO:
        return ZERO
    if parsed > HUNDRED:
        return HUNDRED
    return round2(parsed)


@dataclass(frozen=True, slots=True)
class Percent:
    """
    Percentage value object.

    Contract:
        Wraps a Decimal in [0, 100].  Strict on construction; use
        ``Percent.coerce`` for the forgiving path.

    Guarantees:
        - Immutable and hashable.
        - ``value`` is always a finite Decimal within range, held at
          two decimal places.
    """

    value: Decimal

    def __post_init__(self) -> None:
        parsed = to_decimal(self.value)
        if parsed is None:
            raise ValueError(f"Percent must be a finite number, got {self.value!r}")
        if parsed < ZERO or parsed > HUNDRED:
            raise ValueError(f"Percent must be within 0..100, got {parsed}")
        object.__setattr__(self, "value", round2(parsed))

    @classmethod
    def coerce(cls, value: Any, fallback: Decimal | int | str = ZERO) -> Percent:
        return cls(clamp_percent(value, fallback))

    @classmethod
    def zero(cls) -> Percent:
        return cls(ZERO)

    @property
    def rounded(self) -> Decimal:
        return round2(self.value)

    @property
    def is_positive(self) -> bool:
        return self.value > ZERO

    def __str__(self) -> str:
        return f"{self.rounded}%"
