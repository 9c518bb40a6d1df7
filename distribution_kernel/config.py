"""
Distribution Configuration Schema (``distribution_kernel.config``).

Responsibility
--------------
Holds every tunable constant of the rule engine: rule defaults, the
execute-time alignment grid, the lock timeline offsets and the profile
naming scheme.  Loaded from YAML by deployment tooling, or built with
``with_defaults()`` in tests and embedded use.

Failure modes
-------------
* Out-of-range values raise ``ValueError`` at construction.
* Unknown YAML keys raise ``ValueError`` (typos must not silently fall
  back to defaults).
* Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from distribution_kernel.logging_config import get_logger

logger = get_logger("config")

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class DistributionConfig:
    """Configuration schema for the distribution rule engine."""

    default_owner_percent: Decimal = Decimal("10")
    default_distribution_percent: Decimal = Decimal("100")
    execute_alignment_seconds: int = 3600
    min_publish_lead_seconds: int = 0
    entry_close_lead_seconds: int = 60
    settlement_grace_seconds: int = 60
    default_profile_id: str = "default"
    default_profile_name: str = "Default rule"
    placeholder_profile_name: str = "Unnamed rule"
    auto_profile_name_prefix: str = "Rule"
    candidate_search_limit: int = 20

    def __post_init__(self):
        for name in ("default_owner_percent", "default_distribution_percent"):
            value = Decimal(str(getattr(self, name)))
            if not Decimal("0") <= value <= Decimal("100"):
                raise ValueError(f"{name} must be within 0..100, got {value}")
            object.__setattr__(self, name, value)
        if self.execute_alignment_seconds <= 0:
            raise ValueError("execute_alignment_seconds must be positive")
        if SECONDS_PER_DAY % self.execute_alignment_seconds:
            raise ValueError("execute_alignment_seconds must divide a day evenly")
        for name in (
            "min_publish_lead_seconds",
            "entry_close_lead_seconds",
            "settlement_grace_seconds",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.candidate_search_limit <= 0:
            raise ValueError("candidate_search_limit must be positive")
        if not self.default_profile_id.strip():
            raise ValueError("default_profile_id cannot be blank")
        logger.info("distribution_config_initialized", extra={
            "execute_alignment_seconds": self.execute_alignment_seconds,
            "min_publish_lead_seconds": self.min_publish_lead_seconds,
        })

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown distribution config keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> Self:
        """Load a config from a YAML file with a top-level ``distribution`` key."""
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        section = raw.get("distribution", raw) if isinstance(raw, dict) else raw
        if not isinstance(section, dict):
            raise ValueError(f"{path}: 'distribution' section must be a mapping")
        return cls.from_mapping(section)
