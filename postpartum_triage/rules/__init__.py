"""Deterministic postpartum triage rules.

This module provides a YAML-based ruleset and a pure decision engine.
All triage decisions are deterministic and explainable - no AI/ML is used.
"""

from postpartum_triage.rules.engine import escalate_one_level, evaluate
from postpartum_triage.rules.loader import (
    ConfigError,
    RulesetLoader,
    compute_ruleset_hash,
    load_ruleset,
    parse_ruleset,
)
from postpartum_triage.rules.models import RuleSet

__all__ = [
    "ConfigError",
    "RuleSet",
    "RulesetLoader",
    "load_ruleset",
    "parse_ruleset",
    "compute_ruleset_hash",
    "evaluate",
    "escalate_one_level",
]
