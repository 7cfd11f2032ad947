"""Rule and ruleset data models.

A RuleSet is an immutable value: every container is a tuple or a
read-only mapping so a loaded ruleset can be shared across requests and
threaded explicitly through the engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Union

# Weighted scoring domains, in reporting order
DOMAINS = ("mental_health", "pelvic_floor_and_recovery", "history_and_context")


class ConditionOperator(str, Enum):
    """Operators for rule conditions."""

    EQUALS = "eq"
    NOT_EQUALS = "neq"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"

    @classmethod
    def parse(cls, raw: str) -> "ConditionOperator":
        """Resolve an operator name or its symbolic form (==, >=, ...)."""
        return cls(SYMBOLIC_OPERATORS.get(raw, raw))


SYMBOLIC_OPERATORS = {
    "==": "eq",
    "!=": "neq",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
}


@dataclass(frozen=True)
class Condition:
    """A single condition on one input fact."""

    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, facts: Mapping[str, Any]) -> bool:
        """Evaluate this condition against the answered facts.

        An unanswered fact only ever satisfies ``is_null``.
        """
        actual = facts.get(self.field)
        op = self.operator

        if op == ConditionOperator.IS_NULL:
            return actual is None
        if actual is None:
            return False

        expected = self.value
        try:
            if op == ConditionOperator.EQUALS:
                return actual == expected
            elif op == ConditionOperator.NOT_EQUALS:
                return actual != expected
            elif op == ConditionOperator.GREATER_THAN:
                return actual > expected
            elif op == ConditionOperator.GREATER_THAN_OR_EQUAL:
                return actual >= expected
            elif op == ConditionOperator.LESS_THAN:
                return actual < expected
            elif op == ConditionOperator.LESS_THAN_OR_EQUAL:
                return actual <= expected
            elif op == ConditionOperator.IN:
                return actual in expected
            elif op == ConditionOperator.NOT_IN:
                return actual not in expected
            elif op == ConditionOperator.IS_TRUE:
                return actual is True
            elif op == ConditionOperator.IS_FALSE:
                return actual is False
            elif op == ConditionOperator.IS_NOT_NULL:
                return True
        except TypeError:
            return False

        return False

    def fields(self) -> set[str]:
        return {self.field}


@dataclass(frozen=True)
class ConditionGroup:
    """Conditions combined with AND (``all``) or OR (``any``); nestable."""

    mode: str
    children: tuple[Union[Condition, "ConditionGroup"], ...]

    def evaluate(self, facts: Mapping[str, Any]) -> bool:
        """Evaluate the group; an empty group never matches."""
        if not self.children:
            return False
        if self.mode == "all":
            return all(child.evaluate(facts) for child in self.children)
        return any(child.evaluate(facts) for child in self.children)

    def fields(self) -> set[str]:
        """Every fact referenced anywhere in the group."""
        names: set[str] = set()
        for child in self.children:
            names |= child.fields()
        return names


@dataclass(frozen=True)
class RedFlagRule:
    """A safety condition that alone mandates emergency care."""

    id: str
    label: str
    when: ConditionGroup
    description: str = ""


@dataclass(frozen=True)
class ScoreBonus:
    """A compound weight added to a domain when its condition holds."""

    id: str
    domain: str
    weight: int
    when: ConditionGroup
    description: str = ""


@dataclass(frozen=True)
class ScoringTables:
    """Per-answer weights for each scoring domain."""

    mental_health: Mapping[str, int]
    pelvic_floor_and_recovery: Mapping[str, int]
    history_and_context: Mapping[str, int]

    def for_domain(self, domain: str) -> Mapping[str, int]:
        return getattr(self, domain)


@dataclass(frozen=True)
class RuleSet:
    """A versioned postpartum triage ruleset."""

    id: str
    version: str
    emergency_number: str
    red_flags: tuple[RedFlagRule, ...]
    scoring: ScoringTables
    urgent_threshold: int
    critical_inputs: tuple[str, ...]
    bonuses: tuple[ScoreBonus, ...] = ()
    aggregates: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    content_hash: str | None = None

    def red_flag(self, flag_id: str) -> RedFlagRule | None:
        """Look up a red flag definition by id."""
        for rule in self.red_flags:
            if rule.id == flag_id:
                return rule
        return None

    def info(self) -> dict[str, Any]:
        """Summary for display and audit."""
        return {
            "id": self.id,
            "version": self.version,
            "hash": self.content_hash,
            "emergency_number": self.emergency_number,
            "urgent_threshold": self.urgent_threshold,
            "red_flags": [{"id": r.id, "label": r.label} for r in self.red_flags],
            "critical_inputs": list(self.critical_inputs),
        }
