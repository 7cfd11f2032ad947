"""YAML ruleset loader with integrity verification."""

import hashlib
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from postpartum_triage.rules.models import (
    DOMAINS,
    Condition,
    ConditionGroup,
    ConditionOperator,
    RedFlagRule,
    RuleSet,
    ScoreBonus,
    ScoringTables,
)
from postpartum_triage.schemas.triage import TriageInput, boolean_input_fields

logger = logging.getLogger(__name__)

# Rulesets shipped with the package
RULESETS_DIR = Path(__file__).parent.parent / "rulesets"


class ConfigError(Exception):
    """Raised when a ruleset is missing or malformed."""

    pass


def compute_ruleset_hash(content: str) -> str:
    """Compute SHA256 hash of ruleset content.

    Used for audit trail to ensure ruleset hasn't been modified.

    Args:
        content: Raw YAML content string

    Returns:
        SHA256 hex digest
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def load_ruleset(filename: str, rulesets_dir: Path | None = None) -> RuleSet:
    """Load and validate a ruleset YAML file.

    Args:
        filename: Name of the ruleset file (e.g., "postpartum-de-v1.0.0.yaml")
        rulesets_dir: Directory containing rulesets (defaults to the packaged ones)

    Returns:
        Parsed RuleSet carrying the SHA256 of the file content

    Raises:
        ConfigError: If the file is missing, is not valid YAML, or fails validation
    """
    if rulesets_dir is None:
        rulesets_dir = RULESETS_DIR

    filepath = Path(rulesets_dir) / filename

    if not filepath.exists():
        raise ConfigError(f"Ruleset not found: {filepath}")

    content = filepath.read_text(encoding="utf-8")
    ruleset_hash = compute_ruleset_hash(content)

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in ruleset {filepath}: {e}") from e

    ruleset = parse_ruleset(data, ruleset_hash)
    logger.info(
        f"Loaded ruleset {ruleset.id} v{ruleset.version} "
        f"(hash={ruleset_hash[:12]}) from {filepath}"
    )
    return ruleset


def parse_ruleset(data: Any, ruleset_hash: str | None = None) -> RuleSet:
    """Validate a parsed ruleset document and build a RuleSet.

    Args:
        data: Document as returned by ``yaml.safe_load``
        ruleset_hash: Content hash to record on the RuleSet

    Returns:
        Immutable RuleSet

    Raises:
        ConfigError: On any missing section or invalid value
    """
    if not isinstance(data, dict):
        raise ConfigError("Ruleset must be a mapping")

    version = data.get("version")
    if version is None or not str(version).strip():
        raise ConfigError("Ruleset is missing 'version'")

    metadata = _require_mapping(data, "metadata")
    emergency_number = metadata.get("emergency_number")
    if not emergency_number:
        raise ConfigError("Ruleset metadata is missing 'emergency_number'")

    red_flags = _parse_red_flags(data.get("red_flags"))
    scoring = _parse_scoring(_require_mapping(data, "scoring"))
    bonuses = _parse_bonuses(data.get("bonuses") or [])

    thresholds = _require_mapping(data, "thresholds")
    urgent_threshold = _parse_weight(
        thresholds.get("urgent_same_day_min"), "thresholds.urgent_same_day_min"
    )

    policy = _require_mapping(data, "confidence_policy")
    aggregates = _parse_aggregates(policy.get("aggregates") or {})
    critical_inputs = _parse_critical_inputs(policy.get("critical_inputs"), aggregates)

    return RuleSet(
        id=str(data.get("id", "unknown")),
        version=str(version),
        emergency_number=str(emergency_number),
        red_flags=red_flags,
        scoring=scoring,
        urgent_threshold=urgent_threshold,
        critical_inputs=critical_inputs,
        bonuses=bonuses,
        aggregates=MappingProxyType(aggregates),
        metadata=MappingProxyType(dict(metadata)),
        content_hash=ruleset_hash,
    )


def _require_mapping(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key)
    if not isinstance(section, dict):
        raise ConfigError(f"Ruleset is missing '{key}' section")
    return section


def _check_input_field(name: Any, where: str) -> str:
    if name not in TriageInput.model_fields:
        raise ConfigError(f"Unknown input field '{name}' in {where}")
    return name


def _parse_weight(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where} must be an integer, got {value!r}")
    if value < 0:
        raise ConfigError(f"{where} must not be negative, got {value}")
    return value


def _parse_condition(node: Any, where: str) -> Condition | ConditionGroup:
    if not isinstance(node, dict):
        raise ConfigError(f"Condition in {where} must be a mapping")

    for mode in ("all", "any"):
        if mode in node:
            children = node[mode]
            if not isinstance(children, list) or not children:
                raise ConfigError(f"'{mode}' in {where} must be a non-empty list")
            return ConditionGroup(
                mode=mode,
                children=tuple(_parse_condition(child, where) for child in children),
            )

    if "fact" not in node:
        raise ConfigError(f"Condition in {where} needs 'fact' or 'all'/'any'")

    field_name = _check_input_field(node["fact"], where)
    raw_op = str(node.get("op", "eq"))
    try:
        operator = ConditionOperator.parse(raw_op)
    except ValueError as e:
        raise ConfigError(f"Unknown operator '{raw_op}' in {where}") from e

    value = node.get("value")
    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(value, list):
            raise ConfigError(f"Operator '{raw_op}' in {where} needs a list value")
        value = tuple(value)

    return Condition(field=field_name, operator=operator, value=value)


def _parse_when(node: Any, where: str) -> ConditionGroup:
    parsed = _parse_condition(node, where)
    if isinstance(parsed, Condition):
        return ConditionGroup(mode="all", children=(parsed,))
    return parsed


def _parse_red_flags(raw: Any) -> tuple[RedFlagRule, ...]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError("Ruleset must define at least one red flag")

    seen: set[str] = set()
    rules = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("id") or not item.get("label"):
            raise ConfigError(f"Red flag needs 'id' and 'label': {item!r}")
        flag_id = str(item["id"])
        if flag_id in seen:
            raise ConfigError(f"Duplicate red flag id '{flag_id}'")
        seen.add(flag_id)
        rules.append(
            RedFlagRule(
                id=flag_id,
                label=str(item["label"]),
                description=str(item.get("description", "")),
                when=_parse_when(item.get("when"), f"red flag {flag_id}"),
            )
        )
    return tuple(rules)


def _parse_scoring(raw: dict[str, Any]) -> ScoringTables:
    unknown = set(raw) - set(DOMAINS)
    if unknown:
        raise ConfigError(f"Unknown scoring domain(s): {', '.join(sorted(unknown))}")

    scorable = boolean_input_fields()
    tables: dict[str, MappingProxyType] = {}
    for domain in DOMAINS:
        weights = raw.get(domain)
        if not isinstance(weights, dict):
            raise ConfigError(f"Scoring is missing domain '{domain}'")
        parsed = {}
        for name, weight in weights.items():
            if name not in scorable:
                raise ConfigError(f"Unknown yes/no input '{name}' in scoring.{domain}")
            parsed[name] = _parse_weight(weight, f"scoring.{domain}.{name}")
        tables[domain] = MappingProxyType(parsed)

    return ScoringTables(**tables)


def _parse_bonuses(raw: Any) -> tuple[ScoreBonus, ...]:
    if not isinstance(raw, list):
        raise ConfigError("'bonuses' must be a list")

    bonuses = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("id"):
            raise ConfigError(f"Bonus needs an 'id': {item!r}")
        bonus_id = str(item["id"])
        domain = item.get("domain")
        if domain not in DOMAINS:
            raise ConfigError(f"Unknown domain '{domain}' for bonus {bonus_id}")
        bonuses.append(
            ScoreBonus(
                id=bonus_id,
                domain=domain,
                weight=_parse_weight(item.get("weight"), f"bonus {bonus_id} weight"),
                description=str(item.get("description", "")),
                when=_parse_when(item.get("when"), f"bonus {bonus_id}"),
            )
        )
    return tuple(bonuses)


def _parse_aggregates(raw: Any) -> dict[str, tuple[str, ...]]:
    if not isinstance(raw, dict):
        raise ConfigError("'confidence_policy.aggregates' must be a mapping")

    aggregates = {}
    for key, members in raw.items():
        if not isinstance(members, list) or not members:
            raise ConfigError(f"Aggregate '{key}' needs a non-empty list of inputs")
        aggregates[str(key)] = tuple(
            _check_input_field(member, f"aggregate {key}") for member in members
        )
    return aggregates


def _parse_critical_inputs(
    raw: Any,
    aggregates: dict[str, tuple[str, ...]],
) -> tuple[str, ...]:
    if not isinstance(raw, list):
        raise ConfigError("'confidence_policy.critical_inputs' must be a list")

    for key in raw:
        if key not in aggregates:
            _check_input_field(key, "confidence_policy.critical_inputs")
    return tuple(raw)


class RulesetLoader:
    """Stateful ruleset loader with caching."""

    def __init__(self, rulesets_dir: Path | None = None) -> None:
        """Initialize loader.

        Args:
            rulesets_dir: Directory containing rulesets
        """
        self.rulesets_dir = rulesets_dir or RULESETS_DIR
        self._cache: dict[str, RuleSet] = {}

    def load(self, filename: str, use_cache: bool = True) -> RuleSet:
        """Load a ruleset with optional caching.

        Args:
            filename: Ruleset filename
            use_cache: Whether to use cached version if available

        Returns:
            Parsed RuleSet
        """
        if use_cache and filename in self._cache:
            return self._cache[filename]

        ruleset = load_ruleset(filename, self.rulesets_dir)
        self._cache[filename] = ruleset

        return ruleset

    def clear_cache(self) -> None:
        """Clear the ruleset cache."""
        self._cache.clear()

    def list_rulesets(self) -> list[str]:
        """List available ruleset files.

        Returns:
            Sorted list of ruleset filenames
        """
        return sorted(f.name for f in Path(self.rulesets_dir).glob("*.yaml"))
