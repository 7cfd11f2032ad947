"""Deterministic postpartum triage decision engine.

Evaluates questionnaire answers against a RuleSet to determine an
urgency level and care route. All decisions are:
- Deterministic (same input and ruleset = same output)
- Explainable (fully enumerated red flags, score breakdown, rationale)
- Auditable (records ruleset version and hash)

The engine is a set of pure functions. It performs no I/O, keeps no
state and never raises on a constructed TriageInput.
"""

from typing import Any, Mapping

from postpartum_triage.fixtures.route_copy import render_route_copy
from postpartum_triage.rules.models import DOMAINS, RuleSet
from postpartum_triage.schemas.triage import (
    ActionPlan,
    ConfidenceBucket,
    ConfidenceTrace,
    DecisionResult,
    DomainDominance,
    InconsistencyLevel,
    PrimaryRoute,
    RedFlagTrace,
    ScoreBreakdown,
    Timeframe,
    TriageInput,
    TriageLevel,
    UncertaintyReason,
    UncertaintyTrace,
)

# A domain dominates when it leads the other weighted domain by this margin
DOMINANCE_MARGIN = 2

# (level, dominance) -> (route, timeframe); total over all nine combinations
ROUTE_TABLE: dict[tuple[TriageLevel, DomainDominance], tuple[PrimaryRoute, Timeframe]] = {
    (TriageLevel.EMERGENCY, DomainDominance.MENTAL): (PrimaryRoute.CALL_EMERGENCY, Timeframe.NOW),
    (TriageLevel.EMERGENCY, DomainDominance.PELVIC): (PrimaryRoute.CALL_EMERGENCY, Timeframe.NOW),
    (TriageLevel.EMERGENCY, DomainDominance.MIXED): (PrimaryRoute.CALL_EMERGENCY, Timeframe.NOW),
    (TriageLevel.URGENT, DomainDominance.MENTAL): (PrimaryRoute.SAME_DAY_MENTAL_HEALTH, Timeframe.TODAY),
    (TriageLevel.URGENT, DomainDominance.PELVIC): (PrimaryRoute.SAME_DAY_OBGYN, Timeframe.TODAY),
    (TriageLevel.URGENT, DomainDominance.MIXED): (PrimaryRoute.SAME_DAY_MIXED, Timeframe.TODAY),
    (TriageLevel.ROUTINE, DomainDominance.MENTAL): (PrimaryRoute.ROUTINE_FOLLOWUP, Timeframe.WITHIN_7_DAYS),
    (TriageLevel.ROUTINE, DomainDominance.PELVIC): (PrimaryRoute.ROUTINE_FOLLOWUP, Timeframe.WITHIN_7_DAYS),
    (TriageLevel.ROUTINE, DomainDominance.MIXED): (PrimaryRoute.ROUTINE_FOLLOWUP, Timeframe.WITHIN_7_DAYS),
}

EMERGENCY_HEADER = "At least one postpartum emergency red flag was triggered."


def evaluate(triage_input: TriageInput, rules: RuleSet) -> DecisionResult:
    """Evaluate questionnaire answers against a ruleset.

    Any fired red flag short-circuits to EMERGENCY with a zero score and
    no uncertainty evaluation. Otherwise the weighted score picks a base
    level, and uncertainty signals can escalate it by exactly one step.

    Args:
        triage_input: Questionnaire answers
        rules: Ruleset to evaluate against

    Returns:
        Immutable DecisionResult
    """
    facts = triage_input.facts()
    red_flags = evaluate_red_flags(facts, rules)
    fired = [flag for flag in red_flags if flag.fired]
    confidence = build_confidence_trace(triage_input, rules)

    if fired:
        return DecisionResult(
            level=TriageLevel.EMERGENCY,
            is_emergency=True,
            emergency_number=rules.emergency_number,
            rules_version=rules.version,
            ruleset_hash=rules.content_hash,
            rationale=[EMERGENCY_HEADER] + [f"Triggered: {flag.label}" for flag in fired],
            red_flags=red_flags,
            score_breakdown=ScoreBreakdown(),
            confidence=confidence,
            uncertainty=UncertaintyTrace(),
            action_plan=build_action_plan(
                TriageLevel.EMERGENCY, rules.emergency_number, DomainDominance.MIXED
            ),
        )

    score = calculate_score(facts, rules)
    base_level = (
        TriageLevel.URGENT if score.total >= rules.urgent_threshold else TriageLevel.ROUTINE
    )
    reasons = evaluate_uncertainty(triage_input, confidence)
    final_level = escalate_one_level(base_level) if reasons else base_level

    rationale = [
        f"No postpartum emergency red flag triggered under rules {rules.version}.",
        f"Risk score total: {score.total}.",
        f"Base triage level: {base_level.value}.",
        f"Confidence: {confidence.bucket.value}.",
    ]
    if final_level != base_level:
        rationale.append(
            f"Escalated to {final_level.value} due to uncertainty conditions: "
            f"{', '.join(reason.value for reason in reasons)}."
        )

    return DecisionResult(
        level=final_level,
        is_emergency=final_level == TriageLevel.EMERGENCY,
        emergency_number=rules.emergency_number,
        rules_version=rules.version,
        ruleset_hash=rules.content_hash,
        rationale=rationale,
        red_flags=red_flags,
        score_breakdown=score,
        confidence=confidence,
        uncertainty=UncertaintyTrace(
            triggered=bool(reasons),
            reasons=reasons,
            escalated_from=base_level if reasons else None,
            escalated_to=final_level if reasons else None,
        ),
        action_plan=build_action_plan(
            final_level, rules.emergency_number, infer_dominant_domain(score)
        ),
    )


def evaluate_red_flags(facts: Mapping[str, Any], rules: RuleSet) -> list[RedFlagTrace]:
    """Evaluate every red flag independently, in ruleset order."""
    return [
        RedFlagTrace(id=rule.id, label=rule.label, fired=rule.when.evaluate(facts))
        for rule in rules.red_flags
    ]


def calculate_score(facts: Mapping[str, Any], rules: RuleSet) -> ScoreBreakdown:
    """Sum the weights of every answer that is yes, plus applicable bonuses.

    Args:
        facts: Answered fields (see ``TriageInput.facts``)
        rules: Ruleset providing weights and bonuses

    Returns:
        ScoreBreakdown whose total is the sum of the three domains
    """
    totals = dict.fromkeys(DOMAINS, 0)

    for domain in DOMAINS:
        for name, weight in rules.scoring.for_domain(domain).items():
            if facts.get(name) is True:
                totals[domain] += weight

    for bonus in rules.bonuses:
        if bonus.when.evaluate(facts):
            totals[bonus.domain] += bonus.weight

    return ScoreBreakdown(**totals, total=sum(totals.values()))


def is_critical_input_present(key: str, triage_input: TriageInput, rules: RuleSet) -> bool:
    """Whether a critical input was answered.

    An aggregate key counts as answered when any of its member fields is.
    """
    members = rules.aggregates.get(key)
    if members is not None:
        return any(triage_input.is_present(member) for member in members)
    return triage_input.is_present(key)


def build_confidence_trace(triage_input: TriageInput, rules: RuleSet) -> ConfidenceTrace:
    """Bucket the completeness and consistency of the answers.

    LOW if two or more critical inputs are missing, the inconsistency is
    MAJOR, or the user was unsure on safety questions; otherwise MEDIUM if
    one is missing or the inconsistency is MINOR; otherwise HIGH.
    """
    status = {
        key: is_critical_input_present(key, triage_input, rules)
        for key in rules.critical_inputs
    }
    missing = sum(1 for present in status.values() if not present)
    inconsistency = triage_input.inconsistency_level or InconsistencyLevel.NONE
    uncertain = triage_input.user_uncertain_on_safety_questions is True

    if missing >= 2 or inconsistency == InconsistencyLevel.MAJOR or uncertain:
        bucket = ConfidenceBucket.LOW
    elif missing == 1 or inconsistency == InconsistencyLevel.MINOR:
        bucket = ConfidenceBucket.MEDIUM
    else:
        bucket = ConfidenceBucket.HIGH

    return ConfidenceTrace(
        bucket=bucket,
        missing_critical_inputs=missing,
        critical_inputs_status=status,
        inconsistency_level=inconsistency,
        user_uncertain_on_safety_questions=uncertain,
    )


def evaluate_uncertainty(
    triage_input: TriageInput,
    confidence: ConfidenceTrace,
) -> list[UncertaintyReason]:
    """Collect uncertainty reasons in their fixed reporting order."""
    reasons = []
    if triage_input.cannot_answer_critical_questions is True:
        reasons.append(UncertaintyReason.CANNOT_ANSWER_CRITICAL_QUESTIONS)
    if confidence.missing_critical_inputs > 2:
        reasons.append(UncertaintyReason.MISSING_MORE_THAN_TWO_CRITICAL_INPUTS)
    if confidence.inconsistency_level == InconsistencyLevel.MAJOR:
        reasons.append(UncertaintyReason.MAJOR_INCONSISTENCY)
    if confidence.user_uncertain_on_safety_questions:
        reasons.append(UncertaintyReason.USER_UNCERTAIN_ON_SAFETY_QUESTIONS)
    if confidence.bucket == ConfidenceBucket.LOW:
        reasons.append(UncertaintyReason.LOW_CONFIDENCE)
    return reasons


def escalate_one_level(level: TriageLevel) -> TriageLevel:
    """Raise urgency by exactly one step, capped at EMERGENCY."""
    if level == TriageLevel.ROUTINE:
        return TriageLevel.URGENT
    return TriageLevel.EMERGENCY


def infer_dominant_domain(score: ScoreBreakdown) -> DomainDominance:
    """Which of the two symptom domains drives the route; near-ties are mixed."""
    if score.mental_health >= score.pelvic_floor_and_recovery + DOMINANCE_MARGIN:
        return DomainDominance.MENTAL
    if score.pelvic_floor_and_recovery >= score.mental_health + DOMINANCE_MARGIN:
        return DomainDominance.PELVIC
    return DomainDominance.MIXED


def build_action_plan(
    level: TriageLevel,
    emergency_number: str,
    dominance: DomainDominance,
) -> ActionPlan:
    """Select the fixed route template for a level and domain dominance."""
    route, timeframe = ROUTE_TABLE[(level, dominance)]
    return ActionPlan(
        level=level,
        primary_route=route,
        timeframe=timeframe,
        **render_route_copy(route, emergency_number),
    )
