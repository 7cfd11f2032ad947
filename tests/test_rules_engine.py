"""Tests for the triage decision engine."""

import copy

import pytest
import yaml

from postpartum_triage.rules.engine import (
    EMERGENCY_HEADER,
    ROUTE_TABLE,
    build_confidence_trace,
    calculate_score,
    escalate_one_level,
    evaluate,
    infer_dominant_domain,
)
from postpartum_triage.rules.loader import RULESETS_DIR, parse_ruleset
from postpartum_triage.schemas.triage import (
    ConfidenceBucket,
    DomainDominance,
    InconsistencyLevel,
    PrimaryRoute,
    ScoreBreakdown,
    Timeframe,
    TriageInput,
    TriageLevel,
    UncertaintyReason,
)


class TestRedFlags:
    """Red flags short-circuit to emergency."""

    def test_suicidal_ideation_with_plan_is_emergency(self, rules, make_input) -> None:
        """Test the canonical emergency example."""
        result = evaluate(
            make_input(suicidal_ideation_now=True, suicidal_intent_or_plan=True), rules
        )

        assert result.level == TriageLevel.EMERGENCY
        assert result.is_emergency is True
        assert result.action_plan.primary_route == PrimaryRoute.CALL_EMERGENCY
        assert result.action_plan.timeframe == Timeframe.NOW
        assert result.fired_red_flag_ids == ["PP_RF001"]
        assert result.rationale[0] == EMERGENCY_HEADER
        assert "Triggered: Suicidal thoughts with intent or plan" in result.rationale

    def test_ideation_without_plan_is_not_a_red_flag(self, rules, make_input) -> None:
        """Test that RF001 needs both ideation and intent or plan."""
        result = evaluate(make_input(suicidal_ideation_now=True), rules)

        assert result.fired_red_flag_ids == []
        assert result.level != TriageLevel.EMERGENCY

    def test_every_red_flag_is_reported(self, rules, make_input) -> None:
        """Test that red flags are fully enumerated even when some fire."""
        result = evaluate(
            make_input(
                thoughts_of_harming_baby=True,
                heavy_bleeding_emergency_pattern=True,
            ),
            rules,
        )

        assert [flag.id for flag in result.red_flags] == [r.id for r in rules.red_flags]
        assert result.fired_red_flag_ids == ["PP_RF002", "PP_RF004"]

    @pytest.mark.parametrize(
        "answer",
        ["syncope_or_collapse", "chest_pain_or_severe_breathlessness"],
    )
    def test_collapse_or_chest_pain(self, rules, make_input, answer) -> None:
        """Test that either half of RF006 fires it."""
        result = evaluate(make_input(**{answer: True}), rules)

        assert result.fired_red_flag_ids == ["PP_RF006"]

    def test_emergency_has_zero_score_and_no_uncertainty(self, rules, make_input) -> None:
        """Test that scoring and uncertainty are skipped on emergency."""
        result = evaluate(
            make_input(
                psychosis_warning_signs=True,
                depressed_mood_most_days=True,
                anxiety_or_panic_most_days=True,
                cannot_answer_critical_questions=True,
            ),
            rules,
        )

        assert result.level == TriageLevel.EMERGENCY
        assert result.score_breakdown == ScoreBreakdown()
        assert result.uncertainty.triggered is False
        assert result.uncertainty.reasons == []

    def test_red_flag_dominates_incomplete_answers(self, rules) -> None:
        """Test that a red flag wins even when almost nothing was answered."""
        result = evaluate(TriageInput(high_fever_and_severe_pain=True), rules)

        assert result.level == TriageLevel.EMERGENCY
        assert result.confidence.bucket == ConfidenceBucket.LOW

    def test_unanswered_red_flag_question_does_not_fire(self, rules) -> None:
        """Test that absence is never read as a positive answer."""
        result = evaluate(TriageInput(), rules)

        assert result.fired_red_flag_ids == []


class TestScoring:
    """Weighted scoring and threshold."""

    def test_threshold_is_inclusive(self, rules, make_input) -> None:
        """Test that a total equal to the threshold is urgent."""
        result = evaluate(
            make_input(
                depressed_mood_most_days=True,
                anxiety_or_panic_most_days=True,
                bonding_difficulty=True,
            ),
            rules,
        )

        assert result.score_breakdown.total == 6
        assert result.level == TriageLevel.URGENT
        assert result.action_plan.primary_route == PrimaryRoute.SAME_DAY_MENTAL_HEALTH
        assert result.action_plan.timeframe == Timeframe.TODAY

    def test_below_threshold_is_routine(self, rules, make_input) -> None:
        """Test that a total one below the threshold is routine."""
        result = evaluate(
            make_input(
                depressed_mood_most_days=True,
                anxiety_or_panic_most_days=True,
                sleep_severely_disrupted_not_by_baby=True,
            ),
            rules,
        )

        assert result.score_breakdown.total == 5
        assert result.level == TriageLevel.ROUTINE
        assert result.action_plan.primary_route == PrimaryRoute.ROUTINE_FOLLOWUP
        assert result.action_plan.timeframe == Timeframe.WITHIN_7_DAYS
        assert result.uncertainty.triggered is False

    def test_total_is_sum_of_domains(self, rules, make_input) -> None:
        """Test score conservation across domains."""
        result = evaluate(
            make_input(
                anhedonia=True,
                prolapse_bulge_symptoms=True,
                urinary_incontinence_frequent=True,
                oasis_history=True,
                poor_social_support=True,
            ),
            rules,
        )
        score = result.score_breakdown

        assert score.mental_health == 2
        assert score.pelvic_floor_and_recovery == 2
        assert score.history_and_context == 2
        assert score.total == 6

    def test_late_onset_bonus(self, rules, make_input) -> None:
        """Test the compound bonus after six weeks postpartum."""
        answers = dict(
            depressed_mood_most_days=True,
            anxiety_or_panic_most_days=True,
            sleep_severely_disrupted_not_by_baby=True,
        )

        early = evaluate(make_input(weeks_postpartum=6, **answers), rules)
        late = evaluate(make_input(weeks_postpartum=8, **answers), rules)

        assert early.score_breakdown.mental_health == 5
        assert late.score_breakdown.mental_health == 6
        assert late.level == TriageLevel.URGENT

    def test_bonus_needs_a_mood_symptom(self, rules, make_input) -> None:
        """Test that the bonus does not apply on timing alone."""
        facts = make_input(weeks_postpartum=10).facts()

        assert calculate_score(facts, rules).total == 0

    def test_false_answers_score_nothing(self, rules, make_input) -> None:
        """Test that only yes answers carry weight."""
        result = evaluate(make_input(anhedonia=False, fecal_incontinence_any=False), rules)

        assert result.score_breakdown.total == 0


class TestRouting:
    """Domain dominance selects the same-day route."""

    def test_pelvic_dominant(self, rules, make_input) -> None:
        """Test routing to same-day OB-GYN."""
        result = evaluate(
            make_input(fecal_incontinence_any=True, urinary_retention=True), rules
        )

        assert result.level == TriageLevel.URGENT
        assert result.action_plan.primary_route == PrimaryRoute.SAME_DAY_OBGYN

    def test_mixed_when_domains_are_close(self, rules, make_input) -> None:
        """Test routing to mixed care when neither domain leads by two."""
        result = evaluate(
            make_input(
                depressed_mood_most_days=True,
                anxiety_or_panic_most_days=True,
                fecal_incontinence_any=True,
            ),
            rules,
        )

        assert result.score_breakdown.total == 7
        assert result.action_plan.primary_route == PrimaryRoute.SAME_DAY_MIXED

    def test_history_only_urgent_is_mixed(self, rules, make_input) -> None:
        """Test that history alone can reach urgent and routes as mixed."""
        result = evaluate(
            make_input(
                prior_depression_or_anxiety=True,
                prior_postpartum_depression=True,
                birth_trauma_or_emergency_delivery=True,
                oasis_history=True,
                poor_social_support=True,
            ),
            rules,
        )

        assert result.level == TriageLevel.URGENT
        assert result.action_plan.primary_route == PrimaryRoute.SAME_DAY_MIXED

    @pytest.mark.parametrize(
        ("mental", "pelvic", "expected"),
        [
            (4, 2, DomainDominance.MENTAL),
            (3, 2, DomainDominance.MIXED),
            (2, 2, DomainDominance.MIXED),
            (1, 3, DomainDominance.PELVIC),
            (0, 0, DomainDominance.MIXED),
        ],
    )
    def test_infer_dominant_domain(self, mental, pelvic, expected) -> None:
        """Test the dominance margin."""
        score = ScoreBreakdown(
            mental_health=mental,
            pelvic_floor_and_recovery=pelvic,
            total=mental + pelvic,
        )

        assert infer_dominant_domain(score) == expected

    def test_route_table_is_total(self) -> None:
        """Test that every level and dominance has a route."""
        assert len(ROUTE_TABLE) == len(TriageLevel) * len(DomainDominance)

    def test_emergency_number_is_substituted(self, rules, make_input) -> None:
        """Test that action plan copy carries the ruleset's number."""
        result = evaluate(make_input(thoughts_of_harming_baby=True), rules)
        plan = result.action_plan
        text = " ".join(
            [plan.title, plan.summary, *plan.recommended_contacts, *plan.instructions]
            + plan.safety_net
        )

        assert "112" in text
        assert "{{" not in text
        assert result.emergency_number == "112"

    def test_other_emergency_number(self, make_input) -> None:
        """Test a ruleset configured for another market."""
        content = (RULESETS_DIR / "postpartum-de-v1.0.0.yaml").read_text(encoding="utf-8")
        document = copy.deepcopy(yaml.safe_load(content))
        document["metadata"]["emergency_number"] = "999"
        other = parse_ruleset(document)

        result = evaluate(make_input(thoughts_of_harming_baby=True), other)

        assert result.emergency_number == "999"
        assert "999" in result.action_plan.recommended_contacts
        assert "112" not in result.action_plan.summary


class TestConfidence:
    """Confidence buckets from critical inputs and consistency."""

    def test_complete_answers_are_high(self, rules, make_input) -> None:
        """Test that answering every critical input gives HIGH."""
        confidence = build_confidence_trace(make_input(), rules)

        assert confidence.bucket == ConfidenceBucket.HIGH
        assert confidence.missing_critical_inputs == 0
        assert all(confidence.critical_inputs_status.values())

    def test_one_missing_is_medium(self, rules, make_input) -> None:
        """Test that one missing critical input gives MEDIUM without escalation."""
        result = evaluate(make_input(weeks_postpartum=None), rules)

        assert result.confidence.bucket == ConfidenceBucket.MEDIUM
        assert result.confidence.missing_critical_inputs == 1
        assert result.confidence.critical_inputs_status["weeks_postpartum"] is False
        assert result.level == TriageLevel.ROUTINE

    def test_aggregate_counts_any_member(self, rules, make_input) -> None:
        """Test that either functional impairment answer satisfies the aggregate."""
        triage_input = make_input(
            functional_impairment_mental=None,
            functional_impairment_pelvic=False,
        )

        confidence = build_confidence_trace(triage_input, rules)

        assert confidence.critical_inputs_status["functional_impairment_overall"] is True
        assert confidence.bucket == ConfidenceBucket.HIGH

    def test_minor_inconsistency_is_medium(self, rules, make_input) -> None:
        """Test that a minor inconsistency lowers confidence without escalation."""
        result = evaluate(make_input(inconsistency_level=InconsistencyLevel.MINOR), rules)

        assert result.confidence.bucket == ConfidenceBucket.MEDIUM
        assert result.uncertainty.triggered is False


class TestUncertaintyEscalation:
    """Uncertainty raises the level by exactly one step."""

    def test_two_missing_escalates_routine(self, rules, make_input) -> None:
        """Test that LOW confidence escalates routine to urgent."""
        result = evaluate(
            make_input(weeks_postpartum=None, depressed_mood_most_days=None), rules
        )

        assert result.confidence.bucket == ConfidenceBucket.LOW
        assert result.uncertainty.reasons == [UncertaintyReason.LOW_CONFIDENCE]
        assert result.uncertainty.escalated_from == TriageLevel.ROUTINE
        assert result.uncertainty.escalated_to == TriageLevel.URGENT
        assert result.level == TriageLevel.URGENT
        assert result.base_level == TriageLevel.ROUTINE

    def test_empty_answers(self, rules) -> None:
        """Test that an empty questionnaire is escalated, never dismissed."""
        result = evaluate(TriageInput(), rules)

        assert result.confidence.missing_critical_inputs == len(rules.critical_inputs)
        assert result.uncertainty.reasons == [
            UncertaintyReason.MISSING_MORE_THAN_TWO_CRITICAL_INPUTS,
            UncertaintyReason.LOW_CONFIDENCE,
        ]
        assert result.level == TriageLevel.URGENT

    def test_major_inconsistency(self, rules, make_input) -> None:
        """Test reasons for a major inconsistency."""
        result = evaluate(make_input(inconsistency_level=InconsistencyLevel.MAJOR), rules)

        assert result.uncertainty.reasons == [
            UncertaintyReason.MAJOR_INCONSISTENCY,
            UncertaintyReason.LOW_CONFIDENCE,
        ]
        assert result.level == TriageLevel.URGENT

    def test_uncertain_on_safety_questions(self, rules, make_input) -> None:
        """Test reasons when the user was unsure on safety questions."""
        result = evaluate(make_input(user_uncertain_on_safety_questions=True), rules)

        assert result.uncertainty.reasons == [
            UncertaintyReason.USER_UNCERTAIN_ON_SAFETY_QUESTIONS,
            UncertaintyReason.LOW_CONFIDENCE,
        ]

    def test_urgent_escalates_to_emergency(self, rules, make_input) -> None:
        """Test one-step escalation from urgent without any red flag."""
        result = evaluate(
            make_input(
                depressed_mood_most_days=True,
                anxiety_or_panic_most_days=True,
                bonding_difficulty=True,
                cannot_answer_critical_questions=True,
            ),
            rules,
        )

        assert result.confidence.bucket == ConfidenceBucket.HIGH
        assert result.uncertainty.reasons == [
            UncertaintyReason.CANNOT_ANSWER_CRITICAL_QUESTIONS
        ]
        assert result.fired_red_flag_ids == []
        assert result.level == TriageLevel.EMERGENCY
        assert result.is_emergency is True
        assert result.action_plan.primary_route == PrimaryRoute.CALL_EMERGENCY
        assert result.base_level == TriageLevel.URGENT
        assert result.rationale[-1] == (
            "Escalated to EMERGENCY_NOW due to uncertainty conditions: "
            "cannotAnswerCriticalQuestions."
        )

    def test_escalate_one_level(self) -> None:
        """Test monotonic escalation capped at emergency."""
        assert escalate_one_level(TriageLevel.ROUTINE) == TriageLevel.URGENT
        assert escalate_one_level(TriageLevel.URGENT) == TriageLevel.EMERGENCY
        assert escalate_one_level(TriageLevel.EMERGENCY) == TriageLevel.EMERGENCY


class TestDecisionRecord:
    """Provenance and determinism of the decision."""

    def test_rationale_for_scored_decision(self, rules, make_input) -> None:
        """Test the rationale lines of a non-emergency decision."""
        result = evaluate(make_input(anhedonia=True), rules)

        assert result.rationale == [
            "No postpartum emergency red flag triggered under rules 1.0.0.",
            "Risk score total: 2.",
            "Base triage level: ROUTINE_FOLLOW_UP.",
            "Confidence: HIGH.",
        ]

    def test_ruleset_provenance(self, rules, make_input) -> None:
        """Test that the decision records the ruleset version and hash."""
        result = evaluate(make_input(), rules)

        assert result.rules_version == "1.0.0"
        assert result.ruleset_hash == rules.content_hash

    def test_deterministic(self, rules, make_input) -> None:
        """Test that the same input yields the same decision."""
        triage_input = make_input(anhedonia=True, oasis_history=True)

        assert evaluate(triage_input, rules) == evaluate(triage_input, rules)

    def test_camel_case_input(self, rules) -> None:
        """Test that camelCase request keys are accepted."""
        triage_input = TriageInput.model_validate(
            {"suicidalIdeationNow": True, "suicidalIntentOrPlan": True}
        )

        assert evaluate(triage_input, rules).level == TriageLevel.EMERGENCY
