"""Triage input and decision schemas."""

from enum import Enum
from typing import get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TriageLevel(str, Enum):
    """Urgency tier assigned by the decision engine.

    There is no "no care needed" tier: routine still means follow-up.
    """

    EMERGENCY = "EMERGENCY_NOW"
    URGENT = "URGENT_SAME_DAY"
    ROUTINE = "ROUTINE_FOLLOW_UP"


class ConfidenceBucket(str, Enum):
    """How far the engine trusts the completeness of the answers."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class InconsistencyLevel(str, Enum):
    """Inconsistency detected between answers by the questionnaire."""

    NONE = "NONE"
    MINOR = "MINOR"
    MAJOR = "MAJOR"


class UncertaintyReason(str, Enum):
    """Reason codes that trigger uncertainty escalation."""

    CANNOT_ANSWER_CRITICAL_QUESTIONS = "cannotAnswerCriticalQuestions"
    MISSING_MORE_THAN_TWO_CRITICAL_INPUTS = "missingMoreThanTwoCriticalInputs"
    MAJOR_INCONSISTENCY = "majorInconsistency"
    USER_UNCERTAIN_ON_SAFETY_QUESTIONS = "userUncertainOnSafetyQuestions"
    LOW_CONFIDENCE = "lowConfidence"


class DomainDominance(str, Enum):
    """Which weighted domain drives the urgent route."""

    MENTAL = "mental"
    PELVIC = "pelvic"
    MIXED = "mixed"


class PrimaryRoute(str, Enum):
    """Care routing destinations."""

    CALL_EMERGENCY = "CALL_EMERGENCY_112"
    SAME_DAY_MENTAL_HEALTH = "SAME_DAY_MENTAL_HEALTH_ASSESSMENT"
    SAME_DAY_OBGYN = "SAME_DAY_OBGYN_OR_HAUSARZT"
    SAME_DAY_MIXED = "SAME_DAY_MIXED_MENTAL_AND_OBGYN"
    ROUTINE_FOLLOWUP = "ROUTINE_POSTPARTUM_FOLLOWUP"


class Timeframe(str, Enum):
    """When the recommended contact should happen."""

    NOW = "NOW"
    TODAY = "TODAY"
    WITHIN_7_DAYS = "WITHIN_7_DAYS"


class TriageInput(BaseModel):
    """Postpartum screening questionnaire answers.

    Every field is optional and ``None`` means "not answered". Absence is
    meaningful: it lowers confidence and is never read as a negative answer.
    Accepts both snake_case and camelCase keys.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    weeks_postpartum: float | None = None

    # Red-flag questions
    suicidal_ideation_now: bool | None = None
    suicidal_intent_or_plan: bool | None = None
    thoughts_of_harming_baby: bool | None = None
    psychosis_warning_signs: bool | None = None
    heavy_bleeding_emergency_pattern: bool | None = None
    high_fever_and_severe_pain: bool | None = None
    syncope_or_collapse: bool | None = None
    chest_pain_or_severe_breathlessness: bool | None = None

    # Mental health
    depressed_mood_most_days: bool | None = None
    anxiety_or_panic_most_days: bool | None = None
    sleep_severely_disrupted_not_by_baby: bool | None = None
    bonding_difficulty: bool | None = None
    anhedonia: bool | None = None
    functional_impairment_mental: bool | None = None

    # Pelvic floor and physical recovery
    urinary_incontinence_frequent: bool | None = None
    fecal_incontinence_any: bool | None = None
    urinary_retention: bool | None = None
    severe_perineal_pain_persistent: bool | None = None
    perineal_wound_concerns: bool | None = None
    prolapse_bulge_symptoms: bool | None = None
    dyspareunia_persistent_severe: bool | None = None
    functional_impairment_pelvic: bool | None = None

    # History and context
    prior_depression_or_anxiety: bool | None = None
    prior_postpartum_depression: bool | None = None
    birth_trauma_or_emergency_delivery: bool | None = None
    oasis_history: bool | None = None
    poor_social_support: bool | None = None

    # Answer quality
    cannot_answer_critical_questions: bool | None = None
    user_uncertain_on_safety_questions: bool | None = None
    inconsistency_level: InconsistencyLevel | None = None

    def is_present(self, field_name: str) -> bool:
        """Return True if the question was answered."""
        return getattr(self, field_name, None) is not None

    def facts(self) -> dict:
        """Answered fields keyed by field name, for condition evaluation."""
        return self.model_dump(mode="json", exclude_none=True)


def boolean_input_fields() -> frozenset[str]:
    """Names of the yes/no questions that can carry score weights."""
    return frozenset(
        name
        for name, info in TriageInput.model_fields.items()
        if bool in get_args(info.annotation)
    )


class DecisionModel(BaseModel):
    """Base for immutable decision output."""

    model_config = ConfigDict(frozen=True)


class RedFlagTrace(DecisionModel):
    """Evaluation trace for a single red flag."""

    id: str
    label: str
    fired: bool


class ScoreBreakdown(DecisionModel):
    """Weighted score per domain; total is always the sum of the domains."""

    mental_health: int = Field(default=0, ge=0)
    pelvic_floor_and_recovery: int = Field(default=0, ge=0)
    history_and_context: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)


class ConfidenceTrace(DecisionModel):
    """Completeness and consistency of the answers."""

    bucket: ConfidenceBucket
    missing_critical_inputs: int = Field(ge=0)
    critical_inputs_status: dict[str, bool] = Field(default_factory=dict)
    inconsistency_level: InconsistencyLevel = InconsistencyLevel.NONE
    user_uncertain_on_safety_questions: bool = False


class UncertaintyTrace(DecisionModel):
    """Uncertainty reasons and any escalation they caused."""

    triggered: bool = False
    reasons: list[UncertaintyReason] = Field(default_factory=list)
    escalated_from: TriageLevel | None = None
    escalated_to: TriageLevel | None = None


class ActionPlan(DecisionModel):
    """Care routing recommendation for the final level."""

    level: TriageLevel
    primary_route: PrimaryRoute
    timeframe: Timeframe
    title: str
    summary: str
    recommended_contacts: list[str] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)
    safety_net: list[str] = Field(default_factory=list)


class DecisionResult(DecisionModel):
    """Complete, immutable output of one triage evaluation."""

    level: TriageLevel
    is_emergency: bool
    emergency_number: str
    rules_version: str
    ruleset_hash: str | None = None
    rationale: list[str] = Field(default_factory=list)
    red_flags: list[RedFlagTrace] = Field(default_factory=list)
    score_breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    confidence: ConfidenceTrace
    uncertainty: UncertaintyTrace = Field(default_factory=UncertaintyTrace)
    action_plan: ActionPlan

    @property
    def fired_red_flag_ids(self) -> list[str]:
        """IDs of the red flags that fired."""
        return [flag.id for flag in self.red_flags if flag.fired]

    @property
    def base_level(self) -> TriageLevel:
        """Level before any uncertainty escalation."""
        return self.uncertainty.escalated_from or self.level


class AuditOptions(BaseModel):
    """Provenance options supplied with an evaluation request."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    source: str = Field("api", min_length=1, max_length=100)
    run_id: str | None = Field(None, max_length=100)
    include_input: bool = False


class EvaluationResponse(BaseModel):
    """Decision together with the id of the case that records it."""

    case_id: str
    result: DecisionResult
