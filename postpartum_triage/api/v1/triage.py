"""Triage evaluation endpoints."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, status
from pydantic import ValidationError

from postpartum_triage.api.deps import Rules, Triage
from postpartum_triage.schemas.triage import AuditOptions, EvaluationResponse, TriageInput
from postpartum_triage.services.patches import validation_errors
from postpartum_triage.services.triage import split_request

router = APIRouter()


@router.get(
    "/rules",
    summary="Active ruleset",
    description="Version, content hash and emergency number of the active ruleset",
)
async def get_rules(rules: Rules) -> dict[str, Any]:
    """Describe the ruleset the engine evaluates against."""
    return rules.info()


@router.post(
    "/evaluate",
    response_model=EvaluationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Evaluate questionnaire answers",
    description=(
        "Evaluates the answers against the active ruleset and records the "
        "decision as a new case. Accepts {input, audit} or the answers alone."
    ),
)
async def evaluate_answers(
    service: Triage,
    body: dict[str, Any] = Body(...),
) -> EvaluationResponse:
    """Evaluate answers and record the resulting case.

    Raises:
        HTTPException: 422 if the answers or audit options are invalid
    """
    raw_input, raw_audit = split_request(body)

    try:
        triage_input = TriageInput.model_validate(raw_input)
        options = AuditOptions.model_validate(raw_audit)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Invalid triage input", "errors": validation_errors(e)},
        ) from e

    record, decision = await service.evaluate_and_record(triage_input, options)
    return EvaluationResponse(case_id=record.case_id, result=decision)
