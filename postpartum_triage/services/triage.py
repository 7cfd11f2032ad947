"""Triage service orchestrating evaluation and case recording."""

import hashlib
import logging
from typing import Any
from uuid import uuid4

from postpartum_triage.rules.engine import evaluate
from postpartum_triage.rules.models import RuleSet
from postpartum_triage.schemas.case import CaseMeta, CaseRecord
from postpartum_triage.schemas.triage import AuditOptions, DecisionResult, TriageInput
from postpartum_triage.services.case_store import CaseStore
from postpartum_triage.services.change_ledger import canonical_json

logger = logging.getLogger(__name__)


def split_request(body: Any) -> tuple[Any, dict[str, Any]]:
    """Separate questionnaire answers from audit options in a request body.

    Accepts ``{"input": {...}, "audit": {...}}`` or the answers on their own.
    """
    if isinstance(body, dict) and isinstance(body.get("input"), dict):
        audit = body.get("audit")
        return body["input"], audit if isinstance(audit, dict) else {}
    return body, {}


def input_digest(triage_input: TriageInput) -> str:
    """SHA256 of the answered fields, for matching cases to inputs."""
    payload = canonical_json(triage_input.facts())
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TriageService:
    """Service for performing triage evaluations.

    Orchestrates:
    1. Decision engine evaluation against the active ruleset
    2. Case creation with provenance (source, run id, input digest)
    """

    def __init__(self, store: CaseStore, rules: RuleSet) -> None:
        """Initialize triage service.

        Args:
            store: Case store that records decisions
            rules: Active ruleset
        """
        self.store = store
        self.rules = rules

    def evaluate(self, triage_input: TriageInput) -> DecisionResult:
        """Evaluate answers without recording a case."""
        return evaluate(triage_input, self.rules)

    async def evaluate_and_record(
        self,
        triage_input: TriageInput,
        options: AuditOptions | None = None,
    ) -> tuple[CaseRecord, DecisionResult]:
        """Evaluate answers and record the decision as a new case.

        Args:
            triage_input: Questionnaire answers
            options: Provenance options; the input itself is only stored
                when ``include_input`` is set

        Returns:
            Tuple of (created CaseRecord, DecisionResult)
        """
        options = options or AuditOptions()
        decision = self.evaluate(triage_input)

        meta = CaseMeta(
            source=options.source,
            run_id=options.run_id or str(uuid4()),
            input_digest_sha256=input_digest(triage_input),
            input_snapshot=triage_input.facts() if options.include_input else None,
        )
        record = await self.store.create_case(decision, meta)

        logger.info(
            f"Triage evaluated: case={record.case_id} level={decision.level.value} "
            f"route={decision.action_plan.primary_route.value} "
            f"rules={self.rules.version}",
            extra={"case_id": record.case_id, "action": "TRIAGE_EVALUATED"},
        )
        return record, decision
