"""Validation and merging of outcome and workflow patches.

Validation happens before the store opens a transaction, so a rejected
patch never touches the database.
"""

from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from postpartum_triage.schemas.case import (
    Outcome,
    OutcomePatch,
    Workflow,
    WorkflowPatch,
)

EDITOR_MAX_LENGTH = 255

PatchT = TypeVar("PatchT", OutcomePatch, WorkflowPatch)


class PatchValidationError(Exception):
    """Raised when a patch or its editor fails validation."""

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []


def validation_errors(exc: ValidationError) -> list[dict[str, str]]:
    """Flatten a pydantic ValidationError into field/message pairs."""
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "body",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def _validate(model: type[PatchT], data: Any) -> PatchT:
    if isinstance(data, model):
        patch = data
    else:
        if not isinstance(data, dict):
            raise PatchValidationError("Patch must be a JSON object")
        try:
            patch = model.model_validate(data)
        except ValidationError as e:
            raise PatchValidationError("Invalid patch", validation_errors(e)) from e

    if not patch.model_fields_set:
        raise PatchValidationError("Patch contains no recognised fields")
    return patch


def parse_outcome_patch(data: Any) -> OutcomePatch:
    """Validate a raw outcome patch.

    Args:
        data: Request body (or an already built OutcomePatch)

    Returns:
        Validated OutcomePatch with at least one field present

    Raises:
        PatchValidationError: If the patch is empty or any value is invalid
    """
    return _validate(OutcomePatch, data)


def parse_workflow_patch(data: Any) -> WorkflowPatch:
    """Validate a raw workflow patch.

    Raises:
        PatchValidationError: If the patch is empty or any value is invalid
    """
    return _validate(WorkflowPatch, data)


def validate_editor(editor: Any) -> str:
    """Normalize the acting editor identity.

    Raises:
        PatchValidationError: If the editor is missing, blank or too long
    """
    if not isinstance(editor, str) or not editor.strip():
        raise PatchValidationError("Editor identity is required")
    editor = editor.strip()
    if len(editor) > EDITOR_MAX_LENGTH:
        raise PatchValidationError("Editor identity is too long")
    return editor


def _merge(
    current: BaseModel | None,
    patch: BaseModel,
    editor: str,
    now: datetime,
) -> dict[str, Any]:
    values = current.model_dump() if current is not None else {}
    for name in patch.model_fields_set:
        values[name] = getattr(patch, name)
    values["updated_at"] = now
    values["updated_by"] = editor
    return values


def apply_outcome_patch(
    current: Outcome | None,
    patch: OutcomePatch,
    editor: str,
    now: datetime,
) -> Outcome:
    """Merge a patch into an outcome (creating it on first use)."""
    return Outcome(**_merge(current, patch, editor, now))


def apply_workflow_patch(
    current: Workflow,
    patch: WorkflowPatch,
    editor: str,
    now: datetime,
) -> Workflow:
    """Merge a patch into a workflow."""
    return Workflow(**_merge(current, patch, editor, now))
