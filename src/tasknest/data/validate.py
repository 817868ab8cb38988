from pathlib import Path
from typing import Any, Dict, Union

from jsonschema import Draft7Validator, SchemaError, ValidationError, validate
from pydantic import ValidationError as ModelValidationError

from tasknest.logs import get_logger
from tasknest.models import PlanEntry, PlanFile
from tasknest.recovery import ErrorCode, TaskError
from .io import load_json_file

log = get_logger("data.validate")

_TASK_ID = {"type": "string", "pattern": r"^[1-9]\d*(\.[1-9]\d*)*$"}
_NULLABLE_TEXT = {"type": ["string", "null"]}

PLAN_ENTRY_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "TaskNest triage plan entry",
    "type": "object",
    "properties": {
        "id": _TASK_ID,
        "title": {"type": "string", "minLength": 1},
        "description": _NULLABLE_TEXT,
        "status": {"enum": ["todo", "in-progress", "done"]},
        "readiness": {"enum": ["draft", "ready", "blocked"]},
        "tags": {"type": "array", "items": {"type": "string"}},
        "parentId": _TASK_ID,
        "parent_id": _TASK_ID,
        "childOf": _TASK_ID,
        "child_of": _TASK_ID,
        "after": _TASK_ID,
        "force": {"type": "boolean"},
        "metadata": {"type": "object"},
    },
    # Creates need a title; updates are addressed by id
    "anyOf": [
        {"required": ["id"]},
        {"required": ["title"]},
    ],
}

# Only the document shape is checked up front; entries are checked one by one
PLAN_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "TaskNest triage plan",
    "type": "object",
    "required": ["tasks"],
    "properties": {
        "tasks": {
            "type": "array",
            "items": {"type": "object"},
        },
    },
}

Draft7Validator.check_schema(PLAN_SCHEMA)
Draft7Validator.check_schema(PLAN_ENTRY_SCHEMA)


def _check(instance: Any, schema: Dict[str, Any], what: str):
    try:
        validate(instance=instance, schema=schema)
    except ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        log.error(f"{what} validation failed at {location}: {e.message}")
        raise TaskError(f"Invalid {what.lower()} at {location}: {e.message}", ErrorCode.VALIDATION) from e
    except SchemaError as e:
        log.critical(f"{what} schema itself is invalid: {e.message}")
        raise


def validate_plan(data: Any) -> PlanFile:
    """
    Check that a decoded plan document holds a list of entry objects.

    Entries are kept as given; ``validate_plan_entry`` checks each one so a
    bad entry can be reported without rejecting the rest of the plan.

    Raises:
        TaskError: VALIDATION when the document itself has the wrong shape
    """
    _check(data, PLAN_SCHEMA, "Plan")
    return PlanFile.model_validate(data)


def validate_plan_entry(raw: Any) -> PlanEntry:
    """
    Validate one plan entry and turn it into a PlanEntry.

    Raises:
        TaskError: VALIDATION when the entry does not match the entry schema
    """
    _check(raw, PLAN_ENTRY_SCHEMA, "Entry")
    try:
        return PlanEntry.model_validate(raw)
    except ModelValidationError as e:
        raise TaskError(f"Invalid entry: {e}", ErrorCode.VALIDATION) from e


def load_plan_file(file_path: Union[Path, str]) -> PlanFile:
    """
    Load and validate a JSON plan file.

    Raises:
        TaskError: NOT_FOUND if the file is missing, VALIDATION if it does not match the schema
        CorruptionError: the file is not valid JSON
    """
    file_path = Path(file_path)
    data = load_json_file(file_path)
    if data is None:
        raise TaskError(f"Plan file {file_path} not found", ErrorCode.NOT_FOUND)

    log.info(f"Validating plan file {file_path}")
    plan = validate_plan(data)
    log.debug(f"Plan {file_path} holds {len(plan.tasks)} entries")
    return plan


