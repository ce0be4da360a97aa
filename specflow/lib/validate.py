"""
Schema validation for specflow.

JSON Schema validation at the two data boundaries: tool arguments coming in
from the harness, and state files read back from disk.
"""

from typing import Any

import jsonschema

from .errors import SpecflowError, ToolValidationError


class SchemaError(SpecflowError):
    """Data did not match a named schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


_record = {"type": "object"}
_str_or_null = {"type": ["string", "null"]}

# Persisted file schemas. Open-ended (additionalProperties allowed) so newer
# fields survive a round trip through an older reader.
STATE_SCHEMAS: dict[str, dict] = {
    "state": {
        "type": "object",
        "required": ["currentPhase", "phaseHistory", "laneHistory"],
        "properties": {
            "projectId": _str_or_null,
            "projectName": _str_or_null,
            "currentPhase": {"type": "string"},
            "currentLane": _str_or_null,
            "phaseHistory": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["from", "to", "timestamp", "context"],
                    "properties": {
                        "from": {"type": "string"},
                        "to": {"type": "string"},
                        "timestamp": {"type": "string"},
                        "context": _record,
                    },
                },
            },
            "laneHistory": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["lane", "rationale", "confidence", "timestamp", "phase"],
                    "properties": {
                        "lane": {"type": "string"},
                        "rationale": {"type": "string"},
                        "confidence": {"type": "number"},
                        "userMessage": {"type": "string"},
                        "timestamp": {"type": "string"},
                        "phase": {"type": "string"},
                        "level": {"type": ["integer", "string"]},
                        "levelScore": {"type": "number"},
                        "levelRationale": {"type": "string"},
                    },
                },
            },
            "requirements": _record,
            "decisions": _record,
            "userPreferences": _record,
            "nextSteps": {"type": "string"},
            "lastAgent": _str_or_null,
            "createdAt": _str_or_null,
            "updatedAt": _str_or_null,
            "integrations": _record,
        },
    },
    "conversation": {
        "type": "array",
        "items": {
            "type": "object",
            "required": ["role", "content", "timestamp", "phase"],
            "properties": {
                "role": {"type": "string"},
                "content": {"type": "string"},
                "timestamp": {"type": "string"},
                "phase": {"type": "string"},
            },
        },
    },
    "deliverables": {
        "type": "object",
        "additionalProperties": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["timestamp"],
                "properties": {"timestamp": {"type": "string"}},
            },
        },
    },
    "reviews": {
        "type": "array",
        "items": {
            "type": "object",
            "required": ["checkpoint", "timestamp"],
            "properties": {
                "checkpoint": {"type": "string"},
                "timestamp": {"type": "string"},
            },
        },
    },
    "stories": {
        "type": "object",
        "required": ["records"],
        "properties": {
            "records": {"type": "object", "additionalProperties": _record},
            "latestId": _str_or_null,
        },
    },
}


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against a named state schema.

    Raises:
        SchemaError: If validation fails or the schema is unknown
    """
    schema = STATE_SCHEMAS.get(schema_name)
    if schema is None:
        raise SchemaError(schema_name, "Unknown schema")

    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise SchemaError(schema_name, e.message, path) from None


def is_valid(data: Any, schema_name: str) -> bool:
    try:
        validate(data, schema_name)
    except SchemaError:
        return False
    return True


def validate_tool_args(tool: str, args: Any, schema: dict) -> None:
    """
    Validate tool arguments against the tool's declared input schema.

    Raises:
        ToolValidationError: naming the offending field
    """
    try:
        jsonschema.validate(instance=args, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else None
        raise ToolValidationError(tool, e.message, path) from None
