"""Structured input and output validation.

Schemas are either pydantic model classes or JSON Schema dicts. Model
classes validate into instances; JSON Schema validates into plain dicts.
"""

import json
import re
from typing import Any

from jsonschema import Draft7Validator
from pydantic import BaseModel, ValidationError

Schema = type[BaseModel] | dict[str, Any]

_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL)


class SchemaMismatch(ValueError):
    """A value does not conform to its schema."""


def json_schema(schema: Schema) -> dict[str, Any]:
    if isinstance(schema, dict):
        return schema
    return schema.model_json_schema()


def schema_instructions(schema: Schema) -> str:
    """System-prompt section asking the model for schema-conforming JSON."""
    rendered = json.dumps(json_schema(schema), indent=2)
    return (
        "Respond only with a JSON object that conforms to this JSON Schema. "
        "Do not wrap it in prose.\n"
        f"<output_schema>\n{rendered}\n</output_schema>"
    )


def _errors(instance: Any, schema: dict[str, Any]) -> list[str]:
    validator = Draft7Validator(schema)
    return [
        f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
        for err in validator.iter_errors(instance)
    ]


def _load_json(text: str) -> Any:
    text = text.strip()
    match = _FENCE.match(text)
    if match:
        text = match.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaMismatch(f"Not valid JSON: {e}") from e


def validate_payload(value: Any, schema: Schema) -> Any:
    """Validate a value (object, mapping or JSON text) against a schema.

    Returns:
        A model instance for model schemas, the decoded value otherwise

    Raises:
        SchemaMismatch: With every violation in the message
    """
    if isinstance(schema, dict):
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        elif isinstance(value, str):
            value = _load_json(value)
        errors = _errors(value, schema)
        if errors:
            raise SchemaMismatch("; ".join(errors))
        return value

    if isinstance(value, schema):
        return value
    try:
        if isinstance(value, str):
            return schema.model_validate(_load_json(value))
        if isinstance(value, BaseModel):
            value = value.model_dump()
        return schema.model_validate(value)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise SchemaMismatch("; ".join(problems)) from e
