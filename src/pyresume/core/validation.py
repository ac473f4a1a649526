"""Schema validation for flow input, flow output, and interrupt resume input.

The engine treats validation as a black box: `validate(value, schema)`
returns a list of human-readable error messages, empty when the value
conforms. JsonSchemaValidator is the default and understands JSON Schema
(draft 2020-12). Any object with a matching `validate` method can be
passed to FlowEngine instead.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError


@runtime_checkable
class Validator(Protocol):
    """Validation contract used by the engine."""

    def validate(self, value: Any, schema: dict[str, Any] | None) -> list[str]: ...


class JsonSchemaValidator:
    """Validate values against JSON Schema documents.

    Compiled validators are cached per schema (keyed by object identity,
    schemas are expected to be long-lived definitions).
    """

    def __init__(self):
        self._compiled: dict[int, tuple[dict[str, Any], Draft202012Validator]] = {}

    def _compile(self, schema: dict[str, Any]) -> Draft202012Validator:
        cached = self._compiled.get(id(schema))
        if cached is not None and cached[0] is schema:
            return cached[1]
        Draft202012Validator.check_schema(schema)
        validator = Draft202012Validator(schema)
        self._compiled[id(schema)] = (schema, validator)
        return validator

    def validate(self, value: Any, schema: dict[str, Any] | None) -> list[str]:
        if schema is None:
            return []
        try:
            validator = self._compile(schema)
        except SchemaError as e:
            return [f"invalid schema: {e.message}"]

        errors = sorted(validator.iter_errors(value), key=lambda e: [str(part) for part in e.path])
        messages = []
        for error in errors:
            location = "/".join(str(part) for part in error.path)
            messages.append(f"{location}: {error.message}" if location else error.message)
        return messages
