"""Structured output: schema normalization, response_format payloads and validation."""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass
from typing import Any, Mapping

import jsonschema

from agent_step.errors import StructuredOutputError

_SCHEMA_KEYS = frozenset({"type", "properties", "items", "anyOf", "oneOf", "allOf", "$ref", "enum"})
_SHORTHAND_TYPES = frozenset({"string", "number", "integer", "boolean", "array", "object"})

DEFAULT_OUTPUT_NAME = "step_output"


def strip_fences(content: str) -> str:
    """Strip markdown code fences from model output before JSON parsing."""
    content = content.strip()
    content = re.sub(r"^```(?:json|JSON)?\s*\n?", "", content)
    content = re.sub(r"\n?\s*```\s*$", "", content)
    return content.strip()


def _is_json_schema(schema: Mapping[str, Any]) -> bool:
    return any(key in schema for key in _SCHEMA_KEYS)


def _field_to_schema(value: Any) -> dict[str, Any]:
    """Shorthand field definition → JSON schema fragment."""
    if isinstance(value, str):
        return {"type": value if value in _SHORTHAND_TYPES else "string"}
    if isinstance(value, Mapping):
        if _is_json_schema(value):
            return dict(value)
        return {
            "type": "object",
            "properties": {str(k): _field_to_schema(v) for k, v in value.items()},
        }
    return {"type": "string"}


def _strict(schema: dict[str, Any]) -> dict[str, Any]:
    """Close every object and require all of its properties, recursively.

    Map-shaped objects, whose ``additionalProperties`` is itself a schema, stay
    open; only their value schema is tightened.
    """
    extra = schema.get("additionalProperties")
    if isinstance(extra, dict):
        _strict(extra)
    elif schema.get("type") == "object" or "properties" in schema:
        schema.setdefault("type", "object")
        props = schema.setdefault("properties", {})
        schema["additionalProperties"] = False
        schema["required"] = list(props.keys())
        for prop in props.values():
            if isinstance(prop, dict):
                _strict(prop)
    items = schema.get("items")
    if isinstance(items, dict):
        _strict(items)
    for key in ("anyOf", "oneOf", "allOf"):
        for sub in schema.get(key, []) or []:
            if isinstance(sub, dict):
                _strict(sub)
    for defn in (schema.get("$defs") or {}).values():
        if isinstance(defn, dict):
            _strict(defn)
    return schema


def normalize_schema_for_structured_output(schema: Mapping[str, Any]) -> dict[str, Any]:
    """Canonical strict JSON schema for the backend's output constraint.

    Accepts a JSON schema, or a shorthand field map such as
    ``{"title": "string", "tags": {"type": "array", "items": {"type": "string"}}}``.
    The input is never mutated.
    """
    if _is_json_schema(schema):
        canonical = copy.deepcopy(dict(schema))
    else:
        canonical = {
            "type": "object",
            "properties": {str(k): _field_to_schema(copy.deepcopy(v)) for k, v in schema.items()},
        }
    if canonical.get("type") != "object" and "properties" not in canonical:
        # Providers only accept an object at the root.
        canonical = {"type": "object", "properties": {"value": canonical}}
    return _strict(canonical)


@dataclass(frozen=True)
class OutputConstraint:
    """A normalized schema the final answer must satisfy."""

    schema: dict[str, Any]
    name: str = DEFAULT_OUTPUT_NAME

    def response_format(self) -> dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": self.name,
                "schema": self.schema,
                "strict": True,
            },
        }

    def parse(self, text: str) -> dict[str, Any]:
        """Parse and validate the final answer. Raises StructuredOutputError."""
        cleaned = strip_fences(text or "")
        if not cleaned:
            raise StructuredOutputError("No structured output: model returned empty text")
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise StructuredOutputError(
                f"Structured output is not valid JSON: {exc}", original=exc,
            ) from exc
        try:
            jsonschema.validate(payload, self.schema)
        except jsonschema.ValidationError as exc:
            raise StructuredOutputError(
                f"Structured output does not match schema: {exc.message}", original=exc,
            ) from exc
        if not isinstance(payload, dict):
            raise StructuredOutputError("Structured output must be a JSON object")
        return payload


def build_output_constraint(
    use_structured_output: bool,
    output_schema: Mapping[str, Any] | None,
) -> OutputConstraint | None:
    """Constraint only when the flag is set and a non-empty schema is supplied."""
    if not use_structured_output or not output_schema:
        return None
    return OutputConstraint(schema=normalize_schema_for_structured_output(output_schema))
