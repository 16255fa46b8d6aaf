"""Validate parsed stage payloads against a persona output schema.

Validation never fails: every problem is repaired with the field's documented
default (or a clamp to its declared range) and reported as a warning. Keys
not described by the schema pass through untouched.
"""

from __future__ import annotations

import math
from typing import Any

from .models import FieldSpec, OutputSchema


def _type_ok(value: Any, type_: str) -> bool:
    if type_ == "string":
        return isinstance(value, str)
    if type_ == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_ == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if type_ == "boolean":
        return isinstance(value, bool)
    if type_ == "array":
        return isinstance(value, list)
    if type_ == "object":
        return isinstance(value, dict)
    return True


def _coerce_number(value: Any, spec: FieldSpec) -> Any:
    # Models often quote numbers ("0.7"); accept those without a warning.
    if isinstance(value, str) and spec.type in ("number", "integer"):
        try:
            num = float(value.strip())
        except ValueError:
            return value
        if not math.isfinite(num):
            return value
        return int(num) if spec.type == "integer" and num.is_integer() else num
    if spec.type == "integer" and isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _validate_field(value: Any, spec: FieldSpec, path: str, warnings: list[str]) -> Any:
    value = _coerce_number(value, spec)

    if not _type_ok(value, spec.type):
        warnings.append(
            f"{path}: expected {spec.type}, got {type(value).__name__}; used default"
        )
        return spec.resolved_default()

    if spec.enum is not None:
        lowered = {e.lower(): e for e in spec.enum}
        match = lowered.get(str(value).strip().lower())
        if match is None:
            warnings.append(f"{path}: {value!r} not in {list(spec.enum)}; used default")
            return spec.resolved_default()
        value = match

    if spec.type in ("number", "integer"):
        # NaN compares false against both bounds and would slip past the clamp.
        if not math.isfinite(value):
            warnings.append(f"{path}: {value} is not a finite number; used default")
            return spec.resolved_default()
        clamped = value
        if spec.minimum is not None and clamped < spec.minimum:
            clamped = spec.minimum
        if spec.maximum is not None and clamped > spec.maximum:
            clamped = spec.maximum
        if clamped != value:
            warnings.append(f"{path}: {value} clamped to {clamped}")
            value = int(clamped) if spec.type == "integer" else clamped

    if spec.type == "array":
        items = value
        if spec.items is not None:
            kept = [item for item in items if _type_ok(item, spec.items)]
            if len(kept) != len(items):
                warnings.append(
                    f"{path}: dropped {len(items) - len(kept)} item(s) that are not {spec.items}"
                )
            items = kept
        if spec.max_items is not None and len(items) > spec.max_items:
            warnings.append(f"{path}: truncated to {spec.max_items} items")
            items = items[: spec.max_items]
        value = list(items)

    if spec.type == "object" and spec.fields:
        value = _validate_fields(value, spec.fields, path, warnings)

    return value


def _validate_fields(
    payload: dict[str, Any], fields: tuple[FieldSpec, ...], prefix: str, warnings: list[str]
) -> dict[str, Any]:
    cleaned = dict(payload)
    for spec in fields:
        path = f"{prefix}.{spec.name}" if prefix else spec.name
        if spec.name not in payload or payload[spec.name] is None:
            if spec.required:
                warnings.append(f"{path}: missing required field; used default")
            cleaned[spec.name] = spec.resolved_default()
            continue
        cleaned[spec.name] = _validate_field(payload[spec.name], spec, path, warnings)
    return cleaned


def validate_payload(payload: Any, schema: OutputSchema) -> tuple[dict[str, Any], list[str]]:
    """Return `(cleaned_payload, warnings)`; never raises."""
    warnings: list[str] = []
    if not isinstance(payload, dict):
        warnings.append(f"payload: expected object, got {type(payload).__name__}; used defaults")
        payload = {}
    return _validate_fields(payload, schema.fields, "", warnings), warnings


def _describe(spec: FieldSpec, indent: int) -> list[str]:
    kind = spec.type
    if spec.type == "array" and spec.items:
        kind = f"array of {spec.items}"
    details = [kind, "required" if spec.required else "optional"]
    if spec.enum:
        details.append("one of: " + ", ".join(spec.enum))
    if spec.minimum is not None or spec.maximum is not None:
        low = "-inf" if spec.minimum is None else spec.minimum
        high = "inf" if spec.maximum is None else spec.maximum
        details.append(f"range {low}..{high}")
    if spec.max_items is not None:
        details.append(f"at most {spec.max_items} items")
    line = f"{'  ' * indent}- {spec.name} ({'; '.join(details)})"
    if spec.description:
        line += f": {spec.description}"
    lines = [line]
    for child in spec.fields:
        lines.extend(_describe(child, indent + 1))
    return lines


def describe_schema(schema: OutputSchema) -> str:
    """Human-readable field list appended to structured-stage prompts."""
    lines: list[str] = []
    for spec in schema.fields:
        lines.extend(_describe(spec, 0))
    return "\n".join(lines)


__all__ = ["validate_payload", "describe_schema"]
