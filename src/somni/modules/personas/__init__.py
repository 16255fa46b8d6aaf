"""Interpreter personas: declarative stage chains and output schemas."""

from __future__ import annotations

from .models import FieldSpec, GenerationParams, OutputSchema, Persona, StageDefinition
from .registry import PersonaRegistry
from .schema import describe_schema, validate_payload

__all__ = [
    "FieldSpec",
    "GenerationParams",
    "OutputSchema",
    "Persona",
    "StageDefinition",
    "PersonaRegistry",
    "describe_schema",
    "validate_payload",
]
