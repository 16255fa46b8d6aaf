"""Declarative persona configuration.

A persona is pure data: metadata, voice, an ordered list of stages and, for
structured stages, an output schema. The pipeline is generic over personas;
adding one never adds control flow.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

FieldType = Literal["string", "number", "integer", "boolean", "array", "object"]


class FieldSpec(BaseModel):
    """One field of a structured stage output."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    type: FieldType = "string"
    required: bool = True
    description: str = ""
    default: Any = None
    enum: tuple[str, ...] | None = None
    minimum: float | None = None
    maximum: float | None = None
    # Arrays: element type and an optional length cap.
    items: FieldType | None = None
    max_items: int | None = None
    # Objects: nested fields.
    fields: tuple["FieldSpec", ...] = ()

    def resolved_default(self) -> Any:
        if self.default is not None:
            return self.default
        if self.type == "object":
            return {f.name: f.resolved_default() for f in self.fields}
        return {
            "string": "",
            "number": 0.0,
            "integer": 0,
            "boolean": False,
            "array": [],
        }[self.type]


FieldSpec.model_rebuild()


class OutputSchema(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    fields: tuple[FieldSpec, ...]

    def field(self, name: str) -> FieldSpec | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class GenerationParams(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1500, ge=1)
    timeout_sec: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class StageDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    criticality: Literal["required", "optional"] = "required"
    system_template: str = ""
    prompt_template: str
    output_format: Literal["free_text", "structured"] = "free_text"
    output_schema: OutputSchema | None = None
    generation: GenerationParams = Field(default_factory=GenerationParams)

    @property
    def required(self) -> bool:
        return self.criticality == "required"

    @property
    def structured(self) -> bool:
        return self.output_format == "structured"

    @model_validator(mode="after")
    def _check_schema(self) -> "StageDefinition":
        if self.structured and self.output_schema is None:
            raise ValueError(f"structured stage '{self.name}' needs an output_schema")
        return self


class Persona(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    code: str
    version: str = "1"
    name: str
    description: str = ""
    approach: str = ""
    strengths: tuple[str, ...] = ()
    voice_signature: str = ""
    traits: tuple[str, ...] = ()
    stages: tuple[StageDefinition, ...]
    # Extra words counted as symbols when digesting free-text stage output.
    symbol_lexicon: tuple[str, ...] = ()
    # Field of the final payload listing the fragment ids the model relied on.
    references_field: str = "fragmentsUsed"

    @model_validator(mode="after")
    def _check_stages(self) -> "Persona":
        if not self.stages:
            raise ValueError(f"persona '{self.code}' defines no stages")
        names = [s.name for s in self.stages]
        if len(set(names)) != len(names):
            raise ValueError(f"persona '{self.code}' has duplicate stage names: {names}")
        return self

    def stage(self, name: str) -> StageDefinition | None:
        for s in self.stages:
            if s.name == name:
                return s
        return None

    @property
    def final_structured_stage(self) -> StageDefinition | None:
        for s in reversed(self.stages):
            if s.structured:
                return s
        return None


__all__ = [
    "FieldType",
    "FieldSpec",
    "OutputSchema",
    "GenerationParams",
    "StageDefinition",
    "Persona",
]
