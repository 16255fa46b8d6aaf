"""Persona registry.

Loaded once at process start from the builtin personas plus any TOML files
named in `personas.paths`, then shared read-only across runs. A TOML persona
has the same shape as a builtin one (see `builtin.py`), e.g.::

    code = "adler"
    name = "Alfred Adler"
    [[stages]]
    name = "full_interpretation"
    prompt_template = "Interpret: {{dream}}"
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

from pydantic import ValidationError as PydanticValidationError

from somni.core.config import PersonasConfig
from somni.core.exceptions import PersonaNotFound, ValidationError
from somni.core.types import PersonaMetadata

from .builtin import load_builtin_personas
from .models import Persona

logger = logging.getLogger(__name__)


def load_persona_file(path: Path) -> Persona:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return Persona.model_validate(data)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ValidationError(f"cannot read persona file {path}", cause=e) from e
    except PydanticValidationError as e:
        raise ValidationError(f"invalid persona file {path}: {e.error_count()} error(s)", cause=e) from e


def _iter_persona_files(paths: list[str]) -> Iterator[Path]:
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            yield from sorted(p.glob("*.toml"))
        elif p.exists():
            yield p
        else:
            logger.warning("Persona path %s does not exist", p)


class PersonaRegistry:
    def __init__(self, personas: Mapping[str, Persona]) -> None:
        self._personas = MappingProxyType(dict(personas))

    @classmethod
    def from_config(cls, config: PersonasConfig) -> "PersonaRegistry":
        personas = load_builtin_personas()
        if config.enabled:
            unknown = set(config.enabled) - set(personas)
            personas = {code: p for code, p in personas.items() if code in config.enabled}
        else:
            unknown = set()

        for path in _iter_persona_files(config.paths):
            persona = load_persona_file(path)
            if persona.code in personas:
                logger.info("Persona %s from %s overrides the builtin one", persona.code, path)
            personas[persona.code] = persona
            unknown.discard(persona.code)

        for code in sorted(unknown):
            logger.warning("Enabled persona %s is not defined anywhere", code)

        logger.debug("Loaded personas: %s", sorted(personas))
        return cls(personas)

    def get(self, code: str) -> Persona:
        persona = self._personas.get(code.strip().lower())
        if persona is None:
            raise PersonaNotFound(f"unknown persona '{code}'")
        return persona

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.strip().lower() in self._personas

    def codes(self) -> list[str]:
        return sorted(self._personas)

    def metadata(self) -> list[PersonaMetadata]:
        return [
            PersonaMetadata(
                code=p.code,
                version=p.version,
                name=p.name,
                description=p.description,
                approach=p.approach,
                strengths=list(p.strengths),
                stages=[s.name for s in p.stages],
            )
            for p in (self._personas[code] for code in self.codes())
        ]


__all__ = ["PersonaRegistry", "load_persona_file"]
