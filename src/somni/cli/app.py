"""Main Click application root."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid

import click

from somni.core.config import get_core_config, set_core_config
from somni.core.config.main import Config
from somni.core.exceptions import SomniError
from somni.core.types import DreamContext, ThemeScore
from somni.cortex.interpretation.prompts import PromptBuilder
from somni.cortex.services import InterpretationService
from somni.modules.personas import PersonaRegistry
from somni.modules.retrieval import FragmentRetriever, StaticSimilarityService


def _parse_theme(_ctx, _param, values: tuple[str, ...]) -> list[ThemeScore]:
    themes = []
    for raw in values:
        code, sep, score = raw.partition("=")
        if not sep:
            raise click.BadParameter(f"expected CODE=SCORE, got {raw!r}")
        try:
            themes.append(ThemeScore(code=code.strip(), score=float(score)))
        except ValueError as e:
            raise click.BadParameter(f"invalid theme {raw!r}: {e}") from e
    return themes


def _similarity(knowledge: str | None) -> StaticSimilarityService:
    if knowledge:
        return StaticSimilarityService.from_file(knowledge)
    return StaticSimilarityService.from_dict({})


def _context(dream_file, themes, dream_id, owner) -> DreamContext:
    text = dream_file.read()
    return DreamContext(
        dream_id=dream_id or uuid.uuid4().hex[:12],
        owner_id=owner,
        transcription=text,
        themes=themes,
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to settings.toml",
)
@click.pass_context
def cli(ctx, verbose, config_path):
    """somni - persona-driven dream interpretation."""
    ctx.ensure_object(dict)

    # Layered config for the CLI session: defaults < TOML < env; `.env` is auto-detected.
    set_core_config(Config.load(config_path))
    cfg = get_core_config()

    level = logging.DEBUG if verbose or cfg.debug else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s %(message)s")

    # Suppress verbose HTTP logging from provider clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


@cli.command("personas")
def personas_cmd():
    """List the available interpreter personas."""
    registry = PersonaRegistry.from_config(get_core_config().personas)
    for meta in registry.metadata():
        click.echo(f"{meta.code:<10} {meta.name} (v{meta.version})")
        if meta.approach:
            click.echo(f"{'':<10} {meta.approach}")
        click.echo(f"{'':<10} stages: {' -> '.join(meta.stages)}")


@cli.command("interpret")
@click.argument("dream_file", type=click.File("r"), default="-")
@click.option("--persona", "-p", default="jung", show_default=True)
@click.option("--knowledge", "-k", type=click.Path(exists=True, dir_okay=False))
@click.option("--theme", "-t", "themes", multiple=True, callback=_parse_theme, help="CODE=SCORE")
@click.option("--model", "model_key", help="provider/name, e.g. openai/gpt-4o-mini")
@click.option("--dream-id")
@click.option("--owner", default="cli", show_default=True)
@click.option("--payload-only", is_flag=True, help="Print only the interpretation payload")
def interpret_cmd(dream_file, persona, knowledge, themes, model_key, dream_id, owner, payload_only):
    """Interpret a dream read from DREAM_FILE (stdin by default)."""
    cfg = get_core_config()
    try:
        similarity = _similarity(knowledge)
        context = _context(dream_file, themes, dream_id, owner)
    except (SomniError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    async def _run():
        service = InterpretationService(config=cfg, similarity=similarity)
        return await service.interpret_dream(context, persona, model_key=model_key)

    result = asyncio.run(_run())
    if payload_only:
        click.echo(json.dumps(result.payload, indent=2, ensure_ascii=False))
    else:
        click.echo(result.model_dump_json(indent=2))
    if not result.ok:
        sys.exit(1)


@cli.command("show-prompts")
@click.argument("dream_file", type=click.File("r"), default="-")
@click.option("--persona", "-p", default="jung", show_default=True)
@click.option("--knowledge", "-k", type=click.Path(exists=True, dir_okay=False))
@click.option("--theme", "-t", "themes", multiple=True, callback=_parse_theme, help="CODE=SCORE")
def show_prompts_cmd(dream_file, persona, knowledge, themes):
    """Render every stage prompt for a dream without calling a model."""
    cfg = get_core_config()
    try:
        registry = PersonaRegistry.from_config(cfg.personas)
        persona_def = registry.get(persona)
        context = _context(dream_file, themes, None, "cli")
        retriever = FragmentRetriever(_similarity(knowledge), cfg.retrieval)
        retrieval = asyncio.run(retriever.retrieve(context.transcription, context.themes))
        builder = PromptBuilder(persona_def, context, retrieval.fragments)
        builder.validate()
    except (SomniError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    for prompt in builder.render_all():
        click.echo(f"===== {prompt.stage} / system =====")
        click.echo(prompt.system)
        click.echo(f"===== {prompt.stage} / user =====")
        click.echo(prompt.user)
        click.echo()


__all__ = ["cli"]
