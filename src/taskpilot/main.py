"""CLI entrypoint for taskpilot."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from taskpilot import __version__
from taskpilot.controllers import (
    ExtractCommand,
    PlanCommand,
    RepairCheckCommand,
    ResolveCommand,
    TaskCliController,
    TemplateAddCommand,
    TemplateListCommand,
    TemplateToggleCommand,
)
from taskpilot.extraction.llm import CompletionError
from taskpilot.templates.models import EntityScope
from taskpilot.templates.repository import TemplateNotFoundError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskCliController()
ENTITY_SCOPES = [scope.value.lower() for scope in EntityScope]


@click.group()
@click.version_option(version=__version__, prog_name="taskpilot")
def taskpilot() -> None:
    """Template resolution, PII-safe extraction and auto-repair gating."""

    logging.basicConfig(
        level=os.getenv("TASKPILOT_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@taskpilot.group()
def templates() -> None:
    """Template store commands."""


@templates.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--id", "template_id", required=True, help="Template id.")
@click.option("--name", required=True, help="Human-readable template name.")
@click.option("--description", default="", help="What the template does.")
@click.option(
    "--schema",
    "schema_json",
    default=None,
    help='Parameter schema JSON, for example `{"properties": {...}, "required": [...]}`.',
)
@click.option("--keyword", "keywords", multiple=True, help="Trigger keyword. Can be repeated.")
@click.option("--pattern", "patterns", multiple=True, help="Trigger regex. Can be repeated.")
def templates_add(  # noqa: PLR0913
    db_path: Path | None,
    template_id: str,
    name: str,
    description: str,
    schema_json: str | None,
    keywords: tuple[str, ...],
    patterns: tuple[str, ...],
) -> None:
    """Embed and store a template (insert or replace)."""

    _run(
        CONTROLLER.add_template,
        TemplateAddCommand(
            db_path=db_path,
            template_id=template_id,
            name=name,
            description=description,
            schema_json=schema_json,
            keywords=keywords,
            patterns=patterns,
        ),
    )


@templates.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--all", "include_disabled", is_flag=True, help="Include disabled templates.")
def templates_list(db_path: Path | None, include_disabled: bool) -> None:
    """List stored templates."""

    _run(
        CONTROLLER.list_templates,
        TemplateListCommand(db_path=db_path, include_disabled=include_disabled),
    )


@templates.command("disable")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("template_id")
def templates_disable(db_path: Path | None, template_id: str) -> None:
    """Exclude a template from resolution."""

    _run(
        CONTROLLER.toggle_template,
        TemplateToggleCommand(db_path=db_path, template_id=template_id, enabled=False),
    )


@templates.command("enable")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("template_id")
def templates_enable(db_path: Path | None, template_id: str) -> None:
    """Make a disabled template resolvable again."""

    _run(
        CONTROLLER.toggle_template,
        TemplateToggleCommand(db_path=db_path, template_id=template_id, enabled=True),
    )


@taskpilot.command("resolve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--create-new", is_flag=True, help="Declare intent to create a new task.")
@click.option(
    "--entity-scope",
    type=click.Choice(ENTITY_SCOPES, case_sensitive=False),
    default="auto",
    show_default=True,
    help="Declared entity scope of the request.",
)
@click.argument("description")
def resolve(db_path: Path | None, create_new: bool, entity_scope: str, description: str) -> None:
    """Find a reusable template for a task description."""

    _run(
        CONTROLLER.resolve,
        ResolveCommand(
            db_path=db_path,
            description=description,
            create_new=create_new,
            entity_scope=entity_scope,
        ),
    )


@taskpilot.command("extract")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--template-id", default=None, help="Guide extraction with this template's schema.")
@click.argument("description")
def extract(db_path: Path | None, template_id: str | None, description: str) -> None:
    """Extract parameters from a description without sending PII to the model."""

    _run(
        CONTROLLER.extract,
        ExtractCommand(db_path=db_path, description=description, template_id=template_id),
    )


@taskpilot.command("plan")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--create-new", is_flag=True, help="Declare intent to create a new task.")
@click.option(
    "--entity-scope",
    type=click.Choice(ENTITY_SCOPES, case_sensitive=False),
    default="auto",
    show_default=True,
    help="Declared entity scope of the request.",
)
@click.option("--template-id", default=None, help="Use this template if it exists.")
@click.option("--params", "parameters_json", default=None, help="Explicit parameters as JSON.")
@click.argument("description")
def plan(  # noqa: PLR0913
    db_path: Path | None,
    create_new: bool,
    entity_scope: str,
    template_id: str | None,
    parameters_json: str | None,
    description: str,
) -> None:
    """Decide between executing a stored template and generating a new one."""

    _run(
        CONTROLLER.plan,
        PlanCommand(
            db_path=db_path,
            description=description,
            create_new=create_new,
            entity_scope=entity_scope,
            template_id=template_id,
            parameters_json=parameters_json,
        ),
    )


@taskpilot.command("tokenize")
@click.argument("text")
def tokenize_text(text: str) -> None:
    """Show how PII in TEXT is masked before reaching the language model."""

    _emit_lines(CONTROLLER.tokenize(text))


@taskpilot.command("repair-check")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--template-id", required=True, help="Template whose execution failed.")
@click.option("--task-id", default="cli", show_default=True, help="Task id for per-task limits.")
@click.option("--error-name", default=None, help="Error class name, for example TypeError.")
@click.option("--error-message", default=None, help="Error message.")
@click.option(
    "--stack-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="File holding the error stack trace.",
)
@click.option(
    "--reserve",
    is_flag=True,
    help=(
        "Go through the repair gate and consume one stored attempt when eligible. "
        "Per-task limits and cooldown live in memory and start fresh on every invocation."
    ),
)
def repair_check(  # noqa: PLR0913
    db_path: Path | None,
    template_id: str,
    task_id: str,
    error_name: str | None,
    error_message: str | None,
    stack_file: Path | None,
    reserve: bool,
) -> None:
    """Classify a failed execution as repairable or not."""

    _run(
        CONTROLLER.repair_check,
        RepairCheckCommand(
            db_path=db_path,
            template_id=template_id,
            task_id=task_id,
            error_name=error_name,
            error_message=error_message,
            stack_file=stack_file,
            reserve=reserve,
        ),
    )


def _run(handler: Callable[[Any], list[str]], command: object) -> None:
    try:
        lines = handler(command)
    except (ValueError, TemplateNotFoundError, CompletionError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    taskpilot()
