# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Tuple

import click
from pydantic import ValidationError

from triggerci import gating
from triggerci.dag import validate_graph
from triggerci.engine import WorkflowEngine
from triggerci.errors import DefinitionError
from triggerci.logging_config import configure_logging
from triggerci.model import Event
from triggerci.settings import EngineSettings
from triggerci.ui.console import Console, ConsoleListener, get_console, set_console


def build_engine(ctx: click.Context, **overrides: Any) -> WorkflowEngine:
    """
    Build an engine from TRIGGERCI_* settings plus CLI overrides, and load
    the workflow directory.
    """
    console = get_console()
    options: Dict[str, Any] = dict(ctx.obj.get("overrides", {}))
    options.update({k: v for k, v in overrides.items() if v is not None})

    try:
        settings = EngineSettings(**options)
    except ValidationError as e:
        console.print_error(
            "Invalid configuration",
            "Could not build engine settings.",
            details=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            suggestion="Check the TRIGGERCI_* environment variables and command-line flags.",
        )
        sys.exit(2)

    configure_logging("DEBUG" if ctx.obj.get("debug") else settings.log_level, json_output=settings.log_json)

    engine = WorkflowEngine(settings, listeners=[ConsoleListener(console)])
    engine.load()
    for path, message in engine.store.errors().items():
        console.print_debug(f"Skipped {path}: {message}")
    return engine


def parse_inputs(values: Tuple[str, ...]) -> Dict[str, str]:
    inputs: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--input")
        inputs[key.strip()] = value
    return inputs


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option(
    "--workflows-dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory of workflow documents (default: .workflows)",
)
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ...)")
@click.pass_context
def cli(ctx, debug, workflows_dir, log_level):
    """triggerci: event-triggered workflow runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["overrides"] = {
        k: v for k, v in {"workflows_dir": workflows_dir, "log_level": log_level}.items() if v is not None
    }


@cli.command(name="list")
@click.pass_context
def list_workflows(ctx):
    """List registered workflows."""
    engine = build_engine(ctx)
    get_console().print_workflows(engine.list())


@cli.command()
@click.argument("name")
@click.pass_context
def show(ctx, name):
    """Show a workflow's triggers and its jobs grouped into stages."""
    console = get_console()
    engine = build_engine(ctx)
    definition = engine.get(name)
    if definition is None:
        console.print_error(
            "Workflow not found",
            f"No workflow named {name!r}.",
            suggestion="List registered workflows:\n  triggerci list",
        )
        sys.exit(1)

    console.print_header(definition.name)
    if definition.description:
        console.print_info(definition.description)
    on = definition.on
    triggers = [on] if isinstance(on, str) else list(on)
    console.print_info(f"On: {', '.join(triggers)}")

    for i, stage in enumerate(validate_graph(definition.jobs, definition.name), start=1):
        console.print_stage(i, stage)


@cli.command()
@click.argument("event")
@click.option("--payload", default="{}", show_default=True, help="Event payload as a JSON object")
@click.option("--shell-gates/--context-gates", default=None, help="Evaluate `if:` as shell commands")
@click.pass_context
def trigger(ctx, event, payload, shell_gates):
    """Fire EVENT and run every workflow that listens to it."""
    console = get_console()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--payload")
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--payload")

    engine = build_engine(ctx, shell_gates=shell_gates)
    try:
        summaries = engine.trigger(Event(event, data))
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if not summaries:
        console.print_info(f"No workflows listen to '{event}'.")
        return
    if not all(s.succeeded for s in summaries):
        sys.exit(1)


@cli.command()
@click.argument("name")
@click.option("--input", "inputs", multiple=True, help="Dispatch input as KEY=VALUE (repeatable)")
@click.option("--shell-gates/--context-gates", default=None, help="Evaluate `if:` as shell commands")
@click.pass_context
def run(ctx, name, inputs, shell_gates):
    """Run one workflow as a manual (workflow_dispatch) event."""
    console = get_console()
    parsed = parse_inputs(inputs)
    engine = build_engine(ctx, shell_gates=shell_gates)
    try:
        summary = engine.dispatch(name, parsed)
    except KeyError:
        console.print_error(
            "Workflow not found",
            f"No workflow named {name!r}.",
            suggestion="List registered workflows:\n  triggerci list",
        )
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if not summary.succeeded:
        sys.exit(1)


@cli.command()
@click.argument("name")
@click.option("--framework", default="", help="Project framework (react, nextjs, vue, angular, node, nestjs)")
@click.option("--language", default="javascript", show_default=True, help="Project language")
@click.pass_context
def create(ctx, name, framework, language):
    """Create workflow NAME from the template for FRAMEWORK."""
    console = get_console()
    engine = build_engine(ctx)
    try:
        definition = engine.create(name, engine.suggest(framework, language))
    except (DefinitionError, OSError) as e:
        console.print_error("Failed to create workflow", str(e))
        sys.exit(1)
    console.print_info(f"Created workflow '{definition.name}' at {engine.store.path_for(definition.name)}")
    gates = gating.shell_gates(definition)
    if gates and not engine.settings.shell_gates:
        console.print_info(
            f"Note: {len(gates)} `if:` gate(s) are shell tests (e.g. {gates[0]!r}) and are skipped as false "
            "by the default evaluator. Run with --shell-gates or set TRIGGERCI_SHELL_GATES=true."
        )


@cli.command()
@click.argument("name")
@click.pass_context
def delete(ctx, name):
    """Delete workflow NAME and its file."""
    console = get_console()
    engine = build_engine(ctx)
    try:
        deleted = engine.delete(name)
    except OSError as e:
        console.print_error("Failed to delete workflow", str(e))
        sys.exit(1)
    if not deleted:
        console.print_error("Workflow not found", f"No workflow named {name!r}.")
        sys.exit(1)
    console.print_info(f"Deleted workflow '{name}'")


@cli.command()
@click.pass_context
def validate(ctx):
    """Load every workflow document and report the ones that fail."""
    console = get_console()
    engine = build_engine(ctx)
    errors = engine.store.errors()
    console.print_info(f"{len(engine.store)} workflow(s) valid in {engine.settings.workflows_dir}")
    if errors:
        console.print_error(
            "Invalid workflow documents",
            f"{len(errors)} file(s) could not be loaded:",
            details=[f"{path.name}: {message}" for path, message in sorted(errors.items())],
        )
        sys.exit(1)


if __name__ == "__main__":
    cli()
