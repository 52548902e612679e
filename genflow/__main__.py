"""Command-line entry point."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from .catalog import WorkflowCatalog, load_models_from_yaml, load_workflows_from_yaml
from .config import Settings, configure_logging, load_settings
from .engine import Orchestrator, validate_definition
from .errors import GenflowError


def _parse_inputs(pairs: list[str]) -> dict[str, Any]:
    """Parse ``key=value`` pairs; values are read as JSON when they parse."""
    inputs: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected key=value, got '{pair}'")
        try:
            inputs[key] = json.loads(value)
        except json.JSONDecodeError:
            inputs[key] = value
    return inputs


def cmd_validate(settings: Settings, args: argparse.Namespace) -> int:
    """Validate every workflow against the model registry."""
    if not settings.models_path or not settings.workflows_path:
        print("models_path and workflows_path must be configured", file=sys.stderr)
        return 2

    models = load_models_from_yaml(settings.models_path)
    catalog = WorkflowCatalog()
    load_workflows_from_yaml(settings.workflows_path, catalog)

    failures = 0
    for definition in catalog.get_all():
        try:
            validate_definition(definition, models)
            print(f"ok      {definition.id}")
        except GenflowError as e:
            failures += 1
            print(f"invalid {definition.id}: {e}")

    return 1 if failures else 0


def cmd_models(settings: Settings, args: argparse.Namespace) -> int:
    """List registered models and their provider order."""
    if not settings.models_path:
        print("models_path must be configured", file=sys.stderr)
        return 2

    for model in load_models_from_yaml(settings.models_path):
        providers = " -> ".join(model.candidate_providers())
        print(f"{model.id:<28} {model.type.value:<10} {model.base_cost:<8g} {providers}")
    return 0


async def _with_orchestrator(settings: Settings, action) -> int:
    orchestrator = Orchestrator(settings)
    await orchestrator.start(resume=False)
    try:
        return await action(orchestrator)
    except GenflowError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        await orchestrator.stop()


def cmd_providers(settings: Settings, args: argparse.Namespace) -> int:
    """Probe every configured provider."""

    async def action(orchestrator: Orchestrator) -> int:
        results = await orchestrator.check_providers()
        for provider_id, available in results.items():
            print(f"{provider_id:<20} {'available' if available else 'unavailable'}")
        return 0 if all(results.values()) else 1

    return asyncio.run(_with_orchestrator(settings, action))


def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    """Start a run and advance it until it pauses or finishes."""

    async def action(orchestrator: Orchestrator) -> int:
        run_id = await orchestrator.start_run(
            args.workflow,
            args.owner,
            _parse_inputs(args.input),
            budget=args.budget,
            wait=True,
        )
        print(json.dumps(await orchestrator.get_run_status(run_id), indent=2, default=str))
        return 0

    return asyncio.run(_with_orchestrator(settings, action))


def cmd_status(settings: Settings, args: argparse.Namespace) -> int:
    """Show a run's status."""

    async def action(orchestrator: Orchestrator) -> int:
        print(json.dumps(await orchestrator.get_run_status(args.run_id), indent=2, default=str))
        return 0

    return asyncio.run(_with_orchestrator(settings, action))


def cmd_tasks(settings: Settings, args: argparse.Namespace) -> int:
    """List an owner's pending tasks."""

    async def action(orchestrator: Orchestrator) -> int:
        for task in await orchestrator.list_pending_tasks(args.owner):
            print(f"{task['id']}  run={task['run_id']}  step={task['step_id']}  {task['title']}")
        return 0

    return asyncio.run(_with_orchestrator(settings, action))


def cmd_complete(settings: Settings, args: argparse.Namespace) -> int:
    """Complete a task with a JSON response and continue its run."""

    async def action(orchestrator: Orchestrator) -> int:
        result = await orchestrator.complete_task(args.task_id, json.loads(args.response))
        print(f"run {result['id']}: {result['status']}")
        return 0

    return asyncio.run(_with_orchestrator(settings, action))


def cmd_cancel(settings: Settings, args: argparse.Namespace) -> int:
    """Cancel a run."""

    async def action(orchestrator: Orchestrator) -> int:
        result = await orchestrator.cancel_run(args.run_id)
        print(f"run {result['id']}: {result['status']}")
        return 0

    return asyncio.run(_with_orchestrator(settings, action))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="genflow", description="genflow workflow runner")
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file")
    parser.add_argument("--log-level", default=None, help="Log level")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("validate", help="Validate workflows against the model registry").set_defaults(
        func=cmd_validate
    )
    sub.add_parser("models", help="List models").set_defaults(func=cmd_models)
    sub.add_parser("providers", help="Probe providers").set_defaults(func=cmd_providers)

    run = sub.add_parser("run", help="Start a workflow run")
    run.add_argument("workflow")
    run.add_argument("--owner", default="cli")
    run.add_argument("--input", action="append", default=[], metavar="KEY=VALUE")
    run.add_argument("--budget", type=float, default=None)
    run.set_defaults(func=cmd_run)

    status = sub.add_parser("status", help="Show a run")
    status.add_argument("run_id")
    status.set_defaults(func=cmd_status)

    tasks = sub.add_parser("tasks", help="List pending tasks")
    tasks.add_argument("--owner", default="cli")
    tasks.set_defaults(func=cmd_tasks)

    complete = sub.add_parser("complete", help="Complete a task")
    complete.add_argument("task_id")
    complete.add_argument("response", help='JSON response, e.g. \'{"approved": true}\'')
    complete.set_defaults(func=cmd_complete)

    cancel = sub.add_parser("cancel", help="Cancel a run")
    cancel.add_argument("run_id")
    cancel.set_defaults(func=cmd_cancel)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = load_settings(args.config)
    configure_logging(args.log_level or settings.log_level)

    return args.func(settings, args)


if __name__ == "__main__":
    sys.exit(main())
