"""
Command-line interface for flowengine.

Usage:
    flowengine validate flows/security-audit.flow.json
    flowengine list [flows/]
    flowengine show flows/security-audit.flow.json
    flowengine run flows/security-audit.flow.json --request "Audit repo X" --mock
    flowengine run flows/review.flow.yaml --request "..." --invoker myagents:build_invoker --json
"""

import argparse
import importlib
import json
import sys
from pathlib import Path

from flowengine.agents import AgentInvoker, MockAgentInvoker
from flowengine.config import RuntimeConfig
from flowengine.flow import (
    ExecutionContext,
    FlowDefinition,
    FlowLoader,
    FlowLoadError,
    FlowResult,
    FlowRunner,
    FlowValidationError,
    GraphValidator,
)
from flowengine.observability import configure_logging
from flowengine.runtime import LoggingActivityLogger

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def _load(path: str) -> FlowDefinition | None:
    try:
        return FlowLoader().load(path)
    except FlowLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None


def cmd_validate(args: argparse.Namespace) -> int:
    definition = _load(args.file)
    if definition is None:
        return EXIT_INVALID
    try:
        plan = GraphValidator().validate(definition)
    except FlowValidationError as e:
        print(f"✗ {definition.id}: {e}", file=sys.stderr)
        return EXIT_INVALID
    print(f"✓ {definition.id}: {len(plan)} steps, {len(plan.waves())} waves")
    return EXIT_OK


def cmd_list(args: argparse.Namespace, config: RuntimeConfig) -> int:
    directory = args.directory or config.flows_dir
    try:
        flows = FlowLoader().discover(directory)
    except FlowLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID

    if not flows:
        print(f"No flows found in {directory}")
        return EXIT_OK
    for path, definition in flows:
        print(f"{definition.id:<30} {definition.version:<8} {len(definition.steps):>3} steps  {path.name}")
    return EXIT_OK


def cmd_show(args: argparse.Namespace) -> int:
    definition = _load(args.file)
    if definition is None:
        return EXIT_INVALID
    try:
        plan = GraphValidator().validate(definition)
    except FlowValidationError as e:
        print(f"✗ {definition.id}: {e}", file=sys.stderr)
        return EXIT_INVALID

    settings = definition.settings
    print(f"{definition.name} ({definition.id} v{definition.version})")
    if definition.description:
        print(f"  {definition.description}")
    print(
        f"  max parallelism: {settings.max_parallelism}, fail fast: {settings.fail_fast}, "
        f"timeout: {settings.timeout_ms or 'none'}"
    )
    print()
    for number, wave in enumerate(plan.waves(), start=1):
        print(f"Wave {number}:")
        for step_id in wave:
            step = plan.node(step_id).step
            requires = f" <- {', '.join(step.requires)}" if step.requires else ""
            condition = f" if {step.condition}" if step.condition else ""
            print(f"  - {step.id} [{step.agent}] ({step.input.transform}){requires}{condition}")
    print()
    print(f"Output: {', '.join(definition.output.step_ids)} ({definition.output.format})")
    return EXIT_OK


def _resolve_invoker(reference: str) -> AgentInvoker:
    """Import `module:attr`; attr may be an invoker, an invoker class, or a factory."""
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Invoker must be given as module:attribute, got '{reference}'")
    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    target = getattr(importlib.import_module(module_name), attr)
    invoker = target if isinstance(target, AgentInvoker) else target()
    if not isinstance(invoker, AgentInvoker):
        raise TypeError(f"'{reference}' did not produce an AgentInvoker")
    return invoker


def _print_result(result: FlowResult) -> None:
    icon = "✓" if result.success else "✗"
    print(f"{icon} {result.flow_id}: {result.status} in {result.duration_ms}ms")
    for step_id, step in result.step_results.items():
        line = f"  {step_id:<30} {step.status:<10} attempts={step.attempts}"
        if step.error:
            line += f"  {step.error}"
        print(line)
    if result.output:
        print()
        print(result.output)


def cmd_run(args: argparse.Namespace, config: RuntimeConfig) -> int:
    definition = _load(args.file)
    if definition is None:
        return EXIT_INVALID

    if args.mock:
        invoker: AgentInvoker = MockAgentInvoker()
    elif args.invoker:
        try:
            invoker = _resolve_invoker(args.invoker)
        except (ImportError, AttributeError, ValueError, TypeError) as e:
            print(f"Error: cannot load invoker: {e}", file=sys.stderr)
            return EXIT_INVALID
    else:
        print("Error: pass --mock or --invoker MODULE:ATTR", file=sys.stderr)
        return EXIT_INVALID

    runner = FlowRunner(invoker, activity_logger=LoggingActivityLogger(), config=config)
    context = ExecutionContext(user_prompt=args.request)
    try:
        result = runner.run_sync(definition, context)
    except FlowValidationError as e:
        print(f"✗ {definition.id}: {e}", file=sys.stderr)
        return EXIT_INVALID

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        _print_result(result)
    return EXIT_OK if result.success else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowengine",
        description="Validate and run declarative multi-agent flows",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate a flow file")
    validate_parser.add_argument("file", help="Path to a .flow.json or .flow.yaml file")

    list_parser = subparsers.add_parser("list", help="List flows in a directory")
    list_parser.add_argument("directory", nargs="?", default=None, help="Defaults to flows_dir")

    show_parser = subparsers.add_parser("show", help="Show a flow's steps and execution waves")
    show_parser.add_argument("file", help="Path to a flow file")

    run_parser = subparsers.add_parser("run", help="Run a flow")
    run_parser.add_argument("file", help="Path to a flow file")
    run_parser.add_argument("--request", "-r", required=True, help="User request text")
    run_parser.add_argument("--mock", action="store_true", help="Use the echoing mock invoker")
    run_parser.add_argument("--invoker", help="Agent invoker as module:attribute")
    run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = RuntimeConfig()
    configure_logging(level=args.log_level or config.log_level, format=config.log_format)

    if args.command == "validate":
        return cmd_validate(args)
    if args.command == "list":
        return cmd_list(args, config)
    if args.command == "show":
        return cmd_show(args)
    return cmd_run(args, config)


if __name__ == "__main__":
    sys.exit(main())
