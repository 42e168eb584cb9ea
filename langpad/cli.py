#!/usr/bin/env python
import sys
import json
import asyncio
import argparse
from pathlib import Path
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

from .app import AppState
from .config import Settings
from .definitions import DefinitionStore
from .errors import LangpadError, NotFoundError
from .logs import configure_logging
from .projector import project_flow_as_string
from .runner import FlowRunner


def _enable_tracing() -> None:
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def _load_state(workspace: str, settings: Settings) -> AppState:
    path = Path(workspace)
    if not path.is_file():
        raise LangpadError(f"Workspace file not found: {workspace}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    definitions = DefinitionStore.from_dict(data, default_model=settings.default_model)
    return AppState(settings=settings, definitions=definitions)


def _flow_id(state: AppState, requested: Optional[str]) -> str:
    if requested:
        return requested
    flow = state.definitions.active_flow()
    if flow is None:
        raise LangpadError("Workspace has no flows")
    return flow.id


def _print_run(state: AppState, run_id: str) -> None:
    run = state.runs.get_run(run_id)
    print(f"[run] {run.id} v{run.version} status={run.status.value}")
    for i, step in enumerate(run.steps):
        print(f"[step {i + 1}] status={step.status.value}")
        for j, action in enumerate(step.actions):
            print(f"  [action {j + 1}] status={action.status.value}")
            if action.error:
                print(f"    error: {action.error}")
            elif action.output:
                print(f"    {action.output}")


async def _run(state: AppState, args) -> str:
    runner = FlowRunner(state)
    flow_id = _flow_id(state, args.flow)
    if args.step is None:
        return await runner.run_flow(flow_id)
    if args.action is None:
        return await runner.run_step(flow_id, args.step - 1)
    return await runner.run_action(flow_id, args.step - 1, args.action - 1)


def main(argv=None):
    parser = argparse.ArgumentParser(description="langpad - run multi-step LLM prompt flows")
    parser.add_argument("--trace", action="store_true", help="Print OpenTelemetry spans to stdout")
    subparsers = parser.add_subparsers(dest="command")

    preview_parser = subparsers.add_parser("preview", help="Print the compiled flow")
    preview_parser.add_argument("workspace", help="Workspace JSON file")
    preview_parser.add_argument("--flow", help="Flow id (defaults to the active flow)")
    preview_parser.add_argument("--execute", action="store_true", help="Substitute variables and inline files")

    run_parser = subparsers.add_parser("run", help="Run a flow, a step or a single action")
    run_parser.add_argument("workspace", help="Workspace JSON file")
    run_parser.add_argument("--flow", help="Flow id (defaults to the active flow)")
    run_parser.add_argument("--step", type=int, help="1-based step number to run alone")
    run_parser.add_argument("--action", type=int, help="1-based action number within --step")

    subparsers.add_parser("models", help="Validate the API key and list available models")

    args = parser.parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    if args.trace:
        _enable_tracing()

    try:
        if args.command == "preview":
            state = _load_state(args.workspace, settings)
            flow_id = _flow_id(state, args.flow)
            output = project_flow_as_string(flow_id, state.definitions, substitute=args.execute)
            if output is None:
                raise NotFoundError(f"Flow {flow_id} not found")
            print(output)
        elif args.command == "run":
            if args.action is not None and args.step is None:
                parser.error("--action requires --step")
            state = _load_state(args.workspace, settings)
            run_id = asyncio.run(_run(state, args))
            _print_run(state, run_id)
        elif args.command == "models":
            state = AppState(settings=settings)
            if not state.provider.api_key:
                print("Error: no API key configured (set OPENAI_API_KEY or LANGPAD_API_KEY)")
                return 1
            message = asyncio.run(state.check_and_set_api_key(state.provider.api_key))
            if message:
                print(f"Error: {message}")
                return 1
            for model in state.provider.models:
                print(model)
        else:
            parser.print_help()
    except LangpadError as e:
        print(f"[Error] {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
