from __future__ import annotations
import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from opentelemetry import trace

from .ai_providers import AIProvider
from .app import AppState
from .errors import NotFoundError
from .logs import LOGURU_LEVELS
from .projector import project_flow
from .resolver import resolve_back_references
from .schemas import CompiledAction, CompiledFlow, TextBlock
from .types import LogLevel, Run, RunStatus

_tracer = trace.get_tracer(__name__)


def _response_format(structured_output: Optional[str]) -> Optional[Dict[str, Any]]:
    """Turn a JSON-schema structured-output hint into an OpenAI ``response_format``."""
    if not structured_output:
        return None
    try:
        schema = json.loads(structured_output)
    except ValueError:
        logger.warning("Structured output hint is not JSON; sending the request without it")
        return None
    if not isinstance(schema, dict):
        return None
    if "schema" in schema:
        return {"type": "json_schema", "json_schema": schema}
    return {"type": "json_schema", "json_schema": {"name": "structured_output", "schema": schema}}


def _run_shape(run: Run) -> List[Tuple[str, List[str]]]:
    return [(s.step_id, [a.action_id for a in s.actions]) for s in run.steps]


class FlowRunner:
    """Executes flows, single steps and single actions against the completion client.

    Steps run in order; the actions of one step run concurrently and are all
    awaited before the next step starts. Partial re-runs clone the latest run
    of the flow so earlier outputs stay available to back-references.
    """

    def __init__(self, state: AppState, client: Optional[AIProvider] = None,
                 continue_on_step_failure: Optional[bool] = None):
        self.state = state
        self.client = client
        if continue_on_step_failure is None:
            continue_on_step_failure = state.settings.continue_on_step_failure
        self.continue_on_step_failure = continue_on_step_failure
        self._stream_logs: Dict[tuple, str] = {}

    @property
    def runs(self):
        return self.state.runs

    def log(self, level: LogLevel, run_id: Optional[str], msg: str) -> None:
        content = f"[Run: {run_id}] {msg}" if run_id else msg
        self.state.logs.add(content, level)
        logger.bind(run_id=run_id or "-").log(LOGURU_LEVELS[level], msg)

    def _client(self) -> AIProvider:
        if self.client is None:
            self.client = self.state.ensure_client()
        return self.client

    # ---------- Run selection ----------
    def _project(self, flow_id: str) -> CompiledFlow:
        compiled = project_flow(flow_id, self.state.definitions, substitute=True)
        if compiled is None:
            raise NotFoundError(f"Flow {flow_id} not found")
        return compiled

    def _flow_shape(self, flow_id: str) -> List[Tuple[str, List[str]]]:
        definitions = self.state.definitions
        # Same filtering as the projector so run indices line up with compiled actions.
        return [(s.id, [a for a in s.action_ids if definitions.get_action(a) is not None])
                for s in definitions.steps_for_flow(flow_id)]

    def _start_fresh_run(self, flow_id: str) -> str:
        return self.runs.start_run(flow_id, self._flow_shape(flow_id))

    def _select_run(self, flow_id: str, step_index: int, action_index: Optional[int] = None) -> str:
        latest = self.runs.latest_run_for_flow(flow_id)
        # Only clone a run whose steps and actions still match the flow one to one.
        if latest is not None and _run_shape(latest) == self._flow_shape(flow_id):
            run_id = self.runs.clone_run(latest.id, step_index, action_index)
            self.log("info", run_id, f"Cloned run {latest.id} (version {latest.version + 1})")
            return run_id
        return self._start_fresh_run(flow_id)

    # ---------- Entry points ----------
    async def run_flow(self, flow_id: str) -> str:
        """Run every step of a flow in a new version-1 run and return the run id."""
        try:
            compiled = self._project(flow_id)
        except NotFoundError as e:
            self.log("error", None, f"Failed to run flow: {e}")
            raise

        self.log("info", None, f"Starting flow execution for flow: {flow_id}")
        run_id = self._start_fresh_run(flow_id)
        with _tracer.start_as_current_span("flow", attributes={"langpad.flow_id": flow_id, "langpad.run_id": run_id}):
            for i, step in enumerate(compiled.steps):
                run = self.runs.get_run(run_id)
                if run is None or run.status == RunStatus.CANCELLED:
                    self.log("info", run_id, "Flow execution was canceled")
                    return run_id

                failed = await self._execute_step(run_id, i, step.actions)
                if failed and not self.continue_on_step_failure:
                    self.runs.fail_run(run_id, f"Step {i + 1} failed")
                    self.log("error", run_id, f"Stopping flow after failed step {i + 1}")
                    return run_id

        # Settles flows without steps; a no-op once the last step has completed the run.
        self.runs.finalize_run(run_id)
        self.log("info", run_id, f"Flow execution completed for flow: {flow_id}")
        return run_id

    async def run_step(self, flow_id: str, step_index: int) -> str:
        """Re-run one step on a clone of the latest run (or a fresh run)."""
        compiled = self._project(flow_id)
        if not 0 <= step_index < len(compiled.steps):
            self.log("error", None, f"Failed to run step: Step {step_index} in flow {flow_id} not found")
            raise NotFoundError(f"Step {step_index} in flow {flow_id} not found")

        self.log("info", None, f"Starting execution for step {step_index + 1} in flow: {flow_id}")
        run_id = self._select_run(flow_id, step_index)
        await self._execute_step(run_id, step_index, compiled.steps[step_index].actions)
        return run_id

    async def run_action(self, flow_id: str, step_index: int, action_index: int) -> str:
        """Re-run one action on a clone of the latest run (or a fresh run)."""
        compiled = self._project(flow_id)
        if not (0 <= step_index < len(compiled.steps)
                and 0 <= action_index < len(compiled.steps[step_index].actions)):
            self.log("error", None,
                     f"Failed to run action: Action {action_index} in step {step_index} in flow {flow_id} not found")
            raise NotFoundError(f"Action {action_index} in step {step_index} in flow {flow_id} not found")

        run_id = self._select_run(flow_id, step_index, action_index)
        run = self.runs.get_run(run_id)
        if run.steps[step_index].status == RunStatus.IDLE:
            self.runs.start_step_run(run_id, step_index)
        action = compiled.steps[step_index].actions[action_index]
        try:
            await self.execute_action(run_id, step_index, action_index, action)
        finally:
            self.runs.finalize_run(run_id)
        return run_id

    def cancel_execution(self, run_id: str) -> None:
        self.runs.cancel_run(run_id)
        self.log("info", run_id, "Flow execution canceled")

    # ---------- Execution ----------
    async def _execute_step(self, run_id: str, step_index: int, actions: List[CompiledAction]) -> bool:
        """Run one step's actions concurrently; returns True if any of them failed."""
        self.runs.start_step_run(run_id, step_index)
        self.log("info", run_id, f"Executing step {step_index + 1}")
        t0 = time.perf_counter()
        with _tracer.start_as_current_span("step", attributes={"langpad.run_id": run_id, "langpad.step": step_index + 1}):
            results = await asyncio.gather(
                *(self.execute_action(run_id, step_index, j, a) for j, a in enumerate(actions)),
                return_exceptions=True,
            )
        errors = [r for r in results if isinstance(r, BaseException)]
        for err in errors:
            if isinstance(err, asyncio.CancelledError):
                raise err
        dt_ms = (time.perf_counter() - t0) * 1000.0
        if errors:
            self.log("error", run_id, f"Error in step {step_index + 1}: {errors[0]}")
        else:
            self.log("info", run_id, f"Completed step {step_index + 1} in {dt_ms:.0f}ms")
        self.runs.complete_step_run(run_id, step_index)
        return bool(errors)

    def _prepare_request(self, run_id: str, step_index: int, action: CompiledAction) -> Dict[str, Any]:
        # Back-references resolve against the run as it stands when the action starts.
        snapshot = self.runs.get_run(run_id).model_copy(deep=True)
        prepared = action.model_copy(deep=True)
        for msg in prepared.messages:
            for block in msg.content:
                if isinstance(block, TextBlock):
                    block.text = resolve_back_references(block.text, snapshot, step_index)
        params: Dict[str, Any] = {
            "model": prepared.model,
            "messages": [m.model_dump(exclude_none=True) for m in prepared.messages],
            "temperature": prepared.temperature,
            "stream": True,
        }
        fmt = _response_format(resolve_back_references(prepared.structured_output, snapshot, step_index))
        if fmt is not None:
            params["response_format"] = fmt
        return params

    async def execute_action(self, run_id: str, step_index: int, action_index: int, action: CompiledAction) -> None:
        """Stream one action into the run store; failures are recorded and re-raised."""
        key = (run_id, step_index, action_index)
        try:
            self.runs.start_action_run(run_id, step_index, action_index)
            self.log("info", run_id, f"Executing action {action_index + 1} in step {step_index + 1}")
            params = self._prepare_request(run_id, step_index, action)

            def _on_chunk(chunk: str) -> None:
                self.runs.update_action_output(run_id, step_index, action_index, chunk, append=True)
                self._log_stream(key, chunk)

            t0 = time.perf_counter()
            with _tracer.start_as_current_span("action", attributes={
                "langpad.run_id": run_id, "langpad.step": step_index + 1,
                "langpad.action": action_index + 1, "langpad.model": action.model,
            }):
                result = await self._client().create_chat_completion(params, _on_chunk)
            dt_ms = (time.perf_counter() - t0) * 1000.0
            self.log("info", run_id, f"Completed action {action_index + 1} in step {step_index + 1} in {dt_ms:.0f}ms")
            self.runs.complete_action_run(run_id, step_index, action_index, result.content)
        except Exception as e:
            self.log("error", run_id, f"Error in action {action_index + 1} in step {step_index + 1}: {e}")
            self.runs.fail_action_run(run_id, step_index, action_index, str(e))
            raise
        finally:
            self._stream_logs.pop(key, None)

    def _log_stream(self, key: tuple, chunk: str) -> None:
        run_id, step_index, action_index = key
        log_id = self._stream_logs.get(key)
        if log_id is None:
            entry = self.state.logs.add(
                f"[Run: {run_id}] [Step {step_index + 1}, Action {action_index + 1}] Stream: {chunk}", "info")
            self._stream_logs[key] = entry.id
        else:
            self.state.logs.append_content(log_id, chunk)
        logger.bind(run_id=run_id).trace("[Step {}, Action {}] Stream: {}", step_index + 1, action_index + 1, chunk)
