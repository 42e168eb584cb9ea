"""Run Store: versioned execution records for flows.

Every mutation is a plain synchronous method, so under asyncio's cooperative
scheduling no two writes interleave. Unknown run ids and out-of-range
indices are ignored.

Completion cascades Action -> Step -> Run. Failure cascades Action -> Step
only; the run is settled when the caller completes the step or calls
``finalize_run``. A step with any failed action never settles as completed.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .observable import Observable
from .types import (
    ActionRun,
    Run,
    RunStatus,
    SETTLED_STATUSES,
    Step,
    StepRun,
    new_id,
)

StepShape = Union[Step, Tuple[str, Sequence[str]]]

_OPEN_STATUSES = (RunStatus.IDLE, RunStatus.RUNNING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _shape(step: StepShape) -> Tuple[str, Sequence[str]]:
    if isinstance(step, Step):
        return step.id, step.action_ids
    return step[0], step[1]


class RunStore(Observable):

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        super().__init__()
        self.clock = clock or _utcnow
        self.runs: Dict[str, Run] = {}
        self.run_order: List[str] = []

    # ─── Lookup ──────────────────────────────────────────────────

    def get_run(self, run_id: str) -> Optional[Run]:
        return self.runs.get(run_id)

    def runs_for_flow(self, flow_id: str) -> List[Run]:
        return [self.runs[rid] for rid in self.run_order if self.runs[rid].flow_id == flow_id]

    def latest_run_for_flow(self, flow_id: str) -> Optional[Run]:
        runs = self.runs_for_flow(flow_id)
        return runs[-1] if runs else None

    def _step(self, run_id: str, step_index: int) -> Tuple[Optional[Run], Optional[StepRun]]:
        run = self.runs.get(run_id)
        if run is None or step_index < 0 or step_index >= len(run.steps):
            return run, None
        return run, run.steps[step_index]

    def _action(self, run_id: str, step_index: int, action_index: int) -> Optional[ActionRun]:
        _, step = self._step(run_id, step_index)
        if step is None or action_index < 0 or action_index >= len(step.actions):
            return None
        return step.actions[action_index]

    def _install(self, run: Run) -> None:
        self.runs[run.id] = run
        self.run_order.append(run.id)

    # ─── Run lifecycle ───────────────────────────────────────────

    def start_run(self, flow_id: str, steps: Sequence[StepShape]) -> str:
        step_runs = []
        for step in steps:
            step_id, action_ids = _shape(step)
            step_runs.append(StepRun(step_id=step_id, actions=[ActionRun(action_id=a) for a in action_ids]))
        run = Run(flow_id=flow_id, steps=step_runs)
        run.stamp_start(self.clock())
        self._install(run)
        self._notify("run.started", run_id=run.id, flow_id=flow_id)
        return run.id

    def clone_run(self, old_run_id: str, step_index: int, action_index: Optional[int] = None) -> Optional[str]:
        """Copy a run for partial re-execution, resetting only the targeted step/action."""
        old = self.runs.get(old_run_id)
        if old is None:
            return None
        run = old.model_copy(deep=True)
        run.id = new_id()
        run.version = old.version + 1
        run.stamp_start(self.clock())
        if 0 <= step_index < len(run.steps):
            step = run.steps[step_index]
            step.reset_timing()
            for idx, action_run in enumerate(step.actions):
                if action_index is None or idx == action_index:
                    action_run.reset()
        self._install(run)
        self._notify("run.cloned", run_id=run.id, source_run_id=old_run_id, step_index=step_index,
                     action_index=action_index)
        return run.id

    def finalize_run(self, run_id: str) -> None:
        """Complete the run once every step has settled."""
        run = self.runs.get(run_id)
        if run is None or run.status != RunStatus.RUNNING:
            return
        if all(s.status in SETTLED_STATUSES for s in run.steps):
            run.stamp_end(RunStatus.COMPLETED, self.clock())
            self._notify("run.completed", run_id=run_id)

    def fail_run(self, run_id: str, error: Optional[str] = None) -> None:
        run = self.runs.get(run_id)
        if run is None or run.status != RunStatus.RUNNING:
            return
        run.stamp_end(RunStatus.FAILED, self.clock())
        self._notify("run.failed", run_id=run_id, error=error)

    def cancel_run(self, run_id: str) -> None:
        run = self.runs.get(run_id)
        if run is None or run.status not in _OPEN_STATUSES:
            return
        now = self.clock()
        run.stamp_end(RunStatus.CANCELLED, now)
        for step in run.steps:
            if step.status == RunStatus.RUNNING:
                step.stamp_end(RunStatus.CANCELLED, now)
            for action_run in step.actions:
                if action_run.status == RunStatus.RUNNING:
                    action_run.stamp_end(RunStatus.CANCELLED, now)
                    action_run.streaming_output = False
        self._notify("run.cancelled", run_id=run_id)

    def clear_runs(self) -> None:
        self.runs = {}
        self.run_order = []
        self._notify("runs.cleared")

    # ─── Steps ───────────────────────────────────────────────────

    def start_step_run(self, run_id: str, step_index: int) -> None:
        _, step = self._step(run_id, step_index)
        if step is None:
            return
        step.stamp_start(self.clock())
        self._notify("step.started", run_id=run_id, step_index=step_index)

    def _settle_step(self, run_id: str, step_index: int, step: StepRun, now: datetime) -> None:
        # A failed action fails the step; only an all-completed step completes.
        if step.status not in _OPEN_STATUSES:
            return
        if any(a.status == RunStatus.FAILED for a in step.actions):
            step.stamp_end(RunStatus.FAILED, now)
            self._notify("step.failed", run_id=run_id, step_index=step_index)
        else:
            step.stamp_end(RunStatus.COMPLETED, now)
            self._notify("step.completed", run_id=run_id, step_index=step_index)

    def complete_step_run(self, run_id: str, step_index: int) -> None:
        _, step = self._step(run_id, step_index)
        if step is None:
            return
        self._settle_step(run_id, step_index, step, self.clock())
        self.finalize_run(run_id)

    # ─── Actions ─────────────────────────────────────────────────

    def start_action_run(self, run_id: str, step_index: int, action_index: int) -> None:
        action_run = self._action(run_id, step_index, action_index)
        if action_run is None:
            return
        action_run.reset()
        action_run.stamp_start(self.clock())
        self._notify("action.started", run_id=run_id, step_index=step_index, action_index=action_index)

    def update_action_output(self, run_id: str, step_index: int, action_index: int, output: str,
                             append: bool = False) -> None:
        action_run = self._action(run_id, step_index, action_index)
        if action_run is None:
            return
        action_run.output = action_run.output + output if append else output
        action_run.streaming_output = True
        self._notify("action.output", run_id=run_id, step_index=step_index, action_index=action_index)

    def complete_action_run(self, run_id: str, step_index: int, action_index: int, output: str) -> None:
        action_run = self._action(run_id, step_index, action_index)
        if action_run is None:
            return
        action_run.output = output
        action_run.streaming_output = False
        if action_run.status == RunStatus.CANCELLED:
            # Late result for a cancelled run: keep the output, not the transition.
            self._notify("action.output", run_id=run_id, step_index=step_index, action_index=action_index)
            return
        now = self.clock()
        action_run.stamp_end(RunStatus.COMPLETED, now)
        self._notify("action.completed", run_id=run_id, step_index=step_index, action_index=action_index)

        _, step = self._step(run_id, step_index)
        if all(a.status in SETTLED_STATUSES for a in step.actions):
            self._settle_step(run_id, step_index, step, now)
            self.finalize_run(run_id)

    def fail_action_run(self, run_id: str, step_index: int, action_index: int, error: str) -> None:
        action_run = self._action(run_id, step_index, action_index)
        if action_run is None:
            return
        action_run.error = error
        action_run.streaming_output = False
        if action_run.status == RunStatus.CANCELLED:
            return
        now = self.clock()
        action_run.stamp_end(RunStatus.FAILED, now)
        self._notify("action.failed", run_id=run_id, step_index=step_index, action_index=action_index,
                     error=error)

        _, step = self._step(run_id, step_index)
        if step.status != RunStatus.CANCELLED:
            step.stamp_end(RunStatus.FAILED, now)
            self._notify("step.failed", run_id=run_id, step_index=step_index)

    def clear_action_run(self, run_id: str, step_index: int, action_index: int) -> None:
        action_run = self._action(run_id, step_index, action_index)
        if action_run is None:
            return
        action_run.reset()
        self._notify("action.cleared", run_id=run_id, step_index=step_index, action_index=action_index)
