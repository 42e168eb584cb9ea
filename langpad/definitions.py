"""Definition Store: flows, steps, actions, variables and files.

Steps are owned inline by their flow; actions live in a separate collection
and are referenced from steps by id. Forking a flow copies its steps and
deep-clones only the referenced actions under new ids.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from loguru import logger

from .observable import Observable
from .types import Action, File, Flow, Message, Step, Variable, VARIABLE_SIGIL, VARIABLE_NAME_RE, DEFAULT_MODEL, new_id

DEFAULT_VARIABLE_ID = "1"
DEFAULT_FILE_ID = "1"

_ACTION_IMMUTABLE = ("id", "messages")
_MESSAGE_IMMUTABLE = ("id",)


def clone_action_with_new_ids(action: Action) -> Action:
    """Deep copy of an action with fresh action and message ids."""
    cloned = action.model_copy(deep=True)
    cloned.id = new_id()
    for msg in cloned.messages:
        msg.id = new_id()
        msg.files = list(msg.files)
    return cloned


class DefinitionStore(Observable):

    def __init__(self, seed_defaults: bool = True, default_model: str = DEFAULT_MODEL):
        super().__init__()
        self.default_model = default_model
        self.flows: Dict[str, Flow] = {}
        self.flow_order: List[str] = []
        self.active_flow_id: Optional[str] = None
        self.actions: Dict[str, Action] = {}
        self._variables: List[Variable] = []
        self._files: List[File] = []
        self._last_variable_id = 0
        self._last_file_id = 0
        if seed_defaults:
            self._variables.append(Variable(id=DEFAULT_VARIABLE_ID, name="$default_var", value=""))
            self._last_variable_id = 1
            self._files.append(File(id=DEFAULT_FILE_ID, name="file_1"))
            self._last_file_id = 1
            self.add_flow("Main")

    # ─── Flows ───────────────────────────────────────────────────

    def add_flow(self, name: str) -> Flow:
        action = self._new_action()
        flow = Flow(name=name, steps=[Step(action_ids=[action.id])])
        self.actions[action.id] = action
        self.flows[flow.id] = flow
        self.flow_order.append(flow.id)
        if not self.active_flow_id:
            self.active_flow_id = flow.id
        self._notify("flow.added", flow_id=flow.id)
        return flow

    def remove_flow(self, flow_id: str) -> None:
        if flow_id not in self.flows:
            return
        del self.flows[flow_id]
        self.flow_order.remove(flow_id)
        if self.active_flow_id == flow_id:
            self.active_flow_id = self.flow_order[0] if self.flow_order else None
        self._notify("flow.removed", flow_id=flow_id)

    def update_flow_name(self, flow_id: str, name: str) -> None:
        flow = self.flows.get(flow_id)
        if flow:
            flow.name = name
            self._notify("flow.updated", flow_id=flow_id)

    def set_active_flow(self, flow_id: str) -> None:
        self.active_flow_id = flow_id
        self._notify("flow.activated", flow_id=flow_id)

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        return self.flows.get(flow_id)

    def all_flows(self) -> List[Flow]:
        return [self.flows[fid] for fid in self.flow_order]

    def active_flow(self) -> Optional[Flow]:
        if self.active_flow_id and self.active_flow_id in self.flows:
            return self.flows[self.active_flow_id]
        return self.flows[self.flow_order[0]] if self.flow_order else None

    def steps_for_flow(self, flow_id: str) -> List[Step]:
        flow = self.flows.get(flow_id)
        return flow.steps if flow else []

    def clone_flow(self, flow_id: str) -> Optional[Flow]:
        """Fork a flow: new step ids, deep-cloned actions, installed as the active flow."""
        original = self.flows.get(flow_id)
        if original is None:
            return None
        cloned_steps: List[Step] = []
        cloned_actions: List[Action] = []
        for step in original.steps:
            new_action_ids: List[str] = []
            for action_id in step.action_ids:
                action = self.actions.get(action_id)
                if action is None:
                    logger.warning("Original action with ID {} not found during clone.", action_id)
                    continue
                cloned = clone_action_with_new_ids(action)
                cloned_actions.append(cloned)
                new_action_ids.append(cloned.id)
            cloned_steps.append(Step(name=step.name, action_ids=new_action_ids))

        separator = " " if original.name else ""
        clone = Flow(name=f"{original.name}{separator}(copy)", steps=cloned_steps)
        for action in cloned_actions:
            self.actions[action.id] = action
        self.flows[clone.id] = clone
        self.flow_order.append(clone.id)
        self.active_flow_id = clone.id
        self._notify("flow.cloned", flow_id=clone.id, source_flow_id=flow_id)
        return clone

    # ─── Steps ───────────────────────────────────────────────────

    def _find_step(self, flow_id: str, step_id: str) -> Optional[Step]:
        flow = self.flows.get(flow_id)
        if not flow:
            return None
        return next((s for s in flow.steps if s.id == step_id), None)

    def add_step_with_action(self, flow_id: str) -> Optional[Step]:
        flow = self.flows.get(flow_id)
        if flow is None:
            return None
        action = self._new_action()
        step = Step(action_ids=[action.id])
        self.actions[action.id] = action
        flow.steps.append(step)
        self._notify("step.added", flow_id=flow_id, step_id=step.id)
        return step

    def remove_step(self, flow_id: str, step_id: str) -> None:
        flow = self.flows.get(flow_id)
        if flow:
            flow.steps = [s for s in flow.steps if s.id != step_id]
            self._notify("step.removed", flow_id=flow_id, step_id=step_id)

    def update_step_name(self, flow_id: str, step_id: str, name: str) -> None:
        step = self._find_step(flow_id, step_id)
        if step:
            step.name = name
            self._notify("step.updated", flow_id=flow_id, step_id=step_id)

    def add_action_to_step(self, flow_id: str, step_id: str, action_id: str) -> None:
        step = self._find_step(flow_id, step_id)
        if step:
            step.action_ids.append(action_id)
            self._notify("step.updated", flow_id=flow_id, step_id=step_id)

    def remove_action_from_step(self, flow_id: str, step_id: str, action_id: str) -> None:
        step = self._find_step(flow_id, step_id)
        if step:
            step.action_ids = [a for a in step.action_ids if a != action_id]
            self._notify("step.updated", flow_id=flow_id, step_id=step_id)

    # ─── Actions ─────────────────────────────────────────────────

    def _new_action(self) -> Action:
        return Action(selected_model=self.default_model)

    def add_action(self) -> Action:
        action = self._new_action()
        self.actions[action.id] = action
        self._notify("action.added", action_id=action.id)
        return action

    def remove_action(self, action_id: str) -> None:
        if self.actions.pop(action_id, None) is not None:
            self._notify("action.removed", action_id=action_id)

    def get_action(self, action_id: str) -> Optional[Action]:
        return self.actions.get(action_id)

    def all_actions(self) -> List[Action]:
        return list(self.actions.values())

    def update_action(self, action_id: str, **changes: Any) -> None:
        action = self.actions.get(action_id)
        if action is None:
            return
        for key, value in changes.items():
            if key in _ACTION_IMMUTABLE:
                raise ValueError(f"Action field '{key}' cannot be updated this way")
            setattr(action, key, value)
        self._notify("action.updated", action_id=action_id)

    def add_message_to_action(self, action_id: str) -> Optional[Message]:
        action = self.actions.get(action_id)
        if action is None:
            return None
        msg = Message()
        action.messages.append(msg)
        self._notify("action.updated", action_id=action_id)
        return msg

    def remove_message_from_action(self, action_id: str, message_id: str) -> None:
        action = self.actions.get(action_id)
        if action:
            action.messages = [m for m in action.messages if m.id != message_id]
            self._notify("action.updated", action_id=action_id)

    def update_message(self, action_id: str, message_id: str, **changes: Any) -> None:
        action = self.actions.get(action_id)
        if action is None:
            return
        for idx, msg in enumerate(action.messages):
            if msg.id == message_id:
                if any(k in _MESSAGE_IMMUTABLE for k in changes):
                    raise ValueError("Message id cannot be updated")
                data = msg.model_dump()
                data.update(changes)
                action.messages[idx] = Message.model_validate(data)
                self._notify("action.updated", action_id=action_id)
                return

    # ─── Variables ───────────────────────────────────────────────

    @property
    def variables(self) -> List[Variable]:
        return list(self._variables)

    def add_variable(self) -> Variable:
        var = Variable(id=str(self._last_variable_id + 1), name=f"{VARIABLE_SIGIL}variable{self._last_variable_id}")
        self._last_variable_id += 1
        self._variables.append(var)
        self._notify("variable.added", variable_id=var.id)
        return var

    def update_variable_name(self, variable_id: str, name: str) -> bool:
        if not VARIABLE_NAME_RE.fullmatch(name):
            return False
        if any(v.name == name and v.id != variable_id for v in self._variables):
            return False
        var = next((v for v in self._variables if v.id == variable_id), None)
        if var is None:
            return False
        var.name = name
        self._notify("variable.updated", variable_id=variable_id)
        return True

    def update_variable_value(self, variable_id: str, value: str) -> None:
        var = next((v for v in self._variables if v.id == variable_id), None)
        if var:
            var.value = value
            self._notify("variable.updated", variable_id=variable_id)

    def delete_variable(self, variable_id: str) -> bool:
        if variable_id == DEFAULT_VARIABLE_ID:
            logger.warning("Refusing to delete the default variable")
            return False
        before = len(self._variables)
        self._variables = [v for v in self._variables if v.id != variable_id]
        if len(self._variables) == before:
            return False
        self._notify("variable.removed", variable_id=variable_id)
        return True

    # ─── Files ───────────────────────────────────────────────────

    @property
    def files(self) -> List[File]:
        return list(self._files)

    def add_file(self) -> File:
        self._last_file_id += 1
        f = File(id=str(self._last_file_id), name=f"file_{self._last_file_id}")
        self._files.append(f)
        self._notify("file.added", file_id=f.id)
        return f

    def update_file_name(self, file_id: str, name: str) -> bool:
        if any(f.name == name and f.id != file_id for f in self._files):
            return False
        f = next((f for f in self._files if f.id == file_id), None)
        if f is None:
            return False
        f.name = name
        self._notify("file.updated", file_id=file_id)
        return True

    def upload_file(self, file_id: str, content: str, mime_type: str, size: int) -> None:
        f = next((f for f in self._files if f.id == file_id), None)
        if f:
            f.content = content
            f.mime_type = mime_type
            f.size = size
            self._notify("file.updated", file_id=file_id)

    def delete_file(self, file_id: str) -> None:
        self._files = [f for f in self._files if f.id != file_id]
        self._notify("file.removed", file_id=file_id)

    # ─── Workspace import/export ─────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flows": [f.model_dump() for f in self.all_flows()],
            "active_flow_id": self.active_flow_id,
            "actions": [a.model_dump() for a in self.actions.values()],
            "variables": [v.model_dump() for v in self._variables],
            "files": [f.model_dump() for f in self._files],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_model: str = DEFAULT_MODEL) -> "DefinitionStore":
        store = cls(seed_defaults=False, default_model=default_model)
        for raw in data.get("actions", []):
            action = Action.model_validate(raw)
            store.actions[action.id] = action
        for raw in data.get("flows", []):
            flow = Flow.model_validate(raw)
            store.flows[flow.id] = flow
            store.flow_order.append(flow.id)
        store._variables = [Variable.model_validate(v) for v in data.get("variables", [])]
        store._files = [File.model_validate(f) for f in data.get("files", [])]
        store._last_variable_id = max((int(v.id) for v in store._variables if v.id.isdigit()), default=0)
        store._last_file_id = max((int(f.id) for f in store._files if f.id.isdigit()), default=0)
        active = data.get("active_flow_id")
        store.active_flow_id = active if active in store.flows else (store.flow_order[0] if store.flow_order else None)
        return store
