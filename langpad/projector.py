"""Execution Projector: turns flow definitions into compiled, API-ready flows.

In substitute mode variable tokens are replaced and file blocks carry the file
payload. In preview mode text is left as written and file blocks carry a
``file_id:<id>`` reference instead of the payload. Back-reference tokens are
never touched here; they are resolved per action at execution time.
"""

from __future__ import annotations
import json
from typing import Any, Dict, List, Optional, Sequence

from .definitions import DefinitionStore
from .resolver import substitute_variables
from .schemas import (
    PAYLOAD_MASK,
    CompiledAction,
    CompiledFlow,
    CompiledMessage,
    CompiledStep,
    FileBlock,
    FileData,
    ImageUrl,
    ImageUrlBlock,
    TextBlock,
)
from .types import Action, File, Variable

_REFERENCE_PREFIXES = ("file_id:", "http://", "https://")


def _file_block(file: File, substitute: bool):
    data = file.content if substitute else f"file_id:{file.id}"
    if file.is_image:
        return ImageUrlBlock(image_url=ImageUrl(url=data))
    return FileBlock(file=FileData(file_data=data, filename=file.name))


def compile_action(
    action: Action,
    variables: Sequence[Variable],
    files: Sequence[File],
    substitute: bool = False,
) -> CompiledAction:
    files_by_id = {f.id: f for f in files}

    def _text(raw: str) -> str:
        return substitute_variables(raw, variables) if substitute else raw

    messages: List[CompiledMessage] = []
    if action.system_prompt_enabled and action.system_prompt:
        messages.append(CompiledMessage(role="system", content=[TextBlock(text=_text(action.system_prompt))]))

    for msg in action.messages:
        content = []
        text = _text(msg.content)
        if text:
            content.append(TextBlock(text=text))
        if msg.files_enabled:
            for file_id in msg.files:
                file = files_by_id.get(file_id)
                if file is not None:
                    content.append(_file_block(file, substitute))
        if content:
            messages.append(CompiledMessage(role=msg.role, content=content))

    structured_output = None
    if action.structured_output_enabled and action.structured_output:
        structured_output = _text(action.structured_output)

    return CompiledAction(
        model=action.selected_model or "unknown",
        temperature=action.temperature,
        messages=messages,
        structured_output=structured_output,
    )


def project_flow(flow_id: str, definitions: DefinitionStore, substitute: bool = False) -> Optional[CompiledFlow]:
    """Compile ``flow_id`` against the current definitions; None if the flow is unknown."""
    flow = definitions.get_flow(flow_id)
    if flow is None:
        return None
    variables = definitions.variables
    files = definitions.files
    steps: List[CompiledStep] = []
    for step in flow.steps:
        actions = [definitions.get_action(aid) for aid in step.action_ids]
        steps.append(CompiledStep(actions=[
            compile_action(a, variables, files, substitute) for a in actions if a is not None
        ]))
    return CompiledFlow(steps=steps)


def _is_payload(value: Any) -> bool:
    # References and remote URLs are shown; anything else is file content.
    return isinstance(value, str) and bool(value) and not value.startswith(_REFERENCE_PREFIXES)


def _mask_payloads(obj: Any) -> None:
    if isinstance(obj, list):
        for item in obj:
            _mask_payloads(item)
        return
    if not isinstance(obj, dict):
        return
    for key, value in obj.items():
        if key == "file" and isinstance(value, dict) and _is_payload(value.get("file_data")):
            value["file_data"] = PAYLOAD_MASK
        elif key == "image_url" and isinstance(value, dict) and _is_payload(value.get("url")):
            value["url"] = PAYLOAD_MASK
        else:
            _mask_payloads(value)


def stringify_compiled_flow(compiled: Optional[CompiledFlow]) -> Optional[str]:
    """Pretty JSON for the debug panel, with data-URL payloads masked."""
    if compiled is None:
        return None
    data: Dict[str, Any] = compiled.to_wire()
    _mask_payloads(data)
    return json.dumps(data, indent=2, ensure_ascii=False)


def project_flow_as_string(flow_id: str, definitions: DefinitionStore, substitute: bool = False) -> Optional[str]:
    return stringify_compiled_flow(project_flow(flow_id, definitions, substitute))
