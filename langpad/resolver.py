"""Placeholder substitution for prompt text.

Two placeholder spellings are accepted, ``{{ name }}`` and ``{ name }``, with
optional whitespace inside the braces. Names are either variable names
(``$topic``) or positional back-references to an earlier action's output
(``$step1.action2.output``, 1-indexed).

Every function makes a single ``re.sub`` pass, so text substituted into the
result is never scanned again.
"""

from __future__ import annotations
import re
from typing import Dict, Iterable, List, Mapping, Optional, Union

from loguru import logger

from .types import VARIABLE_NAME_PATTERN, Run, Variable

_NAME = VARIABLE_NAME_PATTERN
TOKEN_RE = re.compile(r"\{\{\s*(?P<double>" + _NAME + r")\s*\}\}|\{\s*(?P<single>" + _NAME + r")\s*\}")
BACK_REFERENCE_RE = re.compile(r"^\$step(\d+)\.action(\d+)\.output$")

Variables = Union[Iterable[Variable], Mapping[str, Optional[str]]]


def _variable_map(variables: Optional[Variables]) -> Dict[str, str]:
    if variables is None:
        return {}
    if isinstance(variables, Mapping):
        return {name: value or "" for name, value in variables.items()}
    return {v.name: v.value or "" for v in variables}


def _token_name(match: re.Match) -> str:
    return match.group("double") or match.group("single")


def _back_reference(name: str, run: Optional[Run], current_step_index: int) -> str:
    m = BACK_REFERENCE_RE.match(name)
    step_idx = int(m.group(1)) - 1
    action_idx = int(m.group(2)) - 1
    if run is None:
        return ""
    if step_idx < 0 or step_idx >= current_step_index:
        logger.warning("Invalid variable reference: {} (step {} is not before step {})",
                       name, step_idx + 1, current_step_index + 1)
        return ""
    if step_idx >= len(run.steps) or action_idx < 0 or action_idx >= len(run.steps[step_idx].actions):
        logger.warning("Invalid variable reference: {} (no such action in run {})", name, run.id)
        return ""
    return run.steps[step_idx].actions[action_idx].output or ""


def is_back_reference(name: str) -> bool:
    return BACK_REFERENCE_RE.match(name) is not None


def resolve(
    text: Optional[str],
    variables: Optional[Variables] = None,
    run: Optional[Run] = None,
    current_step_index: int = 0,
) -> str:
    """Substitute variables and back-references in one pass.

    Back-references only resolve against steps strictly before
    ``current_step_index``; anything else (including a missing ``run``)
    becomes the empty string. Unknown variable tokens are kept verbatim.
    """
    if not text:
        return ""
    values = _variable_map(variables)

    def _sub(match: re.Match) -> str:
        name = _token_name(match)
        if is_back_reference(name):
            return _back_reference(name, run, current_step_index)
        if name in values:
            return values[name]
        return match.group(0)

    return TOKEN_RE.sub(_sub, text)


def substitute_variables(text: Optional[str], variables: Optional[Variables]) -> str:
    """Replace variable tokens only; back-reference tokens pass through untouched."""
    if not text:
        return ""
    values = _variable_map(variables)

    def _sub(match: re.Match) -> str:
        name = _token_name(match)
        if not is_back_reference(name) and name in values:
            return values[name]
        return match.group(0)

    return TOKEN_RE.sub(_sub, text)


def resolve_back_references(text: Optional[str], run: Optional[Run], current_step_index: int) -> str:
    """Replace back-reference tokens only."""
    if not text:
        return ""

    def _sub(match: re.Match) -> str:
        name = _token_name(match)
        if is_back_reference(name):
            return _back_reference(name, run, current_step_index)
        return match.group(0)

    return TOKEN_RE.sub(_sub, text)


def list_placeholders(text: Optional[str]) -> List[str]:
    """Placeholder names in order of appearance, for preview listings."""
    if not text:
        return []
    return [_token_name(m) for m in TOKEN_RE.finditer(text)]
