from enum import Enum
from datetime import datetime
from typing import List, Literal, Optional
import re
import uuid

from pydantic import BaseModel, Field, field_validator, ConfigDict

VARIABLE_SIGIL = "$"
# Sigil followed by anything but whitespace and braces, so every valid name can appear in a placeholder.
VARIABLE_NAME_PATTERN = r"\$[^{}\s]+"
VARIABLE_NAME_RE = re.compile(VARIABLE_NAME_PATTERN)
DEFAULT_MODEL = "gpt-4o"
DEFAULT_TEMPERATURE = 0.7


def new_id() -> str:
    return uuid.uuid4().hex


# ─── Definitions ────────────────────────────────────────────────

class Variable(BaseModel):
    """A named text value referenced from prompts as ``{{$name}}``."""
    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str
    value: str = ""

    @field_validator("name")
    @classmethod
    def require_sigil(cls, v: str) -> str:
        if not VARIABLE_NAME_RE.fullmatch(v):
            raise ValueError(f"Variable name must start with '{VARIABLE_SIGIL}' and contain no spaces or braces: {v!r}")
        return v


class File(BaseModel):
    """An attachable file. ``content`` is an encoded payload (usually a data URL) or empty."""
    id: str
    name: str
    content: str = ""
    mime_type: str = ""
    size: int = Field(default=0, ge=0)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant"] = "user"
    content: str = ""
    files_enabled: bool = False
    files: List[str] = Field(default_factory=list)


class Action(BaseModel):
    """A single model call definition."""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id)
    selected_model: Optional[str] = DEFAULT_MODEL
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=1.0)
    system_prompt_enabled: bool = False
    system_prompt: str = ""
    structured_output_enabled: bool = False
    structured_output: str = ""
    messages: List[Message] = Field(default_factory=lambda: [Message()])
    details_collapsed: bool = False


class Step(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = ""
    action_ids: List[str] = Field(default_factory=list)


class Flow(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = ""
    steps: List[Step] = Field(default_factory=list)


# ─── Execution records ──────────────────────────────────────────

class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})
# Statuses that count as "settled" when aggregating children into a parent.
SETTLED_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})


class _Timed(BaseModel):
    status: RunStatus = RunStatus.IDLE
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None  # milliseconds

    def stamp_start(self, now: datetime) -> None:
        self.status = RunStatus.RUNNING
        self.start_time = now
        self.end_time = None
        self.duration = None

    def stamp_end(self, status: RunStatus, now: datetime) -> None:
        self.status = status
        self.end_time = now
        if self.start_time is not None:
            self.duration = (now - self.start_time).total_seconds() * 1000.0

    def reset_timing(self) -> None:
        self.status = RunStatus.IDLE
        self.start_time = None
        self.end_time = None
        self.duration = None


class ActionRun(_Timed):
    id: str = Field(default_factory=new_id)
    action_id: str
    output: str = ""
    streaming_output: bool = False
    error: Optional[str] = None

    def reset(self) -> None:
        self.reset_timing()
        self.output = ""
        self.error = None
        self.streaming_output = False


class StepRun(_Timed):
    id: str = Field(default_factory=new_id)
    step_id: str
    actions: List[ActionRun] = Field(default_factory=list)


class Run(_Timed):
    id: str = Field(default_factory=new_id)
    flow_id: str
    version: int = Field(default=1, ge=1)
    steps: List[StepRun] = Field(default_factory=list)


# ─── Log feed ───────────────────────────────────────────────────

LogLevel = Literal["info", "warn", "error", "debug"]


class LogEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime
    level: LogLevel = "info"
    content: str = ""
