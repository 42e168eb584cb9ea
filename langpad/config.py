from __future__ import annotations
import os
from typing import Mapping, Optional

from pydantic import BaseModel

from .types import DEFAULT_MODEL


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(env.get(key, default))
    except (TypeError, ValueError):
        return default


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime settings, read from LANGPAD_* environment variables."""
    api_key: Optional[str] = None
    default_model: str = DEFAULT_MODEL
    timeout_s: int = 60
    retries: int = 2
    continue_on_step_failure: bool = True
    state_path: str = "./.langpad_state"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            api_key=env.get("LANGPAD_API_KEY") or env.get("OPENAI_API_KEY") or None,
            default_model=env.get("LANGPAD_DEFAULT_MODEL") or DEFAULT_MODEL,
            timeout_s=_get_int(env, "LANGPAD_TIMEOUT_S", 60),
            retries=_get_int(env, "LANGPAD_RETRIES", 2),
            continue_on_step_failure=_get_bool(env, "LANGPAD_CONTINUE_ON_STEP_FAILURE", True),
            state_path=env.get("LANGPAD_STATE_PATH") or "./.langpad_state",
            log_level=(env.get("LANGPAD_LOG_LEVEL") or "INFO").upper(),
        )
