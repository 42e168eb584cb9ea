import os
import json
from typing import Literal, Optional

from pydantic import BaseModel, ValidationError

Theme = Literal["dark", "light", "system"]


class Preferences(BaseModel):
    """Locally persisted settings: the stored credential and two UI flags."""
    openai_api_key: Optional[str] = None
    debug_visible: bool = False
    theme: Theme = "system"


class PreferenceStore:
    """Reads preferences at startup and writes them back on every change."""

    FILENAME = "preferences.json"

    def __init__(self, base_path: str = "./.langpad_state"):
        self.base_path = base_path
        self.path = os.path.join(self.base_path, self.FILENAME)
        self.preferences = self.load()

    def load(self) -> Preferences:
        if not os.path.exists(self.path):
            return Preferences()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return Preferences.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError):
            # Unreadable file: start from defaults, it is rewritten on the next change.
            return Preferences()

    def save(self) -> str:
        os.makedirs(self.base_path, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.preferences.model_dump(), f, indent=2)
        return self.path

    def set_api_key(self, api_key: Optional[str]) -> None:
        self.preferences.openai_api_key = api_key
        self.save()

    def set_debug_visible(self, visible: bool) -> None:
        self.preferences.debug_visible = visible
        self.save()

    def toggle_debug_visible(self) -> bool:
        self.set_debug_visible(not self.preferences.debug_visible)
        return self.preferences.debug_visible

    def set_theme(self, theme: Theme) -> None:
        self.preferences = Preferences.model_validate({**self.preferences.model_dump(), "theme": theme})
        self.save()
