"""Application state container.

``AppState`` is passed explicitly to the runner; it owns the definition,
run and log stores, the provider state and the local preferences.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Literal, Optional

from loguru import logger

from .ai_providers import AIProvider, OpenAIProvider, select_provider, validate_key
from .config import Settings
from .definitions import DefinitionStore
from .errors import AuthenticationError, ProviderError
from .logs import LogStore
from .persistence import PreferenceStore
from .runs import RunStore

ProviderStatus = Literal["idle", "validating", "valid", "invalid"]


@dataclass
class ProviderState:
    status: ProviderStatus = "idle"
    api_key: Optional[str] = None
    models: List[str] = field(default_factory=list)


def _friendly_key_error(error: Exception) -> str:
    text = str(error)
    if "Incorrect API key provided" in text:
        return "Incorrect OpenAI API Key provided."
    if isinstance(error, AuthenticationError) or "authentication" in text.lower():
        return "Authentication failed. Please check your OpenAI API Key."
    return "Failed to validate OpenAI API Key."


class AppState:

    def __init__(
        self,
        settings: Optional[Settings] = None,
        definitions: Optional[DefinitionStore] = None,
        runs: Optional[RunStore] = None,
        logs: Optional[LogStore] = None,
        preferences: Optional[PreferenceStore] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.definitions = definitions or DefinitionStore(default_model=self.settings.default_model)
        self.runs = runs or RunStore()
        self.logs = logs or LogStore()
        self.preferences = preferences or PreferenceStore(self.settings.state_path)
        self.client: Optional[AIProvider] = None

        stored_key = self.preferences.preferences.openai_api_key or self.settings.api_key
        # A stored key is assumed valid until check_and_set_api_key says otherwise.
        self.provider = ProviderState(status="valid" if stored_key else "idle", api_key=stored_key)

    async def check_and_set_api_key(self, api_key: str) -> Optional[str]:
        """Validate ``api_key`` and keep it. Returns None on success, else a user-facing message."""
        self.provider.status = "validating"
        self.provider.models = []
        try:
            models = await validate_key(api_key, self.settings.timeout_s, self.settings.retries)
        except ProviderError as e:
            logger.warning("OpenAI key validation failed: {}", e)
            self.preferences.set_api_key(None)
            self.provider = ProviderState(status="invalid")
            self.client = None
            return _friendly_key_error(e)

        self.logs.add("Model list fetched. API Key OK", "info")
        self.preferences.set_api_key(api_key)
        self.provider = ProviderState(status="valid", api_key=api_key, models=models)
        self.client = OpenAIProvider(api_key=api_key, timeout_s=self.settings.timeout_s,
                                     retries=self.settings.retries)
        return None

    def clear_provider_data(self) -> None:
        self.provider = ProviderState()
        self.client = None
        self.preferences.set_api_key(None)

    def ensure_client(self) -> AIProvider:
        """The completion client for the current key; raises ProviderError if there is none."""
        if self.client is not None:
            return self.client
        if self.provider.status != "valid" or not self.provider.api_key:
            raise ProviderError("OpenAI client is not initialized. Please validate the API key first.")
        self.client = select_provider(self.settings, self.provider.api_key)
        return self.client
