import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from langpad.ai_providers import OpenAIProvider
from langpad.app import AppState
from langpad.config import Settings
from langpad.errors import AuthenticationError, ProviderError
from langpad.persistence import PreferenceStore


class TestApiKey:

    def test_valid_key(self, state):
        with patch("langpad.app.validate_key", AsyncMock(return_value=["gpt-4o", "gpt-4o-mini"])):
            message = asyncio.run(state.check_and_set_api_key("sk-good"))

        assert message is None
        assert state.provider.status == "valid"
        assert state.provider.models == ["gpt-4o", "gpt-4o-mini"]
        assert state.preferences.preferences.openai_api_key == "sk-good"
        assert state.logs.entries[-1].content == "Model list fetched. API Key OK"
        assert isinstance(state.ensure_client(), OpenAIProvider)

    @pytest.mark.parametrize("error,expected", [
        (AuthenticationError("Incorrect API key provided: sk-bad"), "Incorrect OpenAI API Key provided."),
        (AuthenticationError("unauthorized"), "Authentication failed. Please check your OpenAI API Key."),
        (ProviderError("connection reset"), "Failed to validate OpenAI API Key."),
    ])
    def test_rejected_key(self, state, error, expected):
        state.preferences.set_api_key("sk-old")
        with patch("langpad.app.validate_key", AsyncMock(side_effect=error)):
            message = asyncio.run(state.check_and_set_api_key("sk-bad"))

        assert message == expected
        assert state.provider.status == "invalid"
        assert state.preferences.preferences.openai_api_key is None
        with pytest.raises(ProviderError):
            state.ensure_client()

    def test_clear_provider_data(self, state):
        state.preferences.set_api_key("sk-good")
        state.provider.status = "valid"
        state.provider.api_key = "sk-good"
        state.clear_provider_data()
        assert state.provider.status == "idle"
        assert state.client is None
        assert state.preferences.preferences.openai_api_key is None


class TestStartup:

    def test_no_key_means_idle(self, state):
        assert state.provider.status == "idle"
        with pytest.raises(ProviderError, match="not initialized"):
            state.ensure_client()

    def test_stored_key_is_trusted(self, tmp_path):
        prefs = PreferenceStore(str(tmp_path))
        prefs.set_api_key("sk-stored")
        state = AppState(settings=Settings(state_path=str(tmp_path)), preferences=PreferenceStore(str(tmp_path)))
        assert state.provider.status == "valid"
        assert state.provider.api_key == "sk-stored"
        assert isinstance(state.ensure_client(), OpenAIProvider)

    def test_environment_key(self, tmp_path):
        state = AppState(settings=Settings(api_key="sk-env", state_path=str(tmp_path)))
        assert state.provider.api_key == "sk-env"
        assert state.preferences.path.startswith(str(tmp_path))
