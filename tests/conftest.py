"""
Test configuration and fixtures for the langpad test suite.
"""
import sys
import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from langpad.ai_providers import AIProvider, CompletionResult
from langpad.app import AppState
from langpad.config import Settings
from langpad.definitions import DefinitionStore
from langpad.persistence import PreferenceStore
from langpad.runs import RunStore


def user_text(params) -> str:
    """Text of the first block of the last message in a chat request."""
    return params["messages"][-1]["content"][0]["text"]


class FakeClient(AIProvider):
    """Streaming completion client that answers from a (sync or async) responder."""
    name = "fake"

    def __init__(self, responder=None, delay: float = 0.01, chunk_size: int = 3):
        self.responder = responder or (lambda params: "ok")
        self.delay = delay
        self.chunk_size = chunk_size
        self.calls: List[dict] = []

    async def create_chat_completion(self, params, on_chunk=None):
        self.calls.append(params)
        await asyncio.sleep(self.delay)
        text = self.responder(params)
        if asyncio.iscoroutine(text):
            text = await text
        if on_chunk:
            for i in range(0, len(text), self.chunk_size):
                on_chunk(text[i:i + self.chunk_size])
                await asyncio.sleep(0)
        return CompletionResult(content=text)

    async def list_models(self):
        return ["gpt-4o", "gpt-4o-mini"]


class TickClock:
    """Deterministic clock: every call advances by 5ms."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(milliseconds=5)
        return self.now


def make_flow(definitions: DefinitionStore, prompts, name: str = "Test flow"):
    """Build a flow whose steps/actions carry the given user prompts.

    ``prompts`` is a list of steps, each a list of prompt strings (one per action).
    """
    flow = definitions.add_flow(name)
    for i, step_prompts in enumerate(prompts):
        step = flow.steps[0] if i == 0 else definitions.add_step_with_action(flow.id)
        for j, prompt in enumerate(step_prompts):
            if j == 0:
                action = definitions.get_action(step.action_ids[0])
            else:
                action = definitions.add_action()
                definitions.add_action_to_step(flow.id, step.id, action.id)
            definitions.update_message(action.id, action.messages[0].id, content=prompt)
    return flow


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the process environment."""
    return Settings(state_path=str(tmp_path / "state"))


@pytest.fixture
def state(settings) -> AppState:
    """A fresh application state with seeded definitions and no API key."""
    return AppState(settings=settings, preferences=PreferenceStore(settings.state_path))


@pytest.fixture
def definitions() -> DefinitionStore:
    return DefinitionStore()


@pytest.fixture
def clock() -> TickClock:
    return TickClock()


@pytest.fixture
def run_store(clock) -> RunStore:
    return RunStore(clock=clock)


@pytest.fixture
def fake_client() -> FakeClient:
    """Echo client: answers every request with its upper-cased prompt."""
    return FakeClient(lambda params: user_text(params).upper())
