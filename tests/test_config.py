import pytest

from langpad.config import Settings


def test_defaults():
    s = Settings.from_env({})
    assert s.api_key is None
    assert s.default_model == "gpt-4o"
    assert (s.timeout_s, s.retries) == (60, 2)
    assert s.continue_on_step_failure is True
    assert s.state_path == "./.langpad_state"
    assert s.log_level == "INFO"


def test_langpad_key_wins():
    assert Settings.from_env({"OPENAI_API_KEY": "sk-a"}).api_key == "sk-a"
    assert Settings.from_env({"OPENAI_API_KEY": "sk-a", "LANGPAD_API_KEY": "sk-b"}).api_key == "sk-b"


def test_overrides():
    s = Settings.from_env({
        "LANGPAD_DEFAULT_MODEL": "gpt-4o-mini",
        "LANGPAD_TIMEOUT_S": "5",
        "LANGPAD_RETRIES": "0",
        "LANGPAD_STATE_PATH": "/tmp/lp",
        "LANGPAD_LOG_LEVEL": "debug",
    })
    assert s.default_model == "gpt-4o-mini"
    assert (s.timeout_s, s.retries) == (5, 0)
    assert s.state_path == "/tmp/lp"
    assert s.log_level == "DEBUG"


def test_invalid_numbers_fall_back():
    s = Settings.from_env({"LANGPAD_TIMEOUT_S": "soon", "LANGPAD_RETRIES": ""})
    assert (s.timeout_s, s.retries) == (60, 2)


@pytest.mark.parametrize("raw,expected", [
    ("false", False), ("0", False), ("no", False), ("TRUE", True), ("on", True), ("", True),
])
def test_continue_on_step_failure(raw, expected):
    assert Settings.from_env({"LANGPAD_CONTINUE_ON_STEP_FAILURE": raw}).continue_on_step_failure is expected


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("LANGPAD_RETRIES", "7")
    assert Settings.from_env().retries == 7
