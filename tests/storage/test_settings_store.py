import pytest

from anomady import storage
from anomady.errors import ValidationError


def test_defaults():
    config = storage.get_config()
    assert config["history"] == {
        "max_buffer": 25, "chunk_size": 15, "recent_window": 10,
        "max_history_turns": 200, "max_turn_chars": 20000,
    }
    assert config["default_model"] == "gemini-1.5-flash-latest"
    assert config["llm_connection"]["provider_format"] == "gemini"


def test_api_key_from_env(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    assert storage.get_config()["llm_connection"]["api_key"] == "from-env"


def test_partial_update_merges():
    storage.update_config({"history": {"max_buffer": 30}})
    config = storage.get_config()
    assert config["history"]["max_buffer"] == 30
    assert config["history"]["chunk_size"] == 15


def test_update_llm_connection_key_by_key():
    storage.update_config({"llm_connection": {"model": "local"}})
    conn = storage.get_config()["llm_connection"]
    assert conn["model"] == "local"
    assert conn["provider_url"] == "https://generativelanguage.googleapis.com"


@pytest.mark.parametrize("history", [
    {"max_buffer": 0},
    {"chunk_size": 25},
    {"recent_window": 30},
    {"max_history_turns": 10},
    {"max_turn_chars": 0},
    {"chunk_size": "many"},
])
def test_invalid_history_rejected(history):
    with pytest.raises(ValidationError):
        storage.update_config({"history": history})
    assert storage.get_config()["history"]["max_buffer"] == 25
