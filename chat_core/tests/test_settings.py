import pytest
from pydantic import ValidationError

from chat_core.config.settings import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("PROVIDER_ORDER", raising=False)
    s = Settings(_env_file=None)
    assert s.typing_speed_ms == 50
    assert s.typing_cursor == " |"
    assert s.storage_mode in ("local", "remote")


def test_relay_url_falls_back_to_remote_url():
    s = Settings(_env_file=None, relay_url=None, remote_url="https://proj.test/")
    assert s.resolved_relay_url == "https://proj.test/functions/v1/chat"
    s = Settings(_env_file=None, relay_url="https://relay.test/chat")
    assert s.resolved_relay_url == "https://relay.test/chat"


def test_provider_order_validation():
    s = Settings(_env_file=None, provider_order=[" Gateway ", "generator"])
    assert s.provider_order == ["gateway", "generator"]
    with pytest.raises(ValidationError):
        Settings(_env_file=None, provider_order=["unknown"])
    with pytest.raises(ValidationError):
        Settings(_env_file=None, provider_order=[])


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TYPING_SPEED_MS", "10")
    monkeypatch.setenv("SEGMENTER", "codepoint")
    s = Settings(_env_file=None)
    assert s.typing_speed_ms == 10
    assert s.segmenter == "codepoint"


def test_short_api_key_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, gateway_api_key="short")
