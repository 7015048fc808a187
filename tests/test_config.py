import json

import pytest

from leasing_chat.config import Settings
from leasing_chat.utils.fixture_loader import load_operator_config


def test_defaults(monkeypatch):
    for name in ["LEAD_SYNC_MODE", "SESSION_BACKEND", "LEAD_POLICY", "OPENAI_API_KEY", "LEAD_SYNC_URL"]:
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.lead_sync.mode == "background"
    assert settings.store.backend == "memory"
    assert settings.lead_policy == "phone|email"
    assert settings.completion.api_key is None


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("LEAD_SYNC_MODE", "inline")
    monkeypatch.setenv("LEAD_SYNC_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("COLLECT_MOVE_IN", "yes")
    monkeypatch.setenv("LEAD_POLICY", "first_name+phone")
    settings = Settings.from_env()
    assert settings.lead_sync.mode == "inline"
    assert settings.lead_sync.max_attempts == 5
    assert settings.collect_move_in
    assert settings.lead_policy == "first_name+phone"


@pytest.mark.parametrize(
    "name, value",
    [("LEAD_SYNC_MODE", "sometimes"), ("SESSION_BACKEND", "redis"), ("COMPLETION_MAX_TOKENS", "lots")],
)
def test_bad_values_fail_loudly(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Settings.from_env()


def test_operator_fixture_loads():
    operator = load_operator_config()
    assert operator.property_name == "South Oak Apartments"
    assert "{tour_time}" in operator.effective_template()
    assert "See you then" not in operator.knowledge_text()


def test_operator_override_path(tmp_path):
    path = tmp_path / "operator.json"
    path.write_text(json.dumps({"assistant_name": "Ava", "property_name": "Maple Court", "unused": 1}))
    operator = load_operator_config(path)
    assert operator.assistant_name == "Ava"
    assert operator.knowledge_base == []

    with pytest.raises(FileNotFoundError):
        load_operator_config(tmp_path / "missing.json")
