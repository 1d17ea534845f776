import pytest
from pydantic import ValidationError

from flowpilot.core.config import ChainingRule, Settings, get_settings


def test_defaults():
    settings = Settings()

    assert settings.engine.strategy == "adaptive"
    assert settings.engine.max_attempts == 3
    assert settings.engine.retry_base_delay_seconds == 1.0
    assert settings.tools.aliases["twitter"] == "x-mcp"
    assert settings.chaining.rules[0].publish_operation == "publish_draft"
    assert settings.chaining.content_max_length == 280


def test_nested_environment_overrides(monkeypatch):
    monkeypatch.setenv("FLOWPILOT_ENGINE__STRATEGY", "sequential")
    monkeypatch.setenv("FLOWPILOT_ENGINE__MAX_ATTEMPTS", "5")
    monkeypatch.setenv("FLOWPILOT_TOOLS__ENDPOINT", "http://tools.internal:9000")

    settings = Settings()

    assert settings.engine.strategy == "sequential"
    assert settings.engine.max_attempts == 5
    assert settings.tools.endpoint == "http://tools.internal:9000"


def test_get_settings_with_overrides_bypasses_cache():
    cached = get_settings()
    overridden = get_settings({"engine": {"max_attempts": 0}, "environment": "test"})

    assert overridden is not cached
    assert overridden.engine.max_attempts == 0
    assert overridden.environment == "test"
    assert get_settings() is cached


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        get_settings({"engine": {"strategy": "parallel"}})
    with pytest.raises(ValidationError):
        get_settings({"engine": {"max_attempts": -1}})


def test_chaining_rule_capability_matching():
    assert ChainingRule().matches_capability("anything")
    scoped = ChainingRule(capability="X-MCP")
    assert scoped.matches_capability("x-mcp")
    assert not scoped.matches_capability("github")
