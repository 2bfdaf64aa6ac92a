from __future__ import annotations

from importlib import reload

import pytest

from b2c_trace_interpreter import config as config_module


def _reload_with_env(monkeypatch, env: dict):
    for k in ("DEDUP_THRESHOLD_MS", "SUPPORTED_EVENT_INSTANCES", "JOURNEY_NAME_PREFIXES", "SPLIT_ON_AUTH_RESTART"):
        monkeypatch.delenv(k, raising=False)
    for k, v in env.items():
        monkeypatch.setenv(k, v)
    # Bust lru_cache by reloading module
    reload(config_module)
    return config_module.get_settings()


def test_defaults(monkeypatch):
    s = _reload_with_env(monkeypatch, {})
    assert s.DEDUP_THRESHOLD_MS == 1000
    assert s.SUPPORTED_EVENT_INSTANCES == [
        "Event:AUTH",
        "Event:API",
        "Event:SELFASSERTED",
        "Event:ClaimsExchange",
    ]
    assert "B2C_1A_" in s.JOURNEY_NAME_PREFIXES
    assert s.SPLIT_ON_AUTH_RESTART is False


def test_comma_separated_lists_and_overrides(monkeypatch):
    s = _reload_with_env(
        monkeypatch,
        {
            "SUPPORTED_EVENT_INSTANCES": "Event:AUTH, Event:API ,",
            "JOURNEY_NAME_PREFIXES": "B2C_1A_",
            "DEDUP_THRESHOLD_MS": "250",
            "SPLIT_ON_AUTH_RESTART": "true",
        },
    )
    assert s.SUPPORTED_EVENT_INSTANCES == ["Event:AUTH", "Event:API"]
    assert s.JOURNEY_NAME_PREFIXES == ["B2C_1A_"]
    assert s.DEDUP_THRESHOLD_MS == 250
    assert s.SPLIT_ON_AUTH_RESTART is True


def test_invalid_values_raise_runtime_error(monkeypatch):
    with pytest.raises(RuntimeError, match="DEDUP_THRESHOLD_MS"):
        _reload_with_env(monkeypatch, {"DEDUP_THRESHOLD_MS": "-5"})
    with pytest.raises(RuntimeError, match="SUPPORTED_EVENT_INSTANCES"):
        _reload_with_env(monkeypatch, {"SUPPORTED_EVENT_INSTANCES": " , "})
    monkeypatch.delenv("SUPPORTED_EVENT_INSTANCES")
    reload(config_module)
