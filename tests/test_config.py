"""Configuration loading tests."""

from pathlib import Path

import pytest
from pydantic import ValidationError

import free_proxy
from free_proxy import Config


def write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_missing_file_gives_defaults(tmp_path):
    cfg = Config.from_yaml(tmp_path / "nope.yaml")

    assert cfg.routing == "priority"
    assert cfg.attempt_timeout == 25.0
    assert cfg.default_model == "gpt-3.5-turbo"
    assert len(cfg.providers) == 7


def test_builtin_entries_only_need_overrides(tmp_path):
    cfg = Config.from_yaml(write(tmp_path, """
routing: shuffle
attempt_timeout: 10
providers:
  - name: Groq
    priority: 1
  - name: cohere
    enabled: false
  - Phind
"""))

    assert cfg.routing == "shuffle"
    assert cfg.attempt_timeout == 10
    assert [p.name for p in cfg.providers] == ["Groq", "Cohere", "Phind"]
    groq = cfg.providers[0]
    assert groq.kind == "openai"
    assert groq.url == "https://api.groq.com/openai/v1"
    assert groq.priority == 1
    assert cfg.providers[1].enabled is False


def test_custom_provider(tmp_path):
    cfg = Config.from_yaml(write(tmp_path, """
providers:
  - name: Local
    kind: openai
    url: http://localhost:11434/v1
    models: [llama3.1:8b]
    priority: 0
"""))

    local = cfg.providers[0]
    assert local.name == "Local"
    assert local.models == ["llama3.1:8b"]
    assert local.enabled is True


def test_env_references_are_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("GROQ_TEST_KEY", "gsk-123")
    cfg = Config.from_yaml(write(tmp_path, """
providers:
  - name: Groq
    api_key: ${GROQ_TEST_KEY}
  - name: Together
    api_key: ${SURELY_UNSET_TEST_VAR}
"""))

    assert cfg.providers[0].api_key == "gsk-123"
    assert cfg.providers[1].api_key == ""


def test_unknown_kind_is_rejected(tmp_path):
    with pytest.raises(ValidationError):
        Config.from_yaml(write(tmp_path, """
providers:
  - name: Odd
    kind: carrier-pigeon
    url: http://example.invalid
"""))


def test_port_env(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    assert Config().port == 8080


def test_prefixed_env(monkeypatch):
    monkeypatch.setenv("FREE_PROXY_ROUTING", "shuffle")
    assert Config().routing == "shuffle"


def test_uvicorn_log_level_maps_loguru_names():
    assert free_proxy.uvicorn_log_level("SUCCESS") == "info"
    assert free_proxy.uvicorn_log_level("WARNING") == "warning"
    assert free_proxy.uvicorn_log_level("trace") == "trace"
    assert free_proxy.uvicorn_log_level("chatty") == "info"


def test_main_passes_uvicorn_a_known_level(tmp_path, monkeypatch):
    monkeypatch.setenv("FREE_PROXY_CONFIG", str(write(tmp_path, "log_level: SUCCESS\nport: 4321\n")))
    calls = []
    monkeypatch.setattr(free_proxy.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    free_proxy.main()

    assert calls == [("free_proxy:app", {"host": "0.0.0.0", "port": 4321, "log_level": "info"})]
