"""Pytest configuration and fixtures."""

import asyncio

import pytest
from fastapi.testclient import TestClient

import free_proxy


def make_provider(name, reply="ok", *, priority=1, models=("fake-model",), enabled=True,
                  delay=0.0, error=None, calls=None, default_model=None):
    """In-memory provider that records its calls and answers with `reply`."""

    async def handler(messages, model):
        if calls is not None:
            calls.append((name, model))
        if delay:
            await asyncio.sleep(delay)
        if error is not None:
            raise error
        return reply

    return free_proxy.Provider(
        name=name,
        models=list(models),
        handler=handler,
        enabled=enabled,
        priority=priority,
        default_model=default_model,
    )


@pytest.fixture
def provider_factory():
    return make_provider


@pytest.fixture
def proxy_config(monkeypatch):
    """Replace the global settings; returns a setter taking Config overrides."""

    def apply(**overrides):
        cfg = free_proxy.Config(**overrides)
        monkeypatch.setattr(free_proxy, "config", cfg)
        return cfg

    return apply


@pytest.fixture
def use_providers(monkeypatch):
    def apply(*providers):
        registry = free_proxy.ProviderRegistry(list(providers))
        monkeypatch.setattr(free_proxy, "registry", registry)
        return registry

    return apply


@pytest.fixture
def client(monkeypatch, tmp_path):
    """FastAPI test client with startup run against built-in defaults."""
    monkeypatch.setenv("FREE_PROXY_CONFIG", str(tmp_path / "absent.yaml"))
    with TestClient(free_proxy.app) as test_client:
        yield test_client
