"""Shared test fixtures for swproxy."""

from __future__ import annotations

import pytest

from swproxy.core.config import IDENTITY_ENV_VARS, get_proxy_config

IDENTITY_ENV = {
    "HOST": "api.example.test",
    "X_ID": "id-123",
    "X_SIGNATURE": "sig-abc",
    "USER_AGENT": "sw-client/1.0",
    "X_LICENSE": "lic-xyz",
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Start every test without identity env vars and with a fresh config cache."""
    for name in (*IDENTITY_ENV_VARS, "PORT", "SWPROXY_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    get_proxy_config.cache_clear()
    yield
    get_proxy_config.cache_clear()


@pytest.fixture()
def identity_env(monkeypatch):
    """Populate all identity env vars."""
    for name, value in IDENTITY_ENV.items():
        monkeypatch.setenv(name, value)
    return IDENTITY_ENV
