"""Pytest fixtures and helpers for intent-router tests."""
from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _reset_config_cache():
    """Clear the load_config LRU cache and reset _env before (and after) every test.

    Each test gets a fresh config load, so monkeypatching ROUTER_CONFIG_PATH
    works without tests bleeding into each other.
    """
    from intent_router.config import loader as config_loader
    config_loader.load_config.cache_clear()
    config_loader._env = None
    yield
    config_loader.load_config.cache_clear()
    config_loader._env = None
