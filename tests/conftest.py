"""Test configuration and fixtures."""

import os

os.environ.setdefault("DEEPSEEK_API_KEY", "test-key")

import pytest

from deepseek_proxy.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached per process; reset around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with a fixed test credential."""
    return Settings(deepseek_api_key="test-key", _env_file=None)
