"""Pytest configuration and fixtures."""

import os

import pytest


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["EMBEDDING_PROVIDER"] = "deterministic"
    os.environ["RAG_ENV"] = "test"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop cached settings so per-test env patches take effect."""
    from askbrain.core.capability_detector import get_capability_detector
    from askbrain.core.config import get_settings

    get_settings.cache_clear()
    get_capability_detector.cache_clear()
    yield
    get_settings.cache_clear()
    get_capability_detector.cache_clear()
