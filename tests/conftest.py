"""
Pytest configuration and fixtures for modelquery tests.
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from modelquery.query import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from modelquery.app.dependencies import reset_engine
from modelquery.config import QuerySettings, get_settings
from modelquery.models import ModelRegistry, reset_model_registry
from modelquery.query import QueryEngine, ViewRegistry, reset_view_registry
from modelquery.session import Session
from modelquery.store import MemoryStore, new_id

MODEL_DEFINITIONS = [
    {"name": "owner"},
    {"name": "user", "relations": {"post": {}}},
    {
        "name": "post",
        "columns": ["userOriginalId"],
        "relations": {"tag": {"via": "postTag"}},
    },
    {"name": "tag"},
    {"name": "postTag", "columns": ["postOriginalId", "tagOriginalId"]},
    {"name": "note"},
]


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset process-wide registries and settings around every test."""
    reset_model_registry()
    reset_view_registry()
    reset_engine()
    get_settings.cache_clear()
    yield
    reset_model_registry()
    reset_view_registry()
    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return QuerySettings()


@pytest.fixture
def registry():
    """Model registry with the standard test models."""
    registry = ModelRegistry()
    registry.load_definitions(MODEL_DEFINITIONS)
    return registry


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def views():
    return ViewRegistry()


@pytest.fixture
def engine(registry, store, views, settings):
    """Engine without a cache, so every query reaches the store."""
    return QueryEngine(registry, store, views=views, settings=settings)


@pytest.fixture
def account_id():
    return new_id()


@pytest.fixture
def session(account_id):
    return Session(account_id=account_id)


@pytest.fixture
def make(registry, store, account_id):
    """Factory creating a stored row for a model: make("user", {"name": "ann"})."""

    def create(model_name, data=None, **kwargs):
        kwargs.setdefault("account_id", account_id)
        return store.create(registry.get(model_name), data, **kwargs)

    return create
