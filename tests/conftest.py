"""Shared pytest fixtures and directory-based markers."""

from __future__ import annotations

from pathlib import Path

import pytest

from authz_core.cache.backends import MemoryCacheBackend
from authz_core.cache.decisions import DecisionCache
from authz_core.settings import Settings


def pytest_collection_modifyitems(config, items) -> None:
    for item in items:
        path_str = str(Path(str(item.fspath)))
        if "/tests/integration/" in path_str:
            item.add_marker(pytest.mark.integration)
        elif "/tests/unit/" in path_str:
            item.add_marker(pytest.mark.unit)


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, database_url="sqlite:///:memory:")


@pytest.fixture()
def cache_backend() -> MemoryCacheBackend:
    return MemoryCacheBackend()


@pytest.fixture()
def decision_cache(cache_backend: MemoryCacheBackend) -> DecisionCache:
    return DecisionCache(cache_backend, prefix="test")
