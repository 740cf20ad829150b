from __future__ import annotations

from unittest.mock import MagicMock

from authz_core.cache.backends import MemoryCacheBackend
from authz_core.cache.decisions import DecisionCache
from authz_core.settings import Settings


def test_version_is_seeded_from_clock_and_bumped() -> None:
    cache = DecisionCache(MemoryCacheBackend(), seed=lambda: 1_700_000)

    assert cache.ruleset_version() == 1_700_000
    assert cache.bump_version() == 1_700_001
    assert cache.ruleset_version() == 1_700_001


def test_evicted_version_never_reuses_old_numbers() -> None:
    backend = MemoryCacheBackend()
    seeds = iter([100, 500])
    cache = DecisionCache(backend, prefix="p", seed=lambda: next(seeds))

    cache.bump_version()
    old = cache.ruleset_version()
    backend.delete("p:ruleset:version")

    assert cache.ruleset_version() > old


def test_rule_and_decision_keys_embed_version() -> None:
    cache = DecisionCache(MemoryCacheBackend(), prefix="authz")

    assert cache.rules_key(3, "data", "GET").startswith("authz:rules:v3:")
    assert cache.rules_key(3, "data", "GET") != cache.rules_key(4, "data", "GET")

    def key(version: int, store_ids: list[int], rule_id: int = 9) -> str:
        return cache.decision_key(
            version,
            rule_id=rule_id,
            service="data",
            method="GET",
            target="path:/x",
            user_id=1,
            store_ids=store_ids,
            abilities=["*"],
        )

    first = key(3, [2, 1])
    same = key(3, [1, 2, 2])
    bumped = key(4, [1, 2])

    assert first == same
    assert first != bumped
    assert first != key(3, [1, 2], rule_id=10)
    assert first.startswith("authz:decision:v3:")


def test_get_or_compute_memoizes() -> None:
    cache = DecisionCache(MemoryCacheBackend())
    compute = MagicMock(return_value=["orders.view"])

    assert cache.get_or_compute("k", 10, compute) == ["orders.view"]
    assert cache.get_or_compute("k", 10, compute) == ["orders.view"]
    compute.assert_called_once()


def test_get_or_compute_does_not_store_none() -> None:
    cache = DecisionCache(MemoryCacheBackend())
    compute = MagicMock(return_value=None)

    cache.get_or_compute("k", 10, compute)
    cache.get_or_compute("k", 10, compute)

    assert compute.call_count == 2


def test_store_epoch_changes_effective_permission_key() -> None:
    cache = DecisionCache(MemoryCacheBackend(), seed=lambda: 50)

    before = cache.effective_permissions_key(7, 3)
    cache.bump_store_epoch(3)
    after = cache.effective_permissions_key(7, 3)

    assert before != after
    assert cache.effective_permissions_key(7, 4) == cache.effective_permissions_key(7, 4)


def test_invalidate_user_store_drops_cached_entries() -> None:
    backend = MemoryCacheBackend()
    cache = DecisionCache(backend)
    backend.set(cache.effective_permissions_key(1, 2), ["a"], ttl=30)
    backend.set(cache.all_stores_key(1), True, ttl=30)

    cache.invalidate_user_store(1, 2)

    assert backend.get(cache.effective_permissions_key(1, 2)) is None
    assert backend.get(cache.all_stores_key(1)) is None


def test_from_settings_applies_backend_and_prefix() -> None:
    cache = DecisionCache.from_settings(
        Settings(_env_file=None, cache_backend="memory", cache_prefix="oracle:")
    )

    assert isinstance(cache.backend, MemoryCacheBackend)
    assert cache.rules_key(1, "data", "GET").startswith("oracle:rules:v1:")
    assert cache.all_stores_key(5) == "oracle:all-stores:5"
