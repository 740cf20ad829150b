"""Versioned cache for rule lists, authorization decisions and permission lookups.

Keys derived from rule data embed the ruleset version. Mutating a rule bumps
the version, so every older rule-list and decision entry becomes unreachable
at once and simply ages out under its TTL. Counters are seeded from the wall
clock when missing, which keeps an evicted counter from ever coming back with
a number that old entries were written under.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from authz_core.cache.backends import CacheBackend, build_cache_backend
from authz_core.settings import Settings

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _digest(parts: Any) -> str:
    encoded = json.dumps(parts, separators=(",", ":"), sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class DecisionCache:
    """Cache facade over a :class:`CacheBackend`."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        prefix: str = "authz",
        seed: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        self._backend = backend
        self._prefix = prefix
        self._seed = seed

    @classmethod
    def from_settings(cls, settings: Settings) -> DecisionCache:
        return cls(build_cache_backend(settings), prefix=settings.cache_prefix)

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def _key(self, *parts: object) -> str:
        return ":".join([self._prefix, *(str(part) for part in parts)])

    # ---- Counters ----

    def _read_counter(self, key: str) -> int:
        value = self._backend.get(key)
        if value is None:
            self._backend.add(key, self._seed())
            value = self._backend.get(key)
            if value is None:
                # Lost a race with a delete; the seed is still a safe fresh value.
                value = self._seed()
        return int(value)

    def _bump_counter(self, key: str) -> int:
        self._read_counter(key)
        return self._backend.incr(key)

    def ruleset_version(self) -> int:
        return self._read_counter(self._key("ruleset", "version"))

    def bump_version(self) -> int:
        version = self._bump_counter(self._key("ruleset", "version"))
        logger.info("authz.ruleset.version.bumped", extra={"ruleset_version": version})
        return version

    def store_epoch(self, store_id: int) -> int:
        return self._read_counter(self._key("store", store_id, "epoch"))

    def bump_store_epoch(self, store_id: int) -> int:
        epoch = self._bump_counter(self._key("store", store_id, "epoch"))
        logger.debug(
            "authz.store.epoch.bumped",
            extra={"store_id": store_id, "store_epoch": epoch},
        )
        return epoch

    # ---- Memoization ----

    def get_or_compute[T](
        self,
        key: str,
        ttl: int,
        compute: Callable[[], T],
        *,
        label: str = "entry",
    ) -> T:
        """Return the cached value for ``key`` or compute and store it.

        ``None`` results are returned but never stored.
        """

        cached = self._backend.get(key)
        if cached is not None:
            logger.debug(f"authz.{label}.cache.hit", extra={"cache_key": key})
            return cached
        value = compute()
        if value is not None:
            self._backend.set(key, value, ttl)
        return value

    # ---- Key builders ----

    def rules_key(self, version: int, service: str, method: str) -> str:
        return self._key("rules", f"v{version}", _digest([service, method]))

    def decision_key(
        self,
        version: int,
        *,
        rule_id: int,
        service: str,
        method: str,
        target: str,
        user_id: int,
        store_ids: Iterable[int],
        abilities: Iterable[str],
        roles: Iterable[str] = (),
        permissions: Iterable[str] = (),
    ) -> str:
        payload = {
            "rule": rule_id,
            "roles": sorted(set(roles)),
            "permissions": sorted(set(permissions)),
            "service": service,
            "method": method,
            "target": target,
            "user": user_id,
            "stores": sorted(set(store_ids)),
            "abilities": sorted(set(abilities)),
        }
        return self._key("decision", f"v{version}", _digest(payload))

    def effective_permissions_key(self, user_id: int, store_id: int) -> str:
        epoch = self.store_epoch(store_id)
        return self._key("eff", user_id, store_id, f"e{epoch}")

    def all_stores_key(self, user_id: int) -> str:
        return self._key("all-stores", user_id)

    # ---- Invalidation ----

    def invalidate_user_store(self, user_id: int, store_id: int) -> None:
        self._backend.delete(
            self.effective_permissions_key(user_id, store_id),
            self.all_stores_key(user_id),
        )

    def invalidate_all_stores(self, user_id: int) -> None:
        self._backend.delete(self.all_stores_key(user_id))


__all__ = ["DecisionCache"]
