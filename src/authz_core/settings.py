"""Authorization oracle settings (conventional Pydantic v2)."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import timedelta
from functools import lru_cache
from typing import Any, ClassVar, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import DotEnvSettingsSource, EnvSettingsSource

# ---- Defaults ---------------------------------------------------------------

DEFAULT_DATABASE_URL = "sqlite:///./data/authz.sqlite"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_SUPER_ROLES = ["super-admin"]
DEFAULT_DECISION_TTL = timedelta(seconds=20)
DEFAULT_RULESET_TTL = timedelta(seconds=60)
DEFAULT_EFFECTIVE_PERMISSIONS_TTL = timedelta(seconds=30)
DEFAULT_ALL_STORES_TTL = timedelta(seconds=30)
DEFAULT_REDIS_SOCKET_TIMEOUT = timedelta(milliseconds=250)

ALLOWED_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
ALLOWED_LOG_FORMATS = frozenset({"console", "json"})

_LENIENT_LIST_FIELDS = {"super_roles"}

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


# ---- Helpers ----------------------------------------------------------------

def _parse_duration(value: Any, *, field_name: str) -> timedelta:
    """Accept seconds (int/float/str) or '60s'/'5m'/'1h'/'14d'."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError(f"{field_name} must not be blank")
        try:
            seconds = float(s)  # plain seconds
        except ValueError:
            unit = s[-1].lower()
            num = s[:-1].strip()
            if unit not in _UNIT_SECONDS or not num:
                raise ValueError(
                    f"{field_name} must be secs or 'Xs','Xm','Xh','Xd'"
                ) from None
            try:
                seconds = float(num) * _UNIT_SECONDS[unit]
            except ValueError as exc:
                raise ValueError(
                    f"{field_name} must be secs or 'Xs','Xm','Xh','Xd'"
                ) from exc
    else:
        raise TypeError(f"{field_name} must be number, duration string, or timedelta")
    if seconds <= 0:
        raise ValueError(f"{field_name} must be > 0 seconds")
    return timedelta(seconds=seconds)


def _list_from_env(value: Any, *, default: list[str]) -> list[str]:
    """JSON array or comma string; strip empties; dedupe preserving order."""
    if value is None:
        items = list(default)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            items = []
        elif s.startswith("["):
            try:
                parsed = json.loads(s)
            except json.JSONDecodeError as exc:
                raise ValueError("Expected a JSON array") from exc
            if not isinstance(parsed, list):
                raise ValueError("Expected a JSON array")
            items = [str(x).strip() for x in parsed if str(x).strip()]
        else:
            items = [seg.strip() for seg in s.split(",") if seg.strip()]
    elif isinstance(value, (list, tuple, set)):
        items = [str(x).strip() for x in value if str(x).strip()]
    else:
        raise TypeError("Expected string or list")

    seen, out = set(), []
    for x in items:
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out


# ---- Settings ---------------------------------------------------------------

class _LenientEnvSettingsSource(EnvSettingsSource):
    """Environment source that preserves raw strings for list-like fields."""

    lenient_fields: ClassVar[set[str]] = _LENIENT_LIST_FIELDS

    def prepare_field_value(
        self,
        field_name: str,
        field,
        value: Any,
        value_is_complex: bool,
    ) -> Any:
        if field_name in self.lenient_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)


class _LenientDotEnvSettingsSource(DotEnvSettingsSource):
    """Dotenv source that preserves raw strings for list-like fields."""

    lenient_fields: ClassVar[set[str]] = _LENIENT_LIST_FIELDS

    def prepare_field_value(
        self,
        field_name: str,
        field,
        value: Any,
        value_is_complex: bool,
    ) -> Any:
        if field_name in self.lenient_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)


class Settings(BaseSettings):
    """Oracle settings loaded from AUTHZ_* environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AUTHZ_",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        str_strip_whitespace=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        env_source = _LenientEnvSettingsSource(
            settings_cls,
            case_sensitive=getattr(env_settings, "case_sensitive", None),
            env_prefix=getattr(env_settings, "env_prefix", None),
            env_nested_delimiter=getattr(env_settings, "env_nested_delimiter", None),
            env_ignore_empty=getattr(env_settings, "env_ignore_empty", None),
            env_parse_none_str=getattr(env_settings, "env_parse_none_str", None),
            env_parse_enums=getattr(env_settings, "env_parse_enums", None),
        )
        dotenv_source = _LenientDotEnvSettingsSource(
            settings_cls,
            env_file=getattr(dotenv_settings, "env_file", None),
            env_file_encoding=getattr(dotenv_settings, "env_file_encoding", None),
            case_sensitive=getattr(dotenv_settings, "case_sensitive", None),
            env_prefix=getattr(dotenv_settings, "env_prefix", None),
            env_nested_delimiter=getattr(dotenv_settings, "env_nested_delimiter", None),
            env_ignore_empty=getattr(dotenv_settings, "env_ignore_empty", None),
            env_parse_none_str=getattr(dotenv_settings, "env_parse_none_str", None),
            env_parse_enums=getattr(dotenv_settings, "env_parse_enums", None),
        )
        return (init_settings, env_source, dotenv_source, file_secret_settings)

    # Core
    logging_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Policy
    allow_if_no_rule: bool = False
    super_roles: list[str] = Field(default_factory=lambda: list(DEFAULT_SUPER_ROLES))
    wildcard_ability: str = Field(default="*", min_length=1)
    hierarchy_max_depth: int = Field(16, ge=1, le=64)

    # Caching
    cache_backend: Literal["memory", "redis"] = "memory"
    cache_prefix: str = Field(default="authz", min_length=1)
    decision_cache_ttl: timedelta = Field(default=DEFAULT_DECISION_TTL)
    ruleset_cache_ttl: timedelta = Field(default=DEFAULT_RULESET_TTL)
    effective_permissions_cache_ttl: timedelta = Field(default=DEFAULT_EFFECTIVE_PERMISSIONS_TTL)
    all_stores_cache_ttl: timedelta = Field(default=DEFAULT_ALL_STORES_TTL)
    redis_url: str = DEFAULT_REDIS_URL
    redis_socket_timeout: timedelta = Field(default=DEFAULT_REDIS_SOCKET_TIMEOUT)

    # Database
    database_url: str = DEFAULT_DATABASE_URL
    database_echo: bool = False
    database_pool_size: int = Field(5, ge=1)       # ignored by sqlite
    database_max_overflow: int = Field(10, ge=0)
    database_pool_timeout: int = Field(30, gt=0)

    # ---- Validators ----

    @field_validator("logging_level", mode="before")
    @classmethod
    def _v_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v).strip()).upper()
        if not s:
            return "INFO"
        if s not in ALLOWED_LOG_LEVELS:
            allowed = ", ".join(sorted(ALLOWED_LOG_LEVELS))
            raise ValueError(f"AUTHZ_LOGGING_LEVEL must be one of: {allowed}.")
        return s

    @field_validator("log_format", mode="before")
    @classmethod
    def _v_log_format(cls, v: Any) -> str:
        s = ("" if v is None else str(v).strip()).lower()
        if not s:
            return "console"
        if s not in ALLOWED_LOG_FORMATS:
            allowed = ", ".join(sorted(ALLOWED_LOG_FORMATS))
            raise ValueError(f"AUTHZ_LOG_FORMAT must be one of: {allowed}.")
        return s

    @field_validator("cache_backend", mode="before")
    @classmethod
    def _v_cache_backend(cls, v: Any) -> str:
        if v in (None, ""):
            return "memory"
        return str(v).strip().lower()

    @field_validator("super_roles", mode="before")
    @classmethod
    def _v_super_roles(cls, v: Any) -> list[str]:
        return _list_from_env(v, default=DEFAULT_SUPER_ROLES)

    @field_validator(
        "decision_cache_ttl",
        "ruleset_cache_ttl",
        "effective_permissions_cache_ttl",
        "all_stores_cache_ttl",
        "redis_socket_timeout",
        mode="before",
    )
    @classmethod
    def _v_durations(cls, v: Any, info: ValidationInfo) -> timedelta:
        return _parse_duration(v, field_name=f"AUTHZ_{info.field_name.upper()}")

    @field_validator("cache_prefix", mode="after")
    @classmethod
    def _v_cache_prefix(cls, v: str) -> str:
        return v.strip(":")

    # ---- Convenience ----

    @staticmethod
    def ttl_seconds(value: timedelta) -> int:
        """Whole seconds for cache backends; never below one."""
        return max(1, int(value.total_seconds()))


def create_settings_accessors[T](
    settings_type: type[T],
) -> tuple[Callable[[], T], Callable[[], T]]:
    """Create ``get_settings`` and ``reload_settings`` helpers for a settings class."""

    @lru_cache(maxsize=1)
    def _build() -> T:
        return settings_type()

    def get_settings() -> T:
        return _build()

    def reload_settings() -> T:
        _build.cache_clear()
        return _build()

    return get_settings, reload_settings


get_settings, reload_settings = create_settings_accessors(Settings)


__all__ = ["Settings", "get_settings", "reload_settings"]
