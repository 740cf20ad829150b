"""Shared database schema for the authorization oracle."""

from .base import NAMING_CONVENTION, Base, IntegerPrimaryKeyMixin, TimestampMixin, metadata, utc_now
from .types import UTCDateTime, enum_values

__all__ = [
    "Base",
    "metadata",
    "NAMING_CONVENTION",
    "IntegerPrimaryKeyMixin",
    "TimestampMixin",
    "UTCDateTime",
    "enum_values",
    "utc_now",
]
