"""Caller facts and per-store effective permission resolution."""

from .caller import CallerFacts, load_caller_facts
from .resolver import EffectivePermissionResolver, EffectiveRole

__all__ = [
    "CallerFacts",
    "EffectivePermissionResolver",
    "EffectiveRole",
    "load_caller_facts",
]
