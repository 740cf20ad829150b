"""Store-scope resolution and rule evaluation."""

from .evaluator import (
    GrantReason,
    PolicyEvaluator,
    StoreMeta,
    Verdict,
    abilities_cover_all,
    abilities_cover_any,
    evaluate_permissions,
)
from .store_context import (
    DEFAULT_STORE_ID_SOURCES,
    StoreContext,
    StoreIdSources,
    dig,
    extract_store_ids,
    normalize_store_ids,
)

__all__ = [
    "DEFAULT_STORE_ID_SOURCES",
    "GrantReason",
    "PolicyEvaluator",
    "StoreContext",
    "StoreIdSources",
    "StoreMeta",
    "Verdict",
    "abilities_cover_all",
    "abilities_cover_any",
    "dig",
    "evaluate_permissions",
    "extract_store_ids",
    "normalize_store_ids",
]
