"""Authorization rules: path DSL, rule store and rule selection."""

from .pathdsl import PathMatcher, compile_path_pattern, compile_path_regex, regex_matches
from .schemas import AuthRuleCreate, AuthRuleOut, AuthRuleUpdate, PathPreview, StoreIdSourcesIn
from .selection import RuleDefinition, order_rules, select_rule
from .service import AuthRuleService

__all__ = [
    "AuthRuleCreate",
    "AuthRuleOut",
    "AuthRuleService",
    "AuthRuleUpdate",
    "PathMatcher",
    "PathPreview",
    "RuleDefinition",
    "StoreIdSourcesIn",
    "compile_path_pattern",
    "compile_path_regex",
    "order_rules",
    "regex_matches",
    "select_rule",
]
