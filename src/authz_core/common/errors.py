"""Error taxonomy shared by the oracle's services.

Authorization outcomes are never errors; they are returned as verdicts.
These exceptions cover invalid writes, missing records, and infrastructure
that the oracle cannot run without.
"""

from __future__ import annotations

from collections.abc import Iterable


class AuthzError(Exception):
    """Base class for oracle errors."""


class ValidationError(AuthzError, ValueError):
    """A mutation was rejected; ``errors`` lists every problem found."""

    def __init__(self, errors: str | Iterable[str]) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors: list[str] = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class RuleValidationError(ValidationError):
    pass


class HierarchyValidationError(ValidationError):
    pass


class AssignmentValidationError(ValidationError):
    pass


class NotFoundError(AuthzError, LookupError):
    """Referenced record does not exist."""


class RuleNotFoundError(NotFoundError):
    pass


class PathPatternError(ValueError):
    """Path pattern cannot be compiled into a matcher."""


class CacheUnavailableError(AuthzError, RuntimeError):
    """Cache or version store is unreachable; callers must fail closed."""


__all__ = [
    "AssignmentValidationError",
    "AuthzError",
    "CacheUnavailableError",
    "HierarchyValidationError",
    "NotFoundError",
    "PathPatternError",
    "RuleNotFoundError",
    "RuleValidationError",
    "ValidationError",
]
