"""Compile friendly path patterns into anchored regular expressions.

Pattern tokens:

* ``{name}`` or ``:name`` anywhere in a segment: one segment's worth of characters.
* ``*`` (or a run of ``*`` inside a segment): same single-segment wildcard.
* ``**`` as a whole segment: the rest of the path, zero or more segments.
  Anything after it in the pattern is ignored.

Everything else, including empty segments and a trailing slash, is matched
literally and case-sensitively: ``/orders`` does not match ``/orders/``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache

from authz_core.common.errors import PathPatternError

logger = logging.getLogger(__name__)

_SEGMENT_WILDCARD = "[^/]+"
_REST_OF_PATH = "(?:/.*)?"
_TOKEN = re.compile(r"\{[^/]*\}|:[A-Za-z_][A-Za-z0-9_]*|\*+")
_INVALID_CHARS = re.compile(r"[\s?#]")


@dataclass(frozen=True, slots=True)
class PathMatcher:
    """Compiled path pattern; ``matches`` is a pure predicate."""

    pattern: str
    regex: str
    _compiled: re.Pattern[str] = field(repr=False, compare=False)

    def matches(self, path: str) -> bool:
        return self._compiled.fullmatch(path) is not None


def _compile_segment(segment: str, *, pattern: str) -> str:
    pieces: list[str] = []
    position = 0
    for token in _TOKEN.finditer(segment):
        if token.group() == "{}":
            raise PathPatternError(f"Empty placeholder in path pattern {pattern!r}")
        pieces.append(re.escape(segment[position : token.start()]))
        pieces.append(_SEGMENT_WILDCARD)
        position = token.end()
    pieces.append(re.escape(segment[position:]))
    return "".join(pieces)


def compile_path_regex(pattern: str | None) -> str | None:
    """Return the anchored regex source for ``pattern`` (``None`` when blank)."""

    if pattern is None:
        return None
    candidate = pattern.strip()
    if not candidate:
        return None
    if _INVALID_CHARS.search(candidate):
        raise PathPatternError(
            f"Path pattern {pattern!r} must not contain whitespace, '?' or '#'"
        )
    if not candidate.startswith("/"):
        candidate = "/" + candidate

    compiled: list[str] = []
    rest_of_path = False
    for segment in candidate[1:].split("/"):
        if segment == "**":
            rest_of_path = True
            break
        compiled.append(_compile_segment(segment, pattern=pattern))

    body = "".join("/" + part for part in compiled)
    if rest_of_path:
        return f"^{body}{_REST_OF_PATH}$"
    return f"^{body}$"


def compile_path_pattern(pattern: str | None) -> PathMatcher | None:
    """Compile ``pattern`` into a :class:`PathMatcher` (``None`` when blank)."""

    regex = compile_path_regex(pattern)
    if regex is None:
        return None
    return PathMatcher(pattern=pattern.strip(), regex=regex, _compiled=re.compile(regex))


@lru_cache(maxsize=1024)
def _compile_stored(regex: str) -> re.Pattern[str] | None:
    try:
        return re.compile(regex)
    except re.error:
        logger.warning("authz.rules.matcher.invalid", extra={"path_regex": regex})
        return None


def regex_matches(regex: str | None, path: str) -> bool:
    """Match ``path`` against a stored regex; an uncompilable regex never matches."""

    if not regex:
        return False
    compiled = _compile_stored(regex)
    if compiled is None:
        return False
    return compiled.fullmatch(path) is not None


__all__ = [
    "PathMatcher",
    "PathPatternError",
    "compile_path_pattern",
    "compile_path_regex",
    "regex_matches",
]
