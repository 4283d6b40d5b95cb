"""Branch path and branch pattern handling.

A branch path is a "/"-separated list of segments made of
``[-a-zA-Z0-9.,!+=_@^%]``. Patterns may also use ``*`` (inside a segment or
as a whole segment) and ``**``.

Three pattern classes exist:
- literal: no wildcard
- single star: ``*`` present, ``**`` absent; matched against existing refs
  with filesystem glob semantics (``*`` stays inside one segment)
- double star: ``**`` present; matched against the configured branches,
  where every star may span several segments
"""
import re
from enum import Enum

from .errors import UsageError

SEGMENT_RE = re.compile(r"^[-a-zA-Z0-9.,!+=_@^%]+$")
PATTERN_SEGMENT_RE = re.compile(r"^[-a-zA-Z0-9.,!+=_@^%*]+$")

# What a star stands for in each pattern class
SEGMENT_STAR = "[^/]*"
SPANNING_STAR = ".+"


class PatternKind(str, Enum):
    """Class of a branch pattern."""
    LITERAL = "literal"
    SINGLE_STAR = "single_star"
    DOUBLE_STAR = "double_star"


def split_branch(path: str) -> list[str]:
    """Split a branch path into segments."""
    return path.split("/") if path else []


def validate_branch(name: str) -> str:
    """Check a concrete branch name.

    Raises:
        UsageError: On empty segments, trailing slash or forbidden characters
    """
    _check_shape(name)
    for segment in split_branch(name):
        if not SEGMENT_RE.match(segment):
            raise UsageError(f"invalid branch name: {name!r}")
    return name


def validate_pattern(pattern: str) -> str:
    """Check a branch pattern (wildcards allowed)."""
    _check_shape(pattern)
    for segment in split_branch(pattern):
        if not PATTERN_SEGMENT_RE.match(segment):
            raise UsageError(f"invalid branch pattern: {pattern!r}")
    return pattern


def _check_shape(value: str) -> None:
    if not value:
        raise UsageError("empty branch name")
    if value.endswith("/"):
        raise UsageError(f"branch pattern must not end with '/': {value!r}")
    if value.startswith("/") or "//" in value:
        raise UsageError(f"empty path segment in {value!r}")


def classify(pattern: str) -> PatternKind:
    """Return the class of a validated pattern."""
    if "**" in pattern:
        return PatternKind.DOUBLE_STAR
    if "*" in pattern:
        return PatternKind.SINGLE_STAR
    return PatternKind.LITERAL


def normalize_stars(pattern: str) -> str:
    """Collapse every run of stars into a single star."""
    return re.sub(r"\*+", "*", pattern)


def base_prefix(pattern: str) -> str:
    """Literal text before the first wildcard."""
    return pattern.split("*", 1)[0]


def glob_to_regex(pattern: str, star: str = SPANNING_STAR) -> re.Pattern:
    """Compile a star pattern into an anchored regular expression.

    The pattern is split on stars, every literal piece is escaped and the
    pieces are joined with ``star``.
    """
    pieces = normalize_stars(pattern).split("*")
    return re.compile("^" + star.join(re.escape(p) for p in pieces) + "$")


def env_key(name: str) -> str:
    """Uppercase a name and replace every non-alphanumeric with '_'."""
    return re.sub(r"[^A-Z0-9]", "_", name.upper())
