"""Path addressing: validation, normalization, derivation, and glob matching.

A path is a sequence of segments joined by ``/``.  Its first segment is the
project, and all segments but the last name the parent position.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from ..config import PathLimits
from ..constants import PATH_SEPARATOR
from ..errors import InvalidPath

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

DEFAULT_LIMITS = PathLimits()


def normalize_path(raw: Optional[str], limits: PathLimits = DEFAULT_LIMITS) -> str:
    """Validate *raw* and return its canonical form.

    Raises:
        InvalidPath: with ``rule`` set to the first violated rule.
    """
    path = (raw or "").strip()
    if not path:
        raise InvalidPath(path, "empty", "path must not be empty")
    if len(path) > limits.max_length:
        raise InvalidPath(path, "length", f"path length cannot exceed {limits.max_length} characters")

    segments = split_path(path)
    if len(segments) > limits.max_depth:
        raise InvalidPath(path, "depth", f"path depth cannot exceed {limits.max_depth} levels")
    for segment in segments:
        if not segment:
            raise InvalidPath(path, "empty_segment", "path segments must not be empty")
        if not _SEGMENT_RE.match(segment):
            raise InvalidPath(
                path,
                "charset",
                "path can only contain alphanumeric characters, underscores, dots, and hyphens",
            )
        if len(segment) > limits.max_segment_length:
            raise InvalidPath(
                path,
                "segment_length",
                f"path segment '{segment[:20]}...' exceeds {limits.max_segment_length} characters",
            )
    return path


def slugify(name: str) -> str:
    return _SLUG_RE.sub("-", (name or "").lower()).strip("-")


def derive_path(name: str, parent_path: Optional[str] = None, limits: PathLimits = DEFAULT_LIMITS) -> str:
    """Build a path from the task name, below *parent_path* when given."""
    slug = slugify(name)
    if not slug:
        raise InvalidPath(name or "", "empty", "cannot derive a path from an empty name")
    raw = f"{parent_path}{PATH_SEPARATOR}{slug}" if parent_path else slug
    return normalize_path(raw, limits)


# ---------------------------------------------------------------------------
# Structural helpers
# ---------------------------------------------------------------------------

def split_path(path: str) -> list[str]:
    return path.split(PATH_SEPARATOR)


def parent_of(path: str) -> Optional[str]:
    head, sep, _ = path.rpartition(PATH_SEPARATOR)
    return head if sep else None


def project_of(path: str) -> str:
    return path.split(PATH_SEPARATOR, 1)[0]


def ancestors_of(path: str) -> list[str]:
    """Proper ancestors, nearest first."""
    out: list[str] = []
    current = parent_of(path)
    while current:
        out.append(current)
        current = parent_of(current)
    return out


def is_ancestor(ancestor: str, path: str) -> bool:
    """True if *path* lies strictly below *ancestor*."""
    return path.startswith(ancestor + PATH_SEPARATOR)


def depth_of(path: str) -> int:
    return len(split_path(path))


# ---------------------------------------------------------------------------
# Glob patterns
# ---------------------------------------------------------------------------

@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a path glob.

    ``*`` matches any run of characters within one segment, ``?`` matches a
    single character, and nothing crosses a ``/``.  Matching is
    case-sensitive and anchored, so ``a/*`` lists exactly one level below
    ``a``.
    """
    parts: list[str] = []
    for ch in pattern:
        if ch == "*":
            parts.append(r"[^/]*")
        elif ch == "?":
            parts.append(r"[^/]")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$")


def match_pattern(pattern: str, path: str) -> bool:
    return compile_pattern(pattern).match(path) is not None
