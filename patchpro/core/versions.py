"""Remediation-range parsing and semantic version ordering.

Remediation texts arrive as free prose, e.g. ``"requires >= 1.2.3, 1.4.0"`` or
``"needs at-least 2, 2.17-325.el7"``. The fixed version is the last token that
follows the last at-least operator. Versions are kept in bare semver form
(no leading ``v``); tools that need a prefix add it themselves.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

import semver

AT_LEAST_OPERATORS = (">=", "at-least")

_OPERATOR_RE = re.compile(r">=|\bat-least\b", re.IGNORECASE)
_TOKEN_SPLIT_RE = re.compile(r"[,\s]+")
_TRAILING_PUNCTUATION = ".;:)]"


def normalize_version(version_str: str) -> str:
    """Strip whitespace and a leading ``v`` from a version string."""
    version_str = (version_str or "").strip()
    if version_str[:1] in ("v", "V"):
        version_str = version_str[1:]
    return version_str


def parse_version(version_str: str) -> semver.Version:
    """Parse into a ``semver.Version``; ``MAJOR`` and ``MAJOR.MINOR`` are accepted.

    Raises ``ValueError`` for anything semver cannot order.
    """
    return semver.Version.parse(normalize_version(version_str), optional_minor_and_patch=True)


def is_valid_version(version_str: str) -> bool:
    try:
        parse_version(version_str)
    except (ValueError, TypeError):
        return False
    return True


def parse_threshold(text: str) -> str:
    """Extract the minimum fixed version from a remediation text.

    Returns an empty string when the text carries no at-least operator, no
    token after it, or a token that is not a version.
    """
    if not text:
        return ""
    operators = list(_OPERATOR_RE.finditer(text))
    if not operators:
        return ""
    segment = text[operators[-1].end():]
    tokens = [t for t in _TOKEN_SPLIT_RE.split(segment) if t]
    if not tokens:
        return ""
    candidate = normalize_version(tokens[-1].rstrip(_TRAILING_PUNCTUATION))
    if not candidate or not is_valid_version(candidate):
        return ""
    return candidate


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 following semver precedence (pre-releases sort first)."""
    return parse_version(left).compare(parse_version(right))


def max_version(versions: Iterable[str]) -> Optional[str]:
    best: Optional[str] = None
    for version in versions:
        if best is None or compare_versions(version, best) > 0:
            best = version
    return best


def with_prefix(version_str: str, prefix: str = "v") -> str:
    """Render a bare version in the prefixed form some tools require."""
    version_str = normalize_version(version_str)
    return f"{prefix}{version_str}" if version_str else version_str
