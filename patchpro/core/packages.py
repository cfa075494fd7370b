"""Decide which affected packages the module manifest can upgrade.

Module paths are domain-shaped (``github.com/org/lib``, ``golang.org/x/net``);
system libraries reported against container images (``glibc``, ``krb5-libs``)
are not, and need manual remediation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Tuple

SYSTEM_LIBRARIES: Tuple[str, ...] = (
    "glibc",
    "krb5-libs",
    "libgcc",
    "libstdc++",
    "openssl-libs",
)

_HOST_RE = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)+$")


class PackageKind(str, Enum):
    MODULE = "module"
    SYSTEM = "system"


# A rule returns a kind to decide, or None to defer to the next rule.
Rule = Callable[[str], Optional[PackageKind]]


def domain_shaped(path: str) -> Optional[PackageKind]:
    host = path.split("/", 1)[0]
    if _HOST_RE.match(host):
        return PackageKind.MODULE
    return PackageKind.SYSTEM


_SEPARATORS = ("/", "-")


def _matches_prefix(path: str, prefixes: Iterable[str]) -> bool:
    """Exact match, or the prefix followed by a ``/`` or ``-`` boundary."""
    for prefix in prefixes:
        stem = prefix.rstrip("".join(_SEPARATORS))
        if not stem:
            continue
        if path == stem or any(path.startswith(stem + sep) for sep in _SEPARATORS):
            return True
    return False


@dataclass(frozen=True)
class PackageClassifier:
    allow: Tuple[str, ...] = ()
    deny: Tuple[str, ...] = SYSTEM_LIBRARIES
    rules: Tuple[Rule, ...] = field(default=())

    def classify(self, path: str) -> PackageKind:
        path = path.strip()
        if _matches_prefix(path, self.allow):
            return PackageKind.MODULE
        if _matches_prefix(path, self.deny):
            return PackageKind.SYSTEM
        for rule in self.rules:
            kind = rule(path)
            if kind is not None:
                return kind
        return domain_shaped(path)

    def is_upgradeable(self, path: str) -> bool:
        return self.classify(path) is PackageKind.MODULE

    def with_deny(self, extra: Iterable[str]) -> "PackageClassifier":
        extra = tuple(p for p in extra if p)
        if not extra:
            return self
        return PackageClassifier(allow=self.allow, deny=self.deny + extra, rules=self.rules)
