"""Semantic version parsing and ordering.

Versions are compared numerically per component (``0.10.0`` is newer than
``0.9.0``); a pre-release sorts before its release.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

_SEMVER_RE = re.compile(
    r"^v?(0|[1-9]\d*)"
    r"(?:\.(0|[1-9]\d*))?"
    r"(?:\.(0|[1-9]\d*))?"
    r"(?:-([0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


def _identifier_key(identifier: str) -> tuple[int, int, str]:
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


@total_ordering
@dataclass(frozen=True)
class SemVer:
    major: int
    minor: int = 0
    patch: int = 0
    prerelease: tuple[str, ...] = ()

    def _key(self) -> tuple:
        return (
            self.major,
            self.minor,
            self.patch,
            0 if self.prerelease else 1,
            tuple(_identifier_key(p) for p in self.prerelease),
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return f"{base}-{'.'.join(self.prerelease)}"
        return base


def parse_version(text: str | None) -> SemVer | None:
    """Parse ``text`` (leading ``v`` allowed, minor/patch optional)."""
    if not isinstance(text, str):
        return None
    match = _SEMVER_RE.match(text.strip())
    if not match:
        return None
    major, minor, patch, pre = match.groups()
    return SemVer(
        major=int(major),
        minor=int(minor or 0),
        patch=int(patch or 0),
        prerelease=tuple(pre.split(".")) if pre else (),
    )


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1. Raises ``ValueError`` for unparseable input."""
    va, vb = parse_version(a), parse_version(b)
    if va is None or vb is None:
        raise ValueError(f"Invalid semantic version: {a if va is None else b!r}")
    return (va > vb) - (va < vb)


def is_newer(candidate: str, current: str) -> bool:
    try:
        return compare_versions(candidate, current) > 0
    except ValueError:
        return False


def check_major(version: str, supported_major: int, field_name: str) -> str | None:
    """Return a reason string when ``version`` is unusable, else ``None``."""
    parsed = parse_version(version)
    if parsed is None:
        return f"invalid {field_name}: {version!r} is not a semantic version"
    if parsed.major != supported_major:
        return (
            f"unsupported {field_name} {version!r}: "
            f"major version {parsed.major} is not supported "
            f"(expected {supported_major}.x)"
        )
    return None
