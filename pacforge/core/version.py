# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Package version ordering and version constraints.

Versions follow the ``[epoch:]pkgver[-pkgrel]`` layout used by pacman.
Comparison is epoch first, then upstream version, then release (only when
both sides carry one), each part compared segment by segment.
"""

import re
import string
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

_DIGITS = frozenset(string.digits)
_ALPHA = frozenset(string.ascii_letters)
_ALNUM = _DIGITS | _ALPHA

_DEP_RE = re.compile(r"^(?P<name>[^<>=]+?)\s*(?P<op>>=|<=|=|<|>)\s*(?P<version>\S+)$")


def _compare_segments(a: str, b: str) -> int:
    """Compare two version fragments (rpmvercmp semantics)."""
    if a == b:
        return 0

    one = two = 0
    end1 = end2 = 0
    len_a, len_b = len(a), len(b)

    while one < len_a and two < len_b:
        while one < len_a and a[one] not in _ALNUM:
            one += 1
        while two < len_b and b[two] not in _ALNUM:
            two += 1

        if one >= len_a or two >= len_b:
            break

        # Different separator lengths decide on their own
        if (one - end1) != (two - end2):
            return -1 if (one - end1) < (two - end2) else 1

        end1, end2 = one, two
        if a[end1] in _DIGITS:
            while end1 < len_a and a[end1] in _DIGITS:
                end1 += 1
            while end2 < len_b and b[end2] in _DIGITS:
                end2 += 1
            numeric = True
        else:
            while end1 < len_a and a[end1] in _ALPHA:
                end1 += 1
            while end2 < len_b and b[end2] in _ALPHA:
                end2 += 1
            numeric = False

        seg1 = a[one:end1]
        seg2 = b[two:end2]

        # Segments of different types: numeric is always newer
        if not seg2:
            return 1 if numeric else -1

        if numeric:
            seg1 = seg1.lstrip("0")
            seg2 = seg2.lstrip("0")
            if len(seg1) != len(seg2):
                return 1 if len(seg1) > len(seg2) else -1

        if seg1 != seg2:
            return -1 if seg1 < seg2 else 1

        one, two = end1, end2

    if one >= len_a and two >= len_b:
        return 0

    # A remaining alpha segment never beats an exhausted string
    if (one >= len_a and not (two < len_b and b[two] in _ALPHA)) or (
        one < len_a and a[one] in _ALPHA
    ):
        return -1
    return 1


def parse_evr(version: str) -> Tuple[str, str, Optional[str]]:
    """
    Split a version string into (epoch, pkgver, pkgrel).

    Missing epoch is reported as "0", missing release as None.
    """
    epoch = "0"
    rest = version
    idx = 0
    while idx < len(version) and version[idx] in _DIGITS:
        idx += 1
    if idx < len(version) and version[idx] == ":":
        epoch = version[:idx] or "0"
        rest = version[idx + 1 :]

    release: Optional[str] = None
    if "-" in rest:
        rest, release = rest.rsplit("-", 1)

    return epoch, rest, release


def vercmp(a: str, b: str) -> int:
    """
    Compare two package versions.

    Returns:
        -1 if a is older than b, 0 if equal, 1 if a is newer
    """
    if a == b:
        return 0

    epoch_a, ver_a, rel_a = parse_evr(a)
    epoch_b, ver_b, rel_b = parse_evr(b)

    result = _compare_segments(epoch_a, epoch_b)
    if result == 0:
        result = _compare_segments(ver_a, ver_b)
        if result == 0 and rel_a is not None and rel_b is not None:
            result = _compare_segments(rel_a, rel_b)
    return result


class VersionKey:
    """Sort key wrapper so versions can be passed to sorted()/max()."""

    __slots__ = ("version",)

    def __init__(self, version: str):
        self.version = version

    def __lt__(self, other: "VersionKey") -> bool:
        return vercmp(self.version, other.version) < 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionKey):
            return NotImplemented
        return vercmp(self.version, other.version) == 0

    def __repr__(self) -> str:
        return f"VersionKey({self.version!r})"


class Operator(Enum):
    EQ = "="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    def matches(self, cmp: int) -> bool:
        if self is Operator.EQ:
            return cmp == 0
        if self is Operator.LT:
            return cmp < 0
        if self is Operator.LE:
            return cmp <= 0
        if self is Operator.GT:
            return cmp > 0
        return cmp >= 0


@dataclass(frozen=True)
class Dependency:
    """A package name with an optional version predicate (``foo>=2.0``)."""

    name: str
    op: Optional[Operator] = None
    version: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "Dependency":
        """Parse ``name[op version]``; an optdepends description is discarded."""
        text = text.strip()
        if ": " in text:
            text = text.split(": ", 1)[0].strip()
        elif text.endswith(":"):
            text = text[:-1]

        match = _DEP_RE.match(text)
        if not match:
            return cls(name=text)
        return cls(
            name=match.group("name").strip(),
            op=Operator(match.group("op")),
            version=match.group("version"),
        )

    @property
    def versioned(self) -> bool:
        return self.op is not None

    def allows(self, version: Optional[str]) -> bool:
        """Check a concrete version against this constraint's predicate."""
        if self.op is None:
            return True
        if version is None:
            return False
        return self.op.matches(vercmp(version, self.version))

    def __str__(self) -> str:
        if self.op is None:
            return self.name
        return f"{self.name}{self.op.value}{self.version}"


def parse_depends(values) -> Tuple[Dependency, ...]:
    """Parse an iterable of dependency strings (or Dependency objects)."""
    result = []
    for value in values or ():
        if isinstance(value, Dependency):
            result.append(value)
        elif value:
            result.append(Dependency.parse(str(value)))
    return tuple(result)
