"""Version matcher: which bundles target a given native app version.

Bundles declare the native app versions they run on as an npm-style range:

| Range            | Matches                                   |
|------------------|-------------------------------------------|
| 1.2.3            | exactly 1.2.3                             |
| *                | any version                               |
| 1.2.x / 1.2      | >=1.2.0 <1.3.0                            |
| 1.x / 1          | >=1.0.0 <2.0.0                            |
| 1.2.3 - 1.2.7    | >=1.2.3 <=1.2.7                           |
| >=1.2.3 <1.2.7   | every comparator must hold                |
| ~1.2.3           | >=1.2.3 <1.3.0                            |
| ^1.2.3           | >=1.2.3 <2.0.0                            |
| 1.0.x || 2.0.x   | either side                               |

The requested app version is coerced first (``"1.2"`` -> ``1.2.0``,
``"v3 build 7"`` -> ``3.0.0``). Parsing and ordering of individual versions is
delegated to the ``semver`` package.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from semver import Version

if TYPE_CHECKING:
    from updraft.schemas.bundle import Bundle

WILDCARD = "*"

_ZERO = Version(0, 0, 0)

_COERCE_PATTERN = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")

_PARTIAL_PATTERN = re.compile(
    r"^v?(x|X|\*|\d+)"
    r"(?:\.(x|X|\*|\d+)"
    r"(?:\.(x|X|\*|\d+)"
    r"(?:-([0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?)?)?$"
)

_COMPARATOR_PATTERN = re.compile(r"^(<=|>=|<|>|=|~>|~|\^)?(.*)$")

_HYPHEN_PATTERN = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")

# ">= 1.2.3" -> ">=1.2.3"
_OPERATOR_SPACE_PATTERN = re.compile(r"(<=|>=|<|>|=|~>|~|\^)\s+")


class InvalidRangeError(ValueError):
    """Raised when a target app version range cannot be parsed."""

    pass


def coerce_version(value: str) -> Version | None:
    """Coerce a loose version string to a semver Version, or None.

    Takes the first ``N[.N[.N]]`` run found in the string; missing parts are 0.
    """
    if not value:
        return None
    match = _COERCE_PATTERN.search(value)
    if match is None:
        return None
    major, minor, patch = match.groups()
    return Version(int(major), int(minor or 0), int(patch or 0))


def is_wildcard_range(value: str | None) -> bool:
    """True for ranges that match every version."""
    return value is not None and value.strip() in ("*", "x", "X")


def _parse_partial(text: str) -> tuple[int | None, int | None, int | None, str | None]:
    match = _PARTIAL_PATTERN.match(text)
    if match is None:
        raise InvalidRangeError(f"invalid version in range: {text!r}")
    parts: list[int | None] = []
    for raw in match.groups()[:3]:
        if raw is None or raw in ("x", "X", "*"):
            parts.append(None)
        else:
            parts.append(int(raw))
    # A wildcard swallows everything after it: 1.x.3 == 1.x
    for i, part in enumerate(parts):
        if part is None:
            parts[i + 1 :] = [None] * (2 - i)
            break
    major, minor, patch = parts
    prerelease = match.group(4) if patch is not None else None
    return major, minor, patch, prerelease


def _floor(major: int | None, minor: int | None, patch: int | None, pre: str | None) -> Version:
    return Version(major or 0, minor or 0, patch or 0, prerelease=pre)


def _ceiling(major: int, minor: int | None) -> Version:
    """Exclusive upper bound of a partial version (1 -> 2.0.0, 1.2 -> 1.3.0)."""
    if minor is None:
        return Version(major + 1, 0, 0)
    return Version(major, minor + 1, 0)


def _desugar(operator: str, text: str) -> list[tuple[str, Version]]:
    """Translate one comparator token into primitive (op, Version) bounds."""
    major, minor, patch, pre = _parse_partial(text)

    if operator in ("", "="):
        if major is None:
            return []
        if patch is None:
            return [(">=", _floor(major, minor, 0, None)), ("<", _ceiling(major, minor))]
        return [("=", _floor(major, minor, patch, pre))]

    if operator in ("~", "~>"):
        if major is None:
            return []
        low = _floor(major, minor, patch, pre)
        return [(">=", low), ("<", _ceiling(major, minor))]

    if operator == "^":
        if major is None:
            return []
        low = _floor(major, minor, patch, pre)
        if major > 0 or minor is None:
            high = Version(major + 1, 0, 0)
        elif minor > 0 or patch is None:
            high = Version(0, minor + 1, 0)
        else:
            high = Version(0, 0, patch + 1)
        return [(">=", low), ("<", high)]

    if operator == ">":
        if major is None:
            # Nothing is greater than "any version"
            return [("<", _ZERO)]
        if patch is None:
            return [(">=", _ceiling(major, minor))]
        return [(">", _floor(major, minor, patch, pre))]

    if operator == ">=":
        if major is None:
            return []
        return [(">=", _floor(major, minor, patch, pre))]

    if operator == "<":
        if major is None:
            return [("<", _ZERO)]
        return [("<", _floor(major, minor, patch, pre))]

    if operator == "<=":
        if major is None:
            return []
        if patch is None:
            return [("<", _ceiling(major, minor))]
        return [("<=", _floor(major, minor, patch, pre))]

    raise InvalidRangeError(f"unknown operator {operator!r}")


def _hyphen_bounds(low_text: str, high_text: str) -> list[tuple[str, Version]]:
    bounds: list[tuple[str, Version]] = []
    major, minor, patch, pre = _parse_partial(low_text)
    if major is not None:
        bounds.append((">=", _floor(major, minor, patch, pre)))
    major, minor, patch, pre = _parse_partial(high_text)
    if major is not None:
        if patch is None:
            bounds.append(("<", _ceiling(major, minor)))
        else:
            bounds.append(("<=", _floor(major, minor, patch, pre)))
    return bounds


def _holds(version: Version, operator: str, bound: Version) -> bool:
    if operator == "=":
        return version == bound
    if operator == ">":
        return version > bound
    if operator == ">=":
        return version >= bound
    if operator == "<":
        return version < bound
    return version <= bound


class VersionRange:
    """Parsed npm-style range: OR of comparator sets, each an AND of bounds."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.comparator_sets: list[list[tuple[str, Version]]] = [
            self._parse_set(part) for part in text.split("||")
        ]

    @staticmethod
    def _parse_set(text: str) -> list[tuple[str, Version]]:
        text = " ".join(text.split())
        hyphen = _HYPHEN_PATTERN.match(text)
        if hyphen:
            return _hyphen_bounds(hyphen.group(1), hyphen.group(2))
        text = _OPERATOR_SPACE_PATTERN.sub(lambda m: m.group(1), text)
        bounds: list[tuple[str, Version]] = []
        for token in text.split():
            match = _COMPARATOR_PATTERN.match(token)
            bounds.extend(_desugar(match.group(1) or "", match.group(2)))
        return bounds

    def satisfied_by(self, version: Version) -> bool:
        return any(
            all(_holds(version, op, bound) for op, bound in bounds)
            for bounds in self.comparator_sets
        )

    def min_version(self) -> Version | None:
        """Lowest version satisfying the range, or None if nothing does."""
        best: Version | None = None
        for bounds in self.comparator_sets:
            low = _ZERO
            for op, bound in bounds:
                if op in (">=", "=") and bound > low:
                    low = bound
                elif op == ">" and bound >= low:
                    low = bound.bump_patch()
            if all(_holds(low, op, bound) for op, bound in bounds):
                if best is None or low < best:
                    best = low
        return best


def satisfies(app_version: str | Version, target_range: str) -> bool:
    """True if the (coerced) app version falls inside target_range.

    Unparseable ranges and non-coercible versions never match.
    """
    version = app_version if isinstance(app_version, Version) else coerce_version(app_version)
    if version is None:
        return False
    try:
        return VersionRange(target_range).satisfied_by(version)
    except InvalidRangeError:
        return False


def _min_version_key(target_range: str) -> Version:
    try:
        return VersionRange(target_range).min_version() or _ZERO
    except InvalidRangeError:
        return _ZERO


def filter_compatible_app_versions(
    target_versions: Iterable[str], app_version: str
) -> list[str]:
    """Subset of target ranges (e.g. a version index) that accept app_version."""
    version = coerce_version(app_version)
    if version is None:
        return []
    return [t for t in target_versions if satisfies(version, t)]


def match_versions(bundles: Sequence[Bundle], app_version: str) -> list[Bundle]:
    """Bundles whose target_app_version accepts app_version, best match first.

    Ordering: wildcard ranges first, then by descending minimum satisfying
    version, ties by descending id. ``app_version == "*"`` returns the input
    unchanged (admin listing).
    """
    if app_version == WILDCARD:
        return list(bundles)

    version = coerce_version(app_version)
    if version is None:
        return []

    wildcards: list[Bundle] = []
    others: list[Bundle] = []
    for bundle in bundles:
        target = bundle.target_app_version
        if not target or not satisfies(version, target):
            continue
        if is_wildcard_range(target):
            wildcards.append(bundle)
        else:
            others.append(bundle)

    wildcards.sort(key=lambda b: b.id, reverse=True)
    others.sort(key=lambda b: b.id, reverse=True)
    # Stable sort keeps the id order within equal minimum versions
    others.sort(key=lambda b: _min_version_key(b.target_app_version), reverse=True)
    return wildcards + others
