"""Cargo-flavoured semantic version requirements.

Concrete versions are parsed with :mod:`semver`, which already implements the
precedence rules (a release sorts above its pre-releases). Requirement strings
follow Cargo's syntax: a bare version means caret, comparators may be partial
(``1.2``), wildcards are accepted (``1.*``), and comma separated comparators
must all match.
"""

from __future__ import annotations

import dataclasses as dc
import re
import typing as typ

import semver

__all__ = [
    "Comparator",
    "VersionReq",
    "caret_requirement",
    "exact_requirement",
    "parse_version",
    "upgrade_requirement",
]

_COMPARATOR_RE = re.compile(
    r"""
    ^(?P<op>>=|<=|=|>|<|~|\^)?\s*
    (?P<major>\d+|[*xX])
    (?:\.(?P<minor>\d+|[*xX]))?
    (?:\.(?P<patch>\d+|[*xX]))?
    (?:-(?P<pre>[0-9A-Za-z.-]+))?
    (?:\+(?P<build>[0-9A-Za-z.-]+))?$
    """,
    re.VERBOSE,
)
_WILDCARDS: typ.Final[frozenset[str]] = frozenset({"*", "x", "X"})


def parse_version(text: str) -> semver.Version:
    """Parse a full ``major.minor.patch`` version.

    Raises
    ------
    ValueError
        Raised when ``text`` is not a valid semantic version.
    """
    return semver.Version.parse(text.strip())


def _bound(major: int, minor: int = 0, patch: int = 0) -> semver.Version:
    return semver.Version(major, minor, patch)


@dc.dataclass(frozen=True)
class Comparator:
    """A single requirement clause such as ``^1.2`` or ``<2``."""

    op: str
    major: int | None
    minor: int | None = None
    patch: int | None = None
    prerelease: str | None = None

    def lower(self) -> tuple[semver.Version | None, bool]:
        """Return the lower bound and whether it is inclusive."""
        major, minor, patch = self.major, self.minor, self.patch
        if major is None:
            return None, True
        floor = semver.Version(major, minor or 0, patch or 0, self.prerelease)
        if self.op in {"^", "~", "=", ">="}:
            return floor, True
        if self.op == ">":
            if minor is None:
                return _bound(major + 1), True
            if patch is None:
                return _bound(major, minor + 1), True
            return floor, False
        return None, True

    def upper(self) -> tuple[semver.Version | None, bool]:
        """Return the upper bound and whether it is inclusive."""
        major, minor, patch = self.major, self.minor, self.patch
        if major is None:
            return None, True
        if self.op == "^":
            return _caret_upper(major, minor, patch), False
        if self.op == "~":
            if minor is None:
                return _bound(major + 1), False
            return _bound(major, minor + 1), False
        if self.op == "=":
            if minor is None:
                return _bound(major + 1), False
            if patch is None:
                return _bound(major, minor + 1), False
            return semver.Version(major, minor, patch, self.prerelease), True
        if self.op == "<":
            return semver.Version(major, minor or 0, patch or 0, self.prerelease), False
        if self.op == "<=":
            if minor is None:
                return _bound(major + 1), False
            if patch is None:
                return _bound(major, minor + 1), False
            return semver.Version(major, minor, patch, self.prerelease), True
        return None, True

    def matches(self, version: semver.Version) -> bool:
        """Return ``True`` when ``version`` lies within this clause's bounds."""
        low, low_inclusive = self.lower()
        if low is not None:
            order = version.compare(low)
            if order < 0 or (order == 0 and not low_inclusive):
                return False
        high, high_inclusive = self.upper()
        if high is not None:
            order = version.compare(high)
            if order > 0 or (order == 0 and not high_inclusive):
                return False
        return True

    def __str__(self) -> str:
        if self.major is None:
            return "*"
        parts = [str(self.major)]
        for part in (self.minor, self.patch):
            if part is None:
                break
            parts.append(str(part))
        text = ".".join(parts)
        if self.prerelease:
            text = f"{text}-{self.prerelease}"
        return f"{self.op}{text}"


def _caret_upper(major: int, minor: int | None, patch: int | None) -> semver.Version:
    if major > 0 or minor is None:
        return _bound(major + 1)
    if minor > 0 or patch is None:
        return _bound(0, minor + 1)
    return _bound(0, 0, patch + 1)


@dc.dataclass(frozen=True)
class VersionReq:
    """A conjunction of :class:`Comparator` clauses."""

    comparators: tuple[Comparator, ...]

    @classmethod
    def parse(cls, text: str) -> VersionReq:
        """Parse a Cargo requirement string such as ``"^1.2, <1.5"``.

        Raises
        ------
        ValueError
            Raised when any clause is malformed.
        """
        stripped = text.strip()
        if not stripped:
            message = "version requirement must not be empty"
            raise ValueError(message)
        clauses = tuple(_parse_comparator(part) for part in stripped.split(","))
        return cls(clauses)

    def matches(self, version: semver.Version) -> bool:
        """Return ``True`` when ``version`` satisfies every clause.

        Pre-release versions only match when a clause names the same
        ``major.minor.patch`` triple with a pre-release of its own, mirroring
        Cargo so ``^1.0`` never selects ``1.1.0-beta``.
        """
        if not all(clause.matches(version) for clause in self.comparators):
            return False
        if version.prerelease is None:
            return True
        return any(
            clause.prerelease is not None
            and (clause.major, clause.minor, clause.patch)
            == (version.major, version.minor, version.patch)
            for clause in self.comparators
        )

    def __str__(self) -> str:
        return ", ".join(str(clause) for clause in self.comparators)


def _parse_comparator(text: str) -> Comparator:
    clause = text.strip()
    match = _COMPARATOR_RE.match(clause)
    if match is None:
        message = f"invalid version requirement clause {clause!r}"
        raise ValueError(message)

    op = match.group("op") or "^"
    numbers: list[int | None] = []
    wildcard_seen = False
    for group in ("major", "minor", "patch"):
        raw = match.group(group)
        if raw is None or raw in _WILDCARDS:
            wildcard_seen = wildcard_seen or raw is not None
            numbers.append(None)
            continue
        if wildcard_seen:
            message = f"version components may not follow a wildcard in {clause!r}"
            raise ValueError(message)
        numbers.append(int(raw))

    major, minor, patch = numbers
    prerelease = match.group("pre")
    if prerelease is not None and patch is None:
        message = f"pre-release requires a full version in {clause!r}"
        raise ValueError(message)
    if wildcard_seen:
        if match.group("op") not in {None, "=", "^", "~"}:
            message = f"wildcards cannot be combined with {op!r} in {clause!r}"
            raise ValueError(message)
        op = "="
    return Comparator(op, major, minor, patch, prerelease)


def caret_requirement(version: semver.Version) -> str:
    """Render the default requirement written for ``version``.

    Cargo reads a bare version as a caret requirement, so ``1.2.3`` accepts
    every release semver-compatible with it.
    """
    return str(version)


def exact_requirement(version: semver.Version) -> str:
    """Render a requirement pinning exactly ``version``."""
    return f"={version}"


def upgrade_requirement(old_req: str | None, version: semver.Version) -> str:
    """Return a requirement for ``version`` keeping the operator of ``old_req``.

    Single-clause requirements keep their explicit ``=``, ``~`` or ``^``
    operator. Anything more elaborate is replaced by the caret form.
    """
    if old_req is None:
        return caret_requirement(version)
    stripped = old_req.strip()
    try:
        parsed = VersionReq.parse(stripped)
    except ValueError:
        return caret_requirement(version)
    if len(parsed.comparators) != 1:
        return caret_requirement(version)
    for prefix in ("=", "~", "^"):
        if stripped.startswith(prefix):
            return f"{prefix}{version}"
    return caret_requirement(version)
