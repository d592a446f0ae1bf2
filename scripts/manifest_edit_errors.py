"""Error taxonomy shared by the manifest editing helpers.

Every failure raised by the editor derives from :class:`ManifestEditError` so
the command-line layer can convert them into a single ``SystemExit`` without
catching unrelated exceptions. Resolution failures additionally carry the
dependency name, the queried source, and the policy in effect so callers can
report them with enough context to act on.
"""

from __future__ import annotations

__all__ = [
    "CrateNotFoundError",
    "DependencyNotFoundError",
    "InvalidSpecError",
    "ManifestEditError",
    "ManifestSyntaxError",
    "MetadataError",
    "NoMatchingVersionError",
    "PackageNotFoundError",
    "RegistryConfigError",
    "ResolutionError",
    "SourceUnavailableError",
    "UnsupportedShapeError",
]


class ManifestEditError(Exception):
    """Base class for every error raised while editing manifests."""


class ManifestSyntaxError(ManifestEditError):
    """The manifest text is not valid TOML."""

    def __init__(
        self, message: str, *, line: int | None = None, col: int | None = None
    ) -> None:
        super().__init__(message)
        self.line = line
        self.col = col


class InvalidSpecError(ManifestEditError):
    """A dependency description supplied by the user is malformed."""


class UnsupportedShapeError(ManifestEditError):
    """An existing manifest entry cannot be mapped to a single source."""


class DependencyNotFoundError(ManifestEditError):
    """The requested dependency is absent from the targeted table."""

    def __init__(self, message: str, *, name: str, table: str) -> None:
        super().__init__(message)
        self.name = name
        self.table = table


class PackageNotFoundError(ManifestEditError):
    """A package selector matched no workspace member."""


class MetadataError(ManifestEditError):
    """Manifest metadata (package name, version, members) is missing."""


class RegistryConfigError(ManifestEditError):
    """Cargo configuration names an unknown or invalid registry source."""


class ResolutionError(ManifestEditError):
    """Base class for failures while choosing a version to write."""

    def __init__(
        self,
        message: str,
        *,
        name: str,
        source: object | None = None,
        policy: object | None = None,
    ) -> None:
        super().__init__(message)
        self.name = name
        self.source = source
        self.policy = policy


class CrateNotFoundError(ResolutionError):
    """The dependency does not exist in the queried source."""


class NoMatchingVersionError(ResolutionError):
    """Every candidate version was excluded by the requested policy."""


class SourceUnavailableError(ResolutionError):
    """The registry or git endpoint could not be reached."""
