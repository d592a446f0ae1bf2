"""Version resolution across registry, git, and path sources.

The resolver answers one question: which version (or commit) should be written
for a dependency under a policy. Registry sources are ranked by semantic
version precedence, git sources resolve to the commit a reference currently
points at, and path sources read the version declared by the local manifest.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

import semver
from manifest_edit_errors import (
    CrateNotFoundError,
    ManifestSyntaxError,
    MetadataError,
    NoMatchingVersionError,
    ResolutionError,
)
from manifest_edit_semver import (
    VersionReq,
    caret_requirement,
    exact_requirement,
    parse_version,
    upgrade_requirement,
)
from manifest_edit_spec import (
    GitSource,
    PathSource,
    RegistrySource,
    Source,
    WorkspaceSource,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from manifest_edit_git import GitQuery
    from manifest_edit_registry import RegistryQuery, RegistryVersion
    from manifest_edit_workspace import ManifestMetadata

__all__ = [
    "Candidate",
    "Exact",
    "GitCandidate",
    "Latest",
    "LatestCompatible",
    "Policy",
    "VersionCandidate",
    "VersionResolver",
    "select_candidate",
]

LOGGER = logging.getLogger(__name__)


@dc.dataclass(frozen=True)
class Latest:
    """Select the highest available version."""

    allow_prerelease: bool = False
    allow_yanked: bool = False


@dc.dataclass(frozen=True)
class LatestCompatible:
    """Select the highest version satisfying ``current_req``.

    An empty requirement asks the editor to use each entry's own requirement.
    """

    current_req: str = ""
    allow_yanked: bool = False


@dc.dataclass(frozen=True)
class Exact:
    """Select precisely ``version`` when it is published."""

    version: str


Policy = Latest | LatestCompatible | Exact


@dc.dataclass(frozen=True)
class VersionCandidate:
    """A concrete version offered by a source."""

    version: semver.Version
    yanked: bool = False

    @property
    def prerelease(self) -> bool:
        """Return ``True`` for pre-release versions such as ``1.0.0-beta``."""
        return self.version.prerelease is not None


@dc.dataclass(frozen=True)
class GitCandidate:
    """The commit a git reference currently resolves to."""

    commit: str
    ref: str


Candidate = VersionCandidate | GitCandidate


def _candidates(
    name: str, versions: cabc.Iterable[RegistryVersion]
) -> list[VersionCandidate]:
    candidates: list[VersionCandidate] = []
    for entry in versions:
        try:
            version = parse_version(entry.version)
        except ValueError:
            LOGGER.warning("ignoring unparsable version %r of %s", entry.version, name)
            continue
        candidates.append(VersionCandidate(version=version, yanked=entry.yanked))
    return candidates


def _admits(candidate: VersionCandidate, policy: Policy) -> bool:
    if isinstance(policy, Exact):
        pinned = policy.version.strip().lstrip("=").strip()
        return not candidate.yanked and str(candidate.version) == pinned
    if candidate.yanked and not policy.allow_yanked:
        return False
    if isinstance(policy, LatestCompatible):
        return VersionReq.parse(policy.current_req).matches(candidate.version)
    return policy.allow_prerelease or not candidate.prerelease


def select_candidate(
    name: str,
    candidates: cabc.Sequence[VersionCandidate],
    policy: Policy,
    *,
    source: Source | None = None,
) -> VersionCandidate:
    """Return the highest candidate admitted by ``policy``.

    Versions are ranked by semver precedence, so ``1.2.0`` beats
    ``1.2.0-beta`` and ``2.0.0-alpha`` is only chosen when pre-releases are
    allowed.

    Raises
    ------
    CrateNotFoundError
        Raised when ``candidates`` is empty.
    NoMatchingVersionError
        Raised when ``policy`` excludes every candidate.
    """
    if not candidates:
        message = f"no versions of {name!r} are published"
        raise CrateNotFoundError(message, name=name, source=source, policy=policy)
    if isinstance(policy, LatestCompatible):
        try:
            VersionReq.parse(policy.current_req)
        except ValueError as err:
            message = f"cannot match {name!r} against {policy.current_req!r}: {err}"
            raise NoMatchingVersionError(
                message, name=name, source=source, policy=policy
            ) from err
    admitted = [candidate for candidate in candidates if _admits(candidate, policy)]
    if not admitted:
        message = f"no version of {name!r} matches {_describe(policy)}"
        raise NoMatchingVersionError(
            message, name=name, source=source, policy=policy
        )
    return max(admitted, key=lambda candidate: candidate.version)


def _describe(policy: Policy) -> str:
    if isinstance(policy, LatestCompatible):
        return f"requirement {policy.current_req!r}"
    if isinstance(policy, Exact):
        return f"exact version {policy.version!r}"
    if policy.allow_prerelease:
        return "the latest policy"
    return "the latest policy (pre-releases excluded)"


def _in_context(
    err: ResolutionError, name: str, source: Source, policy: Policy
) -> ResolutionError:
    """Rebuild a collaborator error against the dependency being resolved."""
    return type(err)(str(err), name=name, source=source, policy=policy)


class VersionResolver:
    """Choose versions for dependencies from their declared source.

    Parameters
    ----------
    registry_for : Callable[[RegistrySource], RegistryQuery]
        Factory returning the registry client for a registry source.
    git : GitQuery | None
        Remote reference resolver used for git sources.
    metadata_loader : Callable[[Path], ManifestMetadata] | None
        Reads package metadata for path sources.
    base_dir : Path | None
        Directory relative path sources are resolved against.
    """

    def __init__(
        self,
        registry_for: typ.Callable[[RegistrySource], RegistryQuery],
        *,
        git: GitQuery | None = None,
        metadata_loader: typ.Callable[[Path], ManifestMetadata] | None = None,
        base_dir: Path | None = None,
    ) -> None:
        self._registry_for = registry_for
        self._git = git
        self._metadata_loader = metadata_loader
        self.base_dir = base_dir

    def with_base_dir(self, base_dir: Path) -> VersionResolver:
        """Return a resolver resolving path sources against ``base_dir``."""
        return VersionResolver(
            self._registry_for,
            git=self._git,
            metadata_loader=self._metadata_loader,
            base_dir=base_dir,
        )

    def latest(self, name: str, source: Source, policy: Policy) -> Candidate:
        """Return the candidate ``policy`` selects for ``name`` from ``source``."""
        if isinstance(source, GitSource):
            return self._latest_git(name, source, policy)
        if isinstance(source, PathSource):
            return self._latest_path(name, source, policy)
        if isinstance(source, WorkspaceSource):
            message = f"{name!r} inherits its version from the workspace root"
            raise NoMatchingVersionError(
                message, name=name, source=source, policy=policy
            )
        client = self._registry_for(source)
        try:
            versions = client.list_versions(name)
        except ResolutionError as err:
            raise _in_context(err, name, source, policy) from err
        LOGGER.debug("registry lists %d versions of %s", len(versions), name)
        return select_candidate(
            name, _candidates(name, versions), policy, source=source
        )

    def _latest_git(self, name: str, source: GitSource, policy: Policy) -> GitCandidate:
        if self._git is None:
            message = f"no git collaborator configured to resolve {name!r}"
            raise NoMatchingVersionError(
                message, name=name, source=source, policy=policy
            )
        ref = source.branch or source.tag
        try:
            if ref is None:
                ref = self._git.default_branch(source.url)
            commit = self._git.resolve_ref(source.url, ref)
        except ResolutionError as err:
            raise _in_context(err, name, source, policy) from err
        return GitCandidate(commit=commit, ref=ref)

    def _latest_path(
        self, name: str, source: PathSource, policy: Policy
    ) -> VersionCandidate:
        if self._metadata_loader is None:
            message = f"no metadata loader configured to read {source.path!r}"
            raise NoMatchingVersionError(
                message, name=name, source=source, policy=policy
            )
        directory = Path(source.path)
        if not directory.is_absolute() and self.base_dir is not None:
            directory = self.base_dir / directory
        manifest = directory / "Cargo.toml"
        try:
            metadata = self._metadata_loader(manifest)
        except (OSError, MetadataError, ManifestSyntaxError) as err:
            message = f"could not read the version of {name!r} from {manifest}: {err}"
            raise CrateNotFoundError(
                message, name=name, source=source, policy=policy
            ) from err
        if metadata.version is None:
            message = f"{manifest} does not declare a package version"
            raise NoMatchingVersionError(
                message, name=name, source=source, policy=policy
            )
        try:
            candidate = VersionCandidate(version=parse_version(metadata.version))
        except ValueError as err:
            message = f"{manifest} declares an invalid version {metadata.version!r}"
            raise NoMatchingVersionError(
                message, name=name, source=source, policy=policy
            ) from err
        # A local checkout is used as-is, pre-release or not, under Latest.
        if not isinstance(policy, Latest) and not _admits(candidate, policy):
            message = (
                f"{name!r} at {source.path} is {metadata.version}, which does not "
                f"match {_describe(policy)}"
            )
            raise NoMatchingVersionError(
                message, name=name, source=source, policy=policy
            )
        return candidate

    @staticmethod
    def requirement_for(
        candidate: VersionCandidate,
        *,
        exact: bool = False,
        current_req: str | None = None,
    ) -> str:
        """Render the requirement string to write for ``candidate``.

        The caret convention is the default; ``exact`` pins the version, and
        ``current_req`` keeps the operator of an existing single-clause
        requirement.
        """
        if exact:
            return exact_requirement(candidate.version)
        if current_req is not None:
            return upgrade_requirement(current_req, candidate.version)
        return caret_requirement(candidate.version)
