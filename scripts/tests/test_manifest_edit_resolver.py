"""Tests for version selection across dependency sources."""

from __future__ import annotations

import typing as typ

import pytest
from manifest_edit_errors import (
    CrateNotFoundError,
    NoMatchingVersionError,
    SourceUnavailableError,
)
from manifest_edit_git import GitCli
from manifest_edit_resolver import (
    Exact,
    GitCandidate,
    Latest,
    LatestCompatible,
    VersionCandidate,
    VersionResolver,
)
from manifest_edit_semver import parse_version
from manifest_edit_spec import (
    GitSource,
    PathSource,
    RegistrySource,
    WorkspaceSource,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from conftest import FakeGit, FakeRegistry, WriteManifest

COMMIT = "0123456789abcdef0123456789abcdef01234567"
REPO = "https://example.com/demo.git"


@pytest.fixture
def published(fake_registry: FakeRegistry) -> FakeRegistry:
    """Publish a crate with releases, pre-releases, and a yanked version."""
    fake_registry.publish(
        "demo",
        "1.0.0",
        "1.2.0",
        "1.2.0-beta",
        "2.0.0-alpha",
        "1.3.0",
        yanked=["1.3.0"],
    )
    return fake_registry


def _version(candidate: object) -> str:
    assert isinstance(candidate, VersionCandidate)
    return str(candidate.version)


def test_latest_prefers_release_over_prerelease(
    resolver: VersionResolver, published: FakeRegistry
) -> None:
    """Pre-releases and yanked versions are skipped by default."""
    candidate = resolver.latest("demo", RegistrySource(), Latest())

    assert _version(candidate) == "1.2.0"
    assert published.queries == ["demo"]


def test_latest_can_admit_prereleases_and_yanked(
    resolver: VersionResolver, published: FakeRegistry
) -> None:
    """Flags on the policy widen the candidate set."""
    prerelease = resolver.latest(
        "demo", RegistrySource(), Latest(allow_prerelease=True)
    )
    yanked = resolver.latest("demo", RegistrySource(), Latest(allow_yanked=True))

    assert _version(prerelease) == "2.0.0-alpha"
    assert _version(yanked) == "1.3.0"


@pytest.mark.parametrize(
    ("requirement", "expected"),
    [
        ("^1.0", "1.2.0"),
        ("~1.0", "1.0.0"),
        ("=1.2.0-beta", "1.2.0-beta"),
        (">=2.0.0-alpha", "2.0.0-alpha"),
    ],
)
def test_latest_compatible_honours_requirement(
    resolver: VersionResolver,
    published: FakeRegistry,
    requirement: str,
    expected: str,
) -> None:
    """Only versions matching the current requirement are considered."""
    candidate = resolver.latest(
        "demo", RegistrySource(), LatestCompatible(requirement)
    )

    assert _version(candidate) == expected


def test_exact_requires_published_version(
    resolver: VersionResolver, published: FakeRegistry
) -> None:
    """Exact pins select the version or fail with context attached."""
    assert _version(resolver.latest("demo", RegistrySource(), Exact("1.0.0"))) == (
        "1.0.0"
    )

    with pytest.raises(NoMatchingVersionError) as excinfo:
        resolver.latest("demo", RegistrySource(), Exact("9.9.9"))

    assert excinfo.value.name == "demo"
    assert excinfo.value.policy == Exact("9.9.9")


def test_unmatched_requirement_raises(
    resolver: VersionResolver, published: FakeRegistry
) -> None:
    """A requirement no version satisfies is reported rather than widened."""
    with pytest.raises(NoMatchingVersionError, match="requirement '\\^3'"):
        resolver.latest("demo", RegistrySource(), LatestCompatible("^3"))


def test_unknown_crate_propagates_not_found(resolver: VersionResolver) -> None:
    """Registry lookups for unpublished crates raise ``CrateNotFoundError``."""
    with pytest.raises(CrateNotFoundError):
        resolver.latest("missing", RegistrySource(), Latest())


def test_unparsable_versions_are_ignored(
    resolver: VersionResolver, fake_registry: FakeRegistry
) -> None:
    """Index entries that are not semantic versions are skipped."""
    fake_registry.publish("odd", "not-a-version", "0.1.0")

    assert _version(resolver.latest("odd", RegistrySource(), Latest())) == "0.1.0"


def test_git_source_resolves_default_branch(
    resolver: VersionResolver, fake_git: FakeGit
) -> None:
    """Rev-pinned git sources move to the head of the default branch."""
    fake_git.refs[(REPO, "main")] = COMMIT

    candidate = resolver.latest("demo", GitSource(REPO, rev="abc1234"), Latest())

    assert candidate == GitCandidate(commit=COMMIT, ref="main")


def test_git_source_follows_named_branch(
    resolver: VersionResolver, fake_git: FakeGit
) -> None:
    """Branch-tracking sources resolve that branch."""
    fake_git.refs[(REPO, "release")] = COMMIT

    candidate = resolver.latest("demo", GitSource(REPO, branch="release"), Latest())

    assert candidate == GitCandidate(commit=COMMIT, ref="release")


def test_git_source_without_collaborator_fails() -> None:
    """A resolver without git support cannot pick commits."""
    bare = VersionResolver(lambda source: pytest.fail("registry queried"))

    with pytest.raises(NoMatchingVersionError, match="git"):
        bare.latest("demo", GitSource(REPO), Latest())


def test_git_failure_names_the_dependency(fake_registry: FakeRegistry) -> None:
    """Errors from ``git ls-remote`` are reported against the dependency."""
    git = GitCli(runner=lambda command, timeout: (128, "", "fatal: not found"))
    resolver = VersionResolver(lambda source: fake_registry, git=git)
    source = GitSource(REPO, branch="main")

    with pytest.raises(SourceUnavailableError, match="exit code 128") as excinfo:
        resolver.latest("demo", source, Latest())

    err = excinfo.value
    assert (err.name, err.source, err.policy) == ("demo", source, Latest())


def test_registry_failure_names_the_dependency(
    resolver: VersionResolver, fake_registry: FakeRegistry
) -> None:
    """Index errors carry the dependency source rather than the index URL."""
    fake_registry.failures["demo"] = SourceUnavailableError(
        "HTTP 503", name="demo", source="https://index.example.com/"
    )
    source = RegistrySource(registry="internal")
    policy = LatestCompatible("^1")

    with pytest.raises(SourceUnavailableError, match="HTTP 503") as excinfo:
        resolver.latest("demo", source, policy)

    err = excinfo.value
    assert (err.name, err.source, err.policy) == ("demo", source, policy)
    assert isinstance(err.__cause__, SourceUnavailableError)


def test_path_source_reads_local_manifest(
    resolver: VersionResolver, write_manifest: WriteManifest, tmp_path: Path
) -> None:
    """Path dependencies report the version their manifest declares."""
    write_manifest(
        "crates/local",
        """
        [package]
        name = "local"
        version = "0.3.1-rc.1"
        """,
    )

    local = resolver.with_base_dir(tmp_path)
    candidate = local.latest("local", PathSource("crates/local"), Latest())

    assert _version(candidate) == "0.3.1-rc.1"
    with pytest.raises(NoMatchingVersionError, match="does not match"):
        local.latest("local", PathSource("crates/local"), LatestCompatible("^1"))


def test_path_source_missing_manifest(
    resolver: VersionResolver, tmp_path: Path
) -> None:
    """An unreadable path dependency is reported as not found."""
    with pytest.raises(CrateNotFoundError, match="could not read"):
        resolver.with_base_dir(tmp_path).latest(
            "ghost", PathSource("ghost"), Latest()
        )


def test_workspace_source_is_not_resolvable(resolver: VersionResolver) -> None:
    """Inherited dependencies take their version from the workspace root."""
    with pytest.raises(NoMatchingVersionError, match="inherits"):
        resolver.latest("demo", WorkspaceSource(), Latest())


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({}, "1.4.2"),
        ({"exact": True}, "=1.4.2"),
        ({"current_req": "~1.0"}, "~1.4.2"),
        ({"current_req": ">=1, <2"}, "1.4.2"),
    ],
)
def test_requirement_for_renders_convention(
    kwargs: dict[str, typ.Any], expected: str
) -> None:
    """Written requirements default to caret and keep existing operators."""
    candidate = VersionCandidate(version=parse_version("1.4.2"))

    assert VersionResolver.requirement_for(candidate, **kwargs) == expected
