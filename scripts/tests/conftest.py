"""Shared fixtures and fakes for manifest editing tests."""

from __future__ import annotations

import dataclasses as dc
import sys
import textwrap
import typing as typ
from pathlib import Path

import pytest

SCRIPTS_DIR = Path(__file__).resolve().parents[1]
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

from manifest_edit_errors import CrateNotFoundError  # noqa: E402
from manifest_edit_registry import RegistryVersion  # noqa: E402
from manifest_edit_resolver import VersionResolver  # noqa: E402
from manifest_edit_workspace import load_metadata  # noqa: E402

if typ.TYPE_CHECKING:
    from manifest_edit_spec import RegistrySource


@dc.dataclass
class FakeRegistry:
    """In-memory registry answering ``list_versions`` from a mapping."""

    versions: dict[str, list[RegistryVersion]] = dc.field(default_factory=dict)
    queries: list[str] = dc.field(default_factory=list)
    failures: dict[str, Exception] = dc.field(default_factory=dict)

    def publish(
        self, name: str, *versions: str, yanked: typ.Iterable[str] = ()
    ) -> None:
        """Register ``versions`` of ``name``; those in ``yanked`` are yanked."""
        yanked_set = set(yanked)
        self.versions.setdefault(name, []).extend(
            RegistryVersion(version, version in yanked_set) for version in versions
        )

    def list_versions(self, name: str) -> list[RegistryVersion]:
        self.queries.append(name)
        if name in self.failures:
            raise self.failures[name]
        try:
            return list(self.versions[name])
        except KeyError as err:
            message = f"the crate {name!r} could not be found"
            raise CrateNotFoundError(message, name=name) from err


@dc.dataclass
class FakeGit:
    """Git collaborator resolving references from a fixed table."""

    refs: dict[tuple[str, str], str] = dc.field(default_factory=dict)
    default: str = "main"

    def resolve_ref(self, repo_url: str, ref_spec: str) -> str:
        try:
            return self.refs[(repo_url, ref_spec)]
        except KeyError as err:
            message = f"reference {ref_spec!r} not found in {repo_url!r}"
            raise CrateNotFoundError(message, name=repo_url) from err

    def default_branch(self, repo_url: str) -> str:
        return self.default


@pytest.fixture
def fake_registry() -> FakeRegistry:
    """Provide an empty in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def fake_git() -> FakeGit:
    """Provide a git collaborator with no references."""
    return FakeGit()


@pytest.fixture
def resolver(fake_registry: FakeRegistry, fake_git: FakeGit) -> VersionResolver:
    """Build a resolver wired to the in-memory collaborators."""

    def registry_for(source: RegistrySource) -> FakeRegistry:
        return fake_registry

    return VersionResolver(registry_for, git=fake_git, metadata_loader=load_metadata)


WriteManifest = typ.Callable[[str, str], Path]


@pytest.fixture
def write_manifest(tmp_path: Path) -> WriteManifest:
    """Return a helper writing dedented manifest text below ``tmp_path``."""

    def _write(relative_dir: str, text: str) -> Path:
        directory = tmp_path / relative_dir
        directory.mkdir(parents=True, exist_ok=True)
        manifest = directory / "Cargo.toml"
        manifest.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
        return manifest

    return _write
