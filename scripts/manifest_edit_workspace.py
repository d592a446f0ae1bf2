"""Workspace discovery for manifest editing commands.

These helpers find the manifest an invocation starts from, load the workspace
root it belongs to, and enumerate member manifests so commands can target the
current package, a named package, or every member.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

import tomllib
from manifest_edit_errors import (
    ManifestSyntaxError,
    MetadataError,
    PackageNotFoundError,
)

__all__ = [
    "MANIFEST_NAME",
    "AllMembers",
    "CurrentPackage",
    "ManifestMetadata",
    "NamedPackage",
    "Selector",
    "WorkspaceGraph",
    "discover",
    "find_manifest",
    "find_workspace_root",
    "load_metadata",
    "resolve_targets",
    "workspace_section_excerpt",
]

LOGGER = logging.getLogger(__name__)

MANIFEST_NAME: typ.Final[str] = "Cargo.toml"


@dc.dataclass(frozen=True)
class ManifestMetadata:
    """Package and workspace facts read from a single manifest."""

    manifest_path: Path
    package_name: str | None
    version: str | None
    members: tuple[Path, ...] = ()
    is_workspace_root: bool = False


@dc.dataclass(frozen=True)
class WorkspaceGraph:
    """Packages reachable from the invocation directory.

    ``packages`` maps package names to manifest paths in member declaration
    order. ``current_manifest`` is the manifest nearest the start directory.
    """

    root_manifest: Path
    current_manifest: Path
    packages: typ.Mapping[str, Path]


@dc.dataclass(frozen=True)
class CurrentPackage:
    """Select the manifest nearest the start directory."""


@dc.dataclass(frozen=True)
class NamedPackage:
    """Select the workspace member called ``name``."""

    name: str


@dc.dataclass(frozen=True)
class AllMembers:
    """Select the workspace root and every member manifest."""


Selector = CurrentPackage | NamedPackage | AllMembers


def _load_toml(manifest_path: Path) -> dict[str, typ.Any]:
    text = Path(manifest_path).read_text(encoding="utf-8")
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as err:
        message = f"invalid manifest syntax in {manifest_path}: {err}"
        raise ManifestSyntaxError(message) from err


def find_manifest(start_dir: Path) -> Path:
    """Return the nearest ``Cargo.toml`` at or above ``start_dir``."""
    start = Path(start_dir).resolve()
    for directory in (start, *start.parents):
        candidate = directory / MANIFEST_NAME
        if candidate.is_file():
            return candidate
    message = f"could not find {MANIFEST_NAME} in {start} or any parent directory"
    raise MetadataError(message)


def _declares_workspace(data: typ.Mapping[str, typ.Any]) -> bool:
    return isinstance(data.get("workspace"), dict)


def find_workspace_root(manifest_path: Path) -> Path | None:
    """Return the workspace root manifest ``manifest_path`` belongs to.

    A manifest declaring ``[workspace]`` is its own root. Otherwise an explicit
    ``package.workspace`` path is honoured before searching parent directories
    for a root that lists the manifest among its members. ``None`` is returned
    for standalone packages.
    """
    manifest_path = Path(manifest_path).resolve()
    data = _load_toml(manifest_path)
    if _declares_workspace(data):
        return manifest_path

    package = data.get("package", {})
    explicit = package.get("workspace") if isinstance(package, dict) else None
    if isinstance(explicit, str):
        candidate = (manifest_path.parent / explicit / MANIFEST_NAME).resolve()
        if candidate.is_file() and _declares_workspace(_load_toml(candidate)):
            return candidate
        message = f"{manifest_path} points at workspace {explicit!r}, which has no root"
        raise MetadataError(message)

    for directory in manifest_path.parent.parents:
        candidate = directory / MANIFEST_NAME
        if not candidate.is_file():
            continue
        if not _declares_workspace(_load_toml(candidate)):
            continue
        if manifest_path in load_metadata(candidate).members:
            return candidate
        LOGGER.debug(
            "%s is not a member of the workspace at %s", manifest_path, candidate
        )
        return None
    return None


def _expand_members(
    root_dir: Path, workspace: typ.Mapping[str, typ.Any]
) -> tuple[Path, ...]:
    """Expand ``members`` globs relative to ``root_dir`` minus ``exclude``."""
    excluded = {
        (root_dir / entry).resolve()
        for entry in workspace.get("exclude", [])
        if isinstance(entry, str)
    }
    found: dict[Path, None] = {}
    for entry in workspace.get("members", []):
        if not isinstance(entry, str):
            continue
        if any(char in entry for char in "*?["):
            directories = sorted(root_dir.glob(entry))
        else:
            directories = [root_dir / entry]
        for directory in directories:
            resolved = directory.resolve()
            manifest = resolved / MANIFEST_NAME
            if resolved in excluded or not manifest.is_file():
                continue
            found.setdefault(manifest, None)
    return tuple(found)


def load_metadata(manifest_path: Path) -> ManifestMetadata:
    """Read the package name, version, and workspace members of a manifest.

    Versions declared as ``version.workspace = true`` are read from the
    ``[workspace.package]`` table of the owning workspace root.

    Raises
    ------
    ManifestSyntaxError
        Raised when the manifest is not valid TOML.
    MetadataError
        Raised when an inherited version cannot be found in the workspace root.
    """
    manifest_path = Path(manifest_path).resolve()
    data = _load_toml(manifest_path)
    package = data.get("package")
    package_name: str | None = None
    version: str | None = None
    if isinstance(package, dict):
        name = package.get("name")
        package_name = name if isinstance(name, str) else None
        declared = package.get("version")
        if isinstance(declared, str):
            version = declared
        elif isinstance(declared, dict) and declared.get("workspace") is True:
            version = _inherited_version(manifest_path, data)

    workspace = data.get("workspace")
    members: tuple[Path, ...] = ()
    if isinstance(workspace, dict):
        members = _expand_members(manifest_path.parent, workspace)
    return ManifestMetadata(
        manifest_path=manifest_path,
        package_name=package_name,
        version=version,
        members=members,
        is_workspace_root=isinstance(workspace, dict),
    )


def _inherited_version(manifest_path: Path, data: typ.Mapping[str, typ.Any]) -> str:
    root = (
        manifest_path
        if _declares_workspace(data)
        else find_workspace_root(manifest_path)
    )
    if root is None:
        message = (
            f"{manifest_path} inherits its version from a workspace, but no "
            "workspace root was found"
        )
        raise MetadataError(message)
    root_text = root.read_text(encoding="utf-8")
    root_data = data if root == manifest_path else _load_toml(root)
    try:
        return root_data["workspace"]["package"]["version"]
    except KeyError as err:
        message = (
            f"expected [workspace.package].version in {root}; "
            f"{manifest_path} inherits its version from the workspace."
        )
        if snippet := workspace_section_excerpt(root_text):
            indented_snippet = "\n".join(f"    {line}" for line in snippet)
            message = f"{message}\n\nWorkspace manifest excerpt:\n{indented_snippet}"
        raise MetadataError(message) from err


def workspace_section_excerpt(
    manifest_text: str, *, max_lines: int = 8
) -> list[str] | None:
    """Return the ``[workspace]`` tables of ``manifest_text`` for diagnostics.

    The excerpt starts at the first ``[workspace...]`` header and stops at the
    first header outside the workspace, or after ``max_lines`` lines.
    """
    excerpt: list[str] | None = None
    for line in manifest_text.splitlines():
        header = line.lstrip()
        in_workspace = header.startswith("[workspace")
        if excerpt is None:
            if in_workspace:
                excerpt = [line]
            continue
        leaves_workspace = header.startswith("[") and not in_workspace
        if leaves_workspace or len(excerpt) >= max_lines:
            break
        excerpt.append(line)
    return excerpt


def discover(start_dir: Path) -> WorkspaceGraph:
    """Build the :class:`WorkspaceGraph` for an invocation in ``start_dir``.

    Examples
    --------
    >>> graph = discover(Path("crates/demo"))  # doctest: +SKIP
    >>> list(graph.packages)  # doctest: +SKIP
    ['demo', 'demo-macros']
    """
    current = find_manifest(start_dir)
    root = find_workspace_root(current)
    packages: dict[str, Path] = {}
    if root is None:
        metadata = load_metadata(current)
        if metadata.package_name is not None:
            packages[metadata.package_name] = current
        return WorkspaceGraph(
            root_manifest=current, current_manifest=current, packages=packages
        )

    root_metadata = load_metadata(root)
    if root_metadata.package_name is not None:
        packages[root_metadata.package_name] = root
    for member in root_metadata.members:
        member_metadata = load_metadata(member)
        if member_metadata.package_name is None:
            LOGGER.warning("workspace member %s has no package name", member)
            continue
        packages.setdefault(member_metadata.package_name, member)
    return WorkspaceGraph(
        root_manifest=root, current_manifest=current, packages=packages
    )


def resolve_targets(graph: WorkspaceGraph, selector: Selector) -> list[Path]:
    """Return the manifests ``selector`` addresses, in declaration order.

    Raises
    ------
    PackageNotFoundError
        Raised when a :class:`NamedPackage` matches no workspace member.
    """
    if isinstance(selector, CurrentPackage):
        return [graph.current_manifest]
    if isinstance(selector, NamedPackage):
        try:
            return [graph.packages[selector.name]]
        except KeyError as err:
            known = ", ".join(sorted(graph.packages)) or "none"
            message = (
                f"package {selector.name!r} not found in workspace (known: {known})"
            )
            raise PackageNotFoundError(message) from err
    targets: dict[Path, None] = {graph.root_manifest: None}
    for manifest in graph.packages.values():
        targets.setdefault(manifest, None)
    return list(targets)
