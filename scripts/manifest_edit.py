"""Facade tying manifest discovery, version resolution, and edits together.

:class:`ManifestEditor` is the surface the command-line layer drives. Each
operation discovers the manifests a selector addresses, loads them losslessly,
applies accessor edits, and writes back only the manifests whose text changed.
Workspace-wide upgrades and removals collect failures per manifest so one
broken member does not stop the others from being processed.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

import manifest_edit_accessor as accessor
from manifest_edit_accessor import DependencyEntry, ManifestTarget, Report
from manifest_edit_document import parse_document
from manifest_edit_errors import (
    DependencyNotFoundError,
    ManifestEditError,
    UnsupportedShapeError,
)
from manifest_edit_git import GitCli
from manifest_edit_registry import (
    DEFAULT_TIMEOUT_SECS,
    SparseIndexClient,
    registry_url,
    sparse_index_url,
)
from manifest_edit_resolver import (
    Exact,
    Latest,
    LatestCompatible,
    Policy,
    VersionResolver,
)
from manifest_edit_serialise import (
    read_manifest,
    write_manifest_atomically,
    write_manifest_if_changed,
)
from manifest_edit_spec import (
    DependencySpec,
    GitSource,
    RegistrySource,
    WorkspaceSource,
    from_existing,
)
from manifest_edit_workspace import (
    AllMembers,
    Selector,
    WorkspaceGraph,
    discover,
    load_metadata,
    resolve_targets,
)

if typ.TYPE_CHECKING:
    from manifest_edit_registry import RegistryQuery
    from manifest_edit_resolver import GitCandidate, VersionCandidate
    from tomlkit.toml_document import TOMLDocument

__all__ = [
    "ManifestEditor",
    "ManifestFailure",
    "OperationResult",
]

LOGGER = logging.getLogger(__name__)

ReadFile = typ.Callable[[Path], str]
WriteFile = typ.Callable[[Path, str], None]
Edit = typ.Callable[["TOMLDocument"], Report]


@dc.dataclass(frozen=True)
class ManifestFailure:
    """An error raised while processing one manifest."""

    manifest: Path
    error: ManifestEditError

    def __str__(self) -> str:
        return f"{self.manifest}: {self.error}"


@dc.dataclass(frozen=True)
class OperationResult:
    """Reports and per-manifest failures of a multi-manifest operation."""

    reports: tuple[Report, ...] = ()
    errors: tuple[ManifestFailure, ...] = ()

    @property
    def ok(self) -> bool:
        """Return ``True`` when every manifest was processed successfully."""
        return not self.errors


class _RegistryClients:
    """Hand out one sparse index client per index URL."""

    def __init__(self, manifest_path: Path, *, timeout_secs: int) -> None:
        self.manifest_path = manifest_path
        self.timeout_secs = timeout_secs
        self._clients: dict[str, SparseIndexClient] = {}

    def __call__(self, source: RegistrySource) -> RegistryQuery:
        index = sparse_index_url(registry_url(self.manifest_path, source.registry))
        client = self._clients.get(index)
        if client is None:
            LOGGER.debug("querying registry index %s", index)
            client = SparseIndexClient(index, timeout_secs=self.timeout_secs)
            self._clients[index] = client
        return client

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()


def _effective_target(spec: DependencySpec, target: ManifestTarget) -> ManifestTarget:
    if spec.target is not None and target.platform is None:
        return dc.replace(target, platform=spec.target)
    return target


def _matches_filter(
    entry: DependencyEntry, spec: DependencySpec, names: cabc.Collection[str] | None
) -> bool:
    return names is None or entry.key in names or spec.name in names


class ManifestEditor:
    """Add, remove, and upgrade dependencies across workspace manifests.

    Parameters
    ----------
    resolver : VersionResolver | None
        Resolver used to pick versions. When omitted, one backed by the sparse
        registry index, ``git ls-remote``, and local manifests is built on
        first use.
    read_file, write_file : Callable
        Filesystem collaborators. Writes replace the whole file or nothing.
    timeout_secs : int
        Network timeout applied to the default resolver's queries.
    """

    def __init__(
        self,
        resolver: VersionResolver | None = None,
        *,
        read_file: ReadFile = read_manifest,
        write_file: WriteFile = write_manifest_atomically,
        timeout_secs: int = DEFAULT_TIMEOUT_SECS,
    ) -> None:
        self._resolver = resolver
        self._read_file = read_file
        self._write_file = write_file
        self.timeout_secs = timeout_secs
        self._registries: _RegistryClients | None = None

    def __enter__(self) -> ManifestEditor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release network clients created for the default resolver."""
        if self._registries is not None:
            self._registries.close()

    def _resolver_for(self, graph: WorkspaceGraph, manifest: Path) -> VersionResolver:
        if self._resolver is None:
            self._registries = _RegistryClients(
                graph.current_manifest, timeout_secs=self.timeout_secs
            )
            self._resolver = VersionResolver(
                self._registries,
                git=GitCli(timeout_secs=self.timeout_secs),
                metadata_loader=load_metadata,
            )
        return self._resolver.with_base_dir(manifest.parent)

    def _load(self, manifest: Path) -> tuple[str, TOMLDocument]:
        text = self._read_file(manifest)
        return text, parse_document(text)

    def _save(
        self, document: TOMLDocument, manifest: Path, original: str, *, dry_run: bool
    ) -> None:
        if dry_run:
            LOGGER.info("dry run: leaving %s untouched", manifest)
            return
        write_manifest_if_changed(
            document, manifest, original, write_file=self._write_file
        )

    def _complete_spec(
        self,
        spec: DependencySpec,
        resolver: VersionResolver,
        *,
        exact: bool,
    ) -> DependencySpec:
        """Fill in the latest version for registry specs that name none."""
        if spec.version_req is not None or not isinstance(
            spec.source, RegistrySource
        ):
            return spec
        candidate = resolver.latest(spec.name, spec.source, Latest())
        requirement = resolver.requirement_for(
            typ.cast("VersionCandidate", candidate), exact=exact
        )
        LOGGER.info("resolved %s to %s", spec.name, requirement)
        return dc.replace(spec, version_req=requirement)

    def add(
        self,
        selector: Selector,
        spec: DependencySpec,
        target: ManifestTarget,
        *,
        start_dir: Path,
        dry_run: bool = False,
        exact: bool = False,
    ) -> list[Report]:
        """Insert or merge ``spec`` into every manifest ``selector`` addresses.

        A registry spec without a requirement is resolved to the latest stable
        version once, then written in caret form (or pinned when ``exact``).
        Any failure aborts the operation; manifests already written stay
        written.
        """
        graph = discover(start_dir)
        manifests = resolve_targets(graph, selector)
        target = _effective_target(spec, target)
        resolved = self._complete_spec(
            spec, self._resolver_for(graph, manifests[0]), exact=exact
        )
        reports: list[Report] = []
        for manifest in manifests:
            original, document = self._load(manifest)
            report = accessor.add(document, target, resolved)
            self._save(document, manifest, original, dry_run=dry_run)
            reports.append(report.for_manifest(manifest))
        return reports

    def remove(
        self,
        selector: Selector,
        name: str,
        target: ManifestTarget,
        *,
        start_dir: Path,
        dry_run: bool = False,
    ) -> OperationResult:
        """Delete ``name`` from the ``target`` table of each addressed manifest."""
        graph = discover(start_dir)
        reports: list[Report] = []
        errors: list[ManifestFailure] = []
        for manifest in resolve_targets(graph, selector):
            try:
                original, document = self._load(manifest)
                report = accessor.remove(document, target, name)
            except ManifestEditError as err:
                LOGGER.warning("could not remove %s from %s: %s", name, manifest, err)
                errors.append(ManifestFailure(manifest, err))
                continue
            self._save(document, manifest, original, dry_run=dry_run)
            reports.append(report.for_manifest(manifest))
        return OperationResult(tuple(reports), tuple(errors))

    def upgrade(
        self,
        selector: Selector,
        name_filter: cabc.Collection[str] | None,
        policy: Policy,
        *,
        start_dir: Path,
        dry_run: bool = False,
        skip_pinned: bool = True,
    ) -> OperationResult:
        """Upgrade dependency requirements in each addressed manifest.

        Every version for a manifest is resolved before its document is
        touched, so a resolution failure leaves that manifest unmutated while
        the remaining manifests are still processed.

        Parameters
        ----------
        selector : Selector
            Which manifests to visit.
        name_filter : Collection[str] | None
            Dependency keys or package names to upgrade; ``None`` upgrades all.
        policy : Policy
            Version policy. ``LatestCompatible("")`` matches each entry against
            its own requirement.
        start_dir : Path
            Directory the invocation runs from.
        dry_run : bool, default False
            Report the edits without writing any manifest.
        skip_pinned : bool, default True
            Leave ``=x.y.z`` requirements alone, except under an ``Exact``
            policy, which names the version the user asked for.
        """
        graph = discover(start_dir)
        manifests = resolve_targets(graph, selector)
        reports: list[Report] = []
        errors: list[ManifestFailure] = []
        seen: set[str] = set()
        for manifest in manifests:
            try:
                original, document = self._load(manifest)
                edits = self._plan_upgrade(
                    document,
                    self._resolver_for(graph, manifest),
                    name_filter,
                    policy,
                    skip_pinned=skip_pinned,
                    seen=seen,
                )
                manifest_reports = [edit(document) for edit in edits]
            except ManifestEditError as err:
                LOGGER.warning("failed to upgrade %s: %s", manifest, err)
                errors.append(ManifestFailure(manifest, err))
                continue
            self._save(document, manifest, original, dry_run=dry_run)
            reports.extend(report.for_manifest(manifest) for report in manifest_reports)

        errors.extend(
            self._missing_names(name_filter, seen, manifests, selector=selector)
        )
        return OperationResult(tuple(reports), tuple(errors))

    @staticmethod
    def _missing_names(
        name_filter: cabc.Collection[str] | None,
        seen: set[str],
        manifests: list[Path],
        *,
        selector: Selector,
    ) -> list[ManifestFailure]:
        if name_filter is None:
            return []
        failures: list[ManifestFailure] = []
        for name in name_filter:
            if name in seen:
                continue
            scope = "workspace" if isinstance(selector, AllMembers) else "manifest"
            message = f"the dependency {name!r} could not be found in the {scope}"
            error = DependencyNotFoundError(message, name=name, table="*")
            failures.append(ManifestFailure(manifests[0], error))
        return failures

    def _plan_upgrade(
        self,
        document: TOMLDocument,
        resolver: VersionResolver,
        name_filter: cabc.Collection[str] | None,
        policy: Policy,
        *,
        skip_pinned: bool,
        seen: set[str],
    ) -> list[Edit]:
        """Resolve every upgrade for ``document`` without mutating it."""
        edits: list[Edit] = []
        for entry in list(accessor.iter_dependencies(document)):
            try:
                spec = from_existing(entry.key, entry.value)
            except UnsupportedShapeError as err:
                if name_filter is None:
                    LOGGER.warning("skipping %s: %s", entry.key, err)
                    edits.append(_skip(entry))
                    continue
                if entry.key in name_filter:
                    raise
                continue
            if not _matches_filter(entry, spec, name_filter):
                continue
            seen.update({entry.key, spec.name})
            edits.append(
                self._plan_entry(entry, spec, resolver, policy, skip_pinned=skip_pinned)
            )
        return edits

    def _plan_entry(
        self,
        entry: DependencyEntry,
        spec: DependencySpec,
        resolver: VersionResolver,
        policy: Policy,
        *,
        skip_pinned: bool,
    ) -> Edit:
        source = spec.source
        if isinstance(source, WorkspaceSource):
            LOGGER.warning("skipping %s: version inherited from workspace", entry.key)
            return _skip(entry)
        if isinstance(source, GitSource):
            if source.rev is None:
                LOGGER.warning("skipping %s: git dependency without rev", entry.key)
                return _skip(entry)
            candidate = typ.cast(
                "GitCandidate", resolver.latest(spec.name, source, policy)
            )
            return lambda document: accessor.pin_git_rev(
                document, entry.target, entry.key, candidate.commit
            )
        if spec.version_req is None:
            LOGGER.warning("skipping %s: no version requirement", entry.key)
            return _skip(entry)
        if skip_pinned and spec.is_exact and not isinstance(policy, Exact):
            LOGGER.warning("skipping %s: pinned to %s", entry.key, spec.version_req)
            return _skip(entry)

        effective = policy
        if isinstance(policy, LatestCompatible) and not policy.current_req:
            effective = dc.replace(policy, current_req=spec.version_req)
        resolved = resolver.latest(spec.name, source, effective)
        requirement = resolver.requirement_for(
            typ.cast("VersionCandidate", resolved), current_req=spec.version_req
        )
        return lambda document: accessor.upgrade(
            document, entry.target, entry.key, requirement
        )


def _skip(entry: DependencyEntry) -> Edit:
    previous = accessor.render_value(entry.value)
    return lambda _document: Report(
        entry.key, entry.target, "skipped", previous, previous
    )
