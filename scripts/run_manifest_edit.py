#!/usr/bin/env -S uv run python
"""Command-line entry point for editing Cargo manifest dependencies.

Three commands are exposed: ``add`` inserts or merges dependencies, ``rm``
removes them, and ``upgrade`` rewrites version requirements to the newest
release a policy admits. Every command preserves the formatting of the
manifest outside the entries it touches.

Network queries honour MANIFEST_EDIT_TIMEOUT_SECS, and MANIFEST_EDIT_LOG_LEVEL
selects the logging level when ``--verbose`` is not given.

Examples
--------
Add serde with the derive feature::

    python scripts/run_manifest_edit.py add serde@1 --features derive

Preview upgrading every workspace member::

    python scripts/run_manifest_edit.py upgrade --workspace --dry-run
"""

# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "cyclopts>=5",
#     "httpx",
#     "plumbum",
#     "semver>=3",
#     "tomlkit",
# ]
# ///
from __future__ import annotations

import logging
import os
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter
from manifest_edit import ManifestEditor, ManifestFailure, OperationResult
from manifest_edit_accessor import DependencyKind, ManifestTarget, Report
from manifest_edit_errors import InvalidSpecError, ManifestEditError
from manifest_edit_registry import DEFAULT_TIMEOUT_SECS
from manifest_edit_resolver import Exact, Latest, LatestCompatible, Policy
from manifest_edit_spec import parse_cli_string
from manifest_edit_workspace import (
    AllMembers,
    CurrentPackage,
    NamedPackage,
    Selector,
)

LOGGER = logging.getLogger(__name__)

LOG_LEVEL_ENV: typ.Final[str] = "MANIFEST_EDIT_LOG_LEVEL"
TIMEOUT_ENV: typ.Final[str] = "MANIFEST_EDIT_TIMEOUT_SECS"

app = App(
    help="Edit Cargo manifest dependencies while preserving formatting.",
    config=cyclopts.config.Env("MANIFEST_EDIT_", command=False),
    result_action="return_value",
)


def _resolve_timeout(timeout_secs: int | None) -> int:
    """Return the timeout for registry and git queries.

    The explicit ``timeout_secs`` argument wins. When it is omitted, the
    ``MANIFEST_EDIT_TIMEOUT_SECS`` environment variable is consulted before
    falling back to :data:`DEFAULT_TIMEOUT_SECS`.
    """
    if timeout_secs is not None:
        return timeout_secs

    env_value = os.environ.get(TIMEOUT_ENV)
    if env_value is None:
        return DEFAULT_TIMEOUT_SECS

    try:
        return int(env_value)
    except ValueError as err:
        LOGGER.exception("%s must be an integer", TIMEOUT_ENV)
        message = f"{TIMEOUT_ENV} must be an integer"
        raise SystemExit(message) from err


def _configure_logging(*, verbose: bool) -> None:
    level = "DEBUG" if verbose else os.environ.get(LOG_LEVEL_ENV, "WARNING")
    try:
        logging.basicConfig(level=level.upper(), format="%(levelname)s: %(message)s")
    except ValueError as err:
        message = f"{LOG_LEVEL_ENV} must name a logging level, got {level!r}"
        raise SystemExit(message) from err


def _selector(package: str | None, *, workspace: bool) -> Selector:
    if package is not None and workspace:
        message = "--package and --workspace cannot be combined"
        raise SystemExit(message)
    if package is not None:
        return NamedPackage(package)
    if workspace:
        return AllMembers()
    return CurrentPackage()


def _target(
    *,
    dev: bool,
    build: bool,
    platform: str | None,
    workspace_dependencies: bool,
) -> ManifestTarget:
    if dev and build:
        message = "--dev and --build cannot be combined"
        raise SystemExit(message)
    kind = DependencyKind.NORMAL
    if dev:
        kind = DependencyKind.DEV
    elif build:
        kind = DependencyKind.BUILD
    try:
        return ManifestTarget(kind, platform, workspace=workspace_dependencies)
    except InvalidSpecError as err:
        raise SystemExit(str(err)) from err


def _format_report(report: Report) -> str:
    location = report.target.describe()
    if report.manifest is not None:
        location = f"{location} in {report.manifest}"
    if report.action == "remove":
        return f"{report.action:>9} {report.name} from {location}"
    if report.previous is None or report.previous == report.current:
        return f"{report.action:>9} {report.name} = {report.current} ({location})"
    return (
        f"{report.action:>9} {report.name}: {report.previous} -> "
        f"{report.current} ({location})"
    )


def _print_reports(reports: typ.Iterable[Report]) -> None:
    for report in reports:
        print(_format_report(report))


def _finish(result: OperationResult) -> None:
    _print_reports(result.reports)
    if not result.ok:
        message = "\n".join(f"error: {failure}" for failure in result.errors)
        raise SystemExit(message)


def _start_dir(manifest_dir: Path | None) -> Path:
    return manifest_dir if manifest_dir is not None else Path.cwd()


@app.command
def add(
    *crates: str,
    dev: bool = False,
    build: bool = False,
    platform: str | None = None,
    workspace_dependencies: bool = False,
    registry: str | None = None,
    git: str | None = None,
    branch: str | None = None,
    tag: str | None = None,
    rev: str | None = None,
    path: str | None = None,
    features: str | None = None,
    default_features: bool = True,
    optional: bool = False,
    rename: str | None = None,
    exact: bool = False,
    package: str | None = None,
    workspace: bool = False,
    manifest_dir: Path | None = None,
    dry_run: bool = False,
    verbose: bool = False,
    timeout_secs: typ.Annotated[
        int | None,
        Parameter(env_var=TIMEOUT_ENV),
    ] = None,
) -> None:
    """Add dependencies to a manifest.

    Parameters
    ----------
    crates : str
        ``name``, ``name@requirement`` or ``name@=version`` for each crate.
    dev : bool
        Write to ``[dev-dependencies]``.
    build : bool
        Write to ``[build-dependencies]``.
    platform : str | None
        Scope the dependency to a ``[target.<cfg>]`` table.
    workspace_dependencies : bool
        Write to ``[workspace.dependencies]`` of the addressed manifest.
    registry : str | None
        Alternative registry name declared in cargo config.
    git : str | None
        Git repository URL to depend on.
    branch : str | None
        Git branch to track.
    tag : str | None
        Git tag to pin.
    rev : str | None
        Git revision to pin.
    path : str | None
        Local path of the dependency.
    features : str | None
        Comma or space separated features to enable.
    default_features : bool
        ``--no-default-features`` writes ``default-features = false``.
    optional : bool
        Mark the dependency optional.
    rename : str | None
        Store the dependency under a different key.
    exact : bool
        Pin resolved versions with ``=`` instead of the caret form.
    package : str | None
        Workspace member to edit instead of the current package.
    workspace : bool
        Edit every workspace member.
    manifest_dir : Path | None
        Directory to start manifest discovery from; defaults to the cwd.
    dry_run : bool
        Report the edits without writing any file.
    verbose : bool
        Enable debug logging.
    timeout_secs : int | None
        Timeout for registry and git queries. Defaults to 30 seconds and may be
        set through ``MANIFEST_EDIT_TIMEOUT_SECS``.
    """
    _configure_logging(verbose=verbose)
    if not crates:
        message = "at least one crate must be given"
        raise SystemExit(message)
    if len(crates) > 1 and (rename is not None or git or path):
        message = "--rename, --git and --path apply to a single crate"
        raise SystemExit(message)
    selector = _selector(package, workspace=workspace)
    target = _target(
        dev=dev,
        build=build,
        platform=platform,
        workspace_dependencies=workspace_dependencies,
    )
    try:
        specs = [
            parse_cli_string(
                crate,
                registry=registry,
                git=git,
                branch=branch,
                tag=tag,
                rev=rev,
                path=path,
                features=[features] if features else (),
                default_features=default_features,
                optional=optional,
                rename=rename,
            )
            for crate in crates
        ]
        with ManifestEditor(timeout_secs=_resolve_timeout(timeout_secs)) as editor:
            for spec in specs:
                _print_reports(
                    editor.add(
                        selector,
                        spec,
                        target,
                        start_dir=_start_dir(manifest_dir),
                        dry_run=dry_run,
                        exact=exact,
                    )
                )
    except ManifestEditError as err:
        raise SystemExit(str(err)) from err


@app.command(name="rm")
def remove(
    *crates: str,
    dev: bool = False,
    build: bool = False,
    platform: str | None = None,
    workspace_dependencies: bool = False,
    package: str | None = None,
    workspace: bool = False,
    manifest_dir: Path | None = None,
    dry_run: bool = False,
    verbose: bool = False,
) -> None:
    """Remove dependencies from a manifest.

    Parameters
    ----------
    crates : str
        Keys of the dependencies to remove.
    dev : bool
        Remove from ``[dev-dependencies]``.
    build : bool
        Remove from ``[build-dependencies]``.
    platform : str | None
        Remove from a ``[target.<cfg>]`` table.
    workspace_dependencies : bool
        Remove from ``[workspace.dependencies]``.
    package : str | None
        Workspace member to edit instead of the current package.
    workspace : bool
        Edit every workspace member.
    manifest_dir : Path | None
        Directory to start manifest discovery from; defaults to the cwd.
    dry_run : bool
        Report the edits without writing any file.
    verbose : bool
        Enable debug logging.
    """
    _configure_logging(verbose=verbose)
    if not crates:
        message = "at least one crate must be given"
        raise SystemExit(message)
    selector = _selector(package, workspace=workspace)
    target = _target(
        dev=dev,
        build=build,
        platform=platform,
        workspace_dependencies=workspace_dependencies,
    )
    reports: list[Report] = []
    errors: list[ManifestFailure] = []
    try:
        editor = ManifestEditor()
        for crate in crates:
            result = editor.remove(
                selector,
                crate,
                target,
                start_dir=_start_dir(manifest_dir),
                dry_run=dry_run,
            )
            reports.extend(result.reports)
            errors.extend(result.errors)
    except ManifestEditError as err:
        raise SystemExit(str(err)) from err
    _finish(OperationResult(tuple(reports), tuple(errors)))


def _upgrade_policies(
    crates: typ.Sequence[str], *, compatible: bool, pre_release: bool
) -> list[tuple[list[str] | None, Policy]]:
    """Group requested crates by the policy each one is upgraded with."""
    default: Policy = (
        LatestCompatible() if compatible else Latest(allow_prerelease=pre_release)
    )
    if not crates:
        return [(None, default)]
    plain: list[str] = []
    groups: list[tuple[list[str] | None, Policy]] = []
    for crate in crates:
        name, separator, version = crate.partition("@")
        if separator:
            groups.append(([name], Exact(version)))
        else:
            plain.append(name)
    if plain:
        groups.insert(0, (plain, default))
    return groups


@app.command
def upgrade(
    *crates: str,
    compatible: bool = False,
    pre_release: bool = False,
    pinned: bool = False,
    package: str | None = None,
    workspace: bool = False,
    manifest_dir: Path | None = None,
    dry_run: bool = False,
    verbose: bool = False,
    timeout_secs: typ.Annotated[
        int | None,
        Parameter(env_var=TIMEOUT_ENV),
    ] = None,
) -> None:
    """Upgrade dependency requirements to the newest admitted versions.

    Parameters
    ----------
    crates : str
        Dependencies to upgrade; ``name@version`` upgrades to that exact
        release. Every dependency is upgraded when none are given.
    compatible : bool
        Only move within the range the current requirement allows.
    pre_release : bool
        Consider pre-release versions.
    pinned : bool
        Also upgrade requirements pinned with ``=``.
    package : str | None
        Workspace member to edit instead of the current package.
    workspace : bool
        Upgrade every workspace member.
    manifest_dir : Path | None
        Directory to start manifest discovery from; defaults to the cwd.
    dry_run : bool
        Report the edits without writing any file.
    verbose : bool
        Enable debug logging.
    timeout_secs : int | None
        Timeout for registry and git queries. Defaults to 30 seconds and may be
        set through ``MANIFEST_EDIT_TIMEOUT_SECS``.
    """
    _configure_logging(verbose=verbose)
    selector = _selector(package, workspace=workspace)
    reports: list[Report] = []
    errors: list[ManifestFailure] = []
    try:
        with ManifestEditor(timeout_secs=_resolve_timeout(timeout_secs)) as editor:
            for names, policy in _upgrade_policies(
                crates, compatible=compatible, pre_release=pre_release
            ):
                result = editor.upgrade(
                    selector,
                    names,
                    policy,
                    start_dir=_start_dir(manifest_dir),
                    dry_run=dry_run,
                    skip_pinned=not pinned,
                )
                reports.extend(result.reports)
                errors.extend(result.errors)
    except ManifestEditError as err:
        raise SystemExit(str(err)) from err
    _finish(OperationResult(tuple(reports), tuple(errors)))


def main() -> None:
    """Run the manifest editing CLI."""
    app()


if __name__ == "__main__":
    main()
