"""Registry lookup: Cargo configuration and sparse index queries.

Two concerns live here. :func:`registry_url` finds the index a manifest should
query, honouring ``[registries]`` and ``[source] replace-with`` chains declared
in ``.cargo/config`` files. :class:`SparseIndexClient` lists the published
versions of a crate from a sparse HTTP index. Transport failures surface as
:class:`SourceUnavailableError`; a stale or cached answer is never substituted.
"""

from __future__ import annotations

import dataclasses as dc
import json
import logging
import os
import typing as typ
from pathlib import Path

import httpx
import tomllib
from manifest_edit_errors import (
    CrateNotFoundError,
    RegistryConfigError,
    SourceUnavailableError,
)

__all__ = [
    "CRATES_IO_INDEX",
    "CRATES_IO_SPARSE_INDEX",
    "DEFAULT_TIMEOUT_SECS",
    "RegistryQuery",
    "RegistryVersion",
    "SparseIndexClient",
    "cargo_home",
    "index_path",
    "registry_url",
    "sparse_index_url",
]

LOGGER = logging.getLogger(__name__)

CRATES_IO_INDEX: typ.Final[str] = "https://github.com/rust-lang/crates.io-index"
CRATES_IO_SPARSE_INDEX: typ.Final[str] = "https://index.crates.io/"
CRATES_IO_REGISTRY: typ.Final[str] = "crates-io"
CONFIG_FILENAMES: typ.Final[tuple[str, ...]] = ("config", "config.toml")
DEFAULT_TIMEOUT_SECS = 30
NOT_FOUND_STATUSES: typ.Final[frozenset[int]] = frozenset({404, 410, 451})


@dc.dataclass(frozen=True)
class RegistryVersion:
    """One published version as reported by a registry index."""

    version: str
    yanked: bool = False


class RegistryQuery(typ.Protocol):
    """Collaborator able to list the versions published for a crate."""

    def list_versions(self, name: str) -> typ.Sequence[RegistryVersion]:
        """Return every version published for ``name``."""
        ...


@dc.dataclass(frozen=True)
class _SourceEntry:
    replace_with: str | None
    registry: str | None


def cargo_home() -> Path:
    """Return ``$CARGO_HOME`` or the ``~/.cargo`` default."""
    configured = os.environ.get("CARGO_HOME")
    if configured:
        return Path(configured)
    return Path.home() / ".cargo"


def _read_config(sources: dict[str, _SourceEntry], path: Path) -> None:
    """Merge registry declarations from ``path``; earlier files take priority."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        message = f"could not read cargo config at {path}: {err}"
        raise RegistryConfigError(message) from err
    try:
        config = tomllib.loads(text)
    except tomllib.TOMLDecodeError as err:
        message = f"invalid cargo config at {path}: {err}"
        raise RegistryConfigError(message) from err

    for key, value in config.get("registries", {}).items():
        if isinstance(value, dict):
            sources.setdefault(key, _SourceEntry(None, value.get("index")))
    for key, value in config.get("source", {}).items():
        if isinstance(value, dict):
            sources.setdefault(
                key, _SourceEntry(value.get("replace-with"), value.get("registry"))
            )


def _config_files(manifest_path: Path) -> list[Path]:
    directory = Path(manifest_path).resolve().parent
    candidates = [
        ancestor / ".cargo" / filename
        for ancestor in (directory, *directory.parents)
        for filename in CONFIG_FILENAMES
    ]
    candidates.extend(cargo_home() / filename for filename in CONFIG_FILENAMES)
    return [candidate for candidate in candidates if candidate.is_file()]


def registry_url(manifest_path: Path, registry: str | None = None) -> str:
    """Return the index URL that dependencies of ``manifest_path`` resolve against.

    Parameters
    ----------
    manifest_path : Path
        Manifest whose directory (and ancestors) are searched for
        ``.cargo/config`` files before ``$CARGO_HOME/config``.
    registry : str | None, optional
        Named alternative registry; ``None`` selects crates.io.

    Returns
    -------
    str
        The index URL after following any ``replace-with`` chain.

    Raises
    ------
    RegistryConfigError
        Raised when the named registry or a replacement source is undeclared,
        or when a config file cannot be parsed.
    """
    sources: dict[str, _SourceEntry] = {}
    for config_path in _config_files(manifest_path):
        _read_config(sources, config_path)

    if registry in {None, CRATES_IO_INDEX}:
        source = sources.pop(
            CRATES_IO_REGISTRY,
            _SourceEntry(replace_with=None, registry=CRATES_IO_INDEX),
        )
    else:
        name = typ.cast("str", registry)
        try:
            source = sources.pop(name)
        except KeyError as err:
            message = f"the registry {name!r} could not be found in any cargo config"
            raise RegistryConfigError(message) from err

    # Entries are popped as they are visited, so a cyclic chain ends in an error.
    while source.replace_with is not None:
        replacement = source.replace_with
        try:
            source = sources.pop(replacement)
        except KeyError as err:
            message = (
                f"the source {replacement!r} could not be found in any cargo config"
            )
            raise RegistryConfigError(message) from err

    if not source.registry:
        message = "cargo config declares a source without a registry index"
        raise RegistryConfigError(message)
    return source.registry


def sparse_index_url(index: str) -> str:
    """Return the HTTP base URL used to query ``index``.

    Raises
    ------
    RegistryConfigError
        Raised for git-based indexes other than crates.io, which cannot be
        queried over HTTP.
    """
    if index.rstrip("/") in {CRATES_IO_INDEX, f"{CRATES_IO_INDEX}.git"}:
        return CRATES_IO_SPARSE_INDEX
    if index.startswith("sparse+"):
        base = index.removeprefix("sparse+")
        return base if base.endswith("/") else f"{base}/"
    message = f"registry index {index!r} is not a sparse index"
    raise RegistryConfigError(message)


def index_path(name: str) -> str:
    """Return the sparse index path for ``name``.

    Examples
    --------
    >>> index_path("a")
    '1/a'
    >>> index_path("syn")
    '3/s/syn'
    >>> index_path("Serde")
    'se/rd/serde'
    """
    lowered = name.lower()
    if len(lowered) <= 2:
        return f"{len(lowered)}/{lowered}"
    if len(lowered) == 3:
        return f"3/{lowered[0]}/{lowered}"
    return f"{lowered[:2]}/{lowered[2:4]}/{lowered}"


class SparseIndexClient:
    """List crate versions from a sparse registry index over HTTP."""

    def __init__(
        self,
        index_url: str = CRATES_IO_SPARSE_INDEX,
        *,
        client: httpx.Client | None = None,
        timeout_secs: int = DEFAULT_TIMEOUT_SECS,
    ) -> None:
        self.index_url = index_url if index_url.endswith("/") else f"{index_url}/"
        self._client = client or httpx.Client(
            timeout=timeout_secs, follow_redirects=True
        )

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self._client.close()

    def list_versions(self, name: str) -> list[RegistryVersion]:
        """Return every version of ``name`` listed in the index.

        Raises
        ------
        CrateNotFoundError
            Raised when the index has no entry for ``name``.
        SourceUnavailableError
            Raised when the index cannot be reached or answers with an error.
        """
        url = f"{self.index_url}{index_path(name)}"
        try:
            response = self._client.get(url)
        except httpx.HTTPError as err:
            LOGGER.exception("failed to query registry index at %s", url)
            message = f"registry index {self.index_url} is unreachable: {err}"
            raise SourceUnavailableError(
                message, name=name, source=self.index_url
            ) from err

        if response.status_code in NOT_FOUND_STATUSES:
            message = f"the crate {name!r} could not be found in {self.index_url}"
            raise CrateNotFoundError(message, name=name, source=self.index_url)
        if response.is_error:
            message = (
                f"registry index {self.index_url} answered HTTP "
                f"{response.status_code} for {name!r}"
            )
            raise SourceUnavailableError(message, name=name, source=self.index_url)

        return self._parse_records(name, response.text)

    def _parse_records(self, name: str, body: str) -> list[RegistryVersion]:
        versions: list[RegistryVersion] = []
        for line in body.splitlines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                versions.append(
                    RegistryVersion(
                        version=str(record["vers"]),
                        yanked=bool(record.get("yanked", False)),
                    )
                )
            except (json.JSONDecodeError, KeyError, TypeError) as err:
                message = f"registry index {self.index_url} returned a malformed record"
                raise SourceUnavailableError(
                    message, name=name, source=self.index_url
                ) from err
        return versions
