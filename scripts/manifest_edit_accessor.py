"""Structural dependency edits scoped to a single manifest table.

The accessor locates the table a :class:`ManifestTarget` addresses and performs
add, remove, and upgrade operations on the entries it holds. Every edit goes
through the document helpers so only the touched entry (and, when a table is
emptied, its header) changes in the rendered text.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import typing as typ

import tomlkit
from manifest_edit_document import (
    array_value,
    ensure_table,
    get_table,
    has_comments,
    is_table_like,
    remove_entry,
    remove_table,
    set_entry,
    string_value,
)
from manifest_edit_errors import (
    DependencyNotFoundError,
    InvalidSpecError,
    UnsupportedShapeError,
)
from manifest_edit_spec import (
    SOURCE_KEYS,
    DependencySpec,
    manifest_key,
    to_value,
    value_pairs,
)
from tomlkit.items import Item, Table

if typ.TYPE_CHECKING:
    from pathlib import Path

    from manifest_edit_document import TableRef
    from tomlkit.toml_document import TOMLDocument

__all__ = [
    "Action",
    "DependencyEntry",
    "DependencyKind",
    "ManifestTarget",
    "Report",
    "add",
    "iter_dependencies",
    "pin_git_rev",
    "remove",
    "render_value",
    "upgrade",
]

Action = typ.Literal["insert", "update", "remove", "upgrade", "unchanged", "skipped"]


class DependencyKind(enum.Enum):
    """Dependency table flavours a manifest may declare."""

    NORMAL = "dependencies"
    DEV = "dev-dependencies"
    BUILD = "build-dependencies"


@dc.dataclass(frozen=True)
class ManifestTarget:
    """Identify the dependency table an edit applies to."""

    kind: DependencyKind = DependencyKind.NORMAL
    platform: str | None = None
    workspace: bool = False

    def __post_init__(self) -> None:
        if self.workspace and (
            self.kind is not DependencyKind.NORMAL or self.platform is not None
        ):
            message = "[workspace.dependencies] only holds normal dependencies"
            raise InvalidSpecError(message)

    @property
    def table_path(self) -> tuple[str, ...]:
        """Return the key path of the addressed table."""
        if self.workspace:
            return ("workspace", "dependencies")
        if self.platform is not None:
            return ("target", self.platform, self.kind.value)
        return (self.kind.value,)

    def describe(self) -> str:
        """Render the table header the target corresponds to."""
        if self.platform is not None:
            return f"[target.'{self.platform}'.{self.kind.value}]"
        return "[" + ".".join(self.table_path) + "]"


@dc.dataclass(frozen=True)
class Report:
    """Outcome of one dependency edit.

    ``previous`` and ``current`` hold the rendered TOML values before and after
    the edit so callers can present a dry-run diff.
    """

    name: str
    target: ManifestTarget
    action: Action
    previous: str | None = None
    current: str | None = None
    manifest: Path | None = None

    def for_manifest(self, manifest: Path) -> Report:
        """Return a copy of the report attributed to ``manifest``."""
        return dc.replace(self, manifest=manifest)


@dc.dataclass(frozen=True)
class DependencyEntry:
    """A raw dependency entry found while scanning a manifest."""

    target: ManifestTarget
    key: str
    value: object


def render_value(value: object) -> str:
    """Return the TOML text of an entry's value without surrounding trivia."""
    if isinstance(value, Item):
        return value.as_string().strip()
    return tomlkit.item(value).as_string().strip()


def _item_for(value: object) -> object:
    if isinstance(value, list):
        return array_value(value)
    if isinstance(value, str):
        return string_value(value)
    return value


def _require_entry(
    document: TOMLDocument, target: ManifestTarget, name: str
) -> tuple[TableRef, object]:
    table = get_table(document, target.table_path)
    if table is None or name not in table:
        message = f"the dependency {name!r} could not be found in {target.describe()}"
        raise DependencyNotFoundError(message, name=name, table=target.describe())
    return table, table[name]


def _merge_into_table(entry: TableRef, spec: DependencySpec) -> None:
    """Overlay ``spec`` onto an existing table entry.

    Source keys the new spec does not carry are removed; every key the new spec
    does carry is written in place. Other keys (features, optional, and so on)
    are left untouched unless the spec overrides them.
    """
    pairs = value_pairs(spec)
    for key in (*SOURCE_KEYS, "package"):
        if key in entry and key not in pairs:
            remove_entry(entry, key)
    for key, value in pairs.items():
        if key in entry and entry[key] == value:
            continue
        set_entry(entry, key, _item_for(value))


def add(
    document: TOMLDocument, target: ManifestTarget, spec: DependencySpec
) -> Report:
    """Insert ``spec`` into the ``target`` table or merge it with an existing entry.

    The table is created when missing. Applying the same spec twice leaves the
    document as the first application did and reports ``unchanged``.
    """
    key = manifest_key(spec)
    table = ensure_table(document, target.table_path)
    existing = table.get(key)
    if existing is None:
        set_entry(table, key, to_value(spec))
        return Report(key, target, "insert", None, render_value(table[key]))

    previous = render_value(existing)
    if is_table_like(existing):
        _merge_into_table(typ.cast("TableRef", existing), spec)
    elif isinstance(existing, str):
        set_entry(table, key, to_value(spec))
    else:
        message = (
            f"dependency {key!r} in {target.describe()} is neither a string nor a "
            "table"
        )
        raise UnsupportedShapeError(message)
    current = render_value(table[key])
    action: Action = "unchanged" if current == previous else "update"
    return Report(key, target, action, previous, current)


def _prune_empty_tables(document: TOMLDocument, path: tuple[str, ...]) -> None:
    """Drop the emptied leaf table and any implicit parents left empty.

    Tables holding comments are kept, as are explicitly declared parent tables
    such as ``[workspace]``.
    """
    for depth in range(len(path) - 1, -1, -1):
        parent: TableRef | None = (
            document if depth == 0 else get_table(document, path[:depth])
        )
        if parent is None:
            return
        child = parent.get(path[depth])
        if not isinstance(child, Table) or len(child) or has_comments(child):
            return
        is_leaf = depth == len(path) - 1
        if not is_leaf and not child.is_super_table():
            return
        remove_table(parent, path[depth])


def remove(document: TOMLDocument, target: ManifestTarget, name: str) -> Report:
    """Delete ``name`` from the ``target`` table.

    An emptied table loses its header too, unless it carries comments.

    Raises
    ------
    DependencyNotFoundError
        Raised when ``name`` is absent from that exact table.
    """
    table, existing = _require_entry(document, target, name)
    previous = render_value(existing)
    remove_entry(table, name)
    _prune_empty_tables(document, target.table_path)
    return Report(name, target, "remove", previous, None)


def upgrade(
    document: TOMLDocument, target: ManifestTarget, name: str, new_version_req: str
) -> Report:
    """Rewrite only the version requirement of ``name``.

    Bare string entries are replaced; table entries have their ``version`` key
    rewritten while every other key keeps its value and position.

    Raises
    ------
    DependencyNotFoundError
        Raised when ``name`` is absent from the table.
    UnsupportedShapeError
        Raised for entries inheriting their version from the workspace.
    """
    table, existing = _require_entry(document, target, name)
    previous = render_value(existing)
    if isinstance(existing, str):
        set_entry(table, name, new_version_req)
    elif is_table_like(existing):
        entry = typ.cast("TableRef", existing)
        if entry.get("workspace") is True:
            message = (
                f"{name!r} inherits its version from the workspace; upgrade "
                "[workspace.dependencies] instead"
            )
            raise UnsupportedShapeError(message)
        set_entry(entry, "version", new_version_req)
    else:
        message = (
            f"dependency {name!r} in {target.describe()} has no version to upgrade"
        )
        raise UnsupportedShapeError(message)
    current = render_value(table[name])
    action: Action = "unchanged" if current == previous else "upgrade"
    return Report(name, target, action, previous, current)


def pin_git_rev(
    document: TOMLDocument, target: ManifestTarget, name: str, commit: str
) -> Report:
    """Rewrite the ``rev`` pin of a git dependency to ``commit``."""
    table, existing = _require_entry(document, target, name)
    if not is_table_like(existing) or "rev" not in typ.cast("TableRef", existing):
        message = (
            f"dependency {name!r} in {target.describe()} does not pin a git rev"
        )
        raise UnsupportedShapeError(message)
    previous = render_value(existing)
    set_entry(typ.cast("TableRef", existing), "rev", commit)
    current = render_value(table[name])
    action: Action = "unchanged" if current == previous else "upgrade"
    return Report(name, target, action, previous, current)


def _targets(document: TOMLDocument) -> cabc.Iterator[ManifestTarget]:
    for kind in DependencyKind:
        yield ManifestTarget(kind)
    platforms = document.get("target")
    if is_table_like(platforms):
        for platform in typ.cast("TableRef", platforms):
            for kind in DependencyKind:
                yield ManifestTarget(kind, platform=platform)
    yield ManifestTarget(workspace=True)


def iter_dependencies(document: TOMLDocument) -> cabc.Iterator[DependencyEntry]:
    """Yield every dependency entry of ``document`` in declaration order."""
    for target in _targets(document):
        table = get_table(document, target.table_path)
        if table is None:
            continue
        for key, value in table.items():
            yield DependencyEntry(target, key, value)
