"""Lossless manifest document helpers built on ``tomlkit``.

The document model keeps every byte of trivia (whitespace, comments, quoting)
attached to the node it belongs to, so serialising an untouched document
reproduces the input exactly. The helpers here scope each mutation to a single
key/value pair or table so sibling formatting is never disturbed.

Examples
--------
>>> document = parse_document('[dependencies]\\nserde = "1"\\n')
>>> table = get_table(document, ("dependencies",))
>>> set_entry(table, "toml", "0.5")
>>> serialize(document)
'[dependencies]\\nserde = "1"\\ntoml = "0.5"\\n'
"""

from __future__ import annotations

import collections.abc as cabc
import typing as typ

import tomlkit
from manifest_edit_errors import ManifestSyntaxError
from tomlkit.container import Container
from tomlkit.exceptions import ParseError, TOMLKitError
from tomlkit.items import (
    AoT,
    Array,
    Comment,
    InlineTable,
    Item,
    String,
    StringType,
    Table,
    Trivia,
    Whitespace,
)

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

__all__ = [
    "TableRef",
    "array_value",
    "ensure_table",
    "get_table",
    "has_comments",
    "inline_table_value",
    "is_table_like",
    "parse_document",
    "remove_entry",
    "remove_table",
    "serialize",
    "set_entry",
    "string_value",
]

TableRef = cabc.MutableMapping[str, typ.Any]


def parse_document(text: str) -> TOMLDocument:
    """Parse ``text`` into a lossless document.

    Raises
    ------
    ManifestSyntaxError
        Raised for unterminated strings, invalid headers, duplicate keys, and
        any other syntax error reported by ``tomlkit``.
    """
    try:
        return tomlkit.parse(text)
    except ParseError as err:
        message = f"invalid manifest syntax: {err}"
        raise ManifestSyntaxError(message, line=err.line, col=err.col) from err
    except TOMLKitError as err:
        message = f"invalid manifest syntax: {err}"
        raise ManifestSyntaxError(message) from err


def serialize(document: TOMLDocument) -> str:
    """Render ``document`` back to text."""
    return tomlkit.dumps(document)


def is_table_like(value: object) -> bool:
    """Return ``True`` for tables, inline tables, and out-of-order proxies."""
    return isinstance(value, cabc.MutableMapping) and not isinstance(value, AoT)


def get_table(document: TOMLDocument, path: cabc.Sequence[str]) -> TableRef | None:
    """Return the table addressed by ``path`` or ``None`` when absent."""
    current: TableRef = document
    for key in path:
        child = current.get(key)
        if not is_table_like(child):
            return None
        current = typ.cast("TableRef", child)
    return current


def ensure_table(document: TOMLDocument, path: cabc.Sequence[str]) -> TableRef:
    """Return the table addressed by ``path``, creating missing tables.

    Intermediate tables are created as super tables so only the leaf header is
    rendered (``[target."cfg(unix)".dependencies]`` rather than three headers).
    New tables are appended after the existing content of their parent.
    """
    if not path:
        message = "table path must not be empty"
        raise ValueError(message)

    current: TableRef = document
    for depth, key in enumerate(path):
        child = current.get(key)
        if child is None:
            is_leaf = depth == len(path) - 1
            current[key] = tomlkit.table(is_super_table=not is_leaf)
            child = current[key]
        elif not is_table_like(child):
            dotted = ".".join(path[: depth + 1])
            message = f"expected [{dotted}] to be a table, found {type(child).__name__}"
            raise ManifestSyntaxError(message)
        current = typ.cast("TableRef", child)
    return current


def set_entry(table: TableRef, key: str, value: object) -> None:
    """Set ``key`` to ``value`` within ``table``.

    Existing keys keep their position, indentation, and trailing comment; only
    the value node is replaced. When both the old and new values are strings the
    old quote style is reused. New keys are appended after the last entry in the
    table and copy the indentation and quote style of a sibling entry.
    """
    new_item = _coerce_item(value)
    existing = table.get(key)
    if existing is not None:
        if isinstance(existing, String) and isinstance(new_item, String):
            new_item = _restyle_string(new_item, literal=_is_literal(existing))
        table[key] = new_item
        return

    literal = _sibling_prefers_literal(table)
    new_item = _apply_quote_style(new_item, literal=literal)
    if isinstance(table, InlineTable):
        _append_inline(table, key, new_item)
        return
    sibling = _last_value_item(table)
    if sibling is not None:
        new_item.trivia.indent = sibling.trivia.indent
        if sibling.trivia.trail.endswith("\r\n"):
            new_item.trivia.trail = "\r\n"
    table[key] = new_item


def remove_entry(table: TableRef, key: str) -> bool:
    """Remove ``key`` from ``table`` and report whether it was present."""
    if key not in table:
        return False
    del table[key]
    return True


def remove_table(parent: TableRef, key: str) -> None:
    """Drop the ``key`` table from ``parent`` along with its header line."""
    del parent[key]


def has_comments(table: object) -> bool:
    """Return ``True`` when ``table`` carries comments worth preserving.

    Both comment lines inside the table body and a comment trailing the header
    line count.
    """
    if isinstance(table, Table):
        if table.trivia.comment:
            return True
        return any(isinstance(item, Comment) for _, item in table.value.body)
    return False


def string_value(text: str, *, literal: bool = False) -> String:
    """Build a string item, using single quotes when ``literal`` is set."""
    if literal and "'" not in text and "\n" not in text:
        return tomlkit.string(text, literal=True)
    return tomlkit.string(text)


def array_value(items: cabc.Iterable[object]) -> Array:
    """Build a single-line array item from ``items``."""
    rendered = tomlkit.array()
    rendered.extend(items)
    return rendered


def inline_table_value(pairs: cabc.Iterable[tuple[str, object]]) -> InlineTable:
    """Build an inline table from ordered ``pairs``.

    The table is padded the way Cargo manifests usually are, as in
    ``{ version = "1", features = ["derive"] }``.
    """
    table = InlineTable(Container(), Trivia())
    for key, value in pairs:
        rendered = _coerce_item(value)
        rendered.trivia.indent = " "
        table.append(key, rendered)
    if len(table):
        table.append(None, Whitespace(" "))
    return table


def _coerce_item(value: object) -> Item:
    if isinstance(value, Item):
        return value
    if isinstance(value, str):
        return string_value(value)
    return tomlkit.item(value)


def _is_literal(value: String) -> bool:
    return value.type in {StringType.SLL, StringType.MLL}


def _restyle_string(value: String, *, literal: bool) -> String:
    if _is_literal(value) == literal:
        return value
    return string_value(str(value), literal=literal)


def _apply_quote_style(value: Item, *, literal: bool) -> Item:
    """Rewrite string leaves of freshly built items to match ``literal``."""
    if not literal:
        return value
    if isinstance(value, String):
        return _restyle_string(value, literal=literal)
    if isinstance(value, InlineTable):
        for key, child in list(value.items()):
            if isinstance(child, (String, Array)):
                value[key] = _apply_quote_style(child, literal=literal)
        return value
    if isinstance(value, Array):
        for index, child in enumerate(list(value)):
            if isinstance(child, str):
                value[index] = string_value(str(child), literal=literal)
        return value
    return value


def _append_inline(table: InlineTable, key: str, value: Item) -> None:
    """Append ``key`` before the closing brace, matching the table's padding."""
    value.trivia.indent = " " if table.as_string().startswith("{ ") else ""
    body = table.value.body
    trailing: Whitespace | None = None
    if body and body[-1][0] is None and isinstance(body[-1][1], Whitespace):
        candidate = body[-1][1]
        if "," not in candidate.s:
            trailing = candidate
            body.pop()
    table[key] = value
    if trailing is not None:
        table.value.append(None, trailing)


def _last_value_item(table: TableRef) -> Item | None:
    """Return the last key/value item in ``table`` that is not a sub-table."""
    last: Item | None = None
    for _, value in table.items():
        if isinstance(value, (Table, AoT)):
            continue
        if isinstance(value, Item):
            last = value
    return last


def _sibling_prefers_literal(table: TableRef) -> bool:
    """Return ``True`` when the newest sibling string uses single quotes."""
    preferred = False
    for _, value in table.items():
        candidate = value
        if isinstance(value, InlineTable):
            candidate = value.get("version")
        if isinstance(candidate, String):
            preferred = _is_literal(candidate)
    return preferred
