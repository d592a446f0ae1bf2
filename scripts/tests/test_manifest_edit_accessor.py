"""Tests for dependency table edits."""

from __future__ import annotations

import pytest
from manifest_edit_accessor import (
    DependencyKind,
    ManifestTarget,
    add,
    iter_dependencies,
    pin_git_rev,
    remove,
    upgrade,
)
from manifest_edit_document import parse_document, serialize
from manifest_edit_errors import (
    DependencyNotFoundError,
    InvalidSpecError,
    UnsupportedShapeError,
)
from manifest_edit_spec import DependencySpec, GitSource, parse_cli_string

COMMIT = "0123456789abcdef0123456789abcdef01234567"

PACKAGE = '[package]\nname = "demo"\nversion = "0.1.0"\n'

MANIFEST = """\
[package]
name = "demo"
version = "0.1.0"

[dependencies]
serde = { version = "1.0", features = ["derive"] }  # serialisation
log = "0.4"

[dev-dependencies]
# test-only helpers
rstest = "0.18"

[target.'cfg(unix)'.dependencies]
nix = "0.27"
"""

NORMAL = ManifestTarget()
DEV = ManifestTarget(DependencyKind.DEV)
UNIX = ManifestTarget(platform="cfg(unix)")


def test_add_creates_missing_table_at_end() -> None:
    """Adding to a manifest without the table appends a fresh header."""
    document = parse_document(PACKAGE)

    report = add(document, NORMAL, parse_cli_string("serde@1"))

    rendered = serialize(document)
    assert rendered.startswith(PACKAGE)
    assert rendered.endswith('[dependencies]\nserde = "1"\n')
    assert (report.action, report.previous, report.current) == (
        "insert",
        None,
        '"1"',
    )


def test_add_leaves_other_tables_untouched() -> None:
    """Only the inserted line differs from the original text."""
    document = parse_document(MANIFEST)

    add(document, DEV, parse_cli_string("tempfile@3"))

    rendered = serialize(document)
    assert rendered == MANIFEST.replace(
        'rstest = "0.18"\n', 'rstest = "0.18"\ntempfile = "3"\n'
    )


def test_add_is_idempotent() -> None:
    """Re-adding an identical spec changes nothing."""
    document = parse_document(PACKAGE)
    spec = parse_cli_string("serde@1", features=["derive"])

    add(document, NORMAL, spec)
    first = serialize(document)
    report = add(document, NORMAL, spec)

    assert serialize(document) == first
    assert report.action == "unchanged"


def test_add_merges_into_existing_table_entry() -> None:
    """A new requirement rewrites ``version`` and keeps other keys."""
    document = parse_document(MANIFEST)

    report = add(document, NORMAL, parse_cli_string("serde@1.0.200"))

    assert serialize(document) == MANIFEST.replace('"1.0"', '"1.0.200"')
    assert report.action == "update"
    assert report.previous == '{ version = "1.0", features = ["derive"] }'


def test_add_replaces_string_entry_with_new_shape() -> None:
    """Switching a bare requirement to a git source rewrites the value."""
    document = parse_document(MANIFEST)
    spec = parse_cli_string("log", git="https://example.com/log", tag="v0.5")

    add(document, NORMAL, spec)

    assert 'log = { git = "https://example.com/log", tag = "v0.5" }\n' in serialize(
        document
    )


def test_add_renamed_dependency_uses_alias_key() -> None:
    """Renamed dependencies are keyed by their alias."""
    document = parse_document(PACKAGE)

    add(document, NORMAL, parse_cli_string("serde_json@1", rename="json"))

    assert 'json = { version = "1", package = "serde_json" }' in serialize(document)


def test_remove_only_dev_dependency_drops_header() -> None:
    """An emptied table without comments disappears entirely."""
    document = parse_document(f'{PACKAGE}\n[dev-dependencies]\nrstest = "0.18"\n')

    report = remove(document, DEV, "rstest")

    rendered = serialize(document)
    assert "dev-dependencies" not in rendered
    assert rendered.startswith(PACKAGE)
    assert report.previous == '"0.18"'


def test_remove_keeps_commented_table() -> None:
    """Comments anchor an otherwise empty table."""
    document = parse_document(MANIFEST)

    remove(document, DEV, "rstest")

    rendered = serialize(document)
    assert "[dev-dependencies]\n# test-only helpers\n" in rendered
    assert "rstest" not in rendered


def test_remove_prunes_empty_platform_tables() -> None:
    """Implicit ``[target]`` parents vanish with their last dependency."""
    document = parse_document(MANIFEST)

    remove(document, UNIX, "nix")

    rendered = serialize(document)
    assert "target" not in rendered
    assert "cfg(unix)" not in rendered
    assert 'log = "0.4"' in rendered


def test_remove_checks_exact_table() -> None:
    """A dependency present elsewhere is still missing from the target."""
    document = parse_document(MANIFEST)

    with pytest.raises(DependencyNotFoundError) as excinfo:
        remove(document, DEV, "serde")

    assert excinfo.value.name == "serde"
    assert excinfo.value.table == "[dev-dependencies]"
    assert serialize(document) == MANIFEST


def test_upgrade_rewrites_only_version_key() -> None:
    """Features, comments, and spacing survive a version bump."""
    document = parse_document(MANIFEST)

    report = upgrade(document, NORMAL, "serde", "1.0.200")

    assert serialize(document) == MANIFEST.replace('"1.0"', '"1.0.200"')
    assert report.action == "upgrade"


def test_upgrade_string_entry_and_noop() -> None:
    """String entries are replaced; identical requirements are unchanged."""
    document = parse_document(MANIFEST)

    assert upgrade(document, NORMAL, "log", "0.4.21").current == '"0.4.21"'
    assert upgrade(document, NORMAL, "log", "0.4.21").action == "unchanged"


def test_upgrade_refuses_workspace_inherited_entry() -> None:
    """Inherited dependencies are upgraded at the workspace root instead."""
    document = parse_document('[dependencies]\nfoo = { workspace = true }\n')

    with pytest.raises(UnsupportedShapeError, match=r"\[workspace.dependencies\]"):
        upgrade(document, NORMAL, "foo", "2")


def test_pin_git_rev_rewrites_commit() -> None:
    """Rev-pinned git dependencies move to the resolved commit."""
    document = parse_document(
        '[dependencies]\nfoo = { git = "https://example.com/foo", rev = "abc1234" }\n'
    )

    report = pin_git_rev(document, NORMAL, "foo", COMMIT)

    assert f'rev = "{COMMIT}" }}' in serialize(document)
    assert report.action == "upgrade"


def test_pin_git_rev_requires_rev_key() -> None:
    """Branch-tracking entries have no rev to rewrite."""
    document = parse_document(
        '[dependencies]\nfoo = { git = "https://example.com/foo", branch = "dev" }\n'
    )

    with pytest.raises(UnsupportedShapeError, match="does not pin a git rev"):
        pin_git_rev(document, NORMAL, "foo", COMMIT)


def test_iter_dependencies_visits_every_table() -> None:
    """Entries are yielded per table, platform tables after plain ones."""
    document = parse_document(
        MANIFEST + '\n[workspace.dependencies]\nanyhow = "1"\n'
    )

    found = [(entry.target, entry.key) for entry in iter_dependencies(document)]

    assert found == [
        (NORMAL, "serde"),
        (NORMAL, "log"),
        (DEV, "rstest"),
        (UNIX, "nix"),
        (ManifestTarget(workspace=True), "anyhow"),
    ]


def test_workspace_target_rejects_other_kinds() -> None:
    """The workspace table only holds normal dependencies."""
    with pytest.raises(InvalidSpecError):
        ManifestTarget(DependencyKind.DEV, workspace=True)


def test_target_describe_names_header() -> None:
    """Descriptions render the header a user would search for."""
    assert UNIX.describe() == "[target.'cfg(unix)'.dependencies]"
    assert ManifestTarget(workspace=True).describe() == "[workspace.dependencies]"


def test_git_spec_without_pin_renders_url_only() -> None:
    """Git specs with no reference keep the entry minimal."""
    document = parse_document(PACKAGE)

    add(document, NORMAL, DependencySpec("foo", source=GitSource("https://x.test")))

    assert serialize(document).endswith('foo = { git = "https://x.test" }\n')
