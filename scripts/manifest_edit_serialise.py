"""Manifest serialisation helpers shared by the manifest editing commands.

Rendering goes through tomlkit so untouched text survives byte for byte. Writes
replace the file in one step: the new text lands in a temporary sibling file
that is then renamed over the manifest, so a failed write leaves the original
untouched.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import typing as typ
from pathlib import Path

from manifest_edit_document import serialize

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

__all__ = ["read_manifest", "write_manifest_atomically", "write_manifest_if_changed"]

LOGGER = logging.getLogger(__name__)


def read_manifest(manifest: Path) -> str:
    """Return the text of ``manifest`` decoded as UTF-8, line endings intact."""
    return Path(manifest).read_bytes().decode("utf-8")


def write_manifest_atomically(manifest: Path, text: str) -> None:
    """Replace the contents of ``manifest`` with ``text`` in a single rename."""
    manifest = Path(manifest)
    descriptor, temp_name = tempfile.mkstemp(
        prefix=f".{manifest.name}.", suffix=".tmp", dir=manifest.parent
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(descriptor, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        with contextlib.suppress(OSError):
            temp_path.chmod(manifest.stat().st_mode & 0o777)
        temp_path.replace(manifest)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def write_manifest_if_changed(
    document: TOMLDocument,
    manifest: Path,
    original: str,
    *,
    write_file: typ.Callable[[Path, str], None] = write_manifest_atomically,
) -> bool:
    """Serialise ``document`` and write it only when the text differs.

    Returns ``True`` when the manifest was rewritten.
    """
    rendered = serialize(document)
    if rendered == original:
        LOGGER.debug("%s is unchanged; skipping write", manifest)
        return False
    write_file(Path(manifest), rendered)
    LOGGER.info("updated %s", manifest)
    return True
