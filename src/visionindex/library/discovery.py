"""Expand user-selected files and folders into image file paths."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

# Directories the Finder presents as single files.
PACKAGE_EXTENSIONS = frozenset(
    {
        ".app",
        ".bundle",
        ".framework",
        ".kext",
        ".photoslibrary",
        ".plugin",
        ".pkg",
        ".xcassets",
        ".xcodeproj",
        ".lrdata",
    }
)

# Formats mimetypes does not know on every platform.
mimetypes.add_type("image/heic", ".heic")
mimetypes.add_type("image/heif", ".heif")
mimetypes.add_type("image/webp", ".webp")
mimetypes.add_type("image/avif", ".avif")


def is_image_file(path: Path) -> bool:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type is not None and mime_type.startswith("image/")


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def is_package(path: Path) -> bool:
    return path.suffix.lower() in PACKAGE_EXTENSIONS


def discover_image_files(paths: Iterable[str | Path]) -> list[Path]:
    """Return image files under ``paths``, directories expanded depth-first.

    Inputs keep their order; directory entries are visited in name order.
    Hidden entries, package bundles and symlinked directories inside
    directories are skipped.
    Paths that do not exist, or directories that cannot be listed,
    contribute nothing.
    """
    return list(_walk(Path(p) for p in paths))


def _walk(paths: Iterable[Path]) -> Iterator[Path]:
    for path in paths:
        if path.is_dir():
            yield from _walk(_list_directory(path))
        elif path.is_file() and is_image_file(path):
            yield path


def _list_directory(directory: Path) -> list[Path]:
    try:
        entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
    except OSError:
        logger.debug("Cannot list %s", directory, exc_info=True)
        return []
    return [entry for entry in entries if not is_hidden(entry) and not _is_skipped_directory(entry)]


def _is_skipped_directory(entry: Path) -> bool:
    # Symlinked directories can point back at an ancestor.
    return entry.is_dir() and (entry.is_symlink() or is_package(entry))
