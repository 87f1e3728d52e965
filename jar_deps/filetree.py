"""Breadth-first file tree scanning, unit naming and staleness checks."""

from __future__ import annotations

import hashlib
import logging
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import os
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

UNIT_SUFFIX = ".class"
ARCHIVE_SUFFIX = ".jar"


def directory_tree(root: str | os.PathLike[str]) -> list[Path]:
    """Return `root` and every directory below it, breadth first.

    A missing root yields an empty list. Directories are canonicalized before they are queued and each canonical
    directory is visited once, so symlink cycles terminate.
    """
    root = Path(root)
    if not root.is_dir():
        return []
    ret: list[Path] = [root]
    seen: set[Path] = {root.resolve()}
    pending: deque[Path] = deque([root])
    while pending:
        current = pending.popleft()
        try:
            entries = sorted(current.iterdir())
        except OSError as e:
            logger.warning("Could not list directory %s: %s", current, e)
            continue
        for entry in entries:
            if not entry.is_dir():
                continue
            canonical = entry.resolve()
            if canonical in seen:
                logger.debug("Skipping already visited directory %s (%s)", entry, canonical)
                continue
            seen.add(canonical)
            ret.append(entry)
            pending.append(entry)
    return ret


def file_tree(root: str | os.PathLike[str]) -> list[Path]:
    """Return every regular file below `root`.

    All files at depth *n* come before any file at depth *n+1*; files of the same directory are sorted by name. The
    result is a snapshot, not a live view of the directory.
    """
    ret: list[Path] = []
    for directory in directory_tree(root):
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.warning("Could not list directory %s: %s", directory, e)
            continue
        ret.extend(entry for entry in entries if entry.is_file())
    return ret


def is_unit(path: str | os.PathLike[str]) -> bool:
    return Path(path).name.endswith(UNIT_SUFFIX)


def is_archive(path: str | os.PathLike[str]) -> bool:
    return Path(path).name.lower().endswith(ARCHIVE_SUFFIX)


def relative_path(path: str | os.PathLike[str], base: str | os.PathLike[str]) -> Path:
    """Return `path` relative to `base`, comparing canonical forms.

    Raises:
        ValueError: if `path` is not inside `base`

    """
    return Path(path).resolve().relative_to(Path(base).resolve())


def unit_name(unit_file: str | os.PathLike[str], units_root: str | os.PathLike[str]) -> str:
    """Translate a class file path into a fully qualified class name.

    Examples:
        >>> unit_name("/work/classes/org/example/Example.class", "/work/classes")
        'org.example.Example'

    """
    rel = relative_path(unit_file, units_root)
    if not rel.name.endswith(UNIT_SUFFIX):
        msg = f"{unit_file} is not a class file"
        raise ValueError(msg)
    parts = [*rel.parts[:-1], rel.name[: -len(UNIT_SUFFIX)]]
    return ".".join(parts)


def unit_file(name: str, units_root: str | os.PathLike[str]) -> Path:
    """Return where the class file for a fully qualified class name lives under `units_root`.

    The file is not required to exist.
    """
    *package, simple_name = name.split(".")
    return Path(units_root).joinpath(*package, simple_name + UNIT_SUFFIX)


def find_file(base_name: str, root: str | os.PathLike[str]) -> Path | None:
    """Find the first file (in scan order) below `root` named `base_name`.

    `base_name` may also be a trailing relative path such as `sub/lib.jar`.
    """
    suffix = "/" + base_name.replace("\\", "/").lstrip("/")
    for path in file_tree(root):
        if path.name == base_name or path.as_posix().endswith(suffix):
            return path
    return None


def find_files(base_names: Iterable[str], root: str | os.PathLike[str]) -> set[Path]:
    """Find one file for each base name below `root`.

    Raises:
        FileNotFoundError: if any base name has no match

    """
    found: set[Path] = set()
    for base_name in base_names:
        path = find_file(base_name, root)
        if path is None:
            msg = f"did not find file with basename '{base_name}' in directory '{root}'"
            raise FileNotFoundError(msg)
        found.add(path)
    return found


def is_stale(candidate: str | os.PathLike[str], reference: str | os.PathLike[str]) -> bool:
    """Check whether `candidate` is stale relative to `reference`.

    The candidate is stale if it does not exist or if the reference was modified strictly after it. Equal
    modification times count as fresh.

    Raises:
        FileNotFoundError: if the reference does not exist

    """
    reference_mtime = Path(reference).stat().st_mtime
    try:
        candidate_mtime = Path(candidate).stat().st_mtime
    except FileNotFoundError:
        return True
    return reference_mtime > candidate_mtime


def file_digest(path: str | os.PathLike[str]) -> str:
    """Return the SHA-256 hex digest of a file's contents."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            digest.update(chunk)
    return digest.hexdigest()
