"""Direct dependency extraction strategies."""

from __future__ import annotations

import logging
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING

from .bytecode import ClassInfo, read_class
from .filetree import UNIT_SUFFIX, file_tree, is_archive, is_unit
from .models import RelationKind, Target

if TYPE_CHECKING:
    import os
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

_IGNORED_CLASSES = frozenset(("module-info", "package-info"))


class DependencyExtractor(ABC):
    """Finds the direct dependencies of a single unit or archive.

    The resolver calls each lookup once per target and trusts the answer. Implementations may raise any exception
    for a target they cannot analyze; the resolver reports it as an `AnalysisFailure`.
    """

    @abstractmethod
    def direct_unit_deps(self, unit: Target, units_root: Path) -> set[Target]:
        """Return the other units under `units_root` that `unit` directly references."""
        raise NotImplementedError

    @abstractmethod
    def direct_archive_deps_of_unit(self, unit: Target, units_root: Path, archives_root: Path) -> set[Target]:
        """Return the archives under `archives_root` containing classes `unit` directly references.

        An archive that contains the unit itself is part of the result.
        """
        raise NotImplementedError

    @abstractmethod
    def direct_archive_deps_of_archive(self, archive: Target, archives_root: Path) -> set[Target]:
        """Return the archives under `archives_root` containing classes referenced from within `archive`."""
        raise NotImplementedError

    def find(
        self,
        kind: RelationKind,
        target: Target,
        units_root: Path | None,
        archives_root: Path | None,
    ) -> set[Target]:
        """Dispatch to the lookup for `kind`."""
        if kind is RelationKind.unit_to_unit:
            return self.direct_unit_deps(target, units_root)  # type: ignore[arg-type]
        if kind is RelationKind.unit_to_archive:
            return self.direct_archive_deps_of_unit(target, units_root, archives_root)  # type: ignore[arg-type]
        return self.direct_archive_deps_of_archive(target, archives_root)  # type: ignore[arg-type]


def archive_class_names(archive: str | os.PathLike[str]) -> Iterator[tuple[str, str]]:
    """Yield `(internal class name, entry name)` for every class stored in an archive."""
    with zipfile.ZipFile(archive) as zf:
        for entry in zf.namelist():
            if not entry.endswith(UNIT_SUFFIX) or entry.startswith("META-INF/"):
                continue
            name = entry[: -len(UNIT_SUFFIX)]
            if name.rsplit("/", 1)[-1] in _IGNORED_CLASSES:
                continue
            yield name, entry


class BytecodeExtractor(DependencyExtractor):
    """Reads class files directly to find which units and archives they reference.

    Every root is indexed once (class name to unit file, class name to the first archive in scan order that contains
    it); the indexes are shared between threads.
    """

    def __init__(self) -> None:
        """Initialize an extractor with empty root indexes."""
        self._lock = Lock()
        self._unit_indexes: dict[Path, dict[str, Target]] = {}
        self._archive_indexes: dict[Path, dict[str, Target]] = {}

    def unit_index(self, units_root: str | os.PathLike[str]) -> dict[str, Target]:
        """Map the internal name of every class under `units_root` to its unit file."""
        root = Path(units_root).resolve()
        with self._lock:
            if root not in self._unit_indexes:
                index: dict[str, Target] = {}
                for path in file_tree(root):
                    if is_unit(path):
                        rel = path.relative_to(root)
                        name = "/".join([*rel.parts[:-1], rel.name[: -len(UNIT_SUFFIX)]])
                        index.setdefault(name, Target(path))
                logger.debug("Indexed %d classes under %s", len(index), root)
                self._unit_indexes[root] = index
            return self._unit_indexes[root]

    def archive_index(self, archives_root: str | os.PathLike[str]) -> dict[str, Target]:
        """Map the internal name of every class packaged under `archives_root` to the first archive containing it.

        Archives that cannot be read are left out of the index; they fail on their own when analyzed.
        """
        root = Path(archives_root).resolve()
        with self._lock:
            if root not in self._archive_indexes:
                index: dict[str, Target] = {}
                for path in file_tree(root):
                    if not is_archive(path):
                        continue
                    archive = Target(path)
                    try:
                        for name, _ in archive_class_names(archive):
                            index.setdefault(name, archive)
                    except (OSError, zipfile.BadZipFile) as e:
                        logger.warning("Could not index archive %s: %s", archive, e)
                logger.debug("Indexed %d archived classes under %s", len(index), root)
                self._archive_indexes[root] = index
            return self._archive_indexes[root]

    @staticmethod
    def read_unit(unit: Target) -> ClassInfo:
        return read_class(unit.path.read_bytes())

    def direct_unit_deps(self, unit: Target, units_root: Path) -> set[Target]:
        """Return the units under `units_root` that `unit` references, not counting itself."""
        info = self.read_unit(unit)
        index = self.unit_index(units_root)
        deps = {index[name] for name in info.references if name in index}
        deps.discard(unit)
        logger.debug("%s references %d units", unit, len(deps))
        return deps

    def direct_archive_deps_of_unit(
        self,
        unit: Target,
        units_root: Path,  # noqa: ARG002
        archives_root: Path,
    ) -> set[Target]:
        """Return the archives holding classes that `unit` references, including any archive holding `unit` itself."""
        info = self.read_unit(unit)
        index = self.archive_index(archives_root)
        return {index[name] for name in info.references if name in index}

    def direct_archive_deps_of_archive(self, archive: Target, archives_root: Path) -> set[Target]:
        """Return the archives referenced from inside `archive`. The result always includes `archive`."""
        index = self.archive_index(archives_root)
        deps = {archive}
        with zipfile.ZipFile(archive) as zf:
            for _, entry in archive_class_names(archive):
                info = read_class(zf.read(entry))
                deps.update(index[name] for name in info.references if name in index)
        logger.debug("found %d deps for archive %s", len(deps), archive.name)
        return deps
