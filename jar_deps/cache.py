"""Disk-backed cache of direct dependencies, wrapped around any extractor."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING

from .exceptions import CacheReadFailure, CacheWriteFailure
from .extractor import DependencyExtractor
from .filetree import file_digest, is_stale, relative_path, unit_name
from .models import RelationKind, Target

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

DEPENDENCY_CACHE = "dependencies-cache"
DEP_SUFFIX = ".dep"
DIGEST_SUFFIX = ".sha256"


class StalenessCheck(str, Enum):
    """How a cache entry is compared against the file it was computed from."""

    mtime = "mtime"
    hash = "hash"


@dataclass
class CacheStats:
    """Running tally of what the cache did since it was created."""

    reused: list[Path] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    write_failures: list[CacheWriteFailure] = field(default_factory=list)


def scoped_cache_root(
    cache_root: str | os.PathLike[str],
    units_root: str | os.PathLike[str] | None,
    archives_root: str | os.PathLike[str] | None,
) -> Path:
    """Return the subdirectory of `cache_root` that holds the entries for one pair of roots.

    Cache keys are only unique within a root, so two projects sharing a `cache_root` must not share entries. The
    subdirectory is named by a digest of the canonical roots.
    """
    digest = hashlib.sha256()
    for root in (units_root, archives_root):
        digest.update(b"-" if root is None else str(Target(root)).encode("utf-8"))
        digest.update(b"\0")
    return Path(cache_root) / digest.hexdigest()[:16]


class DependencyCache:
    """Stores direct dependencies as `.dep` files, one canonical path per line.

    Layout::

        <cache_root>/dependencies-cache/
            unit-to-unit/<qualified unit name>.dep
            unit-to-archive/<qualified unit name>.dep
            archive-to-archive/<archive path relative to its root, `/` replaced by `.`>.dep

    Reading never fails: a missing, unparsable or stale entry is a cache miss. Writing failures are logged at warning
    level and recorded in `stats`. A cache directory must only be used by one resolver at a time.
    """

    def __init__(self, cache_root: str | os.PathLike[str], staleness: StalenessCheck = StalenessCheck.mtime) -> None:
        """Initialize a cache rooted at `cache_root`. Nothing is created on disk until `prepare` or `write`."""
        self.cache_root: Path = Path(cache_root)
        self.directory: Path = self.cache_root / DEPENDENCY_CACHE
        self.staleness: StalenessCheck = StalenessCheck(staleness)
        self.stats: CacheStats = CacheStats()
        self._lock = Lock()

    def relation_dir(self, kind: RelationKind) -> Path:
        return self.directory / kind.value

    def prepare(self) -> None:
        """Create the cache directory layout if it is missing."""
        for kind in RelationKind:
            try:
                self.relation_dir(kind).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("Could not create dependency cache directory %s: %s", self.relation_dir(kind), e)

    def clear(self) -> None:
        """Delete every cache entry."""
        if self.directory.exists():
            logger.info("Clearing dependency cache %s", self.directory)
            shutil.rmtree(self.directory)

    @staticmethod
    def unit_key(unit: Target, units_root: str | os.PathLike[str]) -> str:
        try:
            return unit_name(unit, units_root)
        except ValueError:
            return unit.name

    @staticmethod
    def archive_key(archive: Target, archives_root: str | os.PathLike[str]) -> str:
        try:
            return ".".join(relative_path(archive, archives_root).parts)
        except ValueError:
            return archive.name

    def cache_file(self, kind: RelationKind, key: str) -> Path:
        return self.relation_dir(kind) / f"{key}{DEP_SUFFIX}"

    @staticmethod
    def digest_file(cache_file: Path) -> Path:
        return cache_file.with_name(cache_file.name + DIGEST_SUFFIX)

    @staticmethod
    def parse(cache_file: Path) -> set[Target]:
        """Parse a `.dep` file.

        Trailing blank lines are ignored. Every other line must be an absolute path to an existing file.

        Raises:
            CacheReadFailure: if the file is missing or any line is not a usable path

        """
        try:
            text = cache_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Unable to read dependency cache file {cache_file}: {e}"
            raise CacheReadFailure(msg) from e
        lines = text.split("\n")
        while lines and not lines[-1].strip():
            lines.pop()
        deps: set[Target] = set()
        for lineno, raw in enumerate(lines, start=1):
            line = raw.rstrip("\r")
            if not line or "\0" in line or not Path(line).is_absolute():
                msg = f"{cache_file}:{lineno}: not an absolute path: {line!r}"
                raise CacheReadFailure(msg)
            if not Path(line).is_file():
                msg = f"{cache_file}:{lineno}: {line} no longer exists"
                raise CacheReadFailure(msg)
            deps.add(Target(line))
        return deps

    def check_fresh(self, cache_file: Path, source: Target) -> None:
        """Raise `CacheReadFailure` if `cache_file` is stale relative to `source`."""
        try:
            if self.staleness is StalenessCheck.hash:
                digest_file = self.digest_file(cache_file)
                stale = digest_file.read_text(encoding="utf-8").strip() != file_digest(source)
            else:
                stale = is_stale(cache_file, source)
        except OSError as e:
            msg = f"Unable to check {cache_file} against {source}: {e}"
            raise CacheReadFailure(msg) from e
        if stale:
            msg = f"Stale dependency cache file {cache_file}"
            raise CacheReadFailure(msg)

    def read(
        self,
        kind: RelationKind,
        key: str,
        source: Target,
        within: str | os.PathLike[str] | None = None,
    ) -> set[Target] | None:
        """Return the cached dependencies of `source`, or None on a cache miss.

        When `within` is given, an entry listing a dependency outside that directory was written for another tree
        and is a miss.
        """
        cache_file = self.cache_file(kind, key)
        try:
            self.check_fresh(cache_file, source)
            deps = self.parse(cache_file)
            if within is not None:
                root = Target(within).path
                for dep in sorted(deps):
                    if not dep.path.is_relative_to(root):
                        msg = f"{cache_file}: {dep} is outside {root}"
                        raise CacheReadFailure(msg)
        except CacheReadFailure as e:
            logger.debug("Dependency cache miss: %s", e)
            return None
        with self._lock:
            self.stats.reused.append(cache_file)
        return deps

    def write(self, kind: RelationKind, key: str, source: Target, deps: Iterable[Target]) -> bool:
        """Overwrite the cache entry for `source`. Returns False if it could not be written.

        Each file is written next to its final name and then renamed over it, so a failed write never leaves a
        truncated entry behind. After a failure no entry remains for `source`.
        """
        cache_file = self.cache_file(kind, key)
        try:
            cache_file.parent.mkdir(parents=True, exist_ok=True)
            if self.staleness is StalenessCheck.hash:
                self._replace(self.digest_file(cache_file), file_digest(source) + "\n")
            self._replace(cache_file, "".join(f"{dep}\n" for dep in sorted(deps)))
        except OSError as e:
            self._discard(cache_file)
            failure = CacheWriteFailure(cache_file, e)
            logger.warning("%s", failure)
            with self._lock:
                self.stats.write_failures.append(failure)
            return False
        with self._lock:
            self.stats.written.append(cache_file)
        return True

    @staticmethod
    def _temporary(path: Path) -> Path:
        return path.with_name(f"{path.name}.{os.getpid()}.tmp")

    def _replace(self, path: Path, text: str) -> None:
        tmp = self._temporary(path)
        try:
            tmp.write_text(text, encoding="utf-8")
            os.replace(tmp, path)
        except OSError:
            self._discard_file(tmp)
            raise

    def _discard(self, cache_file: Path) -> None:
        """Remove the entry for `cache_file` so that the next read is a miss."""
        self._discard_file(cache_file)
        self._discard_file(self.digest_file(cache_file))

    @staticmethod
    def _discard_file(path: Path) -> None:
        if not path.is_file():
            return
        try:
            path.unlink()
        except OSError as e:
            logger.warning("Could not remove dependency cache file %s: %s", path, e)


class CachingExtractor(DependencyExtractor):
    """Answers lookups from a `DependencyCache`, delegating to another extractor on a miss.

    Fresh results are written back to the cache before being returned. Errors raised by the wrapped extractor
    propagate unchanged.
    """

    def __init__(self, extractor: DependencyExtractor, cache: DependencyCache) -> None:
        """Wrap `extractor` with `cache`."""
        self.extractor: DependencyExtractor = extractor
        self.cache: DependencyCache = cache

    def _lookup(
        self,
        kind: RelationKind,
        key: str,
        source: Target,
        dep_root: Path,
        analyze: Callable[[], Iterable[Target]],
    ) -> set[Target]:
        deps = self.cache.read(kind, key, source, within=dep_root)
        if deps is not None:
            return deps
        deps = {Target(dep) for dep in analyze()}
        self.cache.write(kind, key, source, deps)
        return deps

    def direct_unit_deps(self, unit: Target, units_root: Path) -> set[Target]:
        """Return the cached or freshly extracted unit dependencies of `unit`."""
        return self._lookup(
            RelationKind.unit_to_unit,
            self.cache.unit_key(unit, units_root),
            unit,
            units_root,
            lambda: self.extractor.direct_unit_deps(unit, units_root),
        )

    def direct_archive_deps_of_unit(self, unit: Target, units_root: Path, archives_root: Path) -> set[Target]:
        """Return the cached or freshly extracted archive dependencies of `unit`."""
        return self._lookup(
            RelationKind.unit_to_archive,
            self.cache.unit_key(unit, units_root),
            unit,
            archives_root,
            lambda: self.extractor.direct_archive_deps_of_unit(unit, units_root, archives_root),
        )

    def direct_archive_deps_of_archive(self, archive: Target, archives_root: Path) -> set[Target]:
        """Return the cached or freshly extracted archive dependencies of `archive`."""
        return self._lookup(
            RelationKind.archive_to_archive,
            self.cache.archive_key(archive, archives_root),
            archive,
            archives_root,
            lambda: self.extractor.direct_archive_deps_of_archive(archive, archives_root),
        )
