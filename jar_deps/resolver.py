"""The dependency graph resolver: three direct-dependency relations and their closures."""

from __future__ import annotations

import logging
import os
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

import networkx as nx
from tqdm import tqdm

from .cache import CachingExtractor, DependencyCache, StalenessCheck, scoped_cache_root
from .exceptions import AnalysisCancelled, AnalysisFailure, RootNotFoundError, UnknownTargetError
from .extractor import BytecodeExtractor, DependencyExtractor
from .filetree import file_tree, is_archive, is_unit
from .models import RelationKind, Target

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from threading import Event

logger = logging.getLogger(__name__)

PathLike = str | os.PathLike[str]


class DependencyRelation:
    """Direct dependencies from declared targets to the targets they depend on.

    A target has to be declared (given a possibly empty dependency set) before it can be queried; `add` declares its
    target implicitly. Declaring twice or adding the same edge twice changes nothing. There is no removal.

    A disabled relation belongs to a root that was not configured and answers every query with an empty set.
    """

    def __init__(self, kind: RelationKind, *, enabled: bool = True) -> None:
        """Initialize an empty relation."""
        self.kind: RelationKind = kind
        self.enabled: bool = enabled
        self._deps: dict[Target, set[Target]] = {}

    def declare(self, target: PathLike) -> Target:
        """Declare `target`, keeping any edges it already has."""
        target = Target(target)
        self._deps.setdefault(target, set())
        return target

    def add(self, target: PathLike, depends_on: PathLike) -> None:
        """Record that `target` directly depends on `depends_on`."""
        target = self.declare(target)
        self._deps[target].add(Target(depends_on))

    def __contains__(self, target: object) -> bool:
        """Check whether a target has been declared."""
        if not isinstance(target, (str, os.PathLike)):
            return False
        return Target(target) in self._deps

    def __len__(self) -> int:
        """Return the number of declared targets."""
        return len(self._deps)

    def __iter__(self) -> Iterator[Target]:
        """Iterate over the declared targets."""
        return iter(self._deps)

    def shallow_deps(self, target: PathLike) -> set[Target]:
        """Return the targets `target` directly depends on.

        Raises:
            UnknownTargetError: if `target` was never declared

        """
        if not self.enabled:
            return set()
        target = Target(target)
        try:
            return set(self._deps[target])
        except KeyError:
            raise UnknownTargetError(target, self.kind) from None

    def shallow_deps_of(self, targets: Iterable[PathLike]) -> set[Target]:
        """Union of `shallow_deps` over `targets`."""
        ret: set[Target] = set()
        for target in targets:
            ret |= self.shallow_deps(target)
        return ret

    def deep_deps(self, target: PathLike) -> set[Target]:
        """Return every target reachable from `target` by zero or more edges, `target` included.

        Reachable targets that were never declared are part of the result but are not expanded further.

        Raises:
            UnknownTargetError: if `target` was never declared

        """
        if not self.enabled:
            return set()
        target = Target(target)
        if target not in self._deps:
            raise UnknownTargetError(target, self.kind)
        # the accepted set only grows, so cycles terminate
        pending: deque[Target] = deque([target])
        accepted: set[Target] = {target}
        while pending:
            current = pending.popleft()
            for dep in self._deps.get(current, ()):
                if dep not in accepted:
                    accepted.add(dep)
                    pending.append(dep)
        return accepted

    def deep_deps_of(self, targets: Iterable[PathLike]) -> set[Target]:
        """Union of `deep_deps` over `targets`."""
        ret: set[Target] = set()
        for target in targets:
            ret |= self.deep_deps(target)
        return ret

    def edges(self) -> Iterator[tuple[Target, Target]]:
        """Yield every `(target, dependency)` edge."""
        for target, deps in self._deps.items():
            for dep in deps:
                yield target, dep


class DependencyResolver:
    """Detects and stores the dependencies between all units and archives under two roots.

    Construction scans the roots breadth first and asks the extractor for the direct dependencies of every unit and
    archive, so construction is slow while queries are dictionary lookups and graph walks. Either root may be None,
    in which case the relations that need it are empty.

    Any failure while analyzing a target aborts construction; a resolver is never partially populated.
    """

    def __init__(
        self,
        extractor: DependencyExtractor,
        units_root: PathLike | None = None,
        archives_root: PathLike | None = None,
        *,
        verbose: bool = False,
        max_workers: int = 1,
        cancel: Event | None = None,
    ) -> None:
        """Build all three relations.

        Args:
            extractor: strategy that finds the direct dependencies of one target
            units_root: top of a package tree of class files, or None
            archives_root: directory searched recursively for jar files, or None
            verbose: log every analyzed target at INFO level and show progress bars
            max_workers: number of threads analyzing targets of the same relation; -1 uses every CPU
            cancel: checked between targets; once set, construction raises `AnalysisCancelled`

        Raises:
            RootNotFoundError: if a configured root does not exist
            AnalysisFailure: if the extractor fails on any target

        """
        self.extractor: DependencyExtractor = extractor
        self.units_root: Path | None = self._check_root(units_root, "units")
        self.archives_root: Path | None = self._check_root(archives_root, "archives")
        self.verbose: bool = verbose
        self.max_workers: int = max_workers if max_workers > 0 else (os.cpu_count() or 1)
        self._cancel = cancel
        self._log_level = logging.INFO if verbose else logging.DEBUG

        has_units = self.units_root is not None
        has_archives = self.archives_root is not None
        self._relations: dict[RelationKind, DependencyRelation] = {
            RelationKind.unit_to_unit: DependencyRelation(RelationKind.unit_to_unit, enabled=has_units),
            RelationKind.unit_to_archive: DependencyRelation(
                RelationKind.unit_to_archive, enabled=has_units and has_archives
            ),
            RelationKind.archive_to_archive: DependencyRelation(RelationKind.archive_to_archive, enabled=has_archives),
        }
        for relation in self._relations.values():
            if relation.enabled:
                self._populate(relation)

    @staticmethod
    def _check_root(root: PathLike | None, role: str) -> Path | None:
        if root is None:
            return None
        path = Path(root).expanduser().resolve()
        if not path.is_dir():
            raise RootNotFoundError(Path(root), role)
        return path

    def _scan(self, kind: RelationKind) -> list[Target]:
        if kind is RelationKind.archive_to_archive:
            root, keep = self.archives_root, is_archive
        else:
            root, keep = self.units_root, is_unit
        # several paths (symlinks) may name the same target; analyze it once, in scan order
        return list(dict.fromkeys(Target(path) for path in file_tree(root) if keep(path)))  # type: ignore[arg-type]

    def _analyze(self, kind: RelationKind, target: Target) -> set[Target]:
        if self._cancel is not None and self._cancel.is_set():
            msg = f"Cancelled while populating {kind.value} dependencies"
            raise AnalysisCancelled(msg)
        logger.log(self._log_level, "analyzing %s dependencies of %s", kind.value, target)
        try:
            deps = self.extractor.find(kind, target, self.units_root, self.archives_root)
        except AnalysisFailure:
            raise
        except Exception as e:
            raise AnalysisFailure(target, kind, str(e)) from e
        return {Target(dep) for dep in deps}

    @staticmethod
    def _record(relation: DependencyRelation, target: Target, deps: set[Target]) -> None:
        relation.declare(target)
        for dep in deps:
            relation.add(target, dep)

    def _populate(self, relation: DependencyRelation) -> None:
        kind = relation.kind
        pending = self._scan(kind)
        logger.log(self._log_level, "populating %s deps for %d targets", kind.value, len(pending))
        with tqdm(
            desc=f"populating {kind.value} deps",
            total=len(pending),
            leave=False,
            unit=" files",
            disable=not self.verbose,
        ) as t:
            if self.max_workers <= 1 or len(pending) <= 1:
                for target in pending:
                    self._record(relation, target, self._analyze(kind, target))
                    t.update(1)
                return
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures: list[Future[set[Target]]] = [pool.submit(self._analyze, kind, target) for target in pending]
                try:
                    # results are recorded by this thread only, in scan order
                    for target, future in zip(pending, futures, strict=True):
                        self._record(relation, target, future.result())
                        t.update(1)
                except BaseException:
                    for future in futures:
                        future.cancel()
                    raise

    def relation(self, kind: RelationKind) -> DependencyRelation:
        """Return the relation of `kind`."""
        return self._relations[kind]

    def targets(self, kind: RelationKind) -> set[Target]:
        """Return every target declared in the relation `kind`."""
        return set(self._relations[kind])

    @property
    def _units(self) -> DependencyRelation:
        return self._relations[RelationKind.unit_to_unit]

    @property
    def _unit_archives(self) -> DependencyRelation:
        return self._relations[RelationKind.unit_to_archive]

    @property
    def _archives(self) -> DependencyRelation:
        return self._relations[RelationKind.archive_to_archive]

    def shallow_unit_deps(self, unit: PathLike) -> set[Target]:
        """Return the units `unit` directly depends on."""
        return self._units.shallow_deps(unit)

    def shallow_unit_deps_of(self, units: Iterable[PathLike]) -> set[Target]:
        return self._units.shallow_deps_of(units)

    def deep_unit_deps(self, unit: PathLike) -> set[Target]:
        """Return `unit` and every unit it depends on, directly or indirectly."""
        return self._units.deep_deps(unit)

    def deep_unit_deps_of(self, units: Iterable[PathLike]) -> set[Target]:
        return self._units.deep_deps_of(units)

    def shallow_archive_deps_of_unit(self, unit: PathLike) -> set[Target]:
        """Return the archives `unit` directly depends on."""
        return self._unit_archives.shallow_deps(unit)

    def shallow_archive_deps_of_units(self, units: Iterable[PathLike]) -> set[Target]:
        return self._unit_archives.shallow_deps_of(units)

    def deep_archive_deps_of_unit(self, unit: PathLike) -> set[Target]:
        """Return the archives `unit` directly depends on together with everything those archives depend on.

        Note that this does not include the archive dependencies of the units `unit` depends on. To find every
        archive needed to run a unit, pass `deep_unit_deps(unit)` to `deep_archive_deps_of_units`.
        """
        return self.deep_archive_deps_of_archives(self.shallow_archive_deps_of_unit(unit))

    def deep_archive_deps_of_units(self, units: Iterable[PathLike]) -> set[Target]:
        return self.deep_archive_deps_of_archives(self.shallow_archive_deps_of_units(units))

    def shallow_archive_deps_of_archive(self, archive: PathLike) -> set[Target]:
        """Return the archives `archive` directly depends on."""
        return self._archives.shallow_deps(archive)

    def shallow_archive_deps_of_archives(self, archives: Iterable[PathLike]) -> set[Target]:
        return self._archives.shallow_deps_of(archives)

    def deep_archive_deps_of_archive(self, archive: PathLike) -> set[Target]:
        """Return `archive` and every archive it depends on, directly or indirectly."""
        return self._archives.deep_deps(archive)

    def deep_archive_deps_of_archives(self, archives: Iterable[PathLike]) -> set[Target]:
        return self._archives.deep_deps_of(archives)

    def to_graph(self, kinds: Iterable[RelationKind] = tuple(RelationKind)) -> nx.DiGraph:
        """Build a directed graph of the requested relations.

        Nodes are targets with a `kind` attribute (`unit` or `archive`); edges carry the `relation` they came from.
        """
        graph = nx.DiGraph()
        for kind in kinds:
            relation = self._relations[kind]
            source_kind = "archive" if kind is RelationKind.archive_to_archive else "unit"
            dep_kind = "unit" if kind is RelationKind.unit_to_unit else "archive"
            for target in relation:
                graph.add_node(target, kind=source_kind)
            for target, dep in relation.edges():
                if dep not in graph:
                    graph.add_node(dep, kind=dep_kind)
                graph.add_edge(target, dep, relation=kind.value)
        return graph


def open_resolver(
    units_root: PathLike | None = None,
    archives_root: PathLike | None = None,
    cache_root: PathLike | None = None,
    *,
    staleness: StalenessCheck = StalenessCheck.mtime,
    extractor: DependencyExtractor | None = None,
    verbose: bool = False,
    max_workers: int = 1,
    cancel: Event | None = None,
) -> DependencyResolver:
    """Create a resolver backed by the bytecode extractor, cached under `cache_root` unless it is None.

    Entries go to the subdirectory of `cache_root` given by `scoped_cache_root`, so projects can share one cache root.
    """
    if extractor is None:
        extractor = BytecodeExtractor()
    if cache_root is not None:
        cache = DependencyCache(scoped_cache_root(cache_root, units_root, archives_root), staleness=staleness)
        cache.prepare()
        extractor = CachingExtractor(extractor, cache)
    return DependencyResolver(
        extractor,
        units_root,
        archives_root,
        verbose=verbose,
        max_workers=max_workers,
        cancel=cancel,
    )
