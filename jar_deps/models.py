"""Core data models: target identity, relation kinds and component descriptors."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from collections.abc import Iterable


class Target:
    """A unit (class file) or archive (jar file) identified by its canonical path.

    This is the only place paths are canonicalized: the user directory is expanded, relative segments and symlinks
    are resolved, and the result is absolute. Every relation key, cache key and returned dependency is a `Target`,
    so two spellings of the same file always compare equal.
    """

    __slots__ = ("path",)

    def __init__(self, path: str | os.PathLike[str]) -> None:
        """Initialize a target from any path-like value, including another `Target`."""
        if isinstance(path, Target):
            self.path: Path = path.path
        else:
            self.path = Path(path).expanduser().resolve()

    @property
    def name(self) -> str:
        """Base name of the target file."""
        return self.path.name

    def exists(self) -> bool:
        return self.path.is_file()

    def __fspath__(self) -> str:
        return str(self.path)

    def __eq__(self, other: object) -> bool:
        """Check equality of canonical paths."""
        return isinstance(other, Target) and self.path == other.path

    def __hash__(self) -> int:
        """Hash the canonical path."""
        return hash(self.path)

    def __lt__(self, other: object) -> bool:
        """Order targets by path so reports and cache files are deterministic."""
        if not isinstance(other, Target):
            msg = "Need a Target"
            raise TypeError(msg)
        return str(self.path) < str(other.path)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self.path)!r})"

    def __str__(self) -> str:
        return str(self.path)


def targets(paths: Iterable[str | os.PathLike[str]]) -> set[Target]:
    """Canonicalize a collection of paths into a set of targets."""
    return {Target(p) for p in paths}


class RelationKind(str, Enum):
    """The three dependency relations. Values double as cache subdirectory names."""

    unit_to_unit = "unit-to-unit"
    unit_to_archive = "unit-to-archive"
    archive_to_archive = "archive-to-archive"


class AppletDescriptor(BaseModel):
    """An applet shipped alongside a component, with its own declared extras."""

    class_name: str
    archives: list[str] = Field(default_factory=list)
    resources: list[str] = Field(default_factory=list)


class ComponentDescriptor(BaseModel):
    """The parts of a component's metadata the packager needs.

    `archives` and `resources` are base names of files the automatic extractor may have missed; archives are looked
    up under the archives root and resources under the units root.
    """

    class_name: str
    archives: list[str] = Field(default_factory=list)
    resources: list[str] = Field(default_factory=list)
    applets: list[AppletDescriptor] = Field(default_factory=list)


class ComponentManifest(BaseModel):
    """A JSON document listing the components to package."""

    components: list[ComponentDescriptor] = Field(default_factory=list)


@dataclass
class AppletBundle:
    """The resolved files for one applet of a component."""

    class_name: str
    unit: Target | None = None
    units: set[Target] = field(default_factory=set)
    archives: set[Target] = field(default_factory=set)
    resources: set[Target] = field(default_factory=set)
    archive_file: Path | None = None


@dataclass
class ComponentBundle:
    """The resolved files for one component.

    `files` is what gets handed to the upload boundary. Once the component archive has been written it replaces the
    loose units and resources it contains.
    """

    class_name: str
    unit: Target | None = None
    units: set[Target] = field(default_factory=set)
    archives: set[Target] = field(default_factory=set)
    resources: set[Target] = field(default_factory=set)
    applets: list[AppletBundle] = field(default_factory=list)
    archive_file: Path | None = None

    @property
    def files(self) -> set[Path]:
        """Every file that has to travel with the component."""
        ret: set[Path] = {a.path for a in self.archives}
        if self.archive_file is not None:
            ret.add(self.archive_file)
        else:
            ret.update(t.path for t in self.units | self.resources)
        for applet in self.applets:
            ret.update(a.path for a in applet.archives)
            if applet.archive_file is not None:
                ret.add(applet.archive_file)
            else:
                ret.update(t.path for t in applet.units | applet.resources)
        return ret

    def to_obj(self) -> dict[str, object]:
        """Convert the bundle to a JSON-serializable object."""
        return {
            "unit": None if self.unit is None else str(self.unit),
            "component_archive": None if self.archive_file is None else str(self.archive_file),
            "units": sorted(map(str, self.units)),
            "archives": sorted(map(str, self.archives)),
            "resources": sorted(map(str, self.resources)),
            "applets": {
                applet.class_name: {
                    "applet_archive": None if applet.archive_file is None else str(applet.archive_file),
                    "units": sorted(map(str, applet.units)),
                    "archives": sorted(map(str, applet.archives)),
                    "resources": sorted(map(str, applet.resources)),
                }
                for applet in self.applets
            },
            "files": sorted(map(str, self.files)),
        }
