"""Bundles a component's resolved dependencies into archives ready for upload."""

from __future__ import annotations

import logging
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .filetree import find_files, relative_path, unit_file
from .models import AppletBundle, ComponentBundle, ComponentDescriptor, Target

if TYPE_CHECKING:
    import os
    from collections.abc import Iterable

    from .models import AppletDescriptor
    from .resolver import DependencyResolver

logger = logging.getLogger(__name__)

# archives the execution server already provides and that must not be bundled again
DEFAULT_PLATFORM_PREFIXES: tuple[str, ...] = ("meandre-",)

COMPONENT_MANIFEST: dict[str, str] = {"Manifest-Version": "1.0", "isComponent": "true"}
APPLET_MANIFEST: dict[str, str] = {"Manifest-Version": "1.0"}

Upload = Callable[[ComponentDescriptor, set[Path]], None]


def manifest_text(attributes: dict[str, str]) -> str:
    """Render jar manifest main attributes. `Manifest-Version` has to come first."""
    ordered = sorted(attributes.items(), key=lambda kv: kv[0] != "Manifest-Version")
    return "".join(f"{key}: {value}\r\n" for key, value in ordered) + "\r\n"


def write_jar(
    jar_file: str | os.PathLike[str],
    files: Iterable[Target],
    base_dir: str | os.PathLike[str],
    manifest: dict[str, str],
) -> Path:
    """Write a jar holding `files`, each stored under its path relative to `base_dir`.

    A partially written jar is removed if anything goes wrong.
    """
    jar_file = Path(jar_file)
    jar_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(jar_file, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("META-INF/MANIFEST.MF", manifest_text(manifest))
            for target in sorted(set(files)):
                try:
                    arcname = relative_path(target, base_dir).as_posix()
                except ValueError:
                    arcname = target.name
                zf.write(target.path, arcname)
    except BaseException:
        jar_file.unlink(missing_ok=True)
        raise
    return jar_file


@dataclass
class PackagingReport:
    """Outcome of packaging a batch of components."""

    bundles: dict[str, ComponentBundle] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)

    def to_obj(self) -> dict[str, object]:
        return {
            "components": {name: bundle.to_obj() for name, bundle in sorted(self.bundles.items())},
            "failures": {name: str(error) for name, error in sorted(self.failures.items())},
        }


class ComponentPackager:
    """Computes and writes everything a component needs to run on the execution server.

    For a component the packager collects the deep unit closure of its class, the deep archive dependencies of that
    whole closure (minus platform-provided archives), and the archives and resources its descriptor declares.
    """

    def __init__(
        self,
        resolver: DependencyResolver,
        units_root: str | os.PathLike[str] | None = None,
        archives_root: str | os.PathLike[str] | None = None,
        output_dir: str | os.PathLike[str] | None = None,
        *,
        platform_prefixes: Iterable[str] = DEFAULT_PLATFORM_PREFIXES,
        verbose: bool = False,
    ) -> None:
        """Initialize a packager.

        Args:
            resolver: a populated dependency resolver
            units_root: class file tree holding components and declared resources; defaults to the resolver's
            archives_root: directory searched for declared archives; defaults to the resolver's
            output_dir: where component archives are written; None only computes bundles
            platform_prefixes: base name prefixes of archives never bundled (case-insensitive)
            verbose: log every packaging step at INFO level

        """
        self.resolver = resolver
        units_root = units_root if units_root is not None else resolver.units_root
        if units_root is None:
            msg = "Packaging components requires a units root"
            raise ValueError(msg)
        self.units_root: Path = Path(units_root)
        archives_root = archives_root if archives_root is not None else resolver.archives_root
        self.archives_root: Path | None = None if archives_root is None else Path(archives_root)
        self.output_dir: Path | None = None if output_dir is None else Path(output_dir)
        self.platform_prefixes: tuple[str, ...] = tuple(p.lower() for p in platform_prefixes)
        self._log_level = logging.INFO if verbose else logging.DEBUG

    def is_platform_archive(self, archive: Target) -> bool:
        return archive.name.lower().startswith(self.platform_prefixes)

    def component_unit(self, class_name: str) -> Target:
        return Target(unit_file(class_name, self.units_root))

    def _declared_archives(self, names: Iterable[str]) -> set[Target]:
        names = list(names)
        if not names:
            return set()
        if self.archives_root is None:
            msg = f"Declared archives {', '.join(names)} cannot be found without an archives root"
            raise FileNotFoundError(msg)
        return {Target(p) for p in find_files(names, self.archives_root)}

    def _declared_resources(self, names: Iterable[str]) -> set[Target]:
        return {Target(p) for p in find_files(names, self.units_root)}

    def bundle_applet(self, applet: AppletDescriptor) -> AppletBundle:
        """Resolve the files an applet needs. Platform archives are kept since applets run outside the server."""
        unit = self.component_unit(applet.class_name)
        units = self.resolver.deep_unit_deps(unit)
        return AppletBundle(
            class_name=applet.class_name,
            unit=unit,
            units=units,
            archives=self.resolver.deep_archive_deps_of_units(units) | self._declared_archives(applet.archives),
            resources=self._declared_resources(applet.resources),
        )

    def bundle(self, descriptor: ComponentDescriptor) -> ComponentBundle:
        """Resolve every file the component described by `descriptor` needs.

        Raises:
            UnknownTargetError: if the component's class file was not analyzed by the resolver
            FileNotFoundError: if a declared archive or resource cannot be found

        """
        unit = self.component_unit(descriptor.class_name)
        logger.log(self._log_level, "Looking up dependencies of %s", descriptor.class_name)
        units = self.resolver.deep_unit_deps(unit)
        archives = set()
        for archive in self.resolver.deep_archive_deps_of_units(units):
            if self.is_platform_archive(archive):
                logger.log(self._log_level, "Skipping platform archive %s", archive.name)
                continue
            archives.add(archive)
        # declared archives may hold classes the extractor cannot see (reflection, service loaders)
        archives |= self._declared_archives(descriptor.archives)
        return ComponentBundle(
            class_name=descriptor.class_name,
            unit=unit,
            units=units,
            archives=archives,
            resources=self._declared_resources(descriptor.resources),
            applets=[self.bundle_applet(applet) for applet in descriptor.applets],
        )

    def archive_file(self, class_name: str) -> Path:
        """Return where the archive for `class_name` is written."""
        if self.output_dir is None:
            msg = "No output directory configured"
            raise ValueError(msg)
        return self.output_dir / f"{class_name}.jar"

    def write_archive(self, bundle: ComponentBundle) -> ComponentBundle:
        """Write the component archive (and one archive per applet) for `bundle`."""
        logger.log(self._log_level, "Building component archive for %s", bundle.class_name)
        bundle.archive_file = write_jar(
            self.archive_file(bundle.class_name),
            bundle.units | bundle.resources,
            self.units_root,
            COMPONENT_MANIFEST,
        )
        for applet in bundle.applets:
            applet.archive_file = write_jar(
                self.archive_file(applet.class_name),
                applet.units | applet.resources,
                self.units_root,
                APPLET_MANIFEST,
            )
        return bundle

    def package(self, descriptor: ComponentDescriptor, upload: Upload | None = None) -> ComponentBundle:
        """Bundle a component, write its archives if there is an output directory, and hand the files to `upload`."""
        bundle = self.bundle(descriptor)
        if self.output_dir is not None:
            self.write_archive(bundle)
        files = bundle.files
        logger.info(
            "Packaging: %s\t(%s)",
            descriptor.class_name,
            ", ".join(sorted(f.name for f in files)),
        )
        if upload is not None:
            upload(descriptor, files)
        return bundle

    def package_all(self, descriptors: Iterable[ComponentDescriptor], upload: Upload | None = None) -> PackagingReport:
        """Package a batch of components. A component that fails is logged and skipped."""
        report = PackagingReport()
        for descriptor in descriptors:
            try:
                report.bundles[descriptor.class_name] = self.package(descriptor, upload)
            except (OSError, LookupError, ValueError) as e:
                logger.error("Could not package %s: %s", descriptor.class_name, e)  # noqa: TRY400
                report.failures[descriptor.class_name] = e
        return report
