"""Tests for component bundling and archive writing."""

from __future__ import annotations

import json
import zipfile
from typing import TYPE_CHECKING

import pytest

from jar_deps.exceptions import UnknownTargetError
from jar_deps.models import AppletDescriptor, ComponentDescriptor, Target
from jar_deps.packaging import ComponentPackager, manifest_text
from jar_deps.resolver import DependencyResolver

from .fakes import A, B, C, LIB1, LIB2, FakeExtractor, Layout

if TYPE_CHECKING:
    from pathlib import Path

PLATFORM = "Meandre-Core.jar"
DECLARED = "extras/declared.jar"
ICON = "org/example/icon.png"


@pytest.fixture
def resolver(layout: Layout) -> DependencyResolver:
    layout.touch_archives(PLATFORM, DECLARED)
    (layout.units_root / ICON).write_bytes(b"\x89PNG")
    extractor = FakeExtractor(
        unit_deps={A: [B]},
        unit_archive_deps={B: [LIB1, PLATFORM], C: [PLATFORM]},
        archive_deps={LIB1: [LIB1, LIB2], LIB2: [LIB2], PLATFORM: [PLATFORM], DECLARED: [DECLARED]},
    )
    return DependencyResolver(extractor, layout.units_root, layout.archives_root)


class TestBundle:
    """Tests for `ComponentPackager.bundle`."""

    def test_units_and_archives(self, layout: Layout, resolver: DependencyResolver) -> None:
        bundle = ComponentPackager(resolver).bundle(ComponentDescriptor(class_name="org.example.A"))
        assert bundle.unit == layout.unit(A)
        assert bundle.units == {layout.unit(A), layout.unit(B)}
        assert bundle.archives == {layout.archive(LIB1), layout.archive(LIB2)}
        assert bundle.resources == set()
        assert bundle.archive_file is None

    def test_platform_archives_can_be_kept(self, layout: Layout, resolver: DependencyResolver) -> None:
        bundle = ComponentPackager(resolver, platform_prefixes=()).bundle(
            ComponentDescriptor(class_name="org.example.A")
        )
        assert layout.archive(PLATFORM) in bundle.archives

    def test_platform_prefix_is_case_insensitive(self, layout: Layout, resolver: DependencyResolver) -> None:
        packager = ComponentPackager(resolver, platform_prefixes=["LIB"])
        bundle = packager.bundle(ComponentDescriptor(class_name="org.example.A"))
        assert bundle.archives == {layout.archive(PLATFORM)}
        assert packager.is_platform_archive(layout.archive(LIB2))

    def test_declared_files(self, layout: Layout, resolver: DependencyResolver) -> None:
        descriptor = ComponentDescriptor(
            class_name="org.example.A",
            archives=["declared.jar"],
            resources=["icon.png"],
        )
        bundle = ComponentPackager(resolver).bundle(descriptor)
        assert layout.archive(DECLARED) in bundle.archives
        assert bundle.resources == {Target(layout.units_root / ICON)}

    def test_missing_declared_resource(self, resolver: DependencyResolver) -> None:
        descriptor = ComponentDescriptor(class_name="org.example.A", resources=["missing.txt"])
        with pytest.raises(FileNotFoundError, match="missing.txt"):
            ComponentPackager(resolver).bundle(descriptor)

    def test_declared_archive_without_archives_root(self, layout: Layout) -> None:
        resolver = DependencyResolver(FakeExtractor(unit_deps={A: [B]}), units_root=layout.units_root)
        descriptor = ComponentDescriptor(class_name="org.example.A", archives=["declared.jar"])
        with pytest.raises(FileNotFoundError, match="without an archives root"):
            ComponentPackager(resolver).bundle(descriptor)

    def test_unknown_component(self, resolver: DependencyResolver) -> None:
        with pytest.raises(UnknownTargetError):
            ComponentPackager(resolver).bundle(ComponentDescriptor(class_name="org.example.Missing"))

    def test_applets_keep_platform_archives(self, layout: Layout, resolver: DependencyResolver) -> None:
        descriptor = ComponentDescriptor(
            class_name="org.example.A",
            applets=[AppletDescriptor(class_name="org.example.util.C", resources=["icon.png"])],
        )
        bundle = ComponentPackager(resolver).bundle(descriptor)
        (applet,) = bundle.applets
        assert applet.unit == layout.unit(C)
        assert applet.units == {layout.unit(C)}
        assert applet.archives == {layout.archive(PLATFORM)}
        assert applet.resources == {Target(layout.units_root / ICON)}
        assert layout.archive(PLATFORM) not in bundle.archives

    def test_requires_units_root(self, layout: Layout) -> None:
        resolver = DependencyResolver(FakeExtractor(), archives_root=layout.archives_root)
        with pytest.raises(ValueError, match="units root"):
            ComponentPackager(resolver)


class TestWriteArchive:
    """Tests for the component archives written to the output directory."""

    def test_component_archive(self, layout: Layout, resolver: DependencyResolver, tmp_path: Path) -> None:
        packager = ComponentPackager(resolver, output_dir=tmp_path / "dist")
        descriptor = ComponentDescriptor(class_name="org.example.A", archives=["declared.jar"], resources=["icon.png"])
        bundle = packager.package(descriptor)
        assert bundle.archive_file == tmp_path / "dist" / "org.example.A.jar"
        with zipfile.ZipFile(bundle.archive_file) as zf:
            assert sorted(zf.namelist()) == [
                "META-INF/MANIFEST.MF",
                "org/example/A.class",
                "org/example/B.class",
                "org/example/icon.png",
            ]
            manifest = zf.read("META-INF/MANIFEST.MF").decode()
        assert manifest.startswith("Manifest-Version: 1.0\r\n")
        assert "isComponent: true\r\n" in manifest
        assert bundle.files == {
            bundle.archive_file,
            layout.archive(LIB1).path,
            layout.archive(LIB2).path,
            layout.archive(DECLARED).path,
        }

    def test_applet_archive(self, layout: Layout, resolver: DependencyResolver, tmp_path: Path) -> None:
        packager = ComponentPackager(resolver, output_dir=tmp_path / "dist")
        descriptor = ComponentDescriptor(
            class_name="org.example.A",
            applets=[AppletDescriptor(class_name="org.example.util.C")],
        )
        bundle = packager.package(descriptor)
        applet_file = tmp_path / "dist" / "org.example.util.C.jar"
        assert bundle.applets[0].archive_file == applet_file
        with zipfile.ZipFile(applet_file) as zf:
            assert "org/example/util/C.class" in zf.namelist()
            assert "isComponent" not in zf.read("META-INF/MANIFEST.MF").decode()
        assert {applet_file, layout.archive(PLATFORM).path} <= bundle.files

    def test_failed_write_removes_partial_archive(
        self, layout: Layout, resolver: DependencyResolver, tmp_path: Path
    ) -> None:
        packager = ComponentPackager(resolver, output_dir=tmp_path / "dist")
        bundle = packager.bundle(ComponentDescriptor(class_name="org.example.A"))
        (layout.units_root / B).unlink()
        with pytest.raises(FileNotFoundError):
            packager.write_archive(bundle)
        assert not (tmp_path / "dist" / "org.example.A.jar").exists()
        assert bundle.archive_file is None

    def test_manifest_text(self) -> None:
        text = manifest_text({"isComponent": "true", "Manifest-Version": "1.0"})
        assert text == "Manifest-Version: 1.0\r\nisComponent: true\r\n\r\n"


class TestPackage:
    """Tests for the upload boundary and batch packaging."""

    def test_loose_files_without_output_dir(self, layout: Layout, resolver: DependencyResolver) -> None:
        uploads: list[tuple[ComponentDescriptor, set[Path]]] = []
        descriptor = ComponentDescriptor(class_name="org.example.A", resources=["icon.png"])
        ComponentPackager(resolver).package(descriptor, upload=lambda d, files: uploads.append((d, files)))
        ((uploaded, files),) = uploads
        assert uploaded is descriptor
        assert files == {
            layout.unit(A).path,
            layout.unit(B).path,
            layout.units_root.resolve() / ICON,
            layout.archive(LIB1).path,
            layout.archive(LIB2).path,
        }
        assert all(path.exists() for path in files)

    def test_package_all_continues_after_failure(self, resolver: DependencyResolver, tmp_path: Path) -> None:
        uploaded: list[str] = []
        report = ComponentPackager(resolver, output_dir=tmp_path / "dist").package_all(
            [
                ComponentDescriptor(class_name="org.example.Missing"),
                ComponentDescriptor(class_name="org.example.A", resources=["nope.txt"]),
                ComponentDescriptor(class_name="org.example.util.C"),
            ],
            upload=lambda d, _: uploaded.append(d.class_name),
        )
        assert uploaded == ["org.example.util.C"]
        assert set(report.bundles) == {"org.example.util.C"}
        assert set(report.failures) == {"org.example.Missing", "org.example.A"}
        assert isinstance(report.failures["org.example.Missing"], UnknownTargetError)
        obj = json.loads(json.dumps(report.to_obj()))
        assert obj["components"]["org.example.util.C"]["component_archive"] == str(
            tmp_path / "dist" / "org.example.util.C.jar"
        )
        assert "nope.txt" in obj["failures"]["org.example.A"]
