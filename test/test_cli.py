"""Tests for the `jar-deps` command line."""

from __future__ import annotations

import json
import logging
import zipfile
from typing import TYPE_CHECKING

import pytest

from jar_deps._cli import main
from jar_deps.cache import DEPENDENCY_CACHE, scoped_cache_root

from .classfiles import write_jar, write_unit

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """`main` reconfigures the root logger; undo that after every test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    write_unit(tmp_path / "classes", "org/example/A", ["org/example/B", "com/acme/Widget"])
    write_unit(tmp_path / "classes", "org/example/B")
    write_unit(tmp_path / "classes", "org/example/Other", ["com/acme/Server"])
    (tmp_path / "classes" / "org" / "example" / "a.properties").write_text("x=1\n")
    write_jar(tmp_path / "lib" / "widgets.jar", {"com/acme/Widget": []})
    write_jar(tmp_path / "lib" / "meandre-server.jar", {"com/acme/Server": []})
    return tmp_path


def project_cache(project: Path) -> Path:
    return scoped_cache_root(project / "cache", project / "classes", project / "lib") / DEPENDENCY_CACHE


def roots(project: Path) -> list[str]:
    return [
        "--units_root",
        str(project / "classes"),
        "--archives_root",
        str(project / "lib"),
        "--cache_root",
        str(project / "cache"),
    ]


class TestCli:
    """Tests for `main`."""

    def test_version(self) -> None:
        assert main(["--version"]) == 0

    def test_nothing_to_analyze(self) -> None:
        assert main(["--no_cache"]) == 1

    def test_missing_root(self, tmp_path: Path) -> None:
        assert main(["--units_root", str(tmp_path / "missing"), "--no_cache"]) == 1

    def test_relations_json(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(roots(project)) == 0
        obj = json.loads(capsys.readouterr().out)
        assert set(obj) == {"unit-to-unit", "unit-to-archive", "archive-to-archive"}
        a = str((project / "classes" / "org" / "example" / "A.class").resolve())
        b = str((project / "classes" / "org" / "example" / "B.class").resolve())
        widgets = str((project / "lib" / "widgets.jar").resolve())
        assert obj["unit-to-unit"][a] == [b]
        assert obj["unit-to-archive"][a] == [widgets]
        assert (project_cache(project) / "unit-to-unit" / "org.example.A.dep").exists()

    def test_no_cache(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([*roots(project), "--no_cache"]) == 0
        assert json.loads(capsys.readouterr().out)
        assert not (project / "cache").exists()

    def test_clear_cache(self, project: Path) -> None:
        stale = project_cache(project) / "unit-to-unit" / "org.example.Gone.dep"
        stale.parent.mkdir(parents=True)
        stale.write_text("")
        other = project / "cache" / "elsewhere" / DEPENDENCY_CACHE / "unit-to-unit" / "org.example.A.dep"
        other.parent.mkdir(parents=True)
        other.write_text("")
        assert main([*roots(project), "--clear_cache", "--output_file", str(project / "out.json")]) == 0
        assert not stale.exists()
        assert other.exists()

    def test_package_component(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        dist = project / "dist"
        argv = [
            *roots(project),
            "--component",
            "org.example.A",
            "--component",
            "org.example.Other",
            "--output_dir",
            str(dist),
            "--staleness",
            "hash",
            "--max_workers",
            "2",
        ]
        assert main(argv) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["failures"] == {}
        component = report["components"]["org.example.A"]
        assert component["component_archive"] == str(dist / "org.example.A.jar")
        assert component["archives"] == [str((project / "lib" / "widgets.jar").resolve())]
        # meandre-* archives are provided by the server
        assert report["components"]["org.example.Other"]["archives"] == []
        with zipfile.ZipFile(dist / "org.example.A.jar") as zf:
            assert "org/example/B.class" in zf.namelist()

    def test_components_file(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        manifest = project / "components.json"
        manifest.write_text(
            json.dumps(
                {
                    "components": [
                        {
                            "class_name": "org.example.A",
                            "resources": ["a.properties"],
                            "applets": [{"class_name": "org.example.Other"}],
                        }
                    ]
                }
            )
        )
        assert main([*roots(project), "--components_file", str(manifest)]) == 0
        component = json.loads(capsys.readouterr().out)["components"]["org.example.A"]
        assert component["resources"] == [str((project / "classes" / "org" / "example" / "a.properties").resolve())]
        applet = component["applets"]["org.example.Other"]
        assert applet["archives"] == [str((project / "lib" / "meandre-server.jar").resolve())]

    def test_bad_components_file(self, project: Path) -> None:
        manifest = project / "components.json"
        manifest.write_text('{"components": [{"archives": []}]}')
        assert main([*roots(project), "--components_file", str(manifest)]) == 1

    def test_failed_component(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([*roots(project), "--component", "org.example.Missing"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert "org.example.Missing" in report["failures"]

    def test_dot_output(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([*roots(project), "--component", "org.example.A", "--output_format", "dot"]) == 0
        source = capsys.readouterr().out
        assert source.startswith("// Dependencies for org.example.A")
        assert 'label="widgets.jar"' in source

    def test_output_file_requires_force(self, project: Path) -> None:
        output = project / "out.json"
        output.write_text("keep me")
        assert main([*roots(project), "--output_file", str(output)]) == 1
        assert output.read_text() == "keep me"
        assert main([*roots(project), "--output_file", str(output), "--force"]) == 0
        assert "unit-to-unit" in json.loads(output.read_text())
