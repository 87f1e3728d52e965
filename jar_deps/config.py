"""Configuration settings for jar-deps."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    CliImplicitFlag,
    SettingsConfigDict,
)

from .cache import StalenessCheck
from .jar_deps import APP_DIRS
from .packaging import DEFAULT_PLATFORM_PREFIXES

DEFAULT_CACHE_ROOT = Path(APP_DIRS.user_cache_dir)


class OutputFormat(str, Enum):
    """Output formats for jar-deps."""

    json = "json"
    dot = "dot"


class Settings(BaseSettings):
    """Settings for jar-deps."""

    units_root: Path | None = Field(
        default=None,
        description="""Top of the package tree of compiled .class files. Components
        and their declared resources are looked up here.""",
    )
    archives_root: Path | None = Field(
        default=None,
        description="""Directory searched recursively for library .jar files.""",
    )
    cache_root: Path = Field(
        default=DEFAULT_CACHE_ROOT,
        description="""Directory holding the `dependencies-cache` of previously
        extracted direct dependencies.""",
    )
    no_cache: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Extract every dependency again without reading or writing the cache.""",
    )
    clear_cache: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Delete the dependency cache of `--units_root` and `--archives_root`
        under `--cache_root` before analyzing.""",
    )
    staleness: StalenessCheck = Field(
        default=StalenessCheck.mtime,
        description="""How cache entries are checked against their source file:
        `mtime` compares modification times, `hash` compares SHA-256 digests.""",
    )
    component: list[str] = Field(
        default_factory=list,
        description="""Fully qualified class name of a component to package. May be
        given more than once.""",
    )
    components_file: Path | None = Field(
        default=None,
        description="""JSON manifest listing components with their declared archives,
        resources and applets.""",
    )
    platform_prefix: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PLATFORM_PREFIXES),
        description="""Base name prefix of archives provided by the execution server,
        which are never bundled with a component.""",
    )
    output_dir: Path | None = Field(
        default=None,
        description="""Directory to write component archives to. If not provided, only
        the report is produced.""",
    )
    output_file: Path | None = Field(
        default=None,
        description="""Output file path. If not provided, the output will be
        written to stdout.""",
    )
    output_format: OutputFormat = Field(
        default=OutputFormat.json,
        description="""Output format.""",
    )
    force: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Force the overwrite of the output file if it already
        exists.""",
    )
    log_level: str = Field(default="info", description="Log level")
    verbose: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Log every analyzed file and show progress bars.""",
    )
    max_workers: int = Field(
        default=1,
        description="""Number of threads analyzing files concurrently. -1 uses
        the number of logical CPUs.""",
    )
    version: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Show the version of jar-deps and exit.""",
    )

    model_config = SettingsConfigDict(
        cli_parse_args=True,
        cli_prog_name="jar-deps",
        env_prefix="JAR_DEPS_",
        nested_model_default_partial_update=True,
    )
