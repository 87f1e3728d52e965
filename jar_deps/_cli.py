"""Command-line interface for jar-deps."""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING

from pydantic import ValidationError

from .cache import DependencyCache, scoped_cache_root
from .config import OutputFormat, Settings
from .exceptions import AnalysisCancelled, AnalysisFailure, RootNotFoundError
from .graphs import bundles_to_dot, graph_to_dot, graph_to_obj
from .jar_deps import version
from .logger import setup_logger
from .models import ComponentDescriptor, ComponentManifest, RelationKind
from .packaging import ComponentPackager
from .resolver import open_resolver

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .resolver import DependencyResolver

logger = logging.getLogger(__name__)


def load_components(settings: Settings) -> list[ComponentDescriptor]:
    """Collect the components named on the command line and in the components file."""
    descriptors = [ComponentDescriptor(class_name=name) for name in settings.component]
    if settings.components_file is not None:
        manifest = ComponentManifest.model_validate_json(settings.components_file.read_text(encoding="utf-8"))
        descriptors.extend(manifest.components)
    return descriptors


def relations_output(resolver: DependencyResolver, output_format: OutputFormat) -> str:
    if output_format == OutputFormat.dot:
        return graph_to_dot(resolver.to_graph(), comment="Dependencies").source
    return json.dumps(
        {kind.value: graph_to_obj(resolver.to_graph([kind])) for kind in RelationKind},
        indent=4,
    )


def main(argv: Sequence[str] | None = None) -> int:  # noqa: C901, PLR0911, PLR0912
    """Run jar-deps. `argv` replaces the process arguments when given."""
    settings = Settings(_cli_parse_args=list(argv) if argv is not None else True)
    setup_logger(settings.log_level)

    if settings.version:
        logger.info("jar-deps version %s", version())
        return 0

    logger.debug("Starting jar-deps with settings: %s", settings)

    if settings.units_root is None and settings.archives_root is None:
        logger.error("Nothing to analyze: pass --units_root and/or --archives_root")
        return 1

    if settings.output_file is not None and not settings.force and settings.output_file.exists():
        logger.error("%s already exists!\nRe-run with `--force` to overwrite the file.", settings.output_file)
        return 1

    if settings.clear_cache:
        DependencyCache(scoped_cache_root(settings.cache_root, settings.units_root, settings.archives_root)).clear()

    try:
        descriptors = load_components(settings)
    except (OSError, ValidationError) as e:
        logger.error("Could not load components from %s: %s", settings.components_file, e)  # noqa: TRY400
        return 1

    try:
        resolver = open_resolver(
            settings.units_root,
            settings.archives_root,
            None if settings.no_cache else settings.cache_root,
            staleness=settings.staleness,
            verbose=settings.verbose,
            max_workers=settings.max_workers,
        )
    except RootNotFoundError as e:
        logger.error("%s", e)  # noqa: TRY400
        return 1
    except AnalysisCancelled as e:
        logger.error("%s", e)  # noqa: TRY400
        return 1
    except AnalysisFailure as e:
        logger.exception("Dependency analysis failed: %s", e)  # noqa: TRY401
        return 1

    status = 0
    if descriptors:
        if resolver.units_root is None:
            logger.error("Packaging components requires --units_root")
            return 1
        packager = ComponentPackager(
            resolver,
            output_dir=settings.output_dir,
            platform_prefixes=settings.platform_prefix,
            verbose=settings.verbose,
        )
        report = packager.package_all(descriptors)
        if report.failures:
            logger.error("%d of %d components could not be packaged", len(report.failures), len(descriptors))
            status = 1
        if settings.output_format == OutputFormat.dot:
            output = bundles_to_dot(report.bundles.values(), resolver).source
        else:
            output = json.dumps(report.to_obj(), indent=4)
    else:
        output = relations_output(resolver, settings.output_format)

    if settings.output_file is None:
        sys.stdout.write(output)
        sys.stdout.write("\n")
    else:
        settings.output_file.write_text(output, encoding="utf-8")
        logger.info("Output saved to %s", settings.output_file.absolute())

    return status
