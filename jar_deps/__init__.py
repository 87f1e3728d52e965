"""The `jar-deps` APIs."""

__version__ = "0.1.0"

from .cache import CachingExtractor, DependencyCache, StalenessCheck, scoped_cache_root
from .exceptions import (
    AnalysisCancelled,
    AnalysisFailure,
    CacheReadFailure,
    CacheWriteFailure,
    DependencyError,
    RootNotFoundError,
    UnknownTargetError,
)
from .extractor import BytecodeExtractor, DependencyExtractor
from .jar_deps import APP_DIRS, version
from .models import ComponentBundle, ComponentDescriptor, RelationKind, Target
from .packaging import ComponentPackager, PackagingReport
from .resolver import DependencyRelation, DependencyResolver, open_resolver

__all__ = [
    "APP_DIRS",
    "AnalysisCancelled",
    "AnalysisFailure",
    "BytecodeExtractor",
    "CacheReadFailure",
    "CacheWriteFailure",
    "CachingExtractor",
    "ComponentBundle",
    "ComponentDescriptor",
    "ComponentPackager",
    "DependencyCache",
    "DependencyError",
    "DependencyExtractor",
    "DependencyRelation",
    "DependencyResolver",
    "PackagingReport",
    "RelationKind",
    "RootNotFoundError",
    "StalenessCheck",
    "Target",
    "UnknownTargetError",
    "open_resolver",
    "scoped_cache_root",
    "version",
]
