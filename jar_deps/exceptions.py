"""Errors raised while building and querying dependency relations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from .models import RelationKind, Target


class DependencyError(Exception):
    """Base class for all jar-deps errors."""


class RootNotFoundError(DependencyError, FileNotFoundError):
    """A configured units or archives root does not exist."""

    def __init__(self, root: Path, role: str) -> None:
        """Initialize the error with the missing root and what it was configured as."""
        self.root = root
        self.role = role
        super().__init__(f"{role} root does not exist: {root}")


class UnknownTargetError(DependencyError, LookupError):
    """A query named a target that was never declared in the relation."""

    def __init__(self, target: Target, relation: RelationKind) -> None:
        """Initialize the error for an undeclared target."""
        self.target = target
        self.relation = relation
        super().__init__(
            f"Requesting {relation.value} dependencies for an unknown target; "
            f"this resolver has no dependencies recorded for {target}"
        )

    def __str__(self) -> str:
        """Return the message without the quoting `KeyError`-style lookups add."""
        return str(self.args[0])


class AnalysisFailure(DependencyError):
    """The dependency extractor could not analyze a specific target."""

    def __init__(self, target: Target, relation: RelationKind, reason: str = "") -> None:
        """Initialize the error for the target that failed to analyze."""
        self.target = target
        self.relation = relation
        msg = f"Could not detect {relation.value} dependencies for {target}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class AnalysisCancelled(DependencyError):
    """Relation population was cancelled between two targets."""


class CacheReadFailure(DependencyError):
    """A cache entry is missing, unparsable or stale. Always treated as a cache miss."""


class CacheWriteFailure(DependencyError):
    """A cache entry could not be written. Logged, never propagated."""

    def __init__(self, cache_file: Path, error: OSError) -> None:
        """Initialize the failure for the entry that could not be written."""
        self.cache_file = cache_file
        self.error = error
        super().__init__(f"Unable to write dependency cache file {cache_file}: {error}")
