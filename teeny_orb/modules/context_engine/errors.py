"""Exception taxonomy for the context engine.

Configuration errors are fatal to the call that hit them. Partial-data
problems (a single unparsable or uncompressible file) never raise; they are
logged and skipped by the component that found them.
"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..schemas import DependencyGraph


class ContextEngineError(RuntimeError):
    """Base class for all context engine failures."""


class ConfigurationError(ContextEngineError):
    pass


class UnknownCompressionStrategyError(ConfigurationError):
    def __init__(self, strategy: object):
        super().__init__(f"unknown compression strategy: {strategy}")
        self.strategy = strategy


class CompressorNotConfiguredError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("no compressor configured")


class GraphBuildCancelled(ContextEngineError):
    """Dependency analysis was cancelled between file parses."""

    def __init__(self, partial_graph: "DependencyGraph", processed: int, total: int):
        super().__init__(f"dependency analysis cancelled after {processed}/{total} files")
        self.partial_graph = partial_graph
        self.processed = processed
        self.total = total


class FeedbackStorageError(ContextEngineError):
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path
