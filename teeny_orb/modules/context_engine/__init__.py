"""
Context Optimization Engine.

Selects, ranks, compresses and caches the project files handed to an AI
coding assistant under a token budget, and tunes itself from feedback.

Components:
1. DependencyGraphBuilder - import graph + file centrality
2. RelevanceScorer - heuristic per-file relevance for a task
3. ContextOptimizer - strategy scoring and greedy budget packing
4. ContextCompressor - summary/snippet/minify/semantic reductions
5. ContextCache - TTL + LRU cache of selections
6. AdaptiveContextManager - per-task-type learning
7. FeedbackCollector - implicit/explicit feedback and trend analysis

Usage:
    from teeny_orb.modules.context_engine import ContextOptimizer, ProjectAnalyzer

    project = ProjectAnalyzer().analyze_project("/path/to/project")
    selection = ContextOptimizer().select_optimal_context(project, task)
"""

from .adaptive import AdaptiveContextManager
from .cache import ContextCache, ContextReuseManager, fingerprint_files, fingerprint_selection
from .compressor import ContextCompressor
from .config import (
    EngineConfig,
    load_config,
    load_engine_config,
    setup_logging,
)
from .dependency_graph import DependencyGraphBuilder, centrality
from .errors import (
    CompressorNotConfiguredError,
    ConfigurationError,
    ContextEngineError,
    FeedbackStorageError,
    GraphBuildCancelled,
    UnknownCompressionStrategyError,
)
from .feedback import FeedbackCollector, FeedbackStore
from .optimizer import ContextOptimizer, freshness_score
from .project_analyzer import ProjectAnalyzer, detect_file_type, detect_language
from .relevance_scorer import RelevanceScorer, ScoredFile, ScoringFactors
from .token_counter import HeuristicTokenCounter, TokenCounter

__all__ = [
    # Graph
    "DependencyGraphBuilder",
    "centrality",
    # Scoring
    "RelevanceScorer",
    "ScoredFile",
    "ScoringFactors",
    # Optimizer
    "ContextOptimizer",
    "freshness_score",
    # Compression
    "ContextCompressor",
    # Cache
    "ContextCache",
    "ContextReuseManager",
    "fingerprint_files",
    "fingerprint_selection",
    # Learning
    "AdaptiveContextManager",
    "FeedbackCollector",
    "FeedbackStore",
    # Inventory
    "ProjectAnalyzer",
    "detect_file_type",
    "detect_language",
    "HeuristicTokenCounter",
    "TokenCounter",
    # Config
    "EngineConfig",
    "load_config",
    "load_engine_config",
    "setup_logging",
    # Errors
    "ContextEngineError",
    "ConfigurationError",
    "UnknownCompressionStrategyError",
    "CompressorNotConfiguredError",
    "GraphBuildCancelled",
    "FeedbackStorageError",
]
