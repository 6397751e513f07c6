# teeny-orb Modules
# Version: 1.0 - Context Optimization Engine

# Context engine
from .context_engine import (
    AdaptiveContextManager,
    ContextCache,
    ContextCompressor,
    ContextOptimizer,
    ContextReuseManager,
    DependencyGraphBuilder,
    EngineConfig,
    FeedbackCollector,
    FeedbackStore,
    ProjectAnalyzer,
    RelevanceScorer,
    load_engine_config,
)

# Pydantic schemas
from .schemas import (
    AdaptedContext,
    CompressedContext,
    CompressionStrategy,
    ContextConstraints,
    ContextFeedback,
    DependencyGraph,
    ExplicitFeedback,
    FileInfo,
    ProjectContext,
    SelectedContext,
    SelectionStrategy,
    Task,
    TaskExecutionData,
    TaskProfile,
    TaskType,
)

__all__ = [
    # Engine
    "AdaptiveContextManager",
    "ContextCache",
    "ContextCompressor",
    "ContextOptimizer",
    "ContextReuseManager",
    "DependencyGraphBuilder",
    "EngineConfig",
    "FeedbackCollector",
    "FeedbackStore",
    "ProjectAnalyzer",
    "RelevanceScorer",
    "load_engine_config",
    # Schemas
    "AdaptedContext",
    "CompressedContext",
    "CompressionStrategy",
    "ContextConstraints",
    "ContextFeedback",
    "DependencyGraph",
    "ExplicitFeedback",
    "FileInfo",
    "ProjectContext",
    "SelectedContext",
    "SelectionStrategy",
    "Task",
    "TaskExecutionData",
    "TaskProfile",
    "TaskType",
]
