"""
teeny-orb - Context Engine Data Structures (Pydantic Schemas)
Version: 1.0

Defines the data models shared by the context optimization engine:
- FileInfo / ProjectContext: the analyzed project snapshot
- DependencyGraph: import/export relationships between project files
- Task / ContextConstraints: what the caller wants and under which limits
- SelectedContext / CompressedContext: what the engine hands back
- CacheEntry / CacheStatistics: cached selections and cache health
- TaskProfile / ContextFeedback: the adaptive learning state
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


FEEDBACK_SCHEMA_VERSION = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class TaskType(str, Enum):
    """Kind of coding task a context is selected for."""
    GENERAL = "general"
    FEATURE = "feature"
    DEBUG = "debug"
    REFACTOR = "refactor"
    TEST = "test"
    DOCUMENTATION = "documentation"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskScope(str, Enum):
    FILE = "file"          # Single file modification
    MODULE = "module"      # Module/package level
    PROJECT = "project"    # Project-wide changes
    SYSTEM = "system"      # Cross-project dependencies


class SelectionStrategy(str, Enum):
    """Named ranking formula used to order eligible files."""
    RELEVANCE = "relevance"
    DEPENDENCY = "dependency"
    FRESHNESS = "freshness"
    COMPACTNESS = "compactness"
    BALANCED = "balanced"


class CompressionStrategy(str, Enum):
    NONE = "none"
    SUMMARY = "summary"      # Declarations and signatures only
    SNIPPET = "snippet"      # Imports plus function heads/tails
    MINIFY = "minify"        # Strip comments and whitespace
    SEMANTIC = "semantic"    # Grouped structural digest


class CompletionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


# =============================================================================
# PROJECT SNAPSHOT
# =============================================================================


class FileInfo(BaseModel):
    """A single analyzed project file."""
    path: str
    language: str = "unknown"
    file_type: str = "unknown"  # source/test/configuration/documentation/script/unknown
    token_count: int = Field(default=0, ge=0)
    last_modified: datetime = Field(default_factory=utc_now)
    size: int = Field(default=0, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DependencyNode(BaseModel):
    path: str
    imports: List[str] = Field(default_factory=list)
    exports: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    dependents: List[str] = Field(default_factory=list)


class DependencyEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_path: str = Field(alias="from")
    to: str
    edge_type: str = "import"
    strength: float = 1.0


class DependencyGraph(BaseModel):
    """Project-relative path -> node, plus the flat edge list."""
    nodes: Dict[str, DependencyNode] = Field(default_factory=dict)
    edges: List[DependencyEdge] = Field(default_factory=list)

    def add_edge(self, src: str, dst: str, edge_type: str = "import", strength: float = 1.0) -> None:
        src_node = self.nodes.get(src)
        dst_node = self.nodes.get(dst)
        if src_node is not None:
            src_node.dependencies.append(dst)
        if dst_node is not None:
            dst_node.dependents.append(src)
        self.edges.append(DependencyEdge(from_path=src, to=dst, edge_type=edge_type, strength=strength))


class ProjectContext(BaseModel):
    """Immutable snapshot produced by the project analyzer."""
    root_path: str
    total_files: int = 0
    total_tokens: int = 0
    languages: Dict[str, int] = Field(default_factory=dict)
    files: List[FileInfo] = Field(default_factory=list)
    dependency_graph: Optional[DependencyGraph] = None
    analysis: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_files(cls, root_path: str, files: List[FileInfo], **kwargs: Any) -> "ProjectContext":
        languages: Dict[str, int] = {}
        for f in files:
            languages[f.language] = languages.get(f.language, 0) + 1
        return cls(
            root_path=root_path,
            total_files=len(files),
            total_tokens=sum(f.token_count for f in files),
            languages=languages,
            files=list(files),
            **kwargs,
        )

    def file_by_path(self, path: str) -> Optional[FileInfo]:
        for f in self.files:
            if f.path == path:
                return f
        return None


# =============================================================================
# REQUESTS
# =============================================================================


class Task(BaseModel):
    type: TaskType = TaskType.GENERAL
    description: str = ""
    priority: Priority = Priority.MEDIUM
    scope: TaskScope = TaskScope.MODULE
    keywords: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)  # Explicitly mentioned files
    created_at: datetime = Field(default_factory=utc_now)


class ContextConstraints(BaseModel):
    max_tokens: int = Field(default=8000, ge=0)
    max_files: int = Field(default=50, ge=0)
    min_relevance_score: float = 0.2
    preferred_types: List[str] = Field(default_factory=list)
    excluded_patterns: List[str] = Field(default_factory=list)
    include_tests: bool = True
    include_docs: bool = True
    freshness_bias: float = Field(default=0.2, ge=0.0, le=1.0)
    dependency_depth: int = Field(default=3, ge=0)
    strategy: SelectionStrategy = SelectionStrategy.BALANCED


# =============================================================================
# SELECTIONS
# =============================================================================


class ContextFile(BaseModel):
    file_info: FileInfo
    relevance_score: float = 0.0
    inclusion_reason: str = ""
    priority: int = 1
    content: Optional[str] = None


class SelectedContext(BaseModel):
    """The unit that is cached, compressed and fed back into learning."""
    task: Task
    files: List[ContextFile] = Field(default_factory=list)
    total_tokens: int = 0
    total_files: int = 0
    selection_score: float = 0.0
    strategy: SelectionStrategy = SelectionStrategy.BALANCED
    constraints: ContextConstraints = Field(default_factory=ContextConstraints)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    selection_time: float = 0.0  # seconds

    def reduction_ratio(self, project_total_tokens: int) -> float:
        if project_total_tokens <= 0:
            return 0.0
        return 1.0 - self.total_tokens / project_total_tokens

    @property
    def paths(self) -> List[str]:
        return [f.file_info.path for f in self.files]


class CompressedFile(BaseModel):
    original_path: str
    compressed_content: str
    original_tokens: int = 0
    compressed_tokens: int = 0
    compression_ratio: float = 1.0
    method: str = CompressionStrategy.NONE.value
    techniques: List[str] = Field(default_factory=list)
    quality_impact: float = 1.0


class CompressedContext(BaseModel):
    original: SelectedContext
    compressed_files: List[CompressedFile] = Field(default_factory=list)
    compression_ratio: float = 1.0
    token_reduction: int = 0
    strategy: CompressionStrategy = CompressionStrategy.NONE
    quality_score: float = Field(default=1.0, ge=0.0, le=1.0)
    compression_time: float = 0.0  # seconds

    @property
    def total_compressed_tokens(self) -> int:
        return sum(f.compressed_tokens for f in self.compressed_files)

    def to_selected_context(self) -> SelectedContext:
        """Rebuild a selection whose files carry compressed content and token counts."""
        by_path = {f.original_path: f for f in self.compressed_files}
        files: List[ContextFile] = []
        for cf in self.original.files:
            packed = by_path.get(cf.file_info.path)
            if packed is None:
                files.append(cf.model_copy(deep=True))
                continue
            info = cf.file_info.model_copy(update={"token_count": packed.compressed_tokens})
            files.append(cf.model_copy(update={"file_info": info, "content": packed.compressed_content}))

        metadata = dict(self.original.metadata)
        metadata.update({
            "compression_strategy": self.strategy.value,
            "compression_ratio": self.compression_ratio,
            "compression_quality": self.quality_score,
            "original_tokens": self.original.total_tokens,
        })
        return self.original.model_copy(update={
            "files": files,
            "total_tokens": sum(f.file_info.token_count for f in files),
            "total_files": len(files),
            "metadata": metadata,
        })


# =============================================================================
# CACHE
# =============================================================================


class CacheEntry(BaseModel):
    key: str
    selected_context: SelectedContext
    project_fingerprint: str
    created_at: datetime
    last_accessed: datetime
    access_count: int = 0
    ttl_seconds: float

    def is_expired(self, now: datetime) -> bool:
        return (now - self.created_at).total_seconds() > self.ttl_seconds


class CacheStatistics(BaseModel):
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    total_requests: int = 0
    hit_ratio: float = 0.0
    avg_lookup_time_ms: float = 0.0
    entry_count: int = 0
    last_cleanup: Optional[datetime] = None


# =============================================================================
# LEARNING
# =============================================================================


class TaskProfile(BaseModel):
    """Per-task-type learned state, mutated only through EMA updates."""
    task_type: TaskType
    optimal_token_budget: int = 0
    preferred_strategy: Optional[SelectionStrategy] = None
    important_file_types: List[str] = Field(default_factory=list)
    typical_file_count: int = 0
    avg_quality_score: float = 0.0
    success_rate: float = 0.0
    sample_count: int = 0
    last_updated: datetime = Field(default_factory=utc_now)


class ContextFeedback(BaseModel):
    """One execution outcome. Append-only."""
    schema_version: int = FEEDBACK_SCHEMA_VERSION
    task_id: str = ""
    task: Optional[Task] = None
    selected_context: Optional[SelectedContext] = None
    task_success: bool = False
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    completion_time: float = 0.0  # seconds
    tokens_used: int = 0
    missing_files: List[str] = Field(default_factory=list)
    unnecessary_files: List[str] = Field(default_factory=list)
    user_rating: Optional[float] = None
    timestamp: datetime = Field(default_factory=utc_now)


class TaskExecutionData(BaseModel):
    task_id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds
    tokens_consumed: int = 0
    files_accessed: List[str] = Field(default_factory=list)
    files_modified: List[str] = Field(default_factory=list)
    errors_encountered: List[str] = Field(default_factory=list)
    completion_status: str = CompletionStatus.SUCCESS.value
    iteration_count: int = 0
    user_interventions: int = 0


class ExplicitFeedback(BaseModel):
    feedback_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str = ""
    user_id: str = ""
    context_quality: int = Field(..., ge=1, le=5)
    relevance_rating: Optional[int] = Field(default=None, ge=1, le=5)
    completeness_rating: Optional[int] = Field(default=None, ge=1, le=5)
    efficiency_rating: Optional[int] = Field(default=None, ge=1, le=5)
    missing_files: List[str] = Field(default_factory=list)
    irrelevant_files: List[str] = Field(default_factory=list)
    suggested_files: List[str] = Field(default_factory=list)
    comments: str = ""
    preferred_strategy: Optional[SelectionStrategy] = None
    timestamp: datetime = Field(default_factory=utc_now)
    task: Optional[Task] = None
    selected_context: Optional[SelectedContext] = None


class AdaptedContext(BaseModel):
    selection: SelectedContext
    adaptation_reasons: List[str] = Field(default_factory=list)
    budget_adjustment: int = 0
    strategy_override: Optional[SelectionStrategy] = None
    quality_prediction: float = 0.75
    adaptive_metadata: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# FEEDBACK ANALYSIS
# =============================================================================


class FileMention(BaseModel):
    file_path: str
    mention_count: int = 0


class TaskTypeInsight(BaseModel):
    task_type: str
    sample_count: int = 0
    avg_quality: float = 0.0
    avg_duration: float = 0.0
    success_rate: float = 0.0
    avg_tokens_used: int = 0
    common_missing_files: List[str] = Field(default_factory=list)


class QualityDataPoint(BaseModel):
    timestamp: datetime
    quality: float
    strategy: Optional[str] = None
    task_type: Optional[str] = None


class FeedbackAnalysis(BaseModel):
    time_window_seconds: float
    total_samples: int = 0
    avg_context_quality: float = 0.0
    avg_task_duration: float = 0.0
    success_rate: float = 0.0
    top_missing_files: List[FileMention] = Field(default_factory=list)
    top_irrelevant_files: List[FileMention] = Field(default_factory=list)
    strategy_effectiveness: Dict[str, float] = Field(default_factory=dict)
    task_type_insights: Dict[str, TaskTypeInsight] = Field(default_factory=dict)
    quality_trends: List[QualityDataPoint] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class FeedbackSummary(BaseModel):
    total_feedback_count: int = 0
    implicit_feedback_count: int = 0
    explicit_feedback_count: int = 0
    avg_user_satisfaction: float = 0.0
    most_common_issues: List[str] = Field(default_factory=list)
    best_performing_strategy: Optional[str] = None
    worst_performing_strategy: Optional[str] = None
    recent_trends: str = "Declining"
    last_updated: datetime = Field(default_factory=utc_now)

    @field_validator("recent_trends")
    @classmethod
    def _known_trend(cls, value: str) -> str:
        if value not in ("Improving", "Stable", "Declining"):
            raise ValueError(f"unknown trend label: {value}")
        return value
