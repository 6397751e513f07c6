"""
Context Optimizer.

Orchestrates selection: cache lookup, eligibility filtering, strategy
scoring, greedy packing under the token budget, and the best-effort
tightening ladder used when a selection still exceeds its budget.

Strategy scores are strategy-local. Compactness in particular is not bounded
to [0, 1] and is never compared against scores of another strategy.
"""

from __future__ import annotations

import hashlib
import math
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from loguru import logger

from ..schemas import (
    CompressedContext,
    CompressionStrategy,
    ContextConstraints,
    ContextFile,
    DependencyGraph,
    FileInfo,
    ProjectContext,
    SelectedContext,
    SelectionStrategy,
    Task,
)
from .cache import ContextCache
from .compressor import ContextCompressor
from .config import EngineConfig, StrategyWeights
from .dependency_graph import DependencyGraphBuilder, centrality, relative_path
from .errors import CompressorNotConfiguredError
from .relevance_scorer import RelevanceScorer


class FileScorer(Protocol):
    def score_file(self, file: FileInfo, task: Task) -> float:
        ...


INCLUSION_REASONS: Dict[SelectionStrategy, str] = {
    SelectionStrategy.RELEVANCE: "relevance_score",
    SelectionStrategy.DEPENDENCY: "dependency_centrality",
    SelectionStrategy.FRESHNESS: "freshness_bias",
    SelectionStrategy.COMPACTNESS: "information_density",
    SelectionStrategy.BALANCED: "balanced_strategy",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def freshness_score(
    last_modified: datetime,
    now: datetime,
    weights: Optional[StrategyWeights] = None,
) -> float:
    """1.0 inside the fresh window, then exponential decay with a one-week half-life."""
    weights = weights or StrategyWeights()
    if last_modified.tzinfo is None:
        last_modified = last_modified.replace(tzinfo=timezone.utc)
    age_hours = (now - last_modified).total_seconds() / 3600.0
    if age_hours < weights.fresh_window_hours:
        return 1.0
    return math.exp(-math.log(2) * age_hours / weights.freshness_half_life_hours)


class ContextOptimizer:
    """
    Selects the files handed to the assistant for a task.

    Usage:
        optimizer = ContextOptimizer(cache=ContextCache(), compressor=ContextCompressor())
        selection = optimizer.select_optimal_context(project, task)
        budgeted = optimizer.optimize_for_token_budget(project, 4000, task)
    """

    def __init__(
        self,
        scorer: Optional[FileScorer] = None,
        cache: Optional[ContextCache] = None,
        compressor: Optional[ContextCompressor] = None,
        graph_builder: Optional[DependencyGraphBuilder] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.engine_config = config or EngineConfig()
        self.config = self.engine_config.optimizer
        self.weights = self.engine_config.strategy_weights
        self.clock = clock or _utc_now
        self.scorer = scorer or RelevanceScorer(self.engine_config.relevance, clock=self.clock)
        self.cache = cache
        self.compressor = compressor
        self.graph_builder = graph_builder
        # Latest graph per project root, tagged with the analysis timestamp
        self._graphs: Dict[str, Tuple[datetime, DependencyGraph]] = {}
        self._graphs_lock = threading.Lock()

    @property
    def caching_enabled(self) -> bool:
        return self.config.enable_caching and self.cache is not None

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def default_constraints(self) -> ContextConstraints:
        return ContextConstraints(
            max_tokens=self.config.default_token_budget,
            max_files=self.config.default_max_files,
            min_relevance_score=self.config.default_min_relevance,
            preferred_types=list(self.config.default_preferred_types),
            include_tests=True,
            include_docs=True,
            freshness_bias=self.config.default_freshness_bias,
            dependency_depth=self.config.default_dependency_depth,
            strategy=SelectionStrategy(self.config.default_strategy),
        )

    def select_optimal_context(
        self,
        project: ProjectContext,
        task: Task,
        constraints: Optional[ContextConstraints] = None,
    ) -> SelectedContext:
        started = time.perf_counter()
        constraints = constraints.model_copy(deep=True) if constraints else self.default_constraints()

        cache_key: Optional[str] = None
        if self.caching_enabled:
            cache_key = self.generate_cache_key(project, task, constraints)
            cached = self.get_cached_selection(cache_key)
            if cached is not None:
                logger.debug(f"Context cache hit for {task.type.value} task ({cached.total_files} files)")
                return cached

        ranked = self.rank_files(project, task, constraints)
        files = self.apply_token_budget(ranked, constraints)

        selection = SelectedContext(
            task=task,
            files=files,
            total_tokens=sum(f.file_info.token_count for f in files),
            total_files=len(files),
            selection_score=self.selection_score(files),
            strategy=constraints.strategy,
            constraints=constraints,
            metadata={"eligible_files": len(ranked), "project_files": len(project.files)},
            created_at=self.clock(),
            selection_time=time.perf_counter() - started,
        )
        logger.debug(
            f"Selected {selection.total_files}/{len(ranked)} ranked files, "
            f"{selection.total_tokens}/{constraints.max_tokens} tokens ({constraints.strategy.value})"
        )

        if cache_key is not None:
            self.cache_context_selection(cache_key, selection)
        return selection

    def optimize_for_token_budget(self, project: ProjectContext, budget: int, task: Task) -> SelectedContext:
        """Best-effort fit under ``budget``; may return an over-budget selection."""
        constraints = ContextConstraints(
            max_tokens=budget,
            max_files=self.config.budget_max_files,
            min_relevance_score=self.config.budget_min_relevance,
            include_tests=False,
            include_docs=False,
            freshness_bias=self.config.budget_freshness_bias,
            dependency_depth=self.config.budget_dependency_depth,
            strategy=SelectionStrategy(self.config.default_strategy),
        )
        ladder = ["initial"]
        selection = self.select_optimal_context(project, task, constraints)

        if selection.total_tokens > budget:
            constraints = constraints.model_copy(update={"min_relevance_score": self.config.ladder_min_relevance})
            ladder.append(f"min_relevance={self.config.ladder_min_relevance}")
            logger.info(f"Over budget ({selection.total_tokens}>{budget}), raising relevance threshold")
            selection = self.select_optimal_context(project, task, constraints)

            if selection.total_tokens > budget:
                constraints = constraints.model_copy(update={"dependency_depth": self.config.ladder_dependency_depth})
                ladder.append(f"dependency_depth={self.config.ladder_dependency_depth}")
                logger.info(f"Still over budget ({selection.total_tokens}>{budget}), reducing dependency depth")
                selection = self.select_optimal_context(project, task, constraints)

            if selection.total_tokens > budget and self.compressor is not None:
                ladder.append(f"compression={self.config.ladder_compression}")
                logger.info(f"Still over budget ({selection.total_tokens}>{budget}), compressing")
                compressed = self.apply_compression_strategy(selection, self.config.ladder_compression)
                selection = compressed.to_selected_context()

            if selection.total_tokens > budget:
                logger.warning(f"Returning over-budget selection: {selection.total_tokens} > {budget} tokens")

        metadata = dict(selection.metadata)
        metadata["budget_ladder"] = ladder
        metadata["token_budget"] = budget
        return selection.model_copy(update={"metadata": metadata})

    # -------------------------------------------------------------------------
    # Compression and cache passthroughs
    # -------------------------------------------------------------------------

    def apply_compression_strategy(self, selection: SelectedContext, strategy: object) -> CompressedContext:
        if self.compressor is None:
            raise CompressorNotConfiguredError()
        return self.compressor.compress(selection, strategy)

    def cache_context_selection(self, key: str, selection: SelectedContext) -> None:
        if not self.caching_enabled:
            return
        self.cache.set(key, selection, self.config.cache_expiry_minutes * 60)

    def get_cached_selection(self, key: str) -> Optional[SelectedContext]:
        if not self.caching_enabled:
            return None
        return self.cache.get(key)

    def generate_cache_key(self, project: ProjectContext, task: Task, constraints: ContextConstraints) -> str:
        rest = constraints.model_dump_json(exclude={"max_tokens"})
        digest = hashlib.md5(rest.encode("utf-8")).hexdigest()[:12]
        return f"ctx_{project.root_path}_{task.type.value}_{task.description}_{constraints.max_tokens}_{digest}"

    # -------------------------------------------------------------------------
    # Ranking
    # -------------------------------------------------------------------------

    @staticmethod
    def is_eligible(file: FileInfo, constraints: ContextConstraints) -> bool:
        if constraints.preferred_types and file.file_type not in constraints.preferred_types:
            return False
        if any(pattern and pattern in file.path for pattern in constraints.excluded_patterns):
            return False
        if not constraints.include_tests and file.file_type == "test":
            return False
        if not constraints.include_docs and file.file_type == "documentation":
            return False
        return True

    def rank_files(self, project: ProjectContext, task: Task, constraints: ContextConstraints) -> List[ContextFile]:
        """Eligible files scoring at least ``min_relevance_score``, best first."""
        strategy = constraints.strategy
        graph = self._graph_for(project) if strategy in (SelectionStrategy.DEPENDENCY, SelectionStrategy.BALANCED) else None
        now = self.clock()
        reason = INCLUSION_REASONS.get(strategy, "balanced_strategy")

        ranked: List[ContextFile] = []
        for file in project.files:
            if not self.is_eligible(file, constraints):
                continue
            relevance = self.scorer.score_file(file, task)
            score = self.strategy_score(strategy, file, relevance, constraints, graph, project.root_path, now)
            if score >= constraints.min_relevance_score:
                ranked.append(ContextFile(file_info=file, relevance_score=score, inclusion_reason=reason))

        ranked.sort(key=lambda cf: (-cf.relevance_score, cf.file_info.path))
        for rank, cf in enumerate(ranked, start=1):
            cf.priority = rank
        return ranked

    def strategy_score(
        self,
        strategy: SelectionStrategy,
        file: FileInfo,
        relevance: float,
        constraints: ContextConstraints,
        graph: Optional[DependencyGraph],
        root_path: str,
        now: datetime,
    ) -> float:
        w = self.weights
        if strategy == SelectionStrategy.RELEVANCE:
            return relevance

        if strategy == SelectionStrategy.DEPENDENCY:
            cent = centrality(graph, relative_path(file.path, root_path))
            return w.dependency_relevance * relevance + w.dependency_centrality * cent

        if strategy == SelectionStrategy.FRESHNESS:
            bias = constraints.freshness_bias
            return relevance * (1 - bias) + freshness_score(file.last_modified, now, w) * bias

        if strategy == SelectionStrategy.COMPACTNESS:
            if file.token_count <= 0:
                return 0.0
            return relevance / file.token_count * w.compactness_scale

        # balanced
        cent = centrality(graph, relative_path(file.path, root_path))
        fresh = freshness_score(file.last_modified, now, w)
        size_efficiency = 1.0
        if file.token_count > 0:
            size_efficiency = min(1.0, w.balanced_size_reference_tokens / file.token_count)
        return (
            w.balanced_relevance * relevance
            + w.balanced_centrality * cent
            + w.balanced_freshness * fresh * constraints.freshness_bias
            + w.balanced_size * size_efficiency
        )

    @staticmethod
    def apply_token_budget(ranked: List[ContextFile], constraints: ContextConstraints) -> List[ContextFile]:
        """Greedy packing; stops at the first file that does not fit."""
        selected: List[ContextFile] = []
        total = 0
        for cf in ranked:
            tokens = cf.file_info.token_count
            if total + tokens > constraints.max_tokens or len(selected) >= constraints.max_files:
                break
            selected.append(cf)
            total += tokens
        return selected

    @staticmethod
    def selection_score(files: List[ContextFile]) -> float:
        if not files:
            return 0.0
        return sum(f.relevance_score for f in files) / len(files)

    def _graph_for(self, project: ProjectContext) -> Optional[DependencyGraph]:
        if project.dependency_graph is not None:
            return project.dependency_graph
        if self.graph_builder is None:
            return None
        with self._graphs_lock:
            cached = self._graphs.get(project.root_path)
            if cached is not None and cached[0] == project.created_at:
                return cached[1]

        graph = self.graph_builder.analyze_dependencies(project.files)
        with self._graphs_lock:
            self._graphs[project.root_path] = (project.created_at, graph)
        return graph
