"""
Adaptive Context Manager.

Learns per-task-type profiles from feedback with exponential moving averages
and uses them to adjust budgets, strategies and constraints before handing
the request to the optimizer.
"""

from __future__ import annotations

import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from loguru import logger

from ..schemas import (
    AdaptedContext,
    ContextConstraints,
    ContextFeedback,
    ProjectContext,
    SelectedContext,
    SelectionStrategy,
    Task,
    TaskProfile,
    TaskType,
)
from .config import AdaptiveConfig
from .optimizer import ContextOptimizer


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class AdaptiveContextManager:
    """
    Wraps a ContextOptimizer with learned, per-task-type tuning.

    Usage:
        manager = AdaptiveContextManager(optimizer)
        adapted = manager.adapt_optimal_context(project, task, 8000)
        manager.learn_from_feedback(feedback)
    """

    def __init__(
        self,
        optimizer: ContextOptimizer,
        config: Optional[AdaptiveConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.optimizer = optimizer
        self.config = config or AdaptiveConfig()
        self.clock = clock or _utc_now

        self._lock = threading.Lock()
        self._profiles: Dict[TaskType, TaskProfile] = {}
        self._file_type_counts: Dict[TaskType, Counter] = {}
        self._feedback_log: List[ContextFeedback] = []

    # -------------------------------------------------------------------------
    # Adaptation
    # -------------------------------------------------------------------------

    def adapt_optimal_context(self, project: ProjectContext, task: Task, budget: int) -> AdaptedContext:
        profile = self._profile_copy(task.type)
        reasons: List[str] = []

        adjustment = 0
        if self.config.enable_budget_adaptation and self._is_mature(profile) and profile.optimal_token_budget > 0:
            adjustment = int((profile.optimal_token_budget - budget) * self.config.adaptation_aggressiveness)
            limit = self.config.max_budget_adjustment
            adjustment = int(_clamp(adjustment, -limit, limit))
            if adjustment:
                reasons.append(
                    f"Budget adjusted by {adjustment:+d} tokens toward learned optimum "
                    f"{profile.optimal_token_budget} ({profile.sample_count} samples)"
                )

        constraints = self.get_adaptive_constraints(task, budget + adjustment, project)

        override: Optional[SelectionStrategy] = None
        if self._strategy_trusted(profile):
            override = profile.preferred_strategy
            constraints.strategy = override
            reasons.append(
                f"Strategy set to {override.value} (success rate {profile.success_rate:.2f})"
            )

        if self._is_mature(profile):
            self._apply_task_specific(constraints, profile, reasons)

        selection = self.optimizer.select_optimal_context(project, task, constraints)
        prediction = self.predict_quality(selection, profile)

        metadata: Dict[str, object] = {}
        if profile is not None:
            metadata = {
                "profile_samples": profile.sample_count,
                "profile_success": profile.success_rate,
                "optimal_budget": profile.optimal_token_budget,
                "preferred_strategy": profile.preferred_strategy.value if profile.preferred_strategy else None,
            }

        logger.debug(
            f"Adapted {task.type.value} context: budget {budget}{adjustment:+d}, "
            f"strategy {constraints.strategy.value}, predicted quality {prediction:.2f}"
        )
        return AdaptedContext(
            selection=selection,
            adaptation_reasons=reasons,
            budget_adjustment=adjustment,
            strategy_override=override,
            quality_prediction=prediction,
            adaptive_metadata=metadata,
        )

    def get_adaptive_constraints(
        self,
        task: Task,
        budget: int,
        project: Optional[ProjectContext] = None,
    ) -> ContextConstraints:
        """Task-type defaults, refined by the learned profile once it is mature."""
        constraints = ContextConstraints(
            max_tokens=budget,
            max_files=50,
            min_relevance_score=0.1,
            preferred_types=["source"],
            include_tests=False,
            include_docs=False,
            freshness_bias=0.2,
            dependency_depth=2,
            strategy=SelectionStrategy.BALANCED,
        )

        if task.type == TaskType.FEATURE:
            constraints.preferred_types = ["source", "configuration"]
            constraints.freshness_bias = 0.3
            constraints.strategy = SelectionStrategy.RELEVANCE
        elif task.type == TaskType.DEBUG:
            constraints.include_tests = True
            constraints.freshness_bias = 0.4
            constraints.dependency_depth = 3
            constraints.strategy = SelectionStrategy.DEPENDENCY
        elif task.type == TaskType.REFACTOR:
            constraints.include_tests = True
            constraints.freshness_bias = 0.1
            constraints.dependency_depth = 4
            constraints.strategy = SelectionStrategy.DEPENDENCY
        elif task.type == TaskType.TEST:
            constraints.preferred_types = ["source", "test"]
            constraints.include_tests = True
            constraints.strategy = SelectionStrategy.RELEVANCE
        elif task.type == TaskType.DOCUMENTATION:
            constraints.preferred_types = ["source", "documentation"]
            constraints.include_docs = True
            constraints.strategy = SelectionStrategy.RELEVANCE

        profile = self._profile_copy(task.type)
        if self._is_mature(profile):
            if profile.important_file_types:
                constraints.preferred_types = list(profile.important_file_types)
            if self._strategy_trusted(profile):
                constraints.strategy = profile.preferred_strategy

        return constraints

    def _apply_task_specific(
        self,
        constraints: ContextConstraints,
        profile: TaskProfile,
        reasons: List[str],
    ) -> None:
        cfg = self.config
        if profile.typical_file_count > 0:
            max_files = int(profile.typical_file_count * cfg.file_count_buffer)
            constraints.max_files = int(_clamp(max_files, cfg.min_max_files, cfg.max_max_files))
            reasons.append(f"Max files set to {constraints.max_files} from typical count {profile.typical_file_count}")

        if profile.avg_quality_score < cfg.quality_threshold:
            constraints.min_relevance_score *= cfg.low_quality_relevance_factor
            reasons.append("Relevance threshold lowered after low-quality outcomes")
        elif profile.avg_quality_score > cfg.high_quality_mark:
            constraints.min_relevance_score *= cfg.high_quality_relevance_factor
            reasons.append("Relevance threshold raised after high-quality outcomes")

    def predict_quality(self, selection: SelectedContext, profile: Optional[TaskProfile]) -> float:
        if not self._is_mature(profile):
            return self.config.default_prediction

        prediction = profile.avg_quality_score
        constraints = selection.constraints

        if constraints.max_tokens > 0:
            usage = selection.total_tokens / constraints.max_tokens
            if 0.7 <= usage <= 0.9:
                prediction += 0.05
            elif usage < 0.3 or usage > 0.95:
                prediction -= 0.1

        if constraints.max_files > 0:
            fill = selection.total_files / constraints.max_files
            if 0.3 <= fill <= 0.8:
                prediction += 0.05

        if selection.selection_score > 0.8:
            prediction += 0.1
        elif selection.selection_score < 0.4:
            prediction -= 0.15

        return _clamp(prediction, 0.0, 1.0)

    def predict_optimal_budget(self, task: Task, project: ProjectContext) -> int:
        cfg = self.config
        if project.total_tokens >= cfg.large_project_tokens:
            base = cfg.large_project_budget
        elif project.total_tokens < cfg.small_project_tokens:
            base = cfg.small_project_budget
        else:
            base = cfg.medium_project_budget

        profile = self._profile_copy(task.type)
        if not self._is_mature(profile) or profile.optimal_token_budget <= 0:
            return base

        weight = min(1.0, profile.sample_count / cfg.full_confidence_samples)
        return int(base * (1 - weight) + profile.optimal_token_budget * weight)

    # -------------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------------

    def learn_from_feedback(self, feedback: ContextFeedback) -> None:
        with self._lock:
            self._feedback_log.append(feedback)
            cutoff = self.clock() - timedelta(days=self.config.feedback_retention_days)
            self._feedback_log = [f for f in self._feedback_log if f.timestamp >= cutoff]

            if feedback.task is None:
                logger.debug(f"Feedback {feedback.task_id or '<anonymous>'} has no task; profiles unchanged")
                return

            task_type = feedback.task.type
            profile = self._profiles.get(task_type)
            if profile is None:
                profile = TaskProfile(task_type=task_type, last_updated=self.clock())
                self._profiles[task_type] = profile
            self._update_profile(profile, feedback)

        logger.info(
            f"Updated {task_type.value} profile: samples={profile.sample_count}, "
            f"quality={profile.avg_quality_score:.2f}, success={profile.success_rate:.2f}"
        )

    def _ema(self, current: float, value: float, seed: bool) -> float:
        if seed:
            return value
        rate = self.config.learning_rate
        return current * (1 - rate) + value * rate

    def _update_profile(self, profile: TaskProfile, feedback: ContextFeedback) -> None:
        """EMA update; caller holds the lock."""
        first = profile.sample_count == 0
        profile.sample_count += 1

        profile.avg_quality_score = self._ema(profile.avg_quality_score, feedback.quality_score, first)
        profile.success_rate = self._ema(profile.success_rate, 1.0 if feedback.task_success else 0.0, first)

        selection = feedback.selected_context
        good = feedback.task_success and feedback.quality_score > self.config.quality_threshold

        if selection is not None:
            if good:
                used = feedback.tokens_used or selection.total_tokens
                budget = self._ema(profile.optimal_token_budget, used, profile.optimal_token_budget == 0)
                profile.optimal_token_budget = int(budget)

                counts = self._file_type_counts.setdefault(profile.task_type, Counter())
                counts.update(f.file_info.file_type for f in selection.files)
                profile.important_file_types = [t for t, _ in counts.most_common()]

            count = self._ema(profile.typical_file_count, selection.total_files, profile.typical_file_count == 0)
            profile.typical_file_count = int(round(count))

            if feedback.task_success and feedback.quality_score > profile.avg_quality_score:
                profile.preferred_strategy = selection.strategy

        profile.last_updated = self.clock()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_profile_statistics(self) -> Dict[TaskType, TaskProfile]:
        with self._lock:
            return {t: p.model_copy(deep=True) for t, p in self._profiles.items()}

    def get_feedback_history(self) -> List[ContextFeedback]:
        with self._lock:
            return list(self._feedback_log)

    def _profile_copy(self, task_type: TaskType) -> Optional[TaskProfile]:
        with self._lock:
            profile = self._profiles.get(task_type)
            return profile.model_copy(deep=True) if profile else None

    def _is_mature(self, profile: Optional[TaskProfile]) -> bool:
        return profile is not None and profile.sample_count >= self.config.min_samples_for_adaptation

    def _strategy_trusted(self, profile: Optional[TaskProfile]) -> bool:
        """Learned strategy applies only to mature profiles that mostly succeed."""
        return (
            self.config.enable_strategy_adaptation
            and self._is_mature(profile)
            and profile.preferred_strategy is not None
            and profile.success_rate > self.config.quality_threshold
        )
